"""
Cash drawer ledger for till register sessions.

Transactions are append-only rows in the local SQLite journal. When a remote
back office is attached, a row is written only after the back office has
confirmed it. The drawer balance is never stored: it is re-derived from the
opening amount and the full journal on every read.
"""
import datetime as dt
import logging
import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from pos_errors import (
    LedgerError,
    PersistenceError,
    SessionAlreadyOpenError,
    SessionClosedError,
    ValidationError,
)
from pos_money import ZERO, parse_decimal, quantize_money

log = logging.getLogger(__name__)


class TransactionType(str, Enum):
    SALE = "sale"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CLOSING = "closing"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MIXED = "mixed"


class SessionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# Contribution of each type to the drawer balance. Closing is an attestation only.
_SIGNS = {
    TransactionType.SALE: 1,
    TransactionType.REFUND: -1,
    TransactionType.ADJUSTMENT: 1,
    TransactionType.DEPOSIT: 1,
    TransactionType.WITHDRAWAL: -1,
    TransactionType.CLOSING: 0,
}


@dataclass(frozen=True)
class Transaction:
    id: str
    session_id: str
    type: TransactionType
    amount: Decimal
    payment_method: PaymentMethod
    timestamp: str
    description: str = ""
    reference: str = ""
    linked_sale_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cash_register_id": self.session_id,
            "type": self.type.value,
            "amount": str(self.amount),
            "payment_method": self.payment_method.value,
            "description": self.description,
            "reference": self.reference,
            "sale_id": self.linked_sale_ref,
            "created_at": self.timestamp,
        }


@dataclass(frozen=True)
class CashRegisterSession:
    id: str
    name: str
    status: SessionStatus
    opening_amount: Decimal
    opened_at: str
    operator: str
    description: Optional[str] = None
    closed_at: Optional[str] = None
    counted_amount: Optional[Decimal] = None

    @property
    def is_open(self) -> bool:
        return self.status is SessionStatus.OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "initial_amount": str(self.opening_amount),
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "counted_amount": str(self.counted_amount) if self.counted_amount is not None else None,
            "operator": self.operator,
        }


def signed_amount(txn: Transaction) -> Decimal:
    return txn.amount * _SIGNS[txn.type]


def derive_balance(opening_amount: Decimal, transactions: Iterable[Transaction], cash_only: bool = False) -> Decimal:
    balance = opening_amount
    for txn in transactions:
        if cash_only and txn.payment_method is not PaymentMethod.CASH:
            continue
        balance += signed_amount(txn)
    return balance


def _utcnow_z() -> str:
    return dt.datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


def _ensure_ledger_tables(conn: sqlite3.Connection):
    conn.execute("""
        CREATE TABLE IF NOT EXISTS cash_registers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            operator TEXT NOT NULL,
            status TEXT NOT NULL,
            opening_amount TEXT NOT NULL,
            counted_amount TEXT,
            opened_utc TEXT NOT NULL,
            closed_utc TEXT
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_cash_registers_open "
        "ON cash_registers(operator) WHERE status='open'"
    )
    conn.execute("""
        CREATE TABLE IF NOT EXISTS cash_transactions (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            cash_register_id TEXT NOT NULL REFERENCES cash_registers(id),
            type TEXT NOT NULL,
            amount TEXT NOT NULL,
            payment_method TEXT NOT NULL,
            description TEXT,
            reference TEXT,
            sale_id TEXT,
            entry_utc TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_cash_transactions_register ON cash_transactions(cash_register_id)")
    conn.commit()


def _session_from_row(row: sqlite3.Row) -> CashRegisterSession:
    counted = row["counted_amount"]
    return CashRegisterSession(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        operator=row["operator"],
        status=SessionStatus(row["status"]),
        opening_amount=Decimal(row["opening_amount"]),
        opened_at=row["opened_utc"],
        closed_at=row["closed_utc"],
        counted_amount=Decimal(counted) if counted is not None else None,
    )


def _txn_from_row(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        session_id=row["cash_register_id"],
        type=TransactionType(row["type"]),
        amount=Decimal(row["amount"]),
        payment_method=PaymentMethod(row["payment_method"]),
        timestamp=row["entry_utc"],
        description=row["description"] or "",
        reference=row["reference"] or "",
        linked_sale_ref=row["sale_id"],
    )


def _money_amount(value: Any, label: str) -> Optional[Decimal]:
    """Parse and round to cents, the precision the back office confirms."""
    amount = parse_decimal(value)
    if amount is None:
        return None
    try:
        return quantize_money(amount)
    except ArithmeticError:
        raise ValidationError(f"{label} is out of range: {value!r}") from None


def _coerce_enum(enum_cls, value, label: str):
    try:
        return value if isinstance(value, enum_cls) else enum_cls(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown {label}: {value!r}") from None


class CashLedger:
    def __init__(self, conn: sqlite3.Connection, remote=None, operator: str = "default"):
        self.conn = conn
        self.remote = remote
        self.operator = operator or "default"
        _ensure_ledger_tables(conn)

    # ---------- sessions ----------
    def current_session(self) -> Optional[CashRegisterSession]:
        row = self.conn.execute(
            "SELECT * FROM cash_registers WHERE operator=? AND status='open'", (self.operator,)
        ).fetchone()
        return _session_from_row(row) if row else None

    def get_session(self, session_id: str) -> CashRegisterSession:
        row = self.conn.execute("SELECT * FROM cash_registers WHERE id=?", (session_id,)).fetchone()
        if not row:
            raise LedgerError(f"Cash register {session_id} not found")
        return _session_from_row(row)

    def open_session(self, opening_amount: Any, name: str, description: Optional[str] = None) -> CashRegisterSession:
        amount = _money_amount(opening_amount, "Opening amount")
        if amount is None or amount < 0:
            raise ValidationError(f"Opening amount must be zero or more, got {opening_amount!r}")
        name = (name or "").strip() or "Main cash register"
        current = self.current_session()
        if current:
            raise SessionAlreadyOpenError(f"Cash register {current.name} is already open")

        session_id = None
        opened_at = _utcnow_z()
        if self.remote is not None:
            confirmed = self.remote.open_cash_register(amount, name, description)
            session_id = (confirmed or {}).get("id")
            opened_at = (confirmed or {}).get("opened_at") or opened_at
        session_id = str(session_id or uuid4().hex)
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO cash_registers (id, name, description, operator, status, opening_amount, opened_utc) "
                    "VALUES (?,?,?,?,?,?,?)",
                    (session_id, name, description, self.operator, SessionStatus.OPEN.value, str(amount), opened_at),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot journal cash register {session_id}: {exc}") from exc
        log.info("Opened cash register %s (%s) with %s", session_id, name, amount)
        return self.get_session(session_id)

    def close_session(self, counted_amount: Any, description: str = "Cash closing") -> CashRegisterSession:
        """
        Close the register for good. The back office records the close on the
        register itself; the Closing attestation is journalled locally in the
        same SQLite transaction as the status change.
        """
        session = self.current_session()
        if session is None:
            raise LedgerError("No open cash register")
        counted = _money_amount(counted_amount, "Counted amount")
        if counted is None or counted < 0:
            raise ValidationError(f"Counted amount must be zero or more, got {counted_amount!r}")
        if self.remote is not None:
            self.remote.close_cash_register(session.id, counted, description)
        closed_at = _utcnow_z()
        closing = Transaction(
            id=uuid4().hex,
            session_id=session.id,
            type=TransactionType.CLOSING,
            amount=counted,
            payment_method=PaymentMethod.CASH,
            timestamp=closed_at,
            description=description or "",
            reference=f"CLOSE-{session.id[:8]}",
        )
        try:
            with self.conn:
                self._insert(closing)
                self.conn.execute(
                    "UPDATE cash_registers SET status=?, closed_utc=?, counted_amount=? WHERE id=?",
                    (SessionStatus.CLOSED.value, closed_at, str(counted), session.id),
                )
        except sqlite3.Error as exc:
            log.error("Cash register %s closed remotely but not journalled: %s", session.id, exc)
            raise PersistenceError(f"Cannot close cash register {session.id}: {exc}") from exc
        log.info("Closed cash register %s, counted %s", session.id, counted)
        return self.get_session(session.id)

    # ---------- transactions ----------
    def record_transaction(self, type: Any, amount: Any, payment_method: Any, description: str = "",
                           reference: str = "", linked_sale_ref: Optional[str] = None,
                           session_id: Optional[str] = None) -> Transaction:
        txn_type = _coerce_enum(TransactionType, type, "transaction type")
        if txn_type is TransactionType.CLOSING:
            raise ValidationError("Closing entries are recorded by close_session")
        method = _coerce_enum(PaymentMethod, payment_method, "payment method")
        value = _money_amount(amount, "Amount")
        if value is None:
            raise ValidationError(f"Amount must be a number, got {amount!r}")
        if value < 0 and txn_type is not TransactionType.ADJUSTMENT:
            raise ValidationError("Amount is a magnitude; only adjustments may be negative")

        if session_id is None:
            session = self.current_session()
            if session is None:
                raise SessionClosedError("No open cash register")
        else:
            session = self.get_session(session_id)
        if not session.is_open:
            raise SessionClosedError(f"Cash register {session.id} is closed")
        return self._append(session, txn_type, value, method, description, reference, linked_sale_ref)

    def _append(self, session: CashRegisterSession, txn_type: TransactionType, amount: Decimal,
                method: PaymentMethod, description: str, reference: str,
                linked_sale_ref: Optional[str]) -> Transaction:
        # One rounded value for both the back office and the journal.
        amount = quantize_money(amount)
        payload = {
            "cash_register_id": session.id,
            "type": txn_type.value,
            "amount": amount,
            "description": description or "",
            "reference": reference or "",
            "payment_method": method.value,
        }
        if linked_sale_ref:
            payload["sale_id"] = linked_sale_ref

        txn_id = None
        timestamp = _utcnow_z()
        if self.remote is not None:
            confirmed = self.remote.create_cash_transaction(payload)
            txn_id = (confirmed or {}).get("id")
            timestamp = (confirmed or {}).get("created_at") or timestamp
        txn = Transaction(
            id=str(txn_id or uuid4().hex),
            session_id=session.id,
            type=txn_type,
            amount=amount,
            payment_method=method,
            timestamp=timestamp,
            description=payload["description"],
            reference=payload["reference"],
            linked_sale_ref=linked_sale_ref,
        )
        try:
            with self.conn:
                self._insert(txn)
        except sqlite3.Error as exc:
            log.error("Transaction %s confirmed remotely but not journalled: %s", txn.id, exc)
            raise PersistenceError(f"Cannot journal transaction {txn.id}: {exc}") from exc
        log.info("Recorded %s %s (%s) on %s", txn.type.value, txn.amount, txn.payment_method.value, session.id)
        return txn

    def _insert(self, txn: Transaction) -> None:
        self.conn.execute(
            "INSERT INTO cash_transactions (id, cash_register_id, type, amount, payment_method, "
            "description, reference, sale_id, entry_utc) VALUES (?,?,?,?,?,?,?,?,?)",
            (txn.id, txn.session_id, txn.type.value, str(txn.amount), txn.payment_method.value,
             txn.description, txn.reference, txn.linked_sale_ref, txn.timestamp),
        )

    def transactions(self, session_id: str) -> List[Transaction]:
        rows = self.conn.execute(
            "SELECT * FROM cash_transactions WHERE cash_register_id=? ORDER BY seq ASC", (session_id,)
        ).fetchall()
        return [_txn_from_row(r) for r in rows]

    # ---------- balances ----------
    def compute_balance(self, session_id: str) -> Decimal:
        session = self.get_session(session_id)
        return derive_balance(session.opening_amount, self.transactions(session_id))

    def compute_cash_sub_balance(self, session_id: str) -> Decimal:
        session = self.get_session(session_id)
        return derive_balance(session.opening_amount, self.transactions(session_id), cash_only=True)

    def report(self, session_id: str) -> Dict[str, Any]:
        session = self.get_session(session_id)
        txns = self.transactions(session_id)
        totals = {t: ZERO for t in TransactionType}
        cash_sales = card_sales = ZERO
        for txn in txns:
            totals[txn.type] += txn.amount
            if txn.type is TransactionType.SALE:
                if txn.payment_method is PaymentMethod.CASH:
                    cash_sales += txn.amount
                elif txn.payment_method is PaymentMethod.CARD:
                    card_sales += txn.amount
        expected_cash = derive_balance(session.opening_amount, txns, cash_only=True)
        counted = session.counted_amount
        return {
            "session": session,
            "total_sales": totals[TransactionType.SALE],
            "total_refunds": totals[TransactionType.REFUND],
            "total_adjustments": totals[TransactionType.ADJUSTMENT],
            "total_deposits": totals[TransactionType.DEPOSIT],
            "total_withdrawals": totals[TransactionType.WITHDRAWAL],
            "cash_sales": cash_sales,
            "card_sales": card_sales,
            "opening_balance": session.opening_amount,
            "closing_balance": derive_balance(session.opening_amount, txns),
            "expected_cash": expected_cash,
            "counted_amount": counted,
            "difference": (counted - expected_cash) if counted is not None else None,
            "transactions": txns,
        }
