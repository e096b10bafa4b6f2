"""
Checkout: turn the cart into a closed back-office sale, a drawer entry and a
receipt.

The steps are independent remote calls with no rollback. When step N fails,
steps before it stay committed on the back office and CheckoutStepError
reports which ones they were. Printing is best effort and never undoes a sale.
"""
import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from cash_ledger import CashLedger, PaymentMethod, Transaction, TransactionType
from cart_store import CartStore
from pos_errors import (
    CheckoutStepError,
    LedgerError,
    NetworkError,
    PersistenceError,
    PrintError,
    ValidationError,
)
from pos_money import parse_decimal, quantize_money
from receipt_format import ReceiptData, ReceiptFormatter, ReceiptItem

log = logging.getLogger(__name__)

STEP_CREATE_SALE = "create_sale"
STEP_ADD_LINES = "add_lines"
STEP_CLOSE_SALE = "close_sale"
STEP_CLEAR_CART = "clear_cart"
STEP_LEDGER = "ledger"
STEP_RECEIPT = "receipt"


@dataclass
class CheckoutResult:
    sale_id: str
    sale_code: str
    total: Decimal
    payment_method: PaymentMethod
    change: Optional[Decimal] = None
    transaction: Optional[Transaction] = None
    receipt_text: Optional[str] = None
    printed: bool = False
    print_error: Optional[str] = None
    completed_steps: List[str] = field(default_factory=list)


def _sale_code() -> str:
    return f"POS-{int(time.time() * 1000)}"


class CheckoutCoordinator:
    def __init__(self, cart: CartStore, api, ledger: Optional[CashLedger] = None,
                 formatter: Optional[ReceiptFormatter] = None, printer=None):
        self.cart = cart
        self.api = api
        self.ledger = ledger
        self.formatter = formatter
        self.printer = printer

    def validate(self, payment_method: Any, cash_tendered: Any = None):
        """Check the cart can be sold; returns ``(method, total, tendered)``."""
        if self.cart.is_empty:
            raise ValidationError("The cart is empty")
        if not self.cart.selected_client:
            raise ValidationError("A client must be selected")
        try:
            method = payment_method if isinstance(payment_method, PaymentMethod) \
                else PaymentMethod(str(payment_method or "cash").strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method!r}") from None
        # The back office keeps cents; sell and journal the same rounded total.
        try:
            total = quantize_money(self.cart.total())
            for line in self.cart.lines():
                quantize_money(line.unit_price)
        except ArithmeticError:
            raise ValidationError("Cart amounts are out of range") from None
        tendered = parse_decimal(cash_tendered)
        if tendered is not None:
            try:
                tendered = quantize_money(tendered)
            except ArithmeticError:
                raise ValidationError(f"Cash tendered is out of range: {cash_tendered!r}") from None
        if method is PaymentMethod.CASH and (tendered is None or tendered < total):
            raise ValidationError("Cash tendered is below the total")
        return method, total, tendered

    def checkout(self, payment_method: Any = PaymentMethod.CASH, cash_tendered: Any = None,
                 cashier: Optional[str] = None, client_name: Optional[str] = None) -> CheckoutResult:
        method, total, tendered = self.validate(payment_method, cash_tendered)
        lines = self.cart.lines()
        client = self.cart.selected_client
        code = _sale_code()
        completed: List[str] = []
        sale_id: Optional[str] = None

        def fail(step: str, exc: Exception):
            log.error("Checkout %s failed at %s after %s: %s", code, step, completed or "nothing", exc)
            return CheckoutStepError(step, completed, str(exc), sale_id)

        try:
            sale = self.api.create_sale(code, client, total)
        except NetworkError as exc:
            raise fail(STEP_CREATE_SALE, exc) from exc
        sale_id = str((sale or {}).get("id") or "")
        if not sale_id:
            raise fail(STEP_CREATE_SALE, NetworkError("Back office returned no sale id"))
        completed.append(STEP_CREATE_SALE)

        for line in lines:
            try:
                self.api.add_sale_line(sale_id, line.product_ref, line.quantity, line.unit_price)
            except NetworkError as exc:
                raise fail(STEP_ADD_LINES, exc) from exc
        completed.append(STEP_ADD_LINES)

        try:
            self.api.close_sale(sale_id)
        except NetworkError as exc:
            raise fail(STEP_CLOSE_SALE, exc) from exc
        completed.append(STEP_CLOSE_SALE)

        # The sale is final on the back office; the cart must not be sold twice.
        self.cart.clear()
        completed.append(STEP_CLEAR_CART)

        result = CheckoutResult(
            sale_id=sale_id,
            sale_code=code,
            total=total,
            payment_method=method,
            change=(tendered - total) if method is PaymentMethod.CASH else None,
            completed_steps=completed,
        )

        if self.ledger is not None and self.ledger.current_session() is not None:
            try:
                result.transaction = self.ledger.record_transaction(
                    TransactionType.SALE, total, method,
                    description=f"Sale {code}", reference=code, linked_sale_ref=sale_id,
                )
            except (NetworkError, LedgerError, PersistenceError) as exc:
                raise fail(STEP_LEDGER, exc) from exc
            completed.append(STEP_LEDGER)

        if self.formatter is not None:
            data = ReceiptData(
                code=code,
                created_at=(sale or {}).get("created_at") or dt.datetime.now().replace(microsecond=0),
                items=[ReceiptItem(line.name or line.product_ref, line.quantity, line.unit_price) for line in lines],
                payment_method=method.value,
                cashier_name=cashier,
                client_name=client_name or client,
                cash_amount=tendered if method is PaymentMethod.CASH else None,
                change=result.change,
            )
            self._print_receipt(data, result)

        log.info("Checkout %s completed: sale=%s total=%s method=%s", code, sale_id, total, method.value)
        return result

    def _print_receipt(self, data: ReceiptData, result: CheckoutResult) -> None:
        # The sale is already closed and journalled; a receipt problem only gets reported.
        try:
            result.receipt_text = self.formatter.render_text(data)
            if self.printer is not None:
                self.printer.print_text(result.receipt_text, data.code)
                result.printed = True
        except PrintError as exc:
            log.warning("Receipt for %s not printed: %s", data.code, exc)
            result.print_error = str(exc)
        except Exception as exc:
            log.exception("Receipt for %s failed", data.code)
            result.print_error = str(exc) or exc.__class__.__name__
        if result.receipt_text is not None:
            result.completed_steps.append(STEP_RECEIPT)
