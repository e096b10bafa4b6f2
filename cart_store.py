"""
The till cart: one observable, persisted order under construction.

Every mutation updates memory, writes the full snapshot, then notifies
subscribers, in that order. Storage trouble never escapes the store: a
corrupted snapshot is dropped at startup and a failed write falls back to
an empty cart.
"""
import datetime as dt
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from cart_storage import StorageAdapter
from pos_errors import PersistenceError, ValidationError
from pos_money import ZERO, parse_decimal, quantize_money, to_decimal

log = logging.getLogger(__name__)

CART_STORAGE_KEY = "pos_cart"

Listener = Callable[[List["CartLine"], Optional[str]], None]


@dataclass
class CartLine:
    product_ref: str
    quantity: Decimal
    unit_price: Decimal
    name: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price

    def copy(self) -> "CartLine":
        return CartLine(self.product_ref, self.quantity, self.unit_price, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productRef": self.product_ref,
            "name": self.name,
            "quantity": str(self.quantity),
            "price": str(self.unit_price),
            "subtotal": str(self.subtotal),
        }


class CorruptSnapshot(ValueError):
    pass


def _in_range(quantity: Decimal, price: Decimal) -> bool:
    """True when the line subtotal is representable in cents."""
    try:
        quantize_money(quantity * price)
    except ArithmeticError:
        return False
    return True


def _line_from_dict(raw: Any) -> CartLine:
    if not isinstance(raw, dict):
        raise CorruptSnapshot(f"line is not an object: {raw!r}")
    ref = raw.get("productRef")
    if not isinstance(ref, str) or not ref:
        raise CorruptSnapshot(f"bad productRef: {ref!r}")
    qty = parse_decimal(raw.get("quantity"))
    if qty is None or qty <= 0:
        raise CorruptSnapshot(f"bad quantity for {ref}: {raw.get('quantity')!r}")
    price = parse_decimal(raw.get("price"))
    if price is None or price < 0:
        raise CorruptSnapshot(f"bad price for {ref}: {raw.get('price')!r}")
    name = raw.get("name")
    if not _in_range(qty, price):
        raise CorruptSnapshot(f"amounts out of range for {ref}")
    return CartLine(ref, qty, price, name if isinstance(name, str) else None)


def parse_snapshot(blob: str):
    """Return ``(lines, selected_client, updated_at)`` from a persisted blob or raise CorruptSnapshot."""
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise CorruptSnapshot(f"not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CorruptSnapshot("snapshot is not an object")
    raw_lines = data.get("lines")
    if not isinstance(raw_lines, list):
        raise CorruptSnapshot("lines is not a list")
    lines: Dict[str, CartLine] = {}
    for raw in raw_lines:
        line = _line_from_dict(raw)
        if line.product_ref in lines:
            raise CorruptSnapshot(f"duplicate productRef {line.product_ref}")
        lines[line.product_ref] = line
    client = data.get("selectedClientRef")
    if client is not None and not isinstance(client, str):
        raise CorruptSnapshot("selectedClientRef is not a string")
    updated_at = None
    if isinstance(data.get("updatedAt"), str):
        try:
            updated_at = dt.datetime.fromisoformat(data["updatedAt"])
        except ValueError:
            updated_at = None
    return lines, (client or None), updated_at


def _product_fields(product: Union[str, Mapping[str, Any]]):
    if isinstance(product, str):
        return product, None, None
    if isinstance(product, Mapping):
        ref = product.get("id")
        if ref is None or str(ref).strip() == "":
            raise ValidationError("Product id is required")
        name = product.get("name")
        return str(ref), (str(name) if name is not None else None), product.get("price")
    raise ValidationError(f"Unsupported product value: {product!r}")


class CartStore:
    def __init__(self, storage: StorageAdapter, key: str = CART_STORAGE_KEY):
        self.storage = storage
        self.key = key
        self._lines: Dict[str, CartLine] = {}
        self._client: Optional[str] = None
        self._listeners: List[Listener] = []
        self.last_mutation: Optional[dt.datetime] = None
        self._load()

    # ---------- persistence ----------
    def _load(self) -> None:
        try:
            blob = self.storage.load(self.key)
        except PersistenceError:
            log.exception("Cart snapshot unreadable; starting with an empty cart")
            return
        if blob is None:
            return
        try:
            self._lines, self._client, self.last_mutation = parse_snapshot(blob)
        except CorruptSnapshot as exc:
            log.error("Discarding corrupted cart snapshot: %s", exc)
            self._lines, self._client = {}, None
            self._discard_persisted()

    def _discard_persisted(self) -> None:
        """Make the durable state empty: erase the blob, or overwrite it if erase fails."""
        try:
            self.storage.erase(self.key)
            return
        except PersistenceError:
            log.exception("Failed to erase cart snapshot; overwriting it with an empty cart")
        empty = {"lines": [], "selectedClientRef": "", "updatedAt": None}
        try:
            self.storage.save(self.key, json.dumps(empty))
        except PersistenceError:
            log.exception("Failed to overwrite cart snapshot; a stale cart may come back on restart")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self._lines.values()],
            "selectedClientRef": self._client or "",
            "updatedAt": self.last_mutation.isoformat() if self.last_mutation else None,
        }

    def _commit(self) -> None:
        self.last_mutation = dt.datetime.utcnow().replace(microsecond=0)
        try:
            self.storage.save(self.key, json.dumps(self.snapshot()))
        except (PersistenceError, ArithmeticError):
            log.exception("Failed to persist cart; falling back to an empty cart")
            self._lines, self._client = {}, None
            self._discard_persisted()
        self._notify()

    # ---------- observers ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.lines(), self._client)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.lines(), self._client)
            except Exception:
                log.exception("Cart listener %r failed", listener)

    # ---------- mutations ----------
    def add_line(self, product: Union[str, Mapping[str, Any]], quantity: Any = 1, price: Any = None) -> CartLine:
        ref, name, product_price = _product_fields(product)
        qty = parse_decimal(quantity)
        if qty is None or qty <= 0:
            raise ValidationError(f"Quantity must be a positive number, got {quantity!r}")
        unit_price = to_decimal(price if price is not None else product_price)
        if unit_price < 0:
            raise ValidationError(f"Price cannot be negative, got {unit_price}")

        existing = self._lines.get(ref)
        new_qty = existing.quantity + qty if existing else qty
        if not _in_range(new_qty, unit_price):
            raise ValidationError("Line amount is out of range")
        if existing:
            existing.quantity = new_qty
            existing.unit_price = unit_price
            if name:
                existing.name = name
            line = existing
        else:
            line = CartLine(ref, qty, unit_price, name)
            self._lines[ref] = line
        self._commit()
        return line.copy()

    def update_quantity(self, product_ref: str, quantity: Any) -> None:
        qty = parse_decimal(quantity)
        if qty is None:
            raise ValidationError(f"Quantity must be a number, got {quantity!r}")
        if qty <= 0:
            self.remove_line(product_ref)
            return
        line = self._lines.get(product_ref)
        if line is None:
            log.debug("update_quantity: %s not in cart", product_ref)
            return
        if not _in_range(qty, line.unit_price):
            raise ValidationError("Line amount is out of range")
        line.quantity = qty
        self._commit()

    def update_price(self, product_ref: str, price: Any) -> None:
        unit_price = to_decimal(price)
        if unit_price < 0:
            raise ValidationError(f"Price cannot be negative, got {unit_price}")
        line = self._lines.get(product_ref)
        if line is None:
            log.debug("update_price: %s not in cart", product_ref)
            return
        if not _in_range(line.quantity, unit_price):
            raise ValidationError("Line amount is out of range")
        line.unit_price = unit_price
        self._commit()

    def remove_line(self, product_ref: str) -> None:
        if self._lines.pop(product_ref, None) is None:
            return
        self._commit()

    def set_selected_client(self, client_ref: Optional[str]) -> None:
        self._client = (str(client_ref).strip() or None) if client_ref is not None else None
        self._commit()

    def clear(self) -> None:
        """Drop the cart and its persisted snapshot (cancel and checkout alike)."""
        self._lines, self._client = {}, None
        self.last_mutation = None
        self._discard_persisted()
        self._notify()

    # ---------- queries ----------
    @property
    def selected_client(self) -> Optional[str]:
        return self._client

    def get_selected_client(self) -> Optional[str]:
        return self._client

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def lines(self) -> List[CartLine]:
        return [line.copy() for line in self._lines.values()]

    def get_line(self, product_ref: str) -> Optional[CartLine]:
        line = self._lines.get(product_ref)
        return line.copy() if line else None

    def total(self) -> Decimal:
        total = ZERO
        for line in self._lines.values():
            try:
                total += to_decimal(line.subtotal)
            except (TypeError, ArithmeticError):
                log.warning("Ignoring non-numeric subtotal on %s", line.product_ref)
        return total

    def total_quantity(self) -> Decimal:
        return sum((to_decimal(line.quantity) for line in self._lines.values()), ZERO)

    def __len__(self) -> int:
        return len(self._lines)
