"""
Back-office REST client used by the till.

Only the calls the till core needs: remote sales ("withdrawals") with their
lines, and cash registers with their transactions. Every failure surfaces
as NetworkError; nothing is retried here.
"""
import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

import requests

from pos_errors import NetworkError, ValidationError
from pos_money import money_str

log = logging.getLogger(__name__)

# Types the back office accepts on /cash-transactions. Registers are closed
# through /cash-registers/<id>/close, never with a transaction.
CASH_TRANSACTION_TYPES = frozenset({"sale", "refund", "adjustment", "withdrawal", "deposit"})


def _error_message_from_response(resp: requests.Response) -> str:
    try:
        j = resp.json()
        if isinstance(j, dict):
            return j.get("message") or j.get("error") or resp.text
        return resp.text
    except ValueError:
        return resp.text


def _json_amount(value: Any) -> float:
    # Wire format is a JSON number; keep two decimals.
    try:
        return float(money_str(value))
    except ArithmeticError:
        raise ValidationError(f"Amount out of range: {value!r}") from None


class PosApiClient:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 20.0,
                 session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.base_url + path
        try:
            resp = self.session.request(
                method, url, json=payload, params=params,
                headers=self._headers(), timeout=self.timeout,
            )
        except requests.RequestException as exc:
            log.warning("HTTP error %s %s: %s", method, path, exc)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            message = _error_message_from_response(resp)
            log.warning("Back office rejected %s %s: status=%s body=%s",
                        method, path, resp.status_code, (resp.text or "")[:200])
            raise NetworkError(message or f"HTTP {resp.status_code}", status_code=resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkError(f"Bad JSON response for {method} {path}", status_code=resp.status_code) from exc

    # ---------- sales ----------
    def create_sale(self, code: str, client_id: str, amount: Decimal, destination: str = "Venta POS") -> Dict[str, Any]:
        return self._request("POST", "/withdrawals", {
            "code": code,
            "destination": destination,
            "client_id": client_id,
            "amount": _json_amount(amount),
            "status": True,
        })

    def add_sale_line(self, sale_id: str, product_id: str, quantity: Decimal, price: Decimal) -> Dict[str, Any]:
        return self._request("POST", f"/withdrawals/{sale_id}/details", {
            "product_id": product_id,
            "quantity": float(quantity),
            "price": _json_amount(price),
        })

    def close_sale(self, sale_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/withdrawals/{sale_id}/close", {})

    # ---------- cash registers ----------
    def open_cash_register(self, initial_amount: Decimal, name: str, description: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/cash-registers/open", {
            "initial_amount": _json_amount(initial_amount),
            "name": name,
            "description": description or "Main cash register",
        })

    def close_cash_register(self, register_id: str, final_amount: Decimal, description: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/cash-registers/{register_id}/close", {
            "final_amount": _json_amount(final_amount),
            "description": description or "Cash closing",
        })

    def current_cash_register(self) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", "/cash-registers/current")
        except NetworkError as exc:
            if exc.status_code == 404:
                return None
            raise

    def create_cash_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(payload)
        body["amount"] = _json_amount(body.get("amount"))
        return self._request("POST", "/cash-transactions", body)

    def list_cash_transactions(self, register_id: str, page: Optional[int] = None,
                               limit: Optional[int] = None) -> Dict[str, Any]:
        params = {}
        if page:
            params["page"] = page
        if limit:
            params["limit"] = limit
        return self._request("GET", f"/cash-transactions/cash-registers/{register_id}/transactions",
                             params=params or None)


class MockPosApi:
    """
    In-process stand-in for the back office (USE_MOCK=1 and tests).

    ``fail_on`` maps a method name to an exception raised the next time that
    method runs, so tests can break any single step.
    """

    def __init__(self):
        self.sales: Dict[str, Dict[str, Any]] = {}
        self.registers: Dict[str, Dict[str, Any]] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.fail_on: Dict[str, Exception] = {}

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        exc = self.fail_on.pop(name, None)
        if exc is not None:
            raise exc

    @staticmethod
    def _now() -> str:
        return dt.datetime.utcnow().replace(microsecond=0).isoformat() + "Z"

    def create_sale(self, code, client_id, amount, destination="Venta POS"):
        self._enter("create_sale")
        sale_id = uuid4().hex
        sale = {"id": sale_id, "code": code, "client_id": client_id, "amount": money_str(amount),
                "destination": destination, "status": True, "closed": False,
                "details": [], "created_at": self._now()}
        self.sales[sale_id] = sale
        return dict(sale)

    def add_sale_line(self, sale_id, product_id, quantity, price):
        self._enter("add_sale_line")
        sale = self.sales.get(sale_id)
        if sale is None:
            raise NetworkError(f"Sale {sale_id} not found", status_code=404)
        detail = {"id": uuid4().hex, "product_id": product_id,
                  "quantity": str(quantity), "price": money_str(price)}
        sale["details"].append(detail)
        return dict(detail)

    def close_sale(self, sale_id):
        self._enter("close_sale")
        sale = self.sales.get(sale_id)
        if sale is None:
            raise NetworkError(f"Sale {sale_id} not found", status_code=404)
        sale["closed"] = True
        return {"id": sale_id, "closed": True}

    def open_cash_register(self, initial_amount, name, description=None):
        self._enter("open_cash_register")
        register_id = uuid4().hex
        register = {"id": register_id, "name": name, "description": description,
                    "initial_amount": money_str(initial_amount), "status": "open",
                    "opened_at": self._now(), "closed_at": None}
        self.registers[register_id] = register
        return dict(register)

    def close_cash_register(self, register_id, final_amount, description=None):
        self._enter("close_cash_register")
        register = self.registers.get(register_id)
        if register is None:
            raise NetworkError(f"Cash register {register_id} not found", status_code=404)
        register.update(status="closed", closed_at=self._now(), final_amount=money_str(final_amount))
        return dict(register)

    def current_cash_register(self):
        self._enter("current_cash_register")
        for register in self.registers.values():
            if register["status"] == "open":
                return dict(register)
        return None

    def create_cash_transaction(self, payload):
        self._enter("create_cash_transaction")
        if payload.get("type") not in CASH_TRANSACTION_TYPES:
            raise NetworkError(f"Invalid transaction type: {payload.get('type')!r}", status_code=422)
        record = dict(payload)
        record["amount"] = money_str(record.get("amount"))
        record["id"] = uuid4().hex
        record["created_at"] = self._now()
        self.transactions.append(record)
        return dict(record)

    def list_cash_transactions(self, register_id, page=None, limit=None):
        self._enter("list_cash_transactions")
        data = [t for t in self.transactions if t.get("cash_register_id") == register_id]
        return {"data": data, "meta": {"total": len(data), "page": page or 1,
                                       "limit": limit or len(data), "totalPages": 1}}
