"""Errors raised by the till core."""
from typing import Optional, Sequence


class PosError(Exception):
    """Base class for till errors."""


class ValidationError(PosError, ValueError):
    """Bad operator input: recoverable by re-entering it, never persisted."""


class PersistenceError(PosError):
    """Local storage could not be read or written."""


class NetworkError(PosError):
    """A remote back-office call failed or was rejected."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PrintError(PosError):
    """Receipt could not be printed. Never fatal for a sale."""


class LedgerError(PosError):
    """Cash register ledger rejected the operation."""


class SessionAlreadyOpenError(LedgerError):
    pass


class SessionClosedError(LedgerError):
    pass


class CheckoutStepError(PosError):
    """
    A checkout step failed. Steps listed in ``completed_steps`` stay committed
    on the back office; nothing is rolled back.
    """

    def __init__(
        self,
        step: str,
        completed_steps: Sequence[str],
        message: str,
        sale_id: Optional[str] = None,
    ):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.completed_steps = list(completed_steps)
        self.sale_id = sale_id
