"""Error taxonomy for the deflation ledger.

Every recoverable failure is a LedgerError carrying a stable machine-readable
code. Failures are raised before any state is mutated, so a caller that
catches one can assume the ledger is exactly as it was.

InsufficientPoolBalance is different: it can only occur if the accounting
invariants have already been broken, so it derives from InvariantViolation
(a RuntimeError) and should be treated as fatal.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerError(ValueError):
    """Base class for recoverable ledger failures."""

    code = "ledger_error"

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


class InvalidDuration(LedgerError):
    code = "invalid_duration"


class InvalidAddress(LedgerError):
    code = "invalid_address"


class IndexOutOfRange(LedgerError):
    code = "index_out_of_range"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"


class InsufficientAllowance(LedgerError):
    code = "insufficient_allowance"


class Unauthorized(LedgerError):
    code = "unauthorized"


class PeriodNotElapsed(LedgerError):
    code = "period_not_elapsed"


class PositionNotMatured(LedgerError):
    code = "position_not_matured"


class InvariantViolation(RuntimeError):
    """Raised when ledger state contradicts its own invariants."""

    code = "invariant_violation"


class InsufficientPoolBalance(InvariantViolation):
    code = "insufficient_pool_balance"
