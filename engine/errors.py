"""Error taxonomy for the accounting, fee and settlement engine."""

from __future__ import annotations

from typing import Any


class EngineError(RuntimeError):
    """Base class for every engine rejection; no partial state survives it."""


class PreconditionError(EngineError):
    """Raised when a call violates a closed precondition."""


class Unauthorized(PreconditionError):
    """Raised when the caller role may not invoke the operation."""


class OperationPaused(PreconditionError):
    """Raised while the engine is paused or shut down."""


class NotWhitelisted(PreconditionError):
    """Raised when the account fails the identity check."""


class NoData(PreconditionError):
    """Raised when no accounting snapshot (or schedule entry) exists yet."""


class ZeroPrice(PreconditionError):
    pass


class ZeroSupply(PreconditionError):
    pass


class InsolventPosition(PreconditionError):
    """Raised when the cash position does not exceed the fiat value of the debt."""


class FeeExceedsBalance(PreconditionError):
    pass


class BracketOrderViolation(PreconditionError):
    """Raised when a fee-schedule mutation would break strict ascending order."""


class InvalidRange(PreconditionError):
    pass


class InvalidDayKey(PreconditionError):
    pass


class InvalidAmount(PreconditionError):
    """Raised for negative, non-integer or out-of-range amounts."""


class InvalidOrderIndex(PreconditionError):
    pass


class BelowMinimumTrade(PreconditionError):
    pass


class TokensLocked(PreconditionError):
    """Raised when a redemption reaches tokens created inside the lock window."""


class ArithmeticFault(PreconditionError):
    """Fixed-point arithmetic failure; never saturated or truncated."""


class ArithmeticOverflow(ArithmeticFault):
    pass


class ArithmeticUnderflow(ArithmeticFault):
    pass


class DivisionByZero(ArithmeticFault):
    pass


class CrossValidationError(EngineError):
    """Reported and recomputed values disagree; never reconciled silently."""

    def __init__(self, quantity: str, expected: Any, actual: Any) -> None:
        self.quantity = quantity
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{quantity} mismatch: recomputed={expected} reported={actual}."
        )


class SettlementMismatch(CrossValidationError):
    pass


class RebalanceMismatch(CrossValidationError):
    pass


class InsufficientHotWalletFunds(EngineError):
    pass


class CollaboratorFailure(EngineError):
    """Raised when a custody or supply collaborator reports failure."""
