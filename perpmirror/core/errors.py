"""Exception types for the perpmirror computation engine.

Every precondition failure surfaces as a ``PerpError`` subclass raised at the
point where the violated precondition is detected. Nothing is retried.
"""

from __future__ import annotations


class PerpError(Exception):
    """Base class for all engine errors."""


class RangeError(PerpError, ValueError):
    """Logarithm of a non-positive or overly large input."""


class TemporalError(PerpError, ValueError):
    """Timestamp precedes the last funding timestamp."""


class NonIntegerExponentError(PerpError, ValueError):
    """``powi`` called with a non-integral exponent."""


class FlatCurveError(PerpError, ArithmeticError):
    """Crossing time requested on a flat funding curve (``v0 == p``)."""


class InsufficientLiquidityError(PerpError):
    """Trade amount is at least the AMM pool size, or the pool is empty."""


class InvalidPriceError(PerpError, ValueError):
    """Non-positive price, or a quote the pool cannot honor."""


class FairnessViolationError(InvalidPriceError):
    """Buy price below the fair price, or sell price above it."""


class InvalidAmountError(PerpError, ValueError):
    """Zero or negative trade, leverage, or liquidation amount."""


class InvalidSideError(PerpError, ValueError):
    """Side not allowed for the requested operation."""


class NothingToLiquidateError(PerpError):
    """Liquidation target is flat, safe, or rounds to zero lots."""


class InsufficientMarginError(PerpError):
    """Post-operation account would fall below its margin requirement."""


class PerpGuardError(PerpError):
    """Raised by ``step_or_raise`` when an action is rejected before apply."""


class PerpInvariantError(PerpError):
    """Raised when a post-state violates one or more invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
