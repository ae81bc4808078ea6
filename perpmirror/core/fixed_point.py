"""Deterministic fixed-point arithmetic for the perpmirror engine.

Every function is stateless and operates on ``decimal.Decimal``.

All intermediate arithmetic runs inside a local decimal context built by
``working_context()``, so results never depend on the caller's global context.
Results are quantized to ``DECIMALS`` fractional digits. ``wmul``/``wdiv`` and
each step of ``powi`` truncate toward zero to match the contract's fixed-point
multiply; ``ln`` rounds its final sum half-up.
"""

from __future__ import annotations

from decimal import (
    ROUND_DOWN,
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    localcontext,
)
from typing import Union

from .errors import NonIntegerExponentError, RangeError

DecimalLike = Union[Decimal, int, float, str]

# Contract fixed-point scale (1e18).
DECIMALS: int = 18
WORKING_PRECISION: int = 80

E: Decimal = Decimal("2.718281828459045235")
LN_UPPER_BOUND: Decimal = Decimal("1e22")

ZERO: Decimal = Decimal(0)
ONE: Decimal = Decimal(1)

_CONST_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)
LN_10: Decimal = Decimal(10).ln(_CONST_CONTEXT)
LN_1_5: Decimal = Decimal("1.5").ln(_CONST_CONTEXT)
_ANCHOR = Decimal("1.5")


# -- Contexts and normalization -------------------------------------------------

def working_context(precision: int = WORKING_PRECISION) -> Context:
    """Context used for all intermediate arithmetic."""
    return Context(
        prec=precision,
        rounding=ROUND_HALF_UP,
        Emin=-999_999,
        Emax=999_999,
        traps=[InvalidOperation, DivisionByZero, Overflow],
    )


def to_decimal(value: DecimalLike) -> Decimal:
    """Normalize *value* to a finite Decimal.

    Floats go through their shortest ``repr`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            d = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"not a decimal number: {value!r}") from exc
    else:
        raise TypeError(f"unsupported numeric type: {type(value).__name__}")
    if not d.is_finite():
        raise ValueError(f"non-finite value: {value!r}")
    return d


def round_fixed(value: Decimal, decimals: int = DECIMALS, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Quantize *value* to *decimals* fractional digits."""
    ctx = Context(prec=max(28, value.adjusted() + decimals + 2), rounding=rounding)
    out = value.quantize(Decimal(1).scaleb(-decimals), context=ctx)
    if out.is_zero():
        return abs(out)
    return out


def truncate(value: Decimal, decimals: int = DECIMALS) -> Decimal:
    return round_fixed(value, decimals, ROUND_DOWN)


def wmul(x: Decimal, y: Decimal, decimals: int = DECIMALS) -> Decimal:
    """Truncating fixed-point multiply."""
    with localcontext(working_context()):
        return truncate(x * y, decimals)


def wdiv(x: Decimal, y: Decimal, decimals: int = DECIMALS) -> Decimal:
    """Truncating fixed-point divide. Raises ``ZeroDivisionError`` on ``y == 0``."""
    with localcontext(working_context()):
        return truncate(x / y, decimals)


def clamp(value: Decimal, lo: Decimal, hi: Decimal) -> Decimal:
    return max(lo, min(hi, value))


# -- Transcendentals ------------------------------------------------------------

def _as_integer_exponent(n: object) -> int:
    if isinstance(n, bool):
        raise NonIntegerExponentError("exponent must be an integer, got bool")
    if isinstance(n, int):
        return n
    if isinstance(n, (Decimal, float)):
        d = to_decimal(n)
        if d != d.to_integral_value():
            raise NonIntegerExponentError(f"exponent must be an integer, got {n}")
        return int(d)
    raise NonIntegerExponentError(f"exponent must be an integer, got {type(n).__name__}")


def powi(x: DecimalLike, n: object, decimals: int = DECIMALS, precision: int = WORKING_PRECISION) -> Decimal:
    """``x ** n`` by squaring; every intermediate product truncated to *decimals*."""
    base = to_decimal(x)
    exp = _as_integer_exponent(n)
    if exp < 0:
        return wdiv(ONE, powi(base, -exp, decimals, precision), decimals)

    with localcontext(working_context(precision)):
        result = ONE
        while exp > 0:
            if exp & 1:
                result = truncate(result * base, decimals)
            exp >>= 1
            if exp:
                base = truncate(base * base, decimals)
    return result


def ln(
    v: DecimalLike,
    *,
    decimals: int = DECIMALS,
    precision: int = WORKING_PRECISION,
    upper_bound: Decimal = LN_UPPER_BOUND,
) -> Decimal:
    """Natural logarithm rounded to *decimals* digits.

    The input is range-reduced into ``[1, E]`` with powers of 10 and ``E``, then
    ``ln(x) = ln(1.5) + 2 * sum(z**(2k+1) / (2k+1))`` with
    ``z = (x - 1.5) / (x + 1.5)`` is summed for ``2 * decimals + 3`` terms.
    """
    x = to_decimal(v)
    if x <= 0:
        raise RangeError(f"ln of non-positive value {x}")
    if x > upper_bound:
        raise RangeError(f"ln input {x} exceeds {upper_bound}")
    if x == ONE:
        return round_fixed(ZERO, decimals)
    if x == E:
        return round_fixed(ONE, decimals)

    with localcontext(working_context(precision)):
        offset = ZERO
        while x >= 10:
            x = x / 10
            offset += LN_10
        while x < 1:
            x = x * 10
            offset -= LN_10
        while x > E:
            x = x / E
            offset += ONE

        z = (x - _ANCHOR) / (x + _ANCHOR)
        z2 = z * z
        term = z
        series = ZERO
        for k in range(2 * decimals + 3):
            series += term / (2 * k + 1)
            term *= z2
        result = offset + LN_1_5 + 2 * series
    return round_fixed(result, decimals)


def log(
    base: DecimalLike,
    x: DecimalLike,
    *,
    decimals: int = DECIMALS,
    precision: int = WORKING_PRECISION,
    upper_bound: Decimal = LN_UPPER_BOUND,
) -> Decimal:
    """``ln(x) / ln(base)``."""
    denominator = ln(base, decimals=decimals, precision=precision, upper_bound=upper_bound)
    if denominator.is_zero():
        raise RangeError("log base must not be 1")
    numerator = ln(x, decimals=decimals, precision=precision, upper_bound=upper_bound)
    with localcontext(working_context(precision)):
        return round_fixed(numerator / denominator, decimals)
