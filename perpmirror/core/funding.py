"""Funding curve accumulator and funding state updater.

The EMA premium decays toward the last observed premium::

    v(t) = (v0 - p) * a**t + p        a = 1 - ema_alpha

Four clamp levels ``-vLimit < -vDampener < vDampener < vLimit`` (each a
governance ratio times ``last_index_price``) split the premium axis into five
regions. Within a region the contribution to the funding integral is:

    BELOW_LIMIT     (-vLimit + vDampener) * dt      clamped, dampened
    NEGATIVE_BAND   R(x, y) + vDampener * dt        curve, dampened
    DEAD_BAND       0
    POSITIVE_BAND   R(x, y) - vDampener * dt
    ABOVE_LIMIT     (vLimit - vDampener) * dt

where ``R(x, y) = (v0 - p) * (a**x - a**y) / ema_alpha + p * (y - x)`` is the
closed-form integral of the unclamped curve.

``v`` is monotone, so the regions of ``v0`` and ``vt`` fix the ordered list of
boundaries crossed. ``CROSSINGS`` maps each of the 25 ``(region(v0),
region(vt))`` pairs to that list; the window ``[0, n]`` is cut at the
(integer, rounded up) crossing times and the per-region integrals are summed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import ROUND_UP, Decimal, localcontext
from enum import IntEnum, unique
from itertools import product

from ..config import DEFAULT_CONFIG, EngineConfig
from .errors import FlatCurveError, InvalidPriceError, TemporalError
from .fixed_point import ONE, ZERO, clamp, log, powi, round_fixed, to_decimal, working_context
from .types import (
    AccumulatedFunding,
    FundingParams,
    FundingResult,
    GovParams,
    PerpetualStorage,
)

logger = logging.getLogger(__name__)


@unique
class Region(IntEnum):
    BELOW_LIMIT = 0
    NEGATIVE_BAND = 1
    DEAD_BAND = 2
    POSITIVE_BAND = 3
    ABOVE_LIMIT = 4


# Boundary k separates Region(k) from Region(k + 1).
BOUNDARY_COUNT = 4


def _crossed(start: Region, end: Region) -> tuple[int, ...]:
    if end > start:
        return tuple(range(start, end))
    return tuple(range(start - 1, end - 1, -1))


CROSSINGS: dict[tuple[Region, Region], tuple[int, ...]] = {
    (start, end): _crossed(start, end) for start, end in product(Region, Region)
}


def classify(v: Decimal, v_limit: Decimal, v_dampener: Decimal) -> Region:
    """Region holding premium *v*; boundaries belong to the lower region."""
    if v <= -v_limit:
        return Region.BELOW_LIMIT
    if v <= -v_dampener:
        return Region.NEGATIVE_BAND
    if v <= v_dampener:
        return Region.DEAD_BAND
    if v <= v_limit:
        return Region.POSITIVE_BAND
    return Region.ABOVE_LIMIT


def crossing_time(
    level: Decimal,
    *,
    v0: Decimal,
    last_premium: Decimal,
    ema_alpha: Decimal,
    config: EngineConfig = DEFAULT_CONFIG,
) -> int:
    """Whole seconds until the curve reaches *level*, rounded away from zero.

    Raises ``FlatCurveError`` when ``v0 == last_premium``.
    """
    if v0 == last_premium:
        raise FlatCurveError(f"curve is flat at {v0}; it never crosses {level}")
    with localcontext(working_context(config.working_precision)):
        ratio = (level - last_premium) / (v0 - last_premium)
        decay = ONE - ema_alpha
    t = log(
        decay, ratio,
        decimals=config.decimals,
        precision=config.working_precision,
        upper_bound=config.ln_upper_bound,
    )
    return int(t.to_integral_value(rounding=ROUND_UP))


def integrate_curve(
    x: int,
    y: int,
    *,
    v0: Decimal,
    last_premium: Decimal,
    ema_alpha: Decimal,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    """``R(x, y)``: integral of the unclamped curve over ``[x, y]``."""
    decay = ONE - ema_alpha
    ax = powi(decay, x, config.decimals, config.working_precision)
    ay = powi(decay, y, config.decimals, config.working_precision)
    with localcontext(working_context(config.working_precision)):
        return (v0 - last_premium) * (ax - ay) / ema_alpha + last_premium * (y - x)


@dataclass(frozen=True)
class _Curve:
    v0: Decimal
    last_premium: Decimal
    ema_alpha: Decimal
    v_limit: Decimal
    v_dampener: Decimal
    config: EngineConfig

    @property
    def levels(self) -> tuple[Decimal, ...]:
        return (-self.v_limit, -self.v_dampener, self.v_dampener, self.v_limit)

    def value_at(self, n: int) -> Decimal:
        a_n = powi(ONE - self.ema_alpha, n, self.config.decimals, self.config.working_precision)
        with localcontext(working_context(self.config.working_precision)):
            return (self.v0 - self.last_premium) * a_n + self.last_premium

    def crossing(self, boundary: int) -> int:
        return crossing_time(
            self.levels[boundary],
            v0=self.v0,
            last_premium=self.last_premium,
            ema_alpha=self.ema_alpha,
            config=self.config,
        )

    def segment(self, region: Region, x: int, y: int) -> Decimal:
        """Contribution of ``[x, y]`` spent entirely inside *region*."""
        dt = y - x
        if region is Region.DEAD_BAND or dt == 0:
            return ZERO
        with localcontext(working_context(self.config.working_precision)):
            if region is Region.BELOW_LIMIT:
                return (self.v_dampener - self.v_limit) * dt
            if region is Region.ABOVE_LIMIT:
                return (self.v_limit - self.v_dampener) * dt
        r = integrate_curve(
            x, y,
            v0=self.v0,
            last_premium=self.last_premium,
            ema_alpha=self.ema_alpha,
            config=self.config,
        )
        with localcontext(working_context(self.config.working_precision)):
            if region is Region.NEGATIVE_BAND:
                return r + self.v_dampener * dt
            return r - self.v_dampener * dt


def accumulate_funding(
    f: FundingParams,
    g: GovParams,
    now: int,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccumulatedFunding:
    """Raw integral of the clamped, dampened premium over ``[last_funding_timestamp, now]``."""
    n = now - f.last_funding_timestamp
    if n < 0:
        raise TemporalError(
            f"timestamp {now} precedes last funding timestamp {f.last_funding_timestamp}"
        )

    with localcontext(working_context(config.working_precision)):
        v_limit = g.mark_premium_limit * f.last_index_price
        v_dampener = g.funding_dampener * f.last_index_price
    curve = _Curve(
        v0=f.last_ema_premium,
        last_premium=f.last_premium,
        ema_alpha=g.ema_alpha,
        v_limit=v_limit,
        v_dampener=v_dampener,
        config=config,
    )
    vt = curve.value_at(n)

    start = classify(curve.v0, v_limit, v_dampener)
    end = classify(vt, v_limit, v_dampener)
    # A curve arriving on a level from above (including one whose decay term
    # has truncated to zero on last_premium) has not crossed it.
    if vt < curve.v0 and vt in curve.levels:
        end = Region(end + 1)
    boundaries = CROSSINGS[(start, end)]

    # Cut [0, n] at each crossing; segment i lies in the i-th region on the path.
    step = 1 if end >= start else -1
    cuts = [0] + [curve.crossing(b) for b in boundaries] + [n]
    acc = ZERO
    for i in range(len(cuts) - 1):
        region = Region(start + step * i)
        acc += curve.segment(region, cuts[i], cuts[i + 1])

    logger.debug(
        "funding path %s -> %s over %ds, cuts=%s",
        start.name, end.name, n, cuts[1:-1],
    )
    return AccumulatedFunding(
        acc=round_fixed(acc, config.decimals),
        ema_premium=round_fixed(vt, config.decimals),
    )


def compute_funding(
    f: FundingParams,
    g: GovParams,
    now: int,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> FundingResult:
    if now < f.last_funding_timestamp:
        raise TemporalError(
            f"timestamp {now} precedes last funding timestamp {f.last_funding_timestamp}"
        )
    if f.last_index_price <= 0:
        raise InvalidPriceError(f"last index price must be positive: {f.last_index_price}")

    result = accumulate_funding(f, g, now, config=config)
    index = f.last_index_price
    with localcontext(working_context(config.working_precision)):
        delta = result.acc / config.funding_interval
        if config.index_normalized_funding:
            delta = delta / index
        accumulated = f.accumulated_funding_per_contract + delta
        mark_price = index + result.ema_premium
        premium_rate = clamp(
            result.ema_premium / index, -g.mark_premium_limit, g.mark_premium_limit,
        )
        if premium_rate > g.funding_dampener:
            funding_rate = premium_rate - g.funding_dampener
        elif premium_rate < -g.funding_dampener:
            funding_rate = premium_rate + g.funding_dampener
        else:
            funding_rate = ZERO

    d = config.decimals
    return FundingResult(
        timestamp=now,
        accumulated_funding_per_contract=round_fixed(accumulated, d),
        ema_premium=result.ema_premium,
        mark_price=round_fixed(mark_price, d),
        premium_rate=round_fixed(premium_rate, d),
        funding_rate=round_fixed(funding_rate, d),
    )


def update_funding_params(
    f: FundingParams,
    g: GovParams,
    now: int,
    new_index_price: Decimal,
    new_fair_price: Decimal,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> FundingParams:
    """Advance funding to *now* and re-base on the new index/fair observation."""
    index = to_decimal(new_index_price)
    fair = to_decimal(new_fair_price)
    if index <= 0:
        raise InvalidPriceError(f"index price must be positive: {index}")
    if fair <= 0:
        raise InvalidPriceError(f"fair price must be positive: {fair}")

    result = compute_funding(f, g, now, config=config)
    return FundingParams(
        accumulated_funding_per_contract=result.accumulated_funding_per_contract,
        last_ema_premium=result.ema_premium,
        last_premium=fair - index,
        last_index_price=index,
        last_funding_timestamp=now,
    )


def apply_funding(
    perpetual: PerpetualStorage,
    g: GovParams,
    now: int,
    new_index_price: Decimal,
    new_fair_price: Decimal,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> PerpetualStorage:
    funding = update_funding_params(
        perpetual.funding, g, now, new_index_price, new_fair_price, config=config,
    )
    return replace(perpetual, funding=funding)
