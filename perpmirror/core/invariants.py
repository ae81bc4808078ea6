"""Invariant checkers for the step engine.

Each function returns True when the invariant holds, and ``check_all()``
returns the list of violated invariant IDs (empty = all pass). Invariants are
structural; margin safety is enforced by the update functions instead.
"""

from __future__ import annotations

from decimal import localcontext
from typing import Callable, Iterable

from .fixed_point import ZERO, working_context
from .market import MarketState
from .types import AccountStorage, Side


def _all_accounts(s: MarketState) -> Iterable[AccountStorage]:
    yield s.amm
    yield from s.accounts.values()


def inv_flat_iff_zero_size(s: MarketState) -> bool:
    return all(
        (a.position_side is Side.FLAT) == (a.position_size == 0)
        for a in _all_accounts(s)
    )


def inv_entry_zero_when_flat(s: MarketState) -> bool:
    for a in _all_accounts(s):
        if a.position_side is not Side.FLAT:
            continue
        if a.entry_value != 0 or a.entry_social_loss != 0 or a.entry_funding_loss != 0:
            return False
    return True


def inv_sizes_nonneg(s: MarketState) -> bool:
    return s.perpetual.total_size >= 0 and all(a.position_size >= 0 for a in _all_accounts(s))


def inv_social_loss_nonneg(s: MarketState) -> bool:
    p = s.perpetual
    return p.long_social_loss_per_contract >= 0 and p.short_social_loss_per_contract >= 0


def inv_insurance_nonneg(s: MarketState) -> bool:
    return s.perpetual.insurance_fund_balance >= 0


def inv_pool_never_short(s: MarketState) -> bool:
    return s.amm.position_side is not Side.SELL


def inv_funding_not_from_future(s: MarketState) -> bool:
    return s.perpetual.funding.last_funding_timestamp <= s.timestamp


def inv_open_interest_balanced(s: MarketState) -> bool:
    with localcontext(working_context()):
        longs = sum((a.position_size for a in _all_accounts(s) if a.position_side is Side.BUY), ZERO)
        shorts = sum((a.position_size for a in _all_accounts(s) if a.position_side is Side.SELL), ZERO)
    return longs == shorts == s.perpetual.total_size


def inv_shares_positive(s: MarketState) -> bool:
    return all(v > 0 for v in s.shares.values())


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[MarketState], bool]] = {
    "inv_flat_iff_zero_size": inv_flat_iff_zero_size,
    "inv_entry_zero_when_flat": inv_entry_zero_when_flat,
    "inv_sizes_nonneg": inv_sizes_nonneg,
    "inv_social_loss_nonneg": inv_social_loss_nonneg,
    "inv_insurance_nonneg": inv_insurance_nonneg,
    "inv_pool_never_short": inv_pool_never_short,
    "inv_funding_not_from_future": inv_funding_not_from_future,
    "inv_open_interest_balanced": inv_open_interest_balanced,
    "inv_shares_positive": inv_shares_positive,
}


def check_all(state: MarketState) -> list[str]:
    """Return list of violated invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(state)
    ]
