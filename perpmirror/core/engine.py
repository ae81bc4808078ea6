"""Dispatch-table engine over a ``MarketState``.

``step(state, params)`` is the single entry point. It:

1. Dispatches to the guard / update pair for the action.
2. Rejects when the guard fails or the update raises a ``PerpError``.
3. Re-derives open interest and checks all invariants on the post-state.
4. Returns a ``StepResult`` (accepted or rejected with reason).
"""

from __future__ import annotations

import logging
from typing import Callable

from ..config import DEFAULT_CONFIG, EngineConfig
from .errors import PerpError, PerpGuardError, PerpInvariantError
from .guards import (
    guard_add_liquidity,
    guard_amm_trade,
    guard_deposit,
    guard_liquidate,
    guard_remove_liquidity,
    guard_trade,
    guard_update_funding,
    guard_withdraw,
)
from .invariants import check_all
from .market import Action, ActionParams, MarketState, StepResult
from .updates import (
    apply_add_liquidity,
    apply_amm_trade,
    apply_deposit,
    apply_liquidate,
    apply_remove_liquidity,
    apply_trade,
    apply_update_funding,
    apply_withdraw,
    sync_open_interest,
)

logger = logging.getLogger(__name__)

GuardFn = Callable[[MarketState, ActionParams], bool]
UpdateFn = Callable[[MarketState, ActionParams, EngineConfig], MarketState]

_DISPATCH: dict[Action, tuple[GuardFn, UpdateFn]] = {
    Action.UPDATE_FUNDING: (guard_update_funding, apply_update_funding),
    Action.DEPOSIT: (guard_deposit, apply_deposit),
    Action.WITHDRAW: (guard_withdraw, apply_withdraw),
    Action.TRADE: (guard_trade, apply_trade),
    Action.AMM_TRADE: (guard_amm_trade, apply_amm_trade),
    Action.ADD_LIQUIDITY: (guard_add_liquidity, apply_add_liquidity),
    Action.REMOVE_LIQUIDITY: (guard_remove_liquidity, apply_remove_liquidity),
    Action.LIQUIDATE: (guard_liquidate, apply_liquidate),
}


def _reject(params: ActionParams, reason: str, error: PerpError | None = None) -> StepResult:
    logger.info("rejected %s: %s", params.action.value, reason)
    return StepResult(accepted=False, rejection=reason, error=error)


def step(
    state: MarketState,
    params: ActionParams,
    config: EngineConfig = DEFAULT_CONFIG,
) -> StepResult:
    """Execute one action against the given state.

    Returns ``StepResult`` with ``accepted=True`` on success,
    or ``accepted=False`` with a ``rejection`` reason string.
    """
    entry = _DISPATCH.get(params.action)
    if entry is None:
        return _reject(params, f"unknown_action:{params.action}")

    guard_fn, update_fn = entry
    if not guard_fn(state, params):
        return _reject(params, "guard")

    try:
        new_state = update_fn(state, params, config)
    except PerpError as exc:
        return _reject(params, f"error:{type(exc).__name__}", exc)
    new_state = sync_open_interest(new_state, config)

    violations = check_all(new_state)
    if violations:
        return _reject(params, f"invariant:{','.join(violations)}")

    logger.debug("accepted %s at t=%d", params.action.value, new_state.timestamp)
    return StepResult(accepted=True, state=new_state)


def step_or_raise(
    state: MarketState,
    params: ActionParams,
    config: EngineConfig = DEFAULT_CONFIG,
) -> StepResult:
    """Like ``step()`` but raises on rejection instead of returning a result.

    Raises:
        PerpError: The update raised (re-raised as is, e.g. ``InsufficientMarginError``).
        PerpGuardError: Guard condition not satisfied.
        PerpInvariantError: Post-state violates one or more invariants.
    """
    result = step(state, params, config)
    if result.accepted:
        return result

    if result.error is not None:
        raise result.error
    reason = result.rejection or ""
    if reason.startswith("invariant:"):
        violations = reason.removeprefix("invariant:").split(",")
        raise PerpInvariantError(violations)
    raise PerpGuardError(reason)
