"""Guard functions for the step engine.

One pure function per action. Each returns True iff the action is allowed in
the given PRE-state with the given parameters. Guards only check shape and
preconditions; arithmetic failures surface later as ``PerpError`` from the
update functions.
"""

from __future__ import annotations

from .market import ActionParams, MarketState
from .types import PerpetualStatus, Side


def _is_trade_side(side: Side) -> bool:
    return side is Side.BUY or side is Side.SELL


def _market_open(state: MarketState) -> bool:
    return (
        state.perpetual.status is PerpetualStatus.NORMAL
        and state.perpetual.funding.last_index_price > 0
    )


def _pool_open(state: MarketState) -> bool:
    return state.amm.position_side is Side.BUY


def _two_accounts(state: MarketState, params: ActionParams) -> bool:
    return (
        params.account in state.accounts
        and params.counterparty in state.accounts
        and params.account != params.counterparty
    )


def guard_update_funding(state: MarketState, params: ActionParams) -> bool:
    if params.timestamp < state.timestamp:
        return False
    if params.timestamp < state.perpetual.funding.last_funding_timestamp:
        return False
    if state.perpetual.status is not PerpetualStatus.NORMAL:
        return False
    return params.index_price > 0 and params.fair_price > 0


def guard_deposit(state: MarketState, params: ActionParams) -> bool:
    return bool(params.account) and params.amount > 0


def guard_withdraw(state: MarketState, params: ActionParams) -> bool:
    return params.account in state.accounts and params.amount > 0


def guard_trade(state: MarketState, params: ActionParams) -> bool:
    if not _two_accounts(state, params):
        return False
    if not _is_trade_side(params.side):
        return False
    return params.price > 0 and params.amount > 0 and _market_open(state)


def guard_amm_trade(state: MarketState, params: ActionParams) -> bool:
    if params.account not in state.accounts:
        return False
    if not _is_trade_side(params.side):
        return False
    return params.amount > 0 and _market_open(state) and _pool_open(state)


def guard_add_liquidity(state: MarketState, params: ActionParams) -> bool:
    return params.account in state.accounts and params.amount > 0 and _market_open(state)


def guard_remove_liquidity(state: MarketState, params: ActionParams) -> bool:
    if params.account not in state.accounts:
        return False
    held = state.shares.get(params.account)
    if held is None or params.shares <= 0 or params.shares > held:
        return False
    return _market_open(state) and _pool_open(state)


def guard_liquidate(state: MarketState, params: ActionParams) -> bool:
    return _two_accounts(state, params) and params.amount > 0 and _market_open(state)
