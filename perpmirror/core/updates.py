"""Update functions for the step engine.

One pure function per action. Each takes the PRE-state and parameters and
returns the POST-state, or raises a ``PerpError`` when the market arithmetic
refuses the action (insufficient margin, liquidity, nothing to liquidate).
Guards have already run.

Every position change is two-sided, so after each update ``total_size`` is
re-derived as the sum of long sizes (pool included).
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, localcontext

from ..config import DEFAULT_CONFIG, EngineConfig
from .account import compute_account
from .amm import (
    compute_amm_add_liquidity,
    compute_amm_create_pool,
    compute_amm_details,
    compute_amm_price,
    compute_amm_remove_liquidity,
    compute_amm_trade,
)
from .errors import InsufficientMarginError
from .fixed_point import ZERO, working_context
from .funding import apply_funding, compute_funding
from .liquidation import compute_liquidate
from .market import ActionParams, MarketState
from .trade import compute_trade, inverse_side
from .types import AccountStorage, FundingParams, FundingResult, LiquidationState, Side


def _funding(state: MarketState, config: EngineConfig) -> FundingResult:
    return compute_funding(state.perpetual.funding, state.gov, state.timestamp, config=config)


def _require_margin(
    state: MarketState,
    name: str,
    account: AccountStorage,
    funding: FundingResult,
    config: EngineConfig,
) -> None:
    computed = compute_account(account, state.gov, state.perpetual, funding, config=config)
    if not computed.is_safe:
        raise InsufficientMarginError(
            f"{name}: margin balance {computed.margin_balance} below "
            f"maintenance margin {computed.maintenance_margin}"
        )


def _with_accounts(state: MarketState, **changed: AccountStorage) -> MarketState:
    return replace(state, accounts={**state.accounts, **changed})


def sync_open_interest(state: MarketState, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    longs = [a for a in (state.amm, *state.accounts.values()) if a.position_side is Side.BUY]
    with localcontext(working_context(config.working_precision)):
        total = sum((a.position_size for a in longs), ZERO)
    if total == state.perpetual.total_size:
        return state
    return replace(state, perpetual=replace(state.perpetual, total_size=total))


def apply_update_funding(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    f = state.perpetual.funding
    if f.last_index_price == 0:
        # First observation seeds the curve; nothing has accrued yet.
        seeded = FundingParams(
            accumulated_funding_per_contract=f.accumulated_funding_per_contract,
            last_ema_premium=ZERO,
            last_premium=params.fair_price - params.index_price,
            last_index_price=params.index_price,
            last_funding_timestamp=params.timestamp,
        )
        perpetual = replace(state.perpetual, funding=seeded)
    else:
        perpetual = apply_funding(
            state.perpetual, state.gov, params.timestamp,
            params.index_price, params.fair_price, config=config,
        )
    return replace(state, perpetual=perpetual, timestamp=params.timestamp)


def apply_deposit(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    account = state.accounts.get(params.account, AccountStorage())
    with localcontext(working_context(config.working_precision)):
        cash = account.cash_balance + params.amount
    return _with_accounts(state, **{params.account: replace(account, cash_balance=cash)})


def apply_withdraw(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    account = state.accounts[params.account]
    with localcontext(working_context(config.working_precision)):
        cash = account.cash_balance - params.amount
    account = replace(account, cash_balance=cash)
    if account.position_side is Side.FLAT:
        if cash < 0:
            raise InsufficientMarginError(f"{params.account}: withdrawal exceeds cash balance")
    else:
        _require_margin(state, params.account, account, _funding(state, config), config)
    return _with_accounts(state, **{params.account: account})


def apply_trade(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    funding = _funding(state, config)
    p = state.perpetual
    taker = compute_trade(
        p, funding, state.accounts[params.account], params.side,
        params.price, params.amount, state.gov.taker_fee_rate, config=config,
    )
    maker = compute_trade(
        p, funding, state.accounts[params.counterparty], inverse_side(params.side),
        params.price, params.amount, state.gov.maker_fee_rate, config=config,
    )
    _require_margin(state, params.account, taker, funding, config)
    _require_margin(state, params.counterparty, maker, funding, config)
    return _with_accounts(state, **{params.account: taker, params.counterparty: maker})


def apply_amm_trade(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    funding = _funding(state, config)
    gov = state.gov
    p = state.perpetual
    amm = compute_amm_details(state.amm, gov, p, funding, config=config)
    price = compute_amm_price(amm, params.side, params.amount, config=config)
    trader = compute_trade(
        p, funding, state.accounts[params.account], params.side,
        price, params.amount, gov.pool_fee_rate + gov.pool_dev_fee_rate, config=config,
    )
    _require_margin(state, params.account, trader, funding, config)
    pool = compute_amm_trade(gov, p, funding, amm, params.side, params.amount, config=config).storage
    return replace(_with_accounts(state, **{params.account: trader}), amm=pool)


def apply_add_liquidity(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    funding = _funding(state, config)
    p = state.perpetual
    user = state.accounts[params.account]
    if state.amm.position_side is Side.FLAT:
        change = compute_amm_create_pool(
            p, funding, state.amm, user, p.funding.last_index_price, params.amount, config=config,
        )
    else:
        amm = compute_amm_details(state.amm, state.gov, p, funding, config=config)
        change = compute_amm_add_liquidity(
            p, funding, amm, user, state.total_share, params.amount, config=config,
        )
    _require_margin(state, params.account, change.user, funding, config)
    with localcontext(working_context(config.working_precision)):
        held = state.shares.get(params.account, ZERO) + change.share
    shares = {**state.shares, params.account: held}
    return replace(
        _with_accounts(state, **{params.account: change.user}),
        amm=change.amm,
        shares=shares,
    )


def apply_remove_liquidity(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    funding = _funding(state, config)
    p = state.perpetual
    amm = compute_amm_details(state.amm, state.gov, p, funding, config=config)
    change = compute_amm_remove_liquidity(
        p, funding, amm, state.accounts[params.account],
        state.total_share, params.shares, config=config,
    )
    _require_margin(state, params.account, change.user, funding, config)
    with localcontext(working_context(config.working_precision)):
        held: Decimal = state.shares[params.account] - change.share
    shares = {k: v for k, v in state.shares.items() if k != params.account}
    if held > 0:
        shares[params.account] = held
    return replace(
        _with_accounts(state, **{params.account: change.user}),
        amm=change.amm,
        shares=shares,
    )


def apply_liquidate(state: MarketState, params: ActionParams, config: EngineConfig = DEFAULT_CONFIG) -> MarketState:
    funding = _funding(state, config)
    before = LiquidationState(
        perpetual=state.perpetual,
        liquidated=state.accounts[params.account],
        keeper=state.accounts[params.counterparty],
    )
    after = compute_liquidate(before, state.gov, funding, params.amount, config=config)
    post = replace(state, perpetual=after.perpetual)
    _require_margin(post, params.counterparty, after.keeper, funding, config)
    return _with_accounts(post, **{params.account: after.liquidated, params.counterparty: after.keeper})
