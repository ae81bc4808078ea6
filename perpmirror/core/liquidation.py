"""Liquidation settlement.

An unsafe account hands part or all of its position to a keeper at the mark
price. The liquidated account pays a penalty of
``price * amount * liquidation_penalty_rate``; ``penalty_fund_rate`` of it
goes to the insurance fund and the rest to the keeper.

If the liquidated account ends flat with negative cash, the shortfall is
covered by the insurance fund first, and any remainder is socialized onto
the opposite side's ``social_loss_per_contract`` over ``total_size``.

Collateral is conserved: liquidated margin balance + keeper margin balance +
insurance fund - socialized loss is unchanged by a settlement.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import ROUND_DOWN, Decimal, localcontext

from ..config import DEFAULT_CONFIG, EngineConfig
from .account import compute_account, mark_price_for
from .errors import InvalidAmountError, NothingToLiquidateError
from .fixed_point import ONE, ZERO, DecimalLike, round_fixed, to_decimal, truncate, working_context
from .trade import compute_trade, inverse_side
from .types import (
    AccountStorage,
    FundingResult,
    GovParams,
    LiquidationPlan,
    LiquidationState,
    PerpetualStorage,
    Side,
)

logger = logging.getLogger(__name__)


def compute_liquidate_amount(
    account: AccountStorage,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    """Smallest amount whose removal (penalty included) leaves
    ``margin_balance >= maintenance_margin * (1 + safety) * price * remaining``.

    Returns the whole position when no partial amount gets there.
    """
    size = account.position_size
    if size == 0:
        return ZERO
    price = mark_price_for(perpetual, funding)
    margin_balance = compute_account(account, gov, perpetual, funding, config=config).margin_balance
    penalty_rate = gov.liquidation_penalty_rate

    with localcontext(working_context(config.working_precision)):
        target_rate = gov.maintenance_margin * (ONE + gov.liquidation_safety_factor)
        numerator = margin_balance - penalty_rate * price * size
        denominator = price * (target_rate - penalty_rate)
        if numerator <= 0 or denominator <= 0:
            return size
        kept = min(size, numerator / denominator)
        return truncate(size - kept, config.decimals)


def _round_to_lot(amount: Decimal, lot_size: Decimal, config: EngineConfig) -> Decimal:
    with localcontext(working_context(config.working_precision)):
        lots = (amount / lot_size).to_integral_value(rounding=ROUND_DOWN)
        return lots * lot_size


def plan_liquidation(
    state: LiquidationState,
    gov: GovParams,
    funding: FundingResult,
    requested: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LiquidationPlan:
    requested = to_decimal(requested)
    if requested <= 0:
        raise InvalidAmountError(f"bad liquidation amount {requested}")

    account = state.liquidated
    if account.position_side is Side.FLAT:
        raise NothingToLiquidateError("liquidated account has no position")
    computed = compute_account(account, gov, state.perpetual, funding, config=config)
    if computed.is_safe:
        raise NothingToLiquidateError("account is safe")

    liquidatable = compute_liquidate_amount(account, gov, state.perpetual, funding, config=config)
    amount = _round_to_lot(min(requested, liquidatable), gov.lot_size, config)
    if amount <= 0:
        raise NothingToLiquidateError(
            f"liquidation amount rounds to zero on lot size {gov.lot_size}"
        )

    price = mark_price_for(state.perpetual, funding)
    with localcontext(working_context(config.working_precision)):
        penalty = round_fixed(price * amount * gov.liquidation_penalty_rate, config.decimals)
        to_fund = round_fixed(penalty * gov.penalty_fund_rate, config.decimals)
        to_keeper = penalty - to_fund
    return LiquidationPlan(
        side=account.position_side,
        amount=amount,
        price=price,
        penalty=penalty,
        penalty_to_fund=to_fund,
        penalty_to_keeper=to_keeper,
    )


def _socialize(perpetual: PerpetualStorage, side: Side, loss: Decimal, config: EngineConfig) -> PerpetualStorage:
    with localcontext(working_context(config.working_precision)):
        per_contract = round_fixed(loss / perpetual.total_size, config.decimals)
        if side is Side.BUY:
            return replace(
                perpetual,
                long_social_loss_per_contract=perpetual.long_social_loss_per_contract + per_contract,
            )
        return replace(
            perpetual,
            short_social_loss_per_contract=perpetual.short_social_loss_per_contract + per_contract,
        )


def compute_liquidate(
    state: LiquidationState,
    gov: GovParams,
    funding: FundingResult,
    requested: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LiquidationState:
    plan = plan_liquidation(state, gov, funding, requested, config=config)
    perpetual = state.perpetual

    liquidated = compute_trade(
        perpetual, funding, state.liquidated, inverse_side(plan.side),
        plan.price, plan.amount, ZERO, config=config,
    )
    keeper = compute_trade(
        perpetual, funding, state.keeper, plan.side,
        plan.price, plan.amount, ZERO, config=config,
    )
    with localcontext(working_context(config.working_precision)):
        liquidated = replace(liquidated, cash_balance=liquidated.cash_balance - plan.penalty)
        keeper = replace(keeper, cash_balance=keeper.cash_balance + plan.penalty_to_keeper)
        fund = perpetual.insurance_fund_balance + plan.penalty_to_fund

    logger.debug(
        "liquidated %s %s at %s, penalty %s",
        plan.side.value, plan.amount, plan.price, plan.penalty,
    )

    if liquidated.position_side is Side.FLAT and liquidated.cash_balance < 0:
        with localcontext(working_context(config.working_precision)):
            shortfall = -liquidated.cash_balance
            draw = min(fund, shortfall)
            fund -= draw
            remainder = shortfall - draw
            cash = liquidated.cash_balance + draw
        if draw > 0:
            logger.info("insurance fund covers %s of %s shortfall", draw, shortfall)
        if remainder > 0 and perpetual.total_size > 0:
            counter = inverse_side(plan.side)
            logger.warning(
                "socializing %s loss onto %s side over %s contracts",
                remainder, counter.value, perpetual.total_size,
            )
            perpetual = _socialize(perpetual, counter, remainder, config)
            cash = ZERO
        elif remainder > 0:
            logger.warning("no open interest to socialize %s loss; it stays with the account", remainder)
        liquidated = replace(liquidated, cash_balance=cash)

    perpetual = replace(perpetual, insurance_fund_balance=fund)
    return LiquidationState(perpetual=perpetual, liquidated=liquidated, keeper=keeper)
