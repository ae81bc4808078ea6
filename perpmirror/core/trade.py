"""Trade bookkeeping on an ``AccountStorage``.

A trade first closes against an opposite position (realizing PnL and the
accrued social/funding losses into cash), then opens the remainder. Entry
snapshots scale pro rata on a partial close and are exactly zero once flat.

Inverse contracts quote the reciprocal price on the opposite side; the
``inverse_*`` helpers map one onto the other.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, localcontext

from ..config import DEFAULT_CONFIG, EngineConfig
from .account import compute_account_details
from .errors import InvalidAmountError, InvalidPriceError, InvalidSideError
from .fixed_point import ONE, ZERO, DecimalLike, round_fixed, to_decimal, working_context
from .types import (
    AccountDetails,
    AccountStorage,
    FundingResult,
    GovParams,
    PerpetualStorage,
    Side,
    TradeCost,
)


def _require_trade_side(side: Side) -> None:
    if side not in (Side.BUY, Side.SELL):
        raise InvalidSideError(f"trade side must be buy or sell, got {side!r}")


def _require_price_amount(price: Decimal, amount: Decimal) -> None:
    if price <= 0:
        raise InvalidPriceError(f"bad price {price}")
    if amount <= 0:
        raise InvalidAmountError(f"bad amount {amount}")


def _require_leverage(leverage: Decimal) -> None:
    if leverage <= 0:
        raise InvalidAmountError(f"bad leverage {leverage}")


def inverse_side(side: Side) -> Side:
    _require_trade_side(side)
    return Side.SELL if side is Side.BUY else Side.BUY


def inverse_price(price: DecimalLike, *, config: EngineConfig = DEFAULT_CONFIG) -> Decimal:
    p = to_decimal(price)
    if p <= 0:
        raise InvalidPriceError(f"bad price {p}")
    with localcontext(working_context(config.working_precision)):
        return ONE / p


def compute_decrease_position(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    account: AccountStorage,
    price: DecimalLike,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccountStorage:
    price = to_decimal(price)
    amount = to_decimal(amount)
    side = account.position_side
    size = account.position_size
    if side is Side.FLAT:
        raise InvalidSideError("cannot decrease a flat position")
    _require_price_amount(price, amount)
    if size < amount:
        raise InvalidAmountError(f"position size {size} is less than amount {amount}")

    acc = funding.accumulated_funding_per_contract
    with localcontext(working_context(config.working_precision)):
        if side is Side.BUY:
            rpnl1 = price * amount - account.entry_value * amount / size
            social_loss = (perpetual.long_social_loss_per_contract - account.entry_social_loss / size) * amount
            funding_loss = (acc - account.entry_funding_loss / size) * amount
        else:
            rpnl1 = account.entry_value * amount / size - price * amount
            social_loss = (perpetual.short_social_loss_per_contract - account.entry_social_loss / size) * amount
            funding_loss = -((acc - account.entry_funding_loss / size) * amount)
        rpnl2 = rpnl1 - social_loss - funding_loss
        remaining = size - amount
        entry_value = account.entry_value * remaining / size
        entry_social_loss = account.entry_social_loss * remaining / size
        entry_funding_loss = account.entry_funding_loss * remaining / size
        cash = account.cash_balance + rpnl2

    d = config.decimals
    return replace(
        account,
        cash_balance=round_fixed(cash, d),
        position_side=Side.FLAT if remaining == 0 else side,
        position_size=remaining,
        entry_value=round_fixed(entry_value, d),
        entry_social_loss=round_fixed(entry_social_loss, d),
        entry_funding_loss=round_fixed(entry_funding_loss, d),
    )


def compute_increase_position(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    account: AccountStorage,
    side: Side,
    price: DecimalLike,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccountStorage:
    price = to_decimal(price)
    amount = to_decimal(amount)
    _require_trade_side(side)
    _require_price_amount(price, amount)
    if account.position_side is not Side.FLAT and account.position_side is not side:
        raise InvalidSideError(
            f"cannot increase {side.value} while position side is {account.position_side.value}"
        )

    with localcontext(working_context(config.working_precision)):
        entry_value = account.entry_value + price * amount
        entry_social_loss = account.entry_social_loss + perpetual.social_loss_per_contract(side) * amount
        entry_funding_loss = account.entry_funding_loss + funding.accumulated_funding_per_contract * amount
        size = account.position_size + amount

    d = config.decimals
    return replace(
        account,
        position_side=side,
        position_size=size,
        entry_value=round_fixed(entry_value, d),
        entry_social_loss=round_fixed(entry_social_loss, d),
        entry_funding_loss=round_fixed(entry_funding_loss, d),
    )


def compute_fee(
    price: DecimalLike,
    amount: DecimalLike,
    fee_rate: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    price = to_decimal(price)
    amount = to_decimal(amount)
    _require_price_amount(price, amount)
    with localcontext(working_context(config.working_precision)):
        return round_fixed(price * amount * to_decimal(fee_rate), config.decimals)


def compute_trade(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    account: AccountStorage,
    side: Side,
    price: DecimalLike,
    amount: DecimalLike,
    fee_rate: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccountStorage:
    """Close against the opposite side first, open the rest, then charge the fee."""
    price = to_decimal(price)
    amount = to_decimal(amount)
    _require_trade_side(side)
    _require_price_amount(price, amount)

    if account.position_size > 0 and account.position_side is not side:
        to_decrease = min(account.position_size, amount)
        to_increase = amount - to_decrease
    else:
        to_decrease = ZERO
        to_increase = amount

    storage = account
    if to_decrease > 0:
        storage = compute_decrease_position(perpetual, funding, storage, price, to_decrease, config=config)
    if to_increase > 0:
        storage = compute_increase_position(perpetual, funding, storage, side, price, to_increase, config=config)
    fee = compute_fee(price, amount, fee_rate, config=config)
    with localcontext(working_context(config.working_precision)):
        cash = storage.cash_balance - fee
    return replace(storage, cash_balance=cash)


def _margin_cost(
    storage: AccountStorage,
    details: AccountDetails,
    funding: FundingResult,
    leverage: Decimal,
    config: EngineConfig,
) -> Decimal:
    if storage.position_size == 0:
        return ZERO
    with localcontext(working_context(config.working_precision)):
        required = storage.position_size * funding.mark_price / leverage
        return round_fixed(required - details.computed.margin_balance, config.decimals)


def compute_trade_cost(
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    details: AccountDetails,
    side: Side,
    price: DecimalLike,
    amount: DecimalLike,
    leverage: DecimalLike,
    fee_rate: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> TradeCost:
    """Post-trade account and the extra collateral needed to hold it at *leverage*."""
    leverage = to_decimal(leverage)
    _require_leverage(leverage)
    storage = compute_trade(perpetual, funding, details.storage, side, price, amount, fee_rate, config=config)
    account = compute_account_details(storage, gov, perpetual, funding, config=config)
    return TradeCost(
        account=account,
        margin_cost=_margin_cost(storage, account, funding, leverage, config),
        fee=compute_fee(price, amount, fee_rate, config=config),
    )


def compute_inverse_trade_cost(
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    details: AccountDetails,
    side: Side,
    price: DecimalLike,
    amount: DecimalLike,
    leverage: DecimalLike,
    fee_rate: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> TradeCost:
    return compute_trade_cost(
        gov, perpetual, funding, details,
        inverse_side(side), inverse_price(price, config=config), amount, leverage, fee_rate,
        config=config,
    )


def compute_deposit_by_leverage(
    details: AccountDetails,
    funding: FundingResult,
    leverage: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    """Collateral to deposit so the current position sits at *leverage*."""
    leverage = to_decimal(leverage)
    _require_leverage(leverage)
    with localcontext(working_context(config.working_precision)):
        required = details.storage.position_size * funding.mark_price / leverage
        return round_fixed(required - details.computed.margin_balance, config.decimals)
