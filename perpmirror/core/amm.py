"""AMM pricing over the pool account.

The pool is a long ``AccountStorage``. With ``x`` its available margin (cash
net of entry value and accrued losses) and ``y`` its position size, the pool
quotes along ``x / (y -/+ amount)``. Impact prices for a reference size of
``fair_price_amount`` contracts, capped at ``fair_price_max_gap`` around the
spot ``x / y``, bound the fair price.

Depth ladders list bids deepest first, ending at the spot price, and asks
from the spot outward until the pool would run out of contracts.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, localcontext

from ..config import DEFAULT_CONFIG, EngineConfig
from .account import compute_account
from .errors import (
    FairnessViolationError,
    InsufficientLiquidityError,
    InvalidAmountError,
    InvalidPriceError,
    InvalidSideError,
)
from .fixed_point import ONE, ZERO, DecimalLike, round_fixed, to_decimal, truncate, working_context
from .trade import compute_trade, compute_trade_cost, inverse_price, inverse_side
from .types import (
    AccountDetails,
    AccountStorage,
    AMMComputed,
    AMMDepth,
    AMMDetails,
    AMMTradeCost,
    DepthLevel,
    FundingResult,
    GovParams,
    LiquidityChange,
    PerpetualStorage,
    Side,
)

DEFAULT_DEPTH_STEP = Decimal("0.1")
DEFAULT_DEPTH_COUNT = 20


def _pool_xy(amm: AMMDetails) -> tuple[Decimal, Decimal]:
    return amm.computed.available_margin, amm.storage.position_size


def compute_amm(
    pool: AccountStorage,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMComputed:
    return compute_amm_details(pool, gov, perpetual, funding, config=config).computed


def compute_amm_details(
    pool: AccountStorage,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMDetails:
    if pool.position_size == 0:
        raise InsufficientLiquidityError("amm pool has no position")
    if pool.position_side is not Side.BUY:
        raise InvalidSideError(f"amm pool must be long, got {pool.position_side.value}")

    account = compute_account(pool, gov, perpetual, funding, config=config)
    y = pool.position_size
    fpa = gov.fair_price_amount
    gap = gov.fair_price_max_gap
    with localcontext(working_context(config.working_precision)):
        x = pool.cash_balance - pool.entry_value - (account.social_loss + account.funding_loss)
        spot = x / y
        ask_cap = spot * (ONE + gap)
        bid_cap = spot * (ONE - gap)
        if y <= fpa:
            ask = ask_cap
        else:
            ask = min(x / (y - fpa), ask_cap)
        bid = max(x / (y + fpa), bid_cap)
        fair = (bid + ask) / 2

    d = config.decimals
    computed = AMMComputed(
        available_margin=round_fixed(x, d),
        impact_bid_price=round_fixed(bid, d),
        impact_ask_price=round_fixed(ask, d),
        fair_price=round_fixed(fair, d),
    )
    return AMMDetails(storage=pool, account=account, computed=computed)


def _spot_price(amm: AMMDetails, config: EngineConfig) -> Decimal:
    x, y = _pool_xy(amm)
    with localcontext(working_context(config.working_precision)):
        return round_fixed(x / y, config.decimals)


def compute_amm_price(
    amm: AMMDetails,
    side: Side,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    """Price the pool charges a trader who takes *side* for *amount* contracts."""
    amount = to_decimal(amount)
    if amount <= 0:
        raise InvalidAmountError(f"bad amount {amount}")
    x, y = _pool_xy(amm)
    with localcontext(working_context(config.working_precision)):
        if side is Side.BUY:
            if amount >= y:
                raise InsufficientLiquidityError(
                    f"buy amount {amount} is not below the amm's position size {y}"
                )
            price = x / (y - amount)
        elif side is Side.SELL:
            price = x / (y + amount)
        else:
            raise InvalidSideError(f"trade side must be buy or sell, got {side!r}")
    return round_fixed(price, config.decimals)


def compute_amm_inverse_price(
    amm: AMMDetails,
    side: Side,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    amount = to_decimal(amount)
    if amount <= 0:
        raise InvalidAmountError(f"bad amount {amount}")
    x, y = _pool_xy(amm)
    with localcontext(working_context(config.working_precision)):
        if side is Side.SELL:
            if amount >= y:
                raise InsufficientLiquidityError(
                    f"inverse sell amount {amount} is not below the amm's position size {y}"
                )
            price = (y - amount) / x
        elif side is Side.BUY:
            price = (y + amount) / x
        else:
            raise InvalidSideError(f"trade side must be buy or sell, got {side!r}")
    return round_fixed(price, config.decimals)


def compute_amm_amount(
    amm: AMMDetails,
    side: Side,
    price: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    """Amount that moves the pool's quote for *side* to *price*."""
    price = to_decimal(price)
    if price <= 0:
        raise InvalidPriceError(f"bad price {price}")
    x, y = _pool_xy(amm)
    fair = amm.computed.fair_price
    with localcontext(working_context(config.working_precision)):
        if side is Side.BUY:
            if price < fair:
                raise FairnessViolationError(f"buy price {price} is below the amm's fair price {fair}")
            amount = y - x / price
        elif side is Side.SELL:
            if price > fair:
                raise FairnessViolationError(f"sell price {price} is above the amm's fair price {fair}")
            amount = x / price - y
        else:
            raise InvalidSideError(f"trade side must be buy or sell, got {side!r}")
    return round_fixed(amount, config.decimals)


def compute_amm_inverse_amount(
    amm: AMMDetails,
    side: Side,
    price: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Decimal:
    return compute_amm_amount(
        amm, inverse_side(side), inverse_price(price, config=config), config=config,
    )


def compute_amm_depth(
    amm: AMMDetails,
    step: DecimalLike = DEFAULT_DEPTH_STEP,
    count: int = DEFAULT_DEPTH_COUNT,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMDepth:
    step = to_decimal(step)
    if step <= 0:
        raise InvalidAmountError(f"bad depth step {step}")
    if count < 0:
        raise InvalidAmountError(f"bad depth count {count}")

    _, y = _pool_xy(amm)
    spot = _spot_price(amm, config)
    bids = []
    for i in range(count, 0, -1):
        amount = step * i
        bids.append(DepthLevel(price=compute_amm_price(amm, Side.SELL, amount, config=config), amount=amount))
    bids.append(DepthLevel(price=spot, amount=ZERO))

    asks = [DepthLevel(price=spot, amount=ZERO)]
    for i in range(1, count + 1):
        amount = step * i
        if amount >= y:
            break
        asks.append(DepthLevel(price=compute_amm_price(amm, Side.BUY, amount, config=config), amount=amount))
    return AMMDepth(bids=tuple(bids), asks=tuple(asks))


def compute_amm_inverse_depth(
    amm: AMMDetails,
    step: DecimalLike = DEFAULT_DEPTH_STEP,
    count: int = DEFAULT_DEPTH_COUNT,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMDepth:
    """Depth in reciprocal prices; the pool's asks become inverse bids."""
    depth = compute_amm_depth(amm, step, count, config=config)

    def flip(levels: tuple[DepthLevel, ...]) -> tuple[DepthLevel, ...]:
        return tuple(
            DepthLevel(
                price=round_fixed(inverse_price(level.price, config=config), config.decimals),
                amount=level.amount,
            )
            for level in reversed(levels)
        )

    return AMMDepth(bids=flip(depth.asks), asks=flip(depth.bids))


def _limit_price(estimated: Decimal, side: Side, slippage: Decimal, config: EngineConfig) -> Decimal:
    with localcontext(working_context(config.working_precision)):
        if side is Side.BUY:
            return round_fixed(estimated * (ONE + slippage), config.decimals)
        return round_fixed(estimated * (ONE - slippage), config.decimals)


def _require_slippage(side: Side, slippage: Decimal) -> None:
    if slippage < 0 or (side is Side.SELL and slippage >= 1):
        raise InvalidPriceError(f"invalid limit slippage {slippage}")


def compute_amm_trade_cost(
    amm: AMMDetails,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    details: AccountDetails,
    side: Side,
    amount: DecimalLike,
    leverage: DecimalLike,
    limit_slippage: DecimalLike = 0,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMTradeCost:
    """Cost of trading *amount* against the pool, priced at the slippage limit."""
    slippage = to_decimal(limit_slippage)
    _require_slippage(side, slippage)
    fee_rate = gov.pool_fee_rate + gov.pool_dev_fee_rate
    estimated = compute_amm_price(amm, side, amount, config=config)
    limit = _limit_price(estimated, side, slippage, config)
    cost = compute_trade_cost(
        gov, perpetual, funding, details, side, limit, amount, leverage, fee_rate, config=config,
    )
    return AMMTradeCost(
        account=cost.account,
        margin_cost=cost.margin_cost,
        fee=cost.fee,
        estimated_price=estimated,
        limit_slippage=slippage,
        limit_price=limit,
    )


def compute_amm_inverse_trade_cost(
    amm: AMMDetails,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    details: AccountDetails,
    side: Side,
    amount: DecimalLike,
    leverage: DecimalLike,
    limit_slippage: DecimalLike = 0,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMTradeCost:
    """Inverse-contract variant; prices and slippage are quoted in reciprocal terms."""
    slippage = to_decimal(limit_slippage)
    _require_slippage(side, slippage)
    fee_rate = gov.pool_fee_rate + gov.pool_dev_fee_rate
    amm_side = inverse_side(side)
    amm_price = compute_amm_price(amm, amm_side, amount, config=config)
    estimated = round_fixed(inverse_price(amm_price, config=config), config.decimals)
    limit = _limit_price(estimated, side, slippage, config)
    amm_limit = inverse_price(limit, config=config)
    cost = compute_trade_cost(
        gov, perpetual, funding, details, amm_side, amm_limit, amount, leverage, fee_rate, config=config,
    )
    return AMMTradeCost(
        account=cost.account,
        margin_cost=cost.margin_cost,
        fee=cost.fee,
        estimated_price=estimated,
        limit_slippage=slippage,
        limit_price=limit,
    )


def compute_amm_trade(
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    amm: AMMDetails,
    side: Side,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AMMDetails:
    """Pool after a trader takes *side*; the pool earns ``pool_fee_rate``."""
    price = compute_amm_price(amm, side, amount, config=config)
    pool = compute_trade(
        perpetual, funding, amm.storage, inverse_side(side), price, amount,
        -gov.pool_fee_rate, config=config,
    )
    return compute_amm_details(pool, gov, perpetual, funding, config=config)


def compute_amm_create_pool(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    pool: AccountStorage,
    user: AccountStorage,
    index_price: DecimalLike,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LiquidityChange:
    """Seed an empty pool: the user sells *amount* to it at *index_price*."""
    if pool.position_side is not Side.FLAT:
        raise InvalidSideError("amm pool already holds a position")
    price = to_decimal(index_price)
    amount = to_decimal(amount)
    if price <= 0:
        raise InvalidPriceError(f"bad index price {price}")
    if amount <= 0:
        raise InvalidAmountError(f"bad amount {amount}")
    with localcontext(working_context(config.working_precision)):
        collateral = round_fixed(amount * price * 2, config.decimals)
        seeded = replace(pool, cash_balance=pool.cash_balance + collateral)
        funded_user = replace(user, cash_balance=user.cash_balance - collateral)
    new_pool = compute_trade(perpetual, funding, seeded, Side.BUY, price, amount, ZERO, config=config)
    new_user = compute_trade(perpetual, funding, funded_user, Side.SELL, price, amount, ZERO, config=config)
    return LiquidityChange(amm=new_pool, user=new_user, share=amount)


def compute_amm_add_liquidity(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    amm: AMMDetails,
    user: AccountStorage,
    total_share: DecimalLike,
    amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LiquidityChange:
    """User sells *amount* contracts to the pool at spot and funds both sides.

    Collateral of ``2 * amount * spot`` moves from user to pool.
    """
    amount = to_decimal(amount)
    total_share = to_decimal(total_share)
    if amount <= 0:
        raise InvalidAmountError(f"bad amount {amount}")
    if total_share < 0:
        raise InvalidAmountError(f"bad total share {total_share}")
    spot = _spot_price(amm, config)
    y = amm.storage.position_size
    with localcontext(working_context(config.working_precision)):
        collateral = round_fixed(amount * spot * 2, config.decimals)
        pool = replace(amm.storage, cash_balance=amm.storage.cash_balance + collateral)
        funded_user = replace(user, cash_balance=user.cash_balance - collateral)
        share = amount if total_share == 0 else round_fixed(amount / y * total_share, config.decimals)
    new_pool = compute_trade(perpetual, funding, pool, Side.BUY, spot, amount, ZERO, config=config)
    new_user = compute_trade(perpetual, funding, funded_user, Side.SELL, spot, amount, ZERO, config=config)
    return LiquidityChange(amm=new_pool, user=new_user, share=share)


def compute_amm_remove_liquidity(
    perpetual: PerpetualStorage,
    funding: FundingResult,
    amm: AMMDetails,
    user: AccountStorage,
    total_share: DecimalLike,
    share_amount: DecimalLike,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LiquidityChange:
    """Redeem *share_amount* of *total_share*: the user takes the pro-rata
    position at the mark price plus ``2 * size * spot`` collateral."""
    total_share = to_decimal(total_share)
    share = to_decimal(share_amount)
    if total_share <= 0:
        raise InvalidAmountError(f"bad total share {total_share}")
    if share <= 0 or share > total_share:
        raise InvalidAmountError(f"bad share amount {share} of {total_share}")

    spot = _spot_price(amm, config)
    with localcontext(working_context(config.working_precision)):
        transfer_size = truncate(amm.storage.position_size * share / total_share, config.decimals)
        collateral = round_fixed(spot * transfer_size * 2, config.decimals)
    if transfer_size <= 0:
        raise InvalidAmountError(f"share amount {share} redeems no contracts")

    price = funding.mark_price
    pool = compute_trade(perpetual, funding, amm.storage, Side.SELL, price, transfer_size, ZERO, config=config)
    taker = compute_trade(perpetual, funding, user, Side.BUY, price, transfer_size, ZERO, config=config)
    with localcontext(working_context(config.working_precision)):
        pool = replace(pool, cash_balance=pool.cash_balance - collateral)
        taker = replace(taker, cash_balance=taker.cash_balance + collateral)
    return LiquidityChange(amm=pool, user=taker, share=share)
