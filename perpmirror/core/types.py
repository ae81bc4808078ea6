"""Data types for the perpmirror engine.

All types are frozen dataclasses (immutable). Numeric fields are
``decimal.Decimal``; constructors also accept ``int``/``str``/``float`` and
normalize them in ``__post_init__``.

Units/conventions:
- prices and margins are collateral units per contract,
- ``*_rate`` / ``*_margin`` fields in ``GovParams`` are plain ratios (0.05 = 5%),
- sizes are unsigned; direction lives in ``position_side``,
- timestamps are integer seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, unique
from typing import Iterable

from .fixed_point import ONE, ZERO, to_decimal


def _coerce(obj: object, names: Iterable[str]) -> None:
    for name in names:
        object.__setattr__(obj, name, to_decimal(getattr(obj, name)))


def _require_non_negative(obj: object, names: Iterable[str]) -> None:
    for name in names:
        val = getattr(obj, name)
        if val < 0:
            raise ValueError(f"{name} must be non-negative: {val}")


def _require_timestamp(name: str, val: object) -> None:
    if not isinstance(val, int) or isinstance(val, bool):
        raise TypeError(f"{name} must be int seconds")
    if val < 0:
        raise ValueError(f"{name} must be non-negative: {val}")


@unique
class Side(Enum):
    """Position side. Trades use ``BUY``/``SELL`` only."""
    FLAT = "flat"
    SELL = "sell"
    BUY = "buy"


@unique
class PerpetualStatus(Enum):
    NORMAL = "normal"
    EMERGENCY = "emergency"
    SETTLED = "settled"


@dataclass(frozen=True)
class GovParams:
    """Governance configuration. Supplied externally, never mutated."""

    initial_margin: Decimal = Decimal("0.1")
    maintenance_margin: Decimal = Decimal("0.05")
    liquidation_safety_factor: Decimal = Decimal("0.1")
    liquidation_penalty_rate: Decimal = Decimal("0.01")
    penalty_fund_rate: Decimal = Decimal("0.2")
    maker_fee_rate: Decimal = Decimal("-0.0005")
    taker_fee_rate: Decimal = Decimal("0.0015")

    # Funding
    mark_premium_limit: Decimal = Decimal("0.005")
    funding_dampener: Decimal = Decimal("0.0005")
    ema_alpha: Decimal = Decimal("0.003327787021630616")  # 2 / (600 + 1)
    update_premium_prize: Decimal = ZERO

    # AMM shape
    min_pool_size: Decimal = ZERO
    pool_fee_rate: Decimal = Decimal("0.000375")
    pool_dev_fee_rate: Decimal = Decimal("0.000375")
    fair_price_amount: Decimal = ONE
    fair_price_max_gap: Decimal = Decimal("0.1")

    # Lots
    lot_size: Decimal = Decimal("1E-18")
    trading_lot_size: Decimal = Decimal("1E-18")

    def __post_init__(self) -> None:
        names = tuple(self.__dataclass_fields__)
        _coerce(self, names)
        _require_non_negative(self, [n for n in names if n not in ("maker_fee_rate", "taker_fee_rate")])
        if not (ZERO < self.ema_alpha < ONE):
            raise ValueError(f"ema_alpha must be in (0, 1): {self.ema_alpha}")
        if self.initial_margin < self.maintenance_margin:
            raise ValueError("initial_margin must be >= maintenance_margin")
        if self.maintenance_margin >= ONE:
            raise ValueError("maintenance_margin must be < 1")
        if self.lot_size <= 0 or self.trading_lot_size <= 0:
            raise ValueError("lot sizes must be positive")


@dataclass(frozen=True)
class FundingParams:
    """Persisted funding state at the last funding event."""

    accumulated_funding_per_contract: Decimal = ZERO
    last_ema_premium: Decimal = ZERO
    last_premium: Decimal = ZERO
    last_index_price: Decimal = ZERO
    last_funding_timestamp: int = 0

    def __post_init__(self) -> None:
        _coerce(self, (
            "accumulated_funding_per_contract", "last_ema_premium",
            "last_premium", "last_index_price",
        ))
        _require_non_negative(self, ("last_index_price",))
        _require_timestamp("last_funding_timestamp", self.last_funding_timestamp)


@dataclass(frozen=True)
class AccumulatedFunding:
    """Raw integral of the clamped premium curve, before any division."""

    acc: Decimal
    ema_premium: Decimal


@dataclass(frozen=True)
class FundingResult:
    timestamp: int
    accumulated_funding_per_contract: Decimal
    ema_premium: Decimal
    mark_price: Decimal
    premium_rate: Decimal
    funding_rate: Decimal

    def __post_init__(self) -> None:
        _coerce(self, (
            "accumulated_funding_per_contract", "ema_premium",
            "mark_price", "premium_rate", "funding_rate",
        ))
        _require_timestamp("timestamp", self.timestamp)


@dataclass(frozen=True)
class PerpetualStorage:
    """Contract-wide state."""

    total_size: Decimal = ZERO
    long_social_loss_per_contract: Decimal = ZERO
    short_social_loss_per_contract: Decimal = ZERO
    insurance_fund_balance: Decimal = ZERO
    status: PerpetualStatus = PerpetualStatus.NORMAL
    global_settle_price: Decimal = ZERO
    funding: FundingParams = field(default_factory=FundingParams)

    def __post_init__(self) -> None:
        _coerce(self, (
            "total_size", "long_social_loss_per_contract",
            "short_social_loss_per_contract", "insurance_fund_balance",
            "global_settle_price",
        ))
        if not isinstance(self.status, PerpetualStatus):
            raise TypeError("status must be a PerpetualStatus")

    def social_loss_per_contract(self, side: Side) -> Decimal:
        if side is Side.BUY:
            return self.long_social_loss_per_contract
        if side is Side.SELL:
            return self.short_social_loss_per_contract
        return ZERO


@dataclass(frozen=True)
class AccountStorage:
    """A trader's (or the AMM pool's) position and collateral."""

    cash_balance: Decimal = ZERO
    position_side: Side = Side.FLAT
    position_size: Decimal = ZERO
    entry_value: Decimal = ZERO
    entry_social_loss: Decimal = ZERO
    entry_funding_loss: Decimal = ZERO
    withdrawal_request: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(self, (
            "cash_balance", "position_size", "entry_value",
            "entry_social_loss", "entry_funding_loss", "withdrawal_request",
        ))
        if not isinstance(self.position_side, Side):
            raise TypeError("position_side must be a Side")
        _require_non_negative(self, ("position_size", "withdrawal_request"))
        if (self.position_side is Side.FLAT) != (self.position_size == 0):
            raise ValueError(
                f"position_size must be 0 iff side is FLAT "
                f"(side={self.position_side.value}, size={self.position_size})"
            )


@dataclass(frozen=True)
class AccountComputed:
    """Derived view of an account. Recomputed on every query, never persisted."""

    entry_price: Decimal
    position_value: Decimal
    position_margin: Decimal
    maintenance_margin: Decimal
    leverage: Decimal
    social_loss: Decimal
    funding_loss: Decimal
    upnl1: Decimal
    upnl2: Decimal
    roe: Decimal
    liquidation_price: Decimal
    margin_balance: Decimal
    available_margin: Decimal
    withdrawable_balance: Decimal
    is_safe: bool


@dataclass(frozen=True)
class AccountDetails:
    storage: AccountStorage
    computed: AccountComputed


@dataclass(frozen=True)
class AMMComputed:
    available_margin: Decimal
    impact_bid_price: Decimal
    impact_ask_price: Decimal
    fair_price: Decimal


@dataclass(frozen=True)
class AMMDetails:
    """AMM pool account plus its account and AMM views."""

    storage: AccountStorage
    account: AccountComputed
    computed: AMMComputed


@dataclass(frozen=True)
class TradeCost:
    account: AccountDetails
    margin_cost: Decimal
    fee: Decimal


@dataclass(frozen=True)
class AMMTradeCost:
    account: AccountDetails
    margin_cost: Decimal
    fee: Decimal
    estimated_price: Decimal
    limit_slippage: Decimal
    limit_price: Decimal


@dataclass(frozen=True)
class DepthLevel:
    price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class AMMDepth:
    """Bids ordered from deepest to the top of book; asks from the top outward."""

    bids: tuple[DepthLevel, ...]
    asks: tuple[DepthLevel, ...]


@dataclass(frozen=True)
class LiquidityChange:
    amm: AccountStorage
    user: AccountStorage
    share: Decimal


@dataclass(frozen=True)
class LiquidationState:
    """Everything a liquidation touches."""

    perpetual: PerpetualStorage
    liquidated: AccountStorage
    keeper: AccountStorage


@dataclass(frozen=True)
class LiquidationPlan:
    side: Side
    amount: Decimal
    price: Decimal
    penalty: Decimal
    penalty_to_fund: Decimal
    penalty_to_keeper: Decimal
