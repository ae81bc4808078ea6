"""Data types for the step engine.

``MarketState`` is the whole simulated market: governance, contract storage,
the AMM pool account, named trader accounts, LP shares, and the engine clock.
Trader accounts and shares are plain dicts; the engine never mutates them in
place and always builds a new ``MarketState``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, unique

from .errors import PerpError
from .fixed_point import ZERO, to_decimal
from .types import AccountStorage, GovParams, PerpetualStorage, Side


@unique
class Action(Enum):
    UPDATE_FUNDING = "update_funding"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRADE = "trade"
    AMM_TRADE = "amm_trade"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    LIQUIDATE = "liquidate"


@dataclass(frozen=True)
class MarketState:
    gov: GovParams = field(default_factory=GovParams)
    perpetual: PerpetualStorage = field(default_factory=PerpetualStorage)
    amm: AccountStorage = field(default_factory=AccountStorage)
    accounts: dict[str, AccountStorage] = field(default_factory=dict)
    shares: dict[str, Decimal] = field(default_factory=dict)
    timestamp: int = 0

    @property
    def total_share(self) -> Decimal:
        return sum(self.shares.values(), ZERO)


@dataclass(frozen=True)
class ActionParams:
    """Parameters for an action. Unused fields keep their zero defaults."""

    action: Action
    account: str = ""             # every action except update_funding
    counterparty: str = ""        # trade (maker) / liquidate (keeper)
    side: Side = Side.FLAT        # trade / amm_trade
    price: Decimal = ZERO         # trade
    amount: Decimal = ZERO        # deposit / withdraw / trade / amm_trade / add_liquidity / liquidate
    shares: Decimal = ZERO        # remove_liquidity
    timestamp: int = 0            # update_funding
    index_price: Decimal = ZERO   # update_funding
    fair_price: Decimal = ZERO    # update_funding

    def __post_init__(self) -> None:
        for name in ("price", "amount", "shares", "index_price", "fair_price"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))


@dataclass(frozen=True)
class StepResult:
    """Result of a single engine step."""

    accepted: bool
    state: MarketState | None = None
    rejection: str | None = None
    error: PerpError | None = None
