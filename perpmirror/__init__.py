"""`perpmirror`: off-chain mirror of a perpetual-futures contract's fixed-point math.

Predicts what the on-chain contract computes without submitting a transaction:
- deterministic ``ln`` / ``log`` / ``powi`` on 18-decimal fixed point,
- the clamped, dampened funding-curve accumulator and funding updater,
- account margins and liquidation prices,
- AMM pricing, depth and trade costs,
- liquidation settlement with insurance fund and social loss.

Public API:
- ``compute_funding(f, gov, now) -> FundingResult``
- ``compute_account(account, gov, perpetual, funding) -> AccountComputed``
- ``compute_amm_details(pool, gov, perpetual, funding) -> AMMDetails``
- ``compute_liquidate(state, gov, funding, amount) -> LiquidationState``
- ``step(state, params) -> StepResult`` / ``step_or_raise(state, params)``
"""

from .config import DEFAULT_CONFIG, EngineConfig, load_config
from .core.account import compute_account, compute_account_details
from .core.amm import (
    compute_amm,
    compute_amm_amount,
    compute_amm_details,
    compute_amm_inverse_amount,
    compute_amm_inverse_price,
    compute_amm_price,
)
from .core.engine import step, step_or_raise
from .core.errors import (
    FairnessViolationError,
    FlatCurveError,
    InsufficientLiquidityError,
    InsufficientMarginError,
    InvalidAmountError,
    InvalidPriceError,
    InvalidSideError,
    NonIntegerExponentError,
    NothingToLiquidateError,
    PerpError,
    PerpGuardError,
    PerpInvariantError,
    RangeError,
    TemporalError,
)
from .core.fixed_point import ln, log, powi
from .core.funding import accumulate_funding, apply_funding, compute_funding, update_funding_params
from .core.liquidation import compute_liquidate
from .core.market import Action, ActionParams, MarketState, StepResult
from .core.types import (
    AccountComputed,
    AccountStorage,
    AMMComputed,
    AMMDetails,
    FundingParams,
    FundingResult,
    GovParams,
    LiquidationState,
    PerpetualStatus,
    PerpetualStorage,
    Side,
)

__all__ = [
    "DEFAULT_CONFIG",
    "EngineConfig",
    "load_config",
    "ln",
    "log",
    "powi",
    "accumulate_funding",
    "compute_funding",
    "update_funding_params",
    "apply_funding",
    "compute_account",
    "compute_account_details",
    "compute_amm",
    "compute_amm_details",
    "compute_amm_price",
    "compute_amm_inverse_price",
    "compute_amm_amount",
    "compute_amm_inverse_amount",
    "compute_liquidate",
    "step",
    "step_or_raise",
    "Action",
    "ActionParams",
    "MarketState",
    "StepResult",
    "AccountComputed",
    "AccountStorage",
    "AMMComputed",
    "AMMDetails",
    "FundingParams",
    "FundingResult",
    "GovParams",
    "LiquidationState",
    "PerpetualStatus",
    "PerpetualStorage",
    "Side",
    "PerpError",
    "RangeError",
    "TemporalError",
    "NonIntegerExponentError",
    "FlatCurveError",
    "InsufficientLiquidityError",
    "InvalidPriceError",
    "FairnessViolationError",
    "InvalidAmountError",
    "InvalidSideError",
    "NothingToLiquidateError",
    "InsufficientMarginError",
    "PerpGuardError",
    "PerpInvariantError",
]
