"""Account computation: mark-to-market PnL, margins, leverage, liquidation price.

Losses are positive when they reduce the account's equity:

- ``social_loss``: this account's share of socialized losses since entry,
- ``funding_loss``: funding paid since entry (long pays when the accumulator
  rises, short receives).

A perpetual that is not ``NORMAL`` marks every account at
``global_settle_price`` instead of the funding mark price.
"""

from __future__ import annotations

from decimal import Decimal, localcontext

from ..config import DEFAULT_CONFIG, EngineConfig
from .fixed_point import ZERO, round_fixed, working_context
from .types import (
    AccountComputed,
    AccountDetails,
    AccountStorage,
    FundingResult,
    GovParams,
    PerpetualStatus,
    PerpetualStorage,
    Side,
)


def mark_price_for(perpetual: PerpetualStorage, funding: FundingResult) -> Decimal:
    if perpetual.status is PerpetualStatus.NORMAL:
        return funding.mark_price
    return perpetual.global_settle_price


def compute_account(
    account: AccountStorage,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccountComputed:
    mark = mark_price_for(perpetual, funding)
    size = account.position_size
    cash = account.cash_balance
    entry_value = account.entry_value
    mm = gov.maintenance_margin

    with localcontext(working_context(config.working_precision)):
        entry_price = ZERO if size == 0 else entry_value / size
        position_value = mark * size
        position_margin = entry_value * gov.initial_margin
        maintenance_margin = position_value * mm
        long_funding_loss = funding.accumulated_funding_per_contract * size - account.entry_funding_loss

        if account.position_side is Side.FLAT:
            social_loss = ZERO
            funding_loss = ZERO
            upnl1 = ZERO
            liquidation_price = ZERO
        elif account.position_side is Side.BUY:
            social_loss = perpetual.long_social_loss_per_contract * size - account.entry_social_loss
            funding_loss = long_funding_loss
            upnl1 = position_value - entry_value
            liquidation_price = (cash - entry_value - social_loss - funding_loss) / (size * (mm - 1))
            if liquidation_price < 0:
                liquidation_price = ZERO
        else:
            social_loss = perpetual.short_social_loss_per_contract * size - account.entry_social_loss
            funding_loss = -long_funding_loss
            upnl1 = entry_value - position_value
            liquidation_price = (cash + entry_value - social_loss - funding_loss) / (size * (mm + 1))

        upnl2 = upnl1 - social_loss - funding_loss
        margin_balance = cash + upnl2
        available_margin = margin_balance - position_margin
        withdrawable = max(ZERO, min(account.withdrawal_request, available_margin))
        leverage = position_value / margin_balance if margin_balance > 0 else ZERO
        roe = upnl2 / cash if cash > 0 else ZERO

    d = config.decimals
    maintenance_margin = round_fixed(maintenance_margin, d)
    margin_balance = round_fixed(margin_balance, d)
    return AccountComputed(
        entry_price=round_fixed(entry_price, d),
        position_value=round_fixed(position_value, d),
        position_margin=round_fixed(position_margin, d),
        maintenance_margin=maintenance_margin,
        leverage=round_fixed(leverage, d),
        social_loss=round_fixed(social_loss, d),
        funding_loss=round_fixed(funding_loss, d),
        upnl1=round_fixed(upnl1, d),
        upnl2=round_fixed(upnl2, d),
        roe=round_fixed(roe, d),
        liquidation_price=round_fixed(liquidation_price, d),
        margin_balance=margin_balance,
        available_margin=round_fixed(available_margin, d),
        withdrawable_balance=round_fixed(withdrawable, d),
        is_safe=maintenance_margin <= margin_balance,
    )


def compute_account_details(
    account: AccountStorage,
    gov: GovParams,
    perpetual: PerpetualStorage,
    funding: FundingResult,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> AccountDetails:
    return AccountDetails(
        storage=account,
        computed=compute_account(account, gov, perpetual, funding, config=config),
    )
