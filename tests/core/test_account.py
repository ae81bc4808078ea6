"""Tests for perpmirror/core/account.py: margins, PnL and liquidation price."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from perpmirror.config import EngineConfig
from perpmirror.core.account import compute_account, compute_account_details, mark_price_for
from perpmirror.core.funding import compute_funding
from perpmirror.core.types import (
    AccountStorage,
    FundingParams,
    GovParams,
    PerpetualStatus,
    PerpetualStorage,
    Side,
)

CONFIG = EngineConfig(index_normalized_funding=True)
GOV = GovParams()
TS = 1579601290
TOL = Decimal("1e-9")

PERPETUAL = PerpetualStorage(
    total_size=Decimal(1000),
    long_social_loss_per_contract=Decimal("0.1"),
    short_social_loss_per_contract=Decimal("0.5"),
    funding=FundingParams(
        accumulated_funding_per_contract=Decimal(10),
        last_ema_premium=Decimal(-70),
        last_premium=Decimal(70),
        last_index_price=Decimal(7000),
        last_funding_timestamp=TS,
    ),
)
FUNDING = compute_funding(PERPETUAL.funding, GOV, TS + 86, config=CONFIG)


def _account(side: Side, cash: str) -> AccountStorage:
    return AccountStorage(
        cash_balance=Decimal(cash),
        position_side=side,
        position_size=Decimal("2.3"),
        entry_value=Decimal("2300.23"),
        entry_social_loss=Decimal("0.1"),
        entry_funding_loss=Decimal("-0.91"),
        withdrawal_request=Decimal(10),
    )


def _close(actual: Decimal, expected: str) -> bool:
    return abs(actual - Decimal(expected)) <= TOL


def test_reference_mark_price():
    assert _close(FUNDING.mark_price, "6964.893356142896606477")
    assert mark_price_for(PERPETUAL, FUNDING) == FUNDING.mark_price


# ---------------------------------------------------------------------------
# Long positions
# ---------------------------------------------------------------------------

class TestLongAccount:
    def test_reference_values(self):
        c = compute_account(_account(Side.BUY, "10000"), GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.entry_price == Decimal("1000.1")
        assert _close(c.position_value, "16019.2547191286622")
        assert c.position_margin == Decimal("230.023")
        assert c.social_loss == Decimal("0.13")
        assert _close(c.funding_loss, "23.90996909375")
        assert _close(c.upnl1, "13719.0247191286622")
        assert _close(c.upnl2, "13694.9847500349122")
        assert _close(c.margin_balance, "23694.9847500349122")
        assert _close(c.available_margin, "23464.9617500349122")
        assert c.withdrawable_balance == 10
        assert c.liquidation_price == 0
        assert _close(c.roe, "1.36949847500349122")
        assert _close(c.leverage, "0.676060984555183532")
        assert c.is_safe

    def test_liquidation_price_with_thin_cash(self):
        c = compute_account(_account(Side.BUY, "1000"), GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert _close(c.liquidation_price, "606.07321239988558")

    def test_liquidation_price_is_where_margin_hits_maintenance(self):
        account = _account(Side.BUY, "1000")
        c = compute_account(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
        at_liq = replace(FUNDING, mark_price=c.liquidation_price)
        c2 = compute_account(account, GOV, PERPETUAL, at_liq, config=CONFIG)
        assert abs(c2.margin_balance - c2.maintenance_margin) <= Decimal("1e-12")


# ---------------------------------------------------------------------------
# Short positions
# ---------------------------------------------------------------------------

class TestShortAccount:
    def test_reference_values(self):
        c = compute_account(_account(Side.SELL, "14000"), GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.social_loss == Decimal("1.05")
        assert _close(c.funding_loss, "-23.90996909375")
        assert _close(c.upnl1, "-13719.0247191286622")
        assert _close(c.upnl2, "-13696.1647500349122")
        assert _close(c.margin_balance, "303.8352499650878")
        assert _close(c.available_margin, "73.8122499650878")
        assert _close(c.liquidation_price, "6759.0434654632505176")
        assert c.withdrawable_balance == 10
        assert not c.is_safe

    def test_liquidation_price_not_floored(self):
        c = compute_account(_account(Side.SELL, "-5000"), GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.liquidation_price < 0


# ---------------------------------------------------------------------------
# Flat accounts and settlement
# ---------------------------------------------------------------------------

class TestFlatAccount:
    def test_margin_balance_is_cash(self):
        account = AccountStorage(cash_balance=Decimal(10000), withdrawal_request=Decimal(10))
        c = compute_account(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.margin_balance == 10000
        assert c.available_margin == 10000
        assert c.withdrawable_balance == 10
        assert c.position_value == 0
        assert c.entry_price == 0
        assert c.social_loss == 0
        assert c.funding_loss == 0
        assert c.leverage == 0
        assert c.is_safe

    def test_withdrawable_capped_by_available(self):
        account = AccountStorage(cash_balance=Decimal(3), withdrawal_request=Decimal(10))
        c = compute_account(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.withdrawable_balance == 3

    def test_negative_cash_withdraws_nothing(self):
        account = AccountStorage(cash_balance=Decimal(-3), withdrawal_request=Decimal(10))
        c = compute_account(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert c.withdrawable_balance == 0
        assert c.available_margin == -3
        assert not c.is_safe


class TestSettledPerpetual:
    @pytest.mark.parametrize("status", [PerpetualStatus.EMERGENCY, PerpetualStatus.SETTLED])
    def test_marks_at_settle_price(self, status):
        perpetual = replace(PERPETUAL, status=status, global_settle_price=Decimal(7000))
        c = compute_account(_account(Side.BUY, "10000"), GOV, perpetual, FUNDING, config=CONFIG)
        assert c.position_value == Decimal(16100)
        assert c.upnl1 == Decimal("13799.77")


class TestDetails:
    def test_wraps_storage(self):
        account = _account(Side.BUY, "10000")
        details = compute_account_details(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
        assert details.storage is account
        assert details.computed == compute_account(account, GOV, PERPETUAL, FUNDING, config=CONFIG)
