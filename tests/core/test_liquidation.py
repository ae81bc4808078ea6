"""Tests for perpmirror/core/liquidation.py: liquidation settlement."""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from perpmirror.config import EngineConfig
from perpmirror.core import liquidation
from perpmirror.core.account import compute_account
from perpmirror.core.errors import InvalidAmountError, NothingToLiquidateError
from perpmirror.core.liquidation import compute_liquidate, compute_liquidate_amount, plan_liquidation
from perpmirror.core.types import (
    AccountStorage,
    FundingResult,
    GovParams,
    LiquidationState,
    PerpetualStorage,
    Side,
)

GOV = GovParams()
FUNDING = FundingResult(
    timestamp=0,
    accumulated_funding_per_contract=Decimal(0),
    ema_premium=Decimal(0),
    mark_price=Decimal(100),
    premium_rate=Decimal(0),
    funding_rate=Decimal(0),
)
KEEPER = AccountStorage(cash_balance=Decimal(1000))


def _long(cash) -> AccountStorage:
    return AccountStorage(
        cash_balance=Decimal(cash),
        position_side=Side.BUY,
        position_size=Decimal(10),
        entry_value=Decimal(1000),
    )


def _state(cash, *, fund="0", total_size="100") -> LiquidationState:
    return LiquidationState(
        perpetual=PerpetualStorage(
            total_size=Decimal(total_size),
            insurance_fund_balance=Decimal(fund),
        ),
        liquidated=_long(cash),
        keeper=KEEPER,
    )


def _equity(state: LiquidationState) -> Decimal:
    p = state.perpetual
    return (
        compute_account(state.liquidated, GOV, p, FUNDING).margin_balance
        + compute_account(state.keeper, GOV, p, FUNDING).margin_balance
        + p.insurance_fund_balance
    )


# ---------------------------------------------------------------------------
# Amount and plan
# ---------------------------------------------------------------------------

class TestLiquidateAmount:
    def test_partial_restores_safety_margin(self):
        # (40 - 0.01*100*10) / (100 * (0.055 - 0.01)) = 6.666.. kept
        amount = compute_liquidate_amount(_long("40"), GOV, PerpetualStorage(), FUNDING)
        assert amount == Decimal("3.333333333333333333")

    def test_bankrupt_account_fully_liquidatable(self):
        assert compute_liquidate_amount(_long("-30"), GOV, PerpetualStorage(), FUNDING) == 10

    def test_flat_account_has_nothing(self):
        assert compute_liquidate_amount(KEEPER, GOV, PerpetualStorage(), FUNDING) == 0


class TestPlan:
    def test_lot_rounding_and_penalty_split(self):
        gov = GovParams(lot_size=Decimal("0.01"))
        plan = plan_liquidation(_state("40"), gov, FUNDING, 100)
        assert plan.side is Side.BUY
        assert plan.amount == Decimal("3.33")
        assert plan.price == 100
        assert plan.penalty == Decimal("3.33")
        assert plan.penalty_to_fund == Decimal("0.666")
        assert plan.penalty_to_keeper == Decimal("2.664")

    def test_requested_caps_amount(self):
        plan = plan_liquidation(_state("40"), GOV, FUNDING, 1)
        assert plan.amount == 1

    def test_safe_account_rejected(self):
        with pytest.raises(NothingToLiquidateError):
            plan_liquidation(_state("500"), GOV, FUNDING, 1)

    def test_flat_account_rejected(self):
        state = LiquidationState(perpetual=PerpetualStorage(), liquidated=KEEPER, keeper=KEEPER)
        with pytest.raises(NothingToLiquidateError):
            plan_liquidation(state, GOV, FUNDING, 1)

    def test_amount_below_lot_rejected(self):
        with pytest.raises(NothingToLiquidateError):
            plan_liquidation(_state("40"), GovParams(lot_size=Decimal(1)), FUNDING, Decimal("0.5"))

    @pytest.mark.parametrize("requested", ["0", "-1"])
    def test_requested_must_be_positive(self, requested):
        with pytest.raises(InvalidAmountError):
            plan_liquidation(_state("40"), GOV, FUNDING, Decimal(requested))


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class TestComputeLiquidate:
    def test_partial_settlement(self):
        gov = GovParams(lot_size=Decimal("0.01"))
        out = compute_liquidate(_state("40"), gov, FUNDING, 100)
        assert out.liquidated.position_size == Decimal("6.67")
        assert out.liquidated.entry_value == Decimal("667")
        assert out.liquidated.cash_balance == Decimal("36.67")
        assert out.keeper.position_side is Side.BUY
        assert out.keeper.position_size == Decimal("3.33")
        assert out.keeper.cash_balance == Decimal("1002.664")
        assert out.perpetual.insurance_fund_balance == Decimal("0.666")
        assert compute_account(out.liquidated, gov, out.perpetual, FUNDING).is_safe

    def test_insurance_fund_then_socialization(self, caplog):
        with caplog.at_level(logging.INFO, logger="perpmirror.core.liquidation"):
            out = compute_liquidate(_state("-30", fund="25"), GOV, FUNDING, 10)
        assert out.liquidated.position_side is Side.FLAT
        assert out.liquidated.cash_balance == 0
        assert out.perpetual.insurance_fund_balance == 0
        assert out.perpetual.short_social_loss_per_contract == Decimal("0.13")
        assert out.perpetual.long_social_loss_per_contract == 0
        assert out.keeper.cash_balance == 1008
        assert any("socializing" in r.getMessage() for r in caplog.records)

    def test_fund_alone_covers_shortfall(self):
        out = compute_liquidate(_state("-30", fund="100"), GOV, FUNDING, 10)
        assert out.liquidated.cash_balance == 0
        assert out.perpetual.insurance_fund_balance == 62
        assert out.perpetual.short_social_loss_per_contract == 0

    def test_no_open_interest_keeps_loss_on_account(self):
        out = compute_liquidate(_state("-30", fund="25", total_size="0"), GOV, FUNDING, 10)
        assert out.liquidated.cash_balance == -13
        assert out.perpetual.insurance_fund_balance == 0

    def test_short_loss_socialized_onto_longs(self):
        short = AccountStorage(
            cash_balance=Decimal(-30), position_side=Side.SELL,
            position_size=Decimal(10), entry_value=Decimal(1000),
        )
        state = LiquidationState(
            perpetual=PerpetualStorage(total_size=Decimal(100)), liquidated=short, keeper=KEEPER,
        )
        out = compute_liquidate(state, GOV, FUNDING, 10)
        assert out.keeper.position_side is Side.SELL
        assert out.perpetual.long_social_loss_per_contract == Decimal("0.38")

    @pytest.mark.parametrize(
        "cash,requested,fund",
        [("40", "100", "0"), ("-30", "10", "0"), ("-30", "10", "50"), ("12.34", "2.5", "7")],
    )
    def test_collateral_conserved(self, cash, requested, fund):
        before = _state(cash, fund=fund)
        after = compute_liquidate(before, GOV, FUNDING, Decimal(requested))
        old, new = before.perpetual, after.perpetual
        socialized = (
            (new.short_social_loss_per_contract - old.short_social_loss_per_contract)
            * old.total_size
        )
        assert abs(_equity(before) - (_equity(after) + socialized)) <= Decimal("1e-15")
        assert after.perpetual.insurance_fund_balance >= 0


class TestConfiguredPrecision:
    def test_lot_rounding_uses_config_precision(self, monkeypatch):
        seen = []
        real = liquidation.working_context

        def spy(precision=None):
            seen.append(precision)
            return real(precision)

        monkeypatch.setattr(liquidation, "working_context", spy)
        config = EngineConfig(working_precision=96)
        plan = plan_liquidation(_state("40"), GovParams(lot_size=Decimal("0.01")), FUNDING, 100, config=config)
        assert plan.amount == Decimal("3.33")
        assert seen
        assert set(seen) == {96}
