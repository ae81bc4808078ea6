from __future__ import annotations

from decimal import Decimal

import pytest

from perpmirror.core.amm import compute_amm_depth, compute_amm_details
from perpmirror.core.market import MarketState
from perpmirror.core.types import (
    AccountStorage,
    AMMDepth,
    FundingParams,
    FundingResult,
    GovParams,
    PerpetualStatus,
    PerpetualStorage,
    Side,
)
from perpmirror.state import decimal_text, record_from_dict, record_to_dict


def _market() -> MarketState:
    return MarketState(
        perpetual=PerpetualStorage(
            total_size=Decimal("2.5"),
            status=PerpetualStatus.EMERGENCY,
            global_settle_price=Decimal("7000"),
            funding=FundingParams(
                accumulated_funding_per_contract=Decimal("-0.000000000000000001"),
                last_index_price=Decimal(7000),
                last_funding_timestamp=1579601290,
            ),
        ),
        accounts={
            "alice": AccountStorage(
                cash_balance=Decimal("100.25"),
                position_side=Side.BUY,
                position_size=Decimal("2.5"),
                entry_value=Decimal("250"),
            ),
            "bob": AccountStorage(cash_balance=Decimal(-3)),
        },
        shares={"alice": Decimal("1.5")},
        timestamp=1579601290,
    )


@pytest.mark.parametrize(
    "value,text",
    [
        (Decimal("1E-18"), "0.000000000000000001"),
        (Decimal("2.500"), "2.5"),
        (Decimal("1E+3"), "1000"),
        (Decimal("-0.0"), "0"),
        (Decimal("-7.10"), "-7.1"),
    ],
)
def test_decimal_text(value: Decimal, text: str) -> None:
    assert decimal_text(value) == text


def test_record_to_dict_is_plain() -> None:
    d = record_to_dict(_market())
    assert d["timestamp"] == 1579601290
    assert d["perpetual"]["status"] == "emergency"
    assert d["perpetual"]["funding"]["accumulated_funding_per_contract"] == "-0.000000000000000001"
    assert d["accounts"]["alice"]["position_side"] == "buy"
    assert d["shares"] == {"alice": "1.5"}


def test_market_round_trip() -> None:
    market = _market()
    assert record_from_dict(MarketState, record_to_dict(market)) == market


def test_gov_round_trip() -> None:
    gov = GovParams(lot_size=Decimal("0.01"), maker_fee_rate=Decimal("-0.0001"))
    assert record_from_dict(GovParams, record_to_dict(gov)) == gov


def test_depth_round_trip() -> None:
    funding = FundingResult(
        timestamp=0,
        accumulated_funding_per_contract=0,
        ema_premium=0,
        mark_price=100,
        premium_rate=0,
        funding_rate=0,
    )
    pool = AccountStorage(
        cash_balance=Decimal(2000), position_side=Side.BUY,
        position_size=Decimal(10), entry_value=Decimal(1000),
    )
    amm = compute_amm_details(pool, GovParams(), PerpetualStorage(), funding)
    depth = compute_amm_depth(amm, 1, 3)
    assert record_from_dict(AMMDepth, record_to_dict(depth)) == depth


def test_missing_field_raises() -> None:
    d = record_to_dict(AccountStorage())
    del d["cash_balance"]
    with pytest.raises(KeyError):
        record_from_dict(AccountStorage, d)


def test_float_amounts_rejected() -> None:
    d = record_to_dict(AccountStorage())
    d["cash_balance"] = 1.5
    with pytest.raises(TypeError):
        record_from_dict(AccountStorage, d)
