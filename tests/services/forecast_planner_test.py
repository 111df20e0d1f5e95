from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from db.repositories import ForecastSnapshotRepository, HoldingRepository
from domain.cost_basis import Holding
from domain.errors import ValidationError
from domain.ladder import ExitRule, TargetMode
from services.forecast_planner import ForecastPlanner, merge_by_symbol
from tests.helpers.ledger import PORTFOLIO, make_holding

AT = datetime(2024, 10, 1, tzinfo=timezone.utc)


@pytest.fixture()
def planner(holding_repo: HoldingRepository, snapshot_repo: ForecastSnapshotRepository) -> ForecastPlanner:
    holding_repo.upsert(PORTFOLIO, make_holding(2, 40000), fingerprint="btc")
    holding_repo.upsert(PORTFOLIO, make_holding(10, 20000, asset_symbol="ETH"), fingerprint="eth")
    return ForecastPlanner(holdings=holding_repo, snapshots=snapshot_repo)


def test_merge_by_symbol_sums_sub_accounts() -> None:
    merged = merge_by_symbol(
        [
            Holding(asset_symbol="BTC", quantity=Decimal(1), invested_amount=Decimal(30000), transaction_count=2),
            Holding(
                asset_symbol="BTC",
                quantity=Decimal(1),
                invested_amount=Decimal(10000),
                sub_account_id="cold",
                transaction_count=1,
            ),
            make_holding(1, 5, asset_symbol="ARB"),
        ]
    )

    assert [h.asset_symbol for h in merged] == ["ARB", "BTC"]
    btc = merged[1]
    assert btc.quantity == Decimal(2)
    assert btc.average_price == Decimal(20000)
    assert btc.sub_account_id is None
    assert btc.transaction_count == 3


def test_forecast_uses_templates_custom_rules_and_prices(planner: ForecastPlanner) -> None:
    custom = {
        "eth-moon": [
            ExitRule(target_mode=TargetMode.EXACT_PRICE, target_input=Decimal(5000), sell_percentage=Decimal(50))
        ]
    }

    forecast = planner.forecast(
        PORTFOLIO,
        ladder_refs={"BTC": "tp-10-20-30", "ETH": "eth-moon"},
        prices={"BTC": Decimal(25000)},
        custom_rules=custom,
        at=AT,
    )

    btc = forecast.per_asset["BTC"]
    eth = forecast.per_asset["ETH"]
    # BTC: sells 0.2 @ 25000, 0.4 @ 30000, 0.6 @ 40000 and keeps 0.8 @ 25000
    assert btc.projected_proceeds == Decimal(41000)
    assert btc.remaining_value == Decimal(20000)
    assert btc.ladder_ref == "tp-10-20-30"
    # ETH: no quote, the 5 kept tokens are valued at the 2000 average
    assert eth.projected_proceeds == Decimal(25000)
    assert eth.remaining_value == Decimal(10000)
    assert forecast.total_invested == Decimal(60000)
    assert forecast.total_profit == Decimal(36000)


def test_assets_without_ladder_are_still_valued(planner: ForecastPlanner) -> None:
    selections = planner.selections(PORTFOLIO, ladder_refs={}, prices={"ETH": Decimal(3000)})

    assert [s.ladder for s in selections] == [None, None]
    assert [s.valuation_price for s in selections] == [Decimal(20000), Decimal(3000)]


def test_unknown_ladder_ref_is_rejected(planner: ForecastPlanner) -> None:
    with pytest.raises(ValidationError):
        planner.forecast(PORTFOLIO, ladder_refs={"BTC": "nope"}, prices={})


def test_save_snapshot(planner: ForecastPlanner, snapshot_repo: ForecastSnapshotRepository) -> None:
    forecast = planner.forecast(PORTFOLIO, ladder_refs={"BTC": "hodl"}, prices={}, at=AT)

    saved = planner.save("hodl everything", forecast)

    assert saved.applied_ladders == {"BTC": "hodl", "ETH": None}
    assert [s.name for s in snapshot_repo.list_for_portfolio(PORTFOLIO)] == ["hodl everything"]
