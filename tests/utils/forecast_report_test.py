from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from domain.forecast import ForecastSelection, aggregate
from domain.ladder import ExitRule, TargetMode, build_ladder
from tests.helpers.ledger import make_holding
from utils.forecast_report import render_forecast, render_holdings, render_ladder
from utils.formatting import format_currency, format_decimal, format_percent


def test_formatting_helpers() -> None:
    assert format_decimal(Decimal("2.500")) == "2.5"
    assert format_decimal(Decimal("1E+3")) == "1000"
    assert format_currency(Decimal("1234.567")) == "1,234.57"
    assert format_percent(Decimal("81.25")) == "+81.25%"
    assert format_percent(Decimal("-3")) == "-3.00%"


def test_render_holdings() -> None:
    assert render_holdings([]) == "Holdings:\n  (empty)"

    text = render_holdings([make_holding(2, 40000)])

    assert "BTC" in text
    assert "40,000.00" in text
    assert "20,000.00" in text


def test_render_ladder_and_forecast() -> None:
    holding = make_holding(2, 40000)
    rule = ExitRule(target_mode=TargetMode.PERCENT_OF_AVERAGE, target_input=Decimal(50), sell_percentage=Decimal(50))
    ladder = build_ladder(holding, [rule])

    ladder_text = render_ladder(ladder)
    assert "TP1" in ladder_text
    assert "30,000.00" in ladder_text
    assert "PENDING" in ladder_text

    stale = ForecastSelection(holding=make_holding(3, 60000), ladder=ladder, ladder_ref="tp")
    forecast = aggregate("p1", [stale], at=datetime(2024, 12, 1, tzinfo=timezone.utc))
    forecast_text = render_forecast(forecast)
    assert "Forecast for portfolio p1" in forecast_text
    assert "outdated holding" in forecast_text
