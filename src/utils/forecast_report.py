from __future__ import annotations

from typing import Sequence

from domain.cost_basis import Holding
from domain.forecast import Forecast
from domain.ladder import ProfitLadder, summarize_ladder

from .formatting import format_currency, format_decimal, format_percent, render_table


def render_holdings(holdings: Sequence[Holding]) -> str:
    if not holdings:
        return "Holdings:\n  (empty)"
    rows = [
        (
            holding.asset_symbol if holding.sub_account_id is None else f"{holding.asset_symbol}/{holding.sub_account_id}",
            format_decimal(holding.quantity),
            format_currency(holding.invested_amount),
            format_currency(holding.average_price),
        )
        for holding in holdings
    ]
    return "Holdings:\n" + render_table(("Asset", "Quantity", "Invested", "Avg price"), rows)


def render_ladder(ladder: ProfitLadder) -> str:
    rows = [
        (
            f"TP{step.order}",
            format_currency(step.derived_target_price),
            f"{format_decimal(step.sell_percentage)}%",
            format_decimal(step.derived_sell_quantity),
            format_currency(step.projected_proceeds),
            step.state.value,
        )
        for step in ladder.steps
    ]
    summary = summarize_ladder(ladder)
    lines = [
        f"Ladder for {ladder.asset_symbol} (basis {format_decimal(ladder.basis.quantity)} @ "
        f"{format_currency(ladder.basis.average_price)}):",
        render_table(("Step", "Target", "Sell %", "Quantity", "Proceeds", "State"), rows),
        f"  Remaining tokens:  {format_decimal(summary.remaining_quantity)}",
        f"  Estimated profit:  {format_currency(summary.estimated_profit)}",
    ]
    return "\n".join(lines)


def render_forecast(forecast: Forecast) -> str:
    rows = [
        (
            symbol,
            outcome.ladder_ref or "-",
            format_currency(outcome.invested),
            format_currency(outcome.projected_proceeds),
            format_currency(outcome.remaining_value),
            format_currency(outcome.profit),
            format_percent(outcome.return_percent) + (" *" if outcome.stale else ""),
        )
        for symbol, outcome in forecast.per_asset.items()
    ]
    lines = [
        f"Forecast for portfolio {forecast.portfolio_id} as of {forecast.computed_at.isoformat()}:",
        render_table(("Asset", "Ladder", "Invested", "Collected", "Remaining", "Profit", "Return"), rows),
        f"  Total invested:    {format_currency(forecast.total_invested)}",
        f"  Total collected:   {format_currency(forecast.total_collected)}",
        f"  Remaining value:   {format_currency(forecast.remaining_value)}",
        f"  Projected value:   {format_currency(forecast.total_projected_value)}",
        f"  Profit:            {format_currency(forecast.total_profit)} ({format_percent(forecast.return_percent)})",
    ]
    if any(outcome.stale for outcome in forecast.per_asset.values()):
        lines.append("  * ladder built against an outdated holding, rebuild it")
    return "\n".join(lines)
