from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .cost_basis import ZERO, Holding
from .errors import ValidationError
from .ladder import HUNDRED, ProfitLadder

logger = logging.getLogger(__name__)


class ForecastSelection(BaseModel):
    """One asset of a forecast request: its holding and the ladder chosen for it.

    Without a ladder the whole position is valued at the current price. Without a
    current price the holding's average price stands in for it.
    """

    model_config = ConfigDict(frozen=True)

    holding: Holding
    ladder: ProfitLadder | None = None
    current_price: Decimal | None = Field(default=None, ge=0)
    ladder_ref: str | None = None

    @property
    def valuation_price(self) -> Decimal:
        if self.current_price is not None:
            return self.current_price
        return self.holding.average_price


class AssetOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_symbol: str
    ladder_ref: str | None
    invested: Decimal
    projected_proceeds: Decimal
    remaining_quantity: Decimal
    remaining_value: Decimal
    projected_value: Decimal
    profit: Decimal
    return_percent: Decimal
    stale: bool = False


class Forecast(BaseModel):
    """Point-in-time projection. Never updated in place, recompute instead."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    per_asset: dict[str, AssetOutcome]
    total_invested: Decimal
    total_collected: Decimal
    remaining_value: Decimal
    total_projected_value: Decimal
    total_profit: Decimal
    return_percent: Decimal
    computed_at: datetime

    @property
    def token_count(self) -> int:
        return len(self.per_asset)


def asset_outcome(selection: ForecastSelection) -> AssetOutcome:
    holding = selection.holding
    ladder = selection.ladder
    stale = False

    if ladder is None:
        proceeds = ZERO
        remaining = holding.quantity
    else:
        warning = ladder.staleness(holding)
        if warning is not None:
            stale = True
            logger.warning("Forecast uses a stale ladder: %s", warning)
        proceeds = ladder.projected_proceeds
        remaining = ladder.remaining_quantity

    remaining_value = remaining * selection.valuation_price
    projected_value = remaining_value + proceeds
    profit = projected_value - holding.invested_amount
    return AssetOutcome(
        asset_symbol=holding.asset_symbol,
        ladder_ref=selection.ladder_ref,
        invested=holding.invested_amount,
        projected_proceeds=proceeds,
        remaining_quantity=remaining,
        remaining_value=remaining_value,
        projected_value=projected_value,
        profit=profit,
        return_percent=_return_percent(profit, holding.invested_amount),
        stale=stale,
    )


def aggregate(
    portfolio_id: str,
    selections: Iterable[ForecastSelection],
    *,
    at: datetime | None = None,
) -> Forecast:
    outcomes: dict[str, AssetOutcome] = {}
    for selection in selections:
        outcome = asset_outcome(selection)
        if outcome.asset_symbol in outcomes:
            raise ValidationError(
                f"asset {outcome.asset_symbol} selected more than once",
                field="asset_symbol",
                value=outcome.asset_symbol,
            )
        outcomes[outcome.asset_symbol] = outcome

    per_asset = {symbol: outcomes[symbol] for symbol in sorted(outcomes)}
    total_invested = sum((o.invested for o in per_asset.values()), start=ZERO)
    total_collected = sum((o.projected_proceeds for o in per_asset.values()), start=ZERO)
    remaining_value = sum((o.remaining_value for o in per_asset.values()), start=ZERO)
    total_projected_value = sum((o.projected_value for o in per_asset.values()), start=ZERO)
    total_profit = total_projected_value - total_invested

    forecast = Forecast(
        portfolio_id=portfolio_id,
        per_asset=per_asset,
        total_invested=total_invested,
        total_collected=total_collected,
        remaining_value=remaining_value,
        total_projected_value=total_projected_value,
        total_profit=total_profit,
        return_percent=_return_percent(total_profit, total_invested),
        computed_at=at or datetime.now(timezone.utc),
    )
    logger.debug(
        "Forecast for portfolio %s over %d assets: invested=%s projected=%s",
        portfolio_id,
        forecast.token_count,
        total_invested,
        total_projected_value,
    )
    return forecast


def _return_percent(profit: Decimal, invested: Decimal) -> Decimal:
    if invested > 0:
        return profit / invested * HUNDRED
    return ZERO


class ForecastSnapshot(BaseModel):
    """A forecast saved under a name for later comparison."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    portfolio_id: str
    created_at: datetime
    applied_ladders: dict[str, str | None]
    forecast: Forecast

    @classmethod
    def of(cls, name: str, forecast: Forecast, *, created_at: datetime | None = None) -> ForecastSnapshot:
        if not name.strip():
            raise ValidationError("snapshot name must be non-empty", field="name", value=name)
        return cls(
            name=name.strip(),
            portfolio_id=forecast.portfolio_id,
            created_at=created_at or datetime.now(timezone.utc),
            applied_ladders={symbol: outcome.ladder_ref for symbol, outcome in forecast.per_asset.items()},
            forecast=forecast,
        )
