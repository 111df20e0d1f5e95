from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Sequence

from db.repositories import ForecastSnapshotRepository, HoldingRepository
from domain.cost_basis import ZERO, Holding
from domain.forecast import Forecast, ForecastSelection, ForecastSnapshot, aggregate
from domain.ladder import ExitRule, build_ladder
from domain.rules import template_rules

logger = logging.getLogger(__name__)


def merge_by_symbol(holdings: Sequence[Holding]) -> list[Holding]:
    """Collapse sub-account holdings into one position per asset."""
    grouped: dict[str, list[Holding]] = defaultdict(list)
    for holding in holdings:
        grouped[holding.asset_symbol].append(holding)

    merged: list[Holding] = []
    for symbol in sorted(grouped):
        parts = grouped[symbol]
        if len(parts) == 1:
            merged.append(parts[0])
            continue
        merged.append(
            Holding(
                asset_symbol=symbol,
                quantity=sum((part.quantity for part in parts), start=ZERO),
                invested_amount=sum((part.invested_amount for part in parts), start=ZERO),
                transaction_count=sum(part.transaction_count for part in parts),
            )
        )
    return merged


class ForecastPlanner:
    """Builds forecasts for a stored portfolio.

    `ladder_refs` maps an asset symbol to a ladder template name or to a key of
    `custom_rules`. Assets without a ref are valued without a ladder.
    """

    def __init__(self, *, holdings: HoldingRepository, snapshots: ForecastSnapshotRepository) -> None:
        self._holdings = holdings
        self._snapshots = snapshots

    def selections(
        self,
        portfolio_id: str,
        *,
        ladder_refs: Mapping[str, str],
        prices: Mapping[str, Decimal],
        custom_rules: Mapping[str, Sequence[ExitRule]] | None = None,
    ) -> list[ForecastSelection]:
        custom_rules = custom_rules or {}
        selections: list[ForecastSelection] = []
        for holding in merge_by_symbol(self._holdings.list_for_portfolio(portfolio_id)):
            ref = ladder_refs.get(holding.asset_symbol)
            ladder = None
            if ref is not None:
                rules = custom_rules[ref] if ref in custom_rules else template_rules(ref)
                ladder = build_ladder(holding, rules)

            price = prices.get(holding.asset_symbol)
            if price is None:
                logger.info("No quote for %s, valuing remaining tokens at average price", holding.asset_symbol)
            selections.append(ForecastSelection(holding=holding, ladder=ladder, current_price=price, ladder_ref=ref))
        return selections

    def forecast(
        self,
        portfolio_id: str,
        *,
        ladder_refs: Mapping[str, str],
        prices: Mapping[str, Decimal],
        custom_rules: Mapping[str, Sequence[ExitRule]] | None = None,
        at: datetime | None = None,
    ) -> Forecast:
        selections = self.selections(portfolio_id, ladder_refs=ladder_refs, prices=prices, custom_rules=custom_rules)
        return aggregate(portfolio_id, selections, at=at)

    def save(self, name: str, forecast: Forecast) -> ForecastSnapshot:
        snapshot = self._snapshots.save(ForecastSnapshot.of(name, forecast))
        logger.info("Saved forecast %r for portfolio %s", snapshot.name, snapshot.portfolio_id)
        return snapshot
