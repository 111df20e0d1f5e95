from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Sequence

from config import config
from db.db import init_db
from db.repositories import ForecastSnapshotRepository, HoldingRepository, TransactionRepository
from domain.errors import PlannerError, ValidationError
from domain.forecast import aggregate
from domain.ladder import ExitRule
from domain.rules import parse_rule_payload
from importers.csv_importer import load_transactions
from services.alert_monitor import AlertMonitor, default_alert_policy
from services.forecast_planner import ForecastPlanner
from services.holding_sync import HoldingSynchronizer
from utils.forecast_report import render_forecast, render_holdings, render_ladder

logger = logging.getLogger(__name__)


def run(
    csv_path: Path | None,
    *,
    owner_id: str,
    portfolio_id: str,
    ladder_refs: dict[str, str],
    custom_rules: dict[str, list[ExitRule]],
    prices: dict[str, Decimal],
    snapshot_name: str | None,
    database_url: str | None,
    reset: bool,
) -> None:
    settings = config()

    # Setup components
    session = init_db(database_url, reset=reset)
    transactions = TransactionRepository(session)
    holdings = HoldingRepository(session)
    synchronizer = HoldingSynchronizer(
        transactions=transactions, holdings=holdings, max_attempts=settings.recompute_max_attempts
    )
    planner = ForecastPlanner(holdings=holdings, snapshots=ForecastSnapshotRepository(session))

    # Ledger -> holdings
    if csv_path is not None:
        imported = transactions.create_many(load_transactions(csv_path, owner_id=owner_id, portfolio_id=portfolio_id))
        print(f"Imported {len(imported)} transactions from {csv_path}")
    synchronizer.sync_portfolio(portfolio_id, owner_id=owner_id)
    print(render_holdings(holdings.list_for_portfolio(portfolio_id)))

    # Ladders and alerts
    monitor = AlertMonitor(default_alert_policy(settings))
    selections = planner.selections(portfolio_id, ladder_refs=ladder_refs, prices=prices, custom_rules=custom_rules)
    for selection in selections:
        if selection.ladder is None:
            continue
        print(render_ladder(selection.ladder))
        if selection.current_price is not None:
            check = monitor.check(selection.ladder, selection.current_price)
            for trigger in check.fired:
                print(f"  {trigger.kind} alert at {trigger.trigger_price} via {', '.join(trigger.channel_hints)}")

    # Forecast
    forecast = aggregate(portfolio_id, selections)
    print(render_forecast(forecast))
    if snapshot_name:
        snapshot = planner.save(snapshot_name, forecast)
        print(f"Saved forecast snapshot {snapshot.name!r} ({snapshot.id})")


def _pairs(values: Sequence[str], option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for raw in values:
        symbol, sep, value = raw.partition("=")
        if not sep or not symbol.strip() or not value.strip():
            raise ValidationError(f"expected SYMBOL=VALUE, got {raw!r}", field=option, value=raw)
        pairs[symbol.strip().upper()] = value.strip()
    return pairs


def _prices(values: Sequence[str]) -> dict[str, Decimal]:
    prices: dict[str, Decimal] = {}
    for symbol, raw in _pairs(values, "price").items():
        try:
            prices[symbol] = Decimal(raw)
        except InvalidOperation as err:
            raise ValidationError(f"invalid price {raw!r}", field="price", value=raw) from err
    return prices


def _custom_rules(values: Sequence[str], ladder_refs: dict[str, str]) -> dict[str, list[ExitRule]]:
    custom: dict[str, list[ExitRule]] = {}
    for symbol, path in _pairs(values, "rules").items():
        ref = f"custom:{Path(path).name}"
        try:
            document = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as err:
            raise ValidationError(f"cannot read rules file {path}: {err}", field="rules", value=path) from err
        custom[ref] = parse_rule_payload(document)
        ladder_refs[symbol] = ref
    return custom


def main(argv: Sequence[str] | None = None) -> int:
    settings = config()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    parser = argparse.ArgumentParser(description="Replay a ledger into holdings and forecast take-profit ladders.")
    parser.add_argument("--csv", type=Path, default=None, help="ledger CSV to import before syncing")
    parser.add_argument("--owner", default="default")
    parser.add_argument("--portfolio", default="main")
    parser.add_argument("--ladder", action="append", default=[], metavar="SYMBOL=TEMPLATE")
    parser.add_argument("--rules", action="append", default=[], metavar="SYMBOL=RULES.json")
    parser.add_argument("--price", action="append", default=[], metavar="SYMBOL=PRICE")
    parser.add_argument("--save-forecast", default=None, metavar="NAME")
    parser.add_argument("--db", default=None, help="database URL, defaults to the configured one")
    parser.add_argument("--reset", action="store_true", help="drop and recreate tables first")
    args = parser.parse_args(argv)

    try:
        ladder_refs = _pairs(args.ladder, "ladder")
        custom_rules = _custom_rules(args.rules, ladder_refs)
        run(
            args.csv,
            owner_id=args.owner,
            portfolio_id=args.portfolio,
            ladder_refs=ladder_refs,
            custom_rules=custom_rules,
            prices=_prices(args.price),
            snapshot_name=args.save_forecast,
            database_url=args.db,
            reset=args.reset,
        )
    except PlannerError as err:
        logger.error("%s", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
