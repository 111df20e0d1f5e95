# flake8: noqa E402
# Run via: uv run scripts/recalculate_holdings.py --db sqlite:///exit_planner.db
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from config import config
from db.db import init_db
from db.repositories import HoldingRepository, TransactionRepository
from services.holding_sync import HoldingSynchronizer
from utils.forecast_report import render_holdings


def run(database_url: str | None) -> None:
    session = init_db(database_url)
    transactions = TransactionRepository(session)
    holdings = HoldingRepository(session)
    synchronizer = HoldingSynchronizer(
        transactions=transactions,
        holdings=holdings,
        max_attempts=config().recompute_max_attempts,
    )

    portfolio_ids = transactions.list_portfolios()
    print(f"Portfolios found: {len(portfolio_ids)}")
    for portfolio_id in portfolio_ids:
        synced = synchronizer.sync_portfolio(portfolio_id)
        print(f"\nPortfolio {portfolio_id}: {len(synced)} holdings")
        print(render_holdings(holdings.list_for_portfolio(portfolio_id)))


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay every portfolio ledger and rewrite stored holdings.")
    parser.add_argument("--db", default=None, help="database URL, defaults to the configured one")
    args = parser.parse_args()
    run(args.db)


if __name__ == "__main__":
    main()
