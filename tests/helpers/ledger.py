from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from random import Random

from domain.cost_basis import Holding
from domain.ledger import Transaction, TransactionKind

OWNER = "owner-1"
PORTFOLIO = "portfolio-1"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class TimeGenerator:
    """Strictly increasing timestamps with random 5-60s gaps."""

    _rng: Random = field(default_factory=lambda: Random(7))
    _start: datetime = BASE_TIME
    _current: datetime = BASE_TIME

    def __call__(self) -> datetime:
        self._current += timedelta(seconds=self._rng.randint(5, 60))
        return self._current

    def next(self) -> datetime:
        return self()

    def reset(self) -> None:
        self._rng = Random(7)
        self._current = self._start


DEFAULT_TIME_GEN = TimeGenerator()


def make_tx(
    kind: TransactionKind,
    quantity: Decimal | int | str,
    amount_invested: Decimal | int | str | None = None,
    *,
    asset_symbol: str = "BTC",
    unit_price: Decimal | int | str = 0,
    occurred_at: datetime | None = None,
    owner_id: str = OWNER,
    sub_account_id: str | None = None,
    portfolio_id: str | None = None,
) -> Transaction:
    return Transaction(
        asset_symbol=asset_symbol,
        kind=kind,
        quantity=Decimal(quantity),
        amount_invested=None if amount_invested is None else Decimal(amount_invested),
        unit_price=Decimal(unit_price),
        occurred_at=occurred_at or DEFAULT_TIME_GEN.next(),
        owner_id=owner_id,
        sub_account_id=sub_account_id,
        portfolio_id=portfolio_id,
    )


def make_holding(
    quantity: Decimal | int | str, invested: Decimal | int | str, *, asset_symbol: str = "BTC"
) -> Holding:
    return Holding(asset_symbol=asset_symbol, quantity=Decimal(quantity), invested_amount=Decimal(invested))
