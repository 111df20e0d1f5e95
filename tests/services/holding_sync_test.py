from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from db.repositories import HoldingRepository, TransactionRepository
from domain.cost_basis import Holding
from domain.errors import ConcurrencyConflict, ValidationError
from domain.ledger import SliceKey, TransactionKind
from services.holding_sync import HoldingSynchronizer
from tests.helpers.ledger import OWNER, PORTFOLIO, make_holding, make_tx

K = TransactionKind
BTC = SliceKey(OWNER, "BTC", None)


class RacingTransactionRepository(TransactionRepository):
    """Sneaks in a write between the slice read and the pre-write check."""

    def __init__(self, session: Session, *, races: int) -> None:
        super().__init__(session)
        self.races = races

    def slice_fingerprint(self, key: SliceKey, *, portfolio_id: str | None = None) -> str:
        if self.races > 0:
            self.races -= 1
            self.create(make_tx(K.ACQUIRE, 1, 1000, portfolio_id=portfolio_id))
        return super().slice_fingerprint(key, portfolio_id=portfolio_id)


@pytest.fixture()
def synchronizer(transaction_repo: TransactionRepository, holding_repo: HoldingRepository) -> HoldingSynchronizer:
    return HoldingSynchronizer(transactions=transaction_repo, holdings=holding_repo)


def test_record_transaction_upserts_holding(synchronizer: HoldingSynchronizer, holding_repo: HoldingRepository) -> None:
    synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 30000))
    holding = synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 10000))

    assert holding.average_price == Decimal(20000)
    stored = holding_repo.get(PORTFOLIO, "BTC")
    assert stored is not None
    assert stored.quantity == Decimal(2)
    assert stored.invested_amount == Decimal(40000)
    assert len(holding_repo.list_for_portfolio(PORTFOLIO)) == 1


def test_record_transaction_rejects_other_portfolio(
    synchronizer: HoldingSynchronizer, transaction_repo: TransactionRepository
) -> None:
    with pytest.raises(ValidationError) as exc_info:
        synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 100, portfolio_id="other"))

    assert exc_info.value.field == "portfolio_id"
    assert transaction_repo.list_slice(BTC) == []


def test_delete_transaction_replays_slice(synchronizer: HoldingSynchronizer, holding_repo: HoldingRepository) -> None:
    first = make_tx(K.ACQUIRE, 1, 30000)
    second = make_tx(K.ACQUIRE, 1, 10000)
    synchronizer.record_transaction(PORTFOLIO, first)
    synchronizer.record_transaction(PORTFOLIO, second)

    holding = synchronizer.delete_transaction(second.id)

    assert holding is not None
    assert holding.quantity == Decimal(1)
    assert holding.average_price == Decimal(30000)

    assert synchronizer.delete_transaction(first.id) is not None
    assert holding_repo.get(PORTFOLIO, "BTC") is None


def test_delete_unknown_transaction_is_rejected(synchronizer: HoldingSynchronizer) -> None:
    with pytest.raises(ValidationError):
        synchronizer.delete_transaction(make_tx(K.ACQUIRE, 1, 1).id)


def test_sync_portfolio_matches_full_replay(
    synchronizer: HoldingSynchronizer, transaction_repo: TransactionRepository, holding_repo: HoldingRepository
) -> None:
    transaction_repo.create_many(
        [
            make_tx(K.ACQUIRE, 2, 40000, portfolio_id=PORTFOLIO),
            make_tx(K.ACQUIRE, 10, 15000, asset_symbol="ETH", portfolio_id=PORTFOLIO),
            make_tx(K.DISPOSE, 1, None, unit_price=30000, portfolio_id=PORTFOLIO),
            make_tx(K.ACQUIRE, 5, 500, asset_symbol="SOL", portfolio_id=PORTFOLIO),
            make_tx(K.DISPOSE, 5, 500, asset_symbol="SOL", portfolio_id=PORTFOLIO),
        ]
    )

    synced = synchronizer.sync_portfolio(PORTFOLIO)

    assert [h.asset_symbol for h in synced] == ["BTC", "ETH"]
    stored = {h.asset_symbol: h for h in holding_repo.list_for_portfolio(PORTFOLIO)}
    assert set(stored) == {"BTC", "ETH"}
    assert stored["BTC"].quantity == Decimal(1)
    assert stored["BTC"].invested_amount == Decimal(10000)


def test_sync_portfolio_prunes_orphaned_holdings(
    synchronizer: HoldingSynchronizer, holding_repo: HoldingRepository
) -> None:
    holding_repo.upsert(PORTFOLIO, make_holding(100, 10, asset_symbol="DOGE"), fingerprint="stale")
    synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 100))

    synchronizer.sync_portfolio(PORTFOLIO)

    assert [h.asset_symbol for h in holding_repo.list_for_portfolio(PORTFOLIO)] == ["BTC"]


def test_conflicting_write_is_retried(test_session: Session, holding_repo: HoldingRepository) -> None:
    racing = RacingTransactionRepository(test_session, races=1)
    synchronizer = HoldingSynchronizer(transactions=racing, holdings=holding_repo, max_attempts=3)

    holding = synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 3000))

    # The retried replay sees the sneaked-in acquisition too.
    assert holding.quantity == Decimal(2)
    assert holding.invested_amount == Decimal(4000)
    stored = holding_repo.get(PORTFOLIO, "BTC")
    assert stored is not None
    assert stored.quantity == Decimal(2)


def test_persistent_conflict_is_raised(test_session: Session, holding_repo: HoldingRepository) -> None:
    racing = RacingTransactionRepository(test_session, races=5)
    synchronizer = HoldingSynchronizer(transactions=racing, holdings=holding_repo, max_attempts=2)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        synchronizer.recompute_with_retry(PORTFOLIO, BTC)

    assert exc_info.value.slice_key == BTC
    assert exc_info.value.expected != exc_info.value.actual
    assert holding_repo.get(PORTFOLIO, "BTC") is None


class CountingHoldingRepository(HoldingRepository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)
        self.writes = 0

    def upsert(self, portfolio_id: str, holding: Holding, *, fingerprint: str) -> Holding | None:
        self.writes += 1
        return super().upsert(portfolio_id, holding, fingerprint=fingerprint)


def test_emptied_sub_account_slice_leaves_main_holding(
    synchronizer: HoldingSynchronizer, holding_repo: HoldingRepository
) -> None:
    synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 30000))
    ledger_buy = make_tx(K.ACQUIRE, 2, 50000, sub_account_id="ledger")
    synchronizer.record_transaction(PORTFOLIO, ledger_buy)

    emptied = synchronizer.delete_transaction(ledger_buy.id)

    assert emptied is not None
    assert emptied.is_empty
    assert emptied.sub_account_id == "ledger"
    assert holding_repo.get(PORTFOLIO, "BTC", "ledger") is None
    main = holding_repo.get(PORTFOLIO, "BTC")
    assert main is not None
    assert main.quantity == Decimal(1)
    assert main.invested_amount == Decimal(30000)


def test_unchanged_slice_is_not_rewritten(test_session: Session, transaction_repo: TransactionRepository) -> None:
    holdings = CountingHoldingRepository(test_session)
    synchronizer = HoldingSynchronizer(transactions=transaction_repo, holdings=holdings)
    transaction_repo.create(make_tx(K.ACQUIRE, 1, 30000, portfolio_id=PORTFOLIO))

    first = synchronizer.recompute(PORTFOLIO, BTC)
    second = synchronizer.recompute(PORTFOLIO, BTC)

    assert holdings.writes == 1
    assert first.model_dump() == second.model_dump()

    synchronizer.record_transaction(PORTFOLIO, make_tx(K.ACQUIRE, 1, 10000))
    assert holdings.writes == 2
    assert holdings.fingerprint(PORTFOLIO, "BTC") == transaction_repo.slice_fingerprint(BTC, portfolio_id=PORTFOLIO)
