from __future__ import annotations

import logging
from uuid import UUID

from db.repositories import HoldingRepository, TransactionRepository, fingerprint_of
from domain.cost_basis import CostBasisEngine, Holding
from domain.errors import ConcurrencyConflict, ValidationError
from domain.ledger import SliceKey, Transaction

logger = logging.getLogger(__name__)


class HoldingSynchronizer:
    """Keeps the stored holdings projection in line with the ledger.

    Every change replays the whole slice and replaces the stored holding. A
    write that happened between reading the slice and storing the result is
    reported as ConcurrencyConflict and retried by `recompute_with_retry`.
    """

    def __init__(
        self,
        *,
        transactions: TransactionRepository,
        holdings: HoldingRepository,
        engine: CostBasisEngine | None = None,
        max_attempts: int = 3,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._transactions = transactions
        self._holdings = holdings
        self._engine = engine or CostBasisEngine()
        self._max_attempts = max_attempts

    def recompute(self, portfolio_id: str, key: SliceKey) -> Holding:
        ledger = self._transactions.list_slice(key, portfolio_id=portfolio_id)
        expected = fingerprint_of(ledger)
        holding = self._engine.compute_holding(
            ledger, asset_symbol=key.asset_symbol, sub_account_id=key.sub_account_id
        )

        actual = self._transactions.slice_fingerprint(key, portfolio_id=portfolio_id)
        if actual != expected:
            raise ConcurrencyConflict(
                f"ledger slice {key} changed while recomputing", slice_key=key, expected=expected, actual=actual
            )

        if self._holdings.fingerprint(portfolio_id, key.asset_symbol, key.sub_account_id) == actual:
            logger.debug("Stored holding for %s already reflects the ledger", key)
            return holding
        self._holdings.upsert(portfolio_id, holding, fingerprint=actual)
        return holding

    def recompute_with_retry(self, portfolio_id: str, key: SliceKey) -> Holding:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self.recompute(portfolio_id, key)
            except ConcurrencyConflict:
                if attempt == self._max_attempts:
                    raise
                logger.warning("Conflicting ledger write on %s, retrying (%d/%d)", key, attempt, self._max_attempts)
        raise AssertionError("unreachable")

    def record_transaction(self, portfolio_id: str, transaction: Transaction) -> Holding:
        if transaction.portfolio_id is None:
            transaction = transaction.model_copy(update={"portfolio_id": portfolio_id})
        elif transaction.portfolio_id != portfolio_id:
            raise ValidationError(
                f"transaction belongs to portfolio {transaction.portfolio_id}",
                field="portfolio_id",
                value=transaction.portfolio_id,
            )

        self._transactions.create(transaction)
        return self.recompute_with_retry(portfolio_id, transaction.slice_key)

    def delete_transaction(self, transaction_id: UUID) -> Holding | None:
        deleted = self._transactions.delete(transaction_id)
        if deleted is None:
            raise ValidationError(f"unknown transaction {transaction_id}", field="id", value=transaction_id)
        if deleted.portfolio_id is None:
            return None
        return self.recompute_with_retry(deleted.portfolio_id, deleted.slice_key)

    def sync_portfolio(self, portfolio_id: str, *, owner_id: str | None = None) -> list[Holding]:
        keys = self._transactions.list_slices(owner_id=owner_id, portfolio_id=portfolio_id)
        holdings = [self.recompute_with_retry(portfolio_id, key) for key in keys]
        if owner_id is None:
            pruned = self._holdings.prune(portfolio_id, keep={(key.asset_symbol, key.sub_account_id) for key in keys})
            if pruned:
                logger.info("Removed %d holdings with no remaining ledger entries", pruned)
        logger.info("Synced %d ledger slices for portfolio %s", len(keys), portfolio_id)
        return [holding for holding in holdings if not holding.is_empty]
