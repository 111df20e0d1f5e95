from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import models
from domain.cost_basis import Holding
from domain.forecast import Forecast, ForecastSnapshot
from domain.ledger import SliceKey, Transaction, TransactionKind


def fingerprint_of(transactions: Iterable[Transaction]) -> str:
    """Digest of a slice membership, changes with every append or delete."""
    digest = hashlib.sha256()
    for tx in transactions:
        digest.update(tx.id.bytes)
    return digest.hexdigest()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransactionRepository:
    """Append/delete access to the ledger. Rows are never updated."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, transaction: Transaction) -> Transaction:
        orm_tx = self._to_orm(transaction)
        self._session.add(orm_tx)
        self._session.commit()
        self._session.refresh(orm_tx)
        return self._to_domain(orm_tx)

    def create_many(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        orm_txs = [self._to_orm(tx) for tx in transactions]
        self._session.add_all(orm_txs)
        self._session.commit()
        return [self._to_domain(orm_tx) for orm_tx in orm_txs]

    def get(self, transaction_id: UUID) -> Transaction | None:
        orm_tx = self._session.scalar(select(models.TransactionOrm).where(models.TransactionOrm.id == transaction_id))
        if orm_tx is None:
            return None
        return self._to_domain(orm_tx)

    def delete(self, transaction_id: UUID) -> Transaction | None:
        orm_tx = self._session.scalar(select(models.TransactionOrm).where(models.TransactionOrm.id == transaction_id))
        if orm_tx is None:
            return None
        deleted = self._to_domain(orm_tx)
        self._session.delete(orm_tx)
        self._session.commit()
        return deleted

    def list_slice(self, key: SliceKey, *, portfolio_id: str | None = None) -> list[Transaction]:
        """Transactions of one slice in replay order (timestamp, then insertion)."""
        stmt = (
            select(models.TransactionOrm)
            .where(models.TransactionOrm.owner_id == key.owner_id)
            .where(models.TransactionOrm.asset_symbol == key.asset_symbol)
        )
        if key.sub_account_id is None:
            stmt = stmt.where(models.TransactionOrm.sub_account_id.is_(None))
        else:
            stmt = stmt.where(models.TransactionOrm.sub_account_id == key.sub_account_id)
        if portfolio_id is not None:
            stmt = stmt.where(models.TransactionOrm.portfolio_id == portfolio_id)
        stmt = stmt.order_by(models.TransactionOrm.occurred_at.asc(), models.TransactionOrm.seq.asc())
        return [self._to_domain(orm_tx) for orm_tx in self._session.scalars(stmt)]

    def list_slices(self, *, owner_id: str | None = None, portfolio_id: str | None = None) -> list[SliceKey]:
        stmt = select(
            models.TransactionOrm.owner_id,
            models.TransactionOrm.asset_symbol,
            models.TransactionOrm.sub_account_id,
        ).distinct()
        if owner_id is not None:
            stmt = stmt.where(models.TransactionOrm.owner_id == owner_id)
        if portfolio_id is not None:
            stmt = stmt.where(models.TransactionOrm.portfolio_id == portfolio_id)
        keys = [SliceKey(*row) for row in self._session.execute(stmt)]
        return sorted(keys, key=lambda key: (key.owner_id, key.asset_symbol, key.sub_account_id or ""))

    def list_portfolios(self) -> list[str]:
        stmt = (
            select(models.TransactionOrm.portfolio_id)
            .where(models.TransactionOrm.portfolio_id.is_not(None))
            .distinct()
            .order_by(models.TransactionOrm.portfolio_id.asc())
        )
        return list(self._session.scalars(stmt))

    def slice_fingerprint(self, key: SliceKey, *, portfolio_id: str | None = None) -> str:
        return fingerprint_of(self.list_slice(key, portfolio_id=portfolio_id))

    @staticmethod
    def _to_orm(tx: Transaction) -> models.TransactionOrm:
        return models.TransactionOrm(
            id=tx.id,
            owner_id=tx.owner_id,
            asset_symbol=tx.asset_symbol,
            sub_account_id=tx.sub_account_id,
            portfolio_id=tx.portfolio_id,
            kind=tx.kind.value,
            quantity=tx.quantity,
            amount_invested=tx.amount_invested,
            unit_price=tx.unit_price,
            occurred_at=_as_utc(tx.occurred_at),
            notes=tx.notes,
        )

    @staticmethod
    def _to_domain(orm_tx: models.TransactionOrm) -> Transaction:
        return Transaction(
            id=orm_tx.id,
            owner_id=orm_tx.owner_id,
            asset_symbol=orm_tx.asset_symbol,
            sub_account_id=orm_tx.sub_account_id,
            portfolio_id=orm_tx.portfolio_id,
            kind=TransactionKind(orm_tx.kind),
            quantity=orm_tx.quantity,
            amount_invested=orm_tx.amount_invested,
            unit_price=orm_tx.unit_price,
            occurred_at=_as_utc(orm_tx.occurred_at),
            notes=orm_tx.notes,
        )


class HoldingRepository:
    """Current holdings projection, one row per (portfolio, asset, sub-account)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def upsert(self, portfolio_id: str, holding: Holding, *, fingerprint: str) -> Holding | None:
        """Replace the stored holding. Empty holdings are removed instead of stored."""
        orm_holding = self._find(portfolio_id, holding.asset_symbol, holding.sub_account_id)

        if holding.is_empty:
            if orm_holding is not None:
                self._session.delete(orm_holding)
                self._session.commit()
            return None

        if orm_holding is None:
            orm_holding = models.HoldingOrm(
                portfolio_id=portfolio_id,
                asset_symbol=holding.asset_symbol,
                sub_account_key=holding.sub_account_id or "",
            )
            self._session.add(orm_holding)

        orm_holding.quantity = holding.quantity
        orm_holding.invested_amount = holding.invested_amount
        orm_holding.average_price = holding.average_price
        orm_holding.transaction_count = holding.transaction_count
        orm_holding.ledger_fingerprint = fingerprint
        orm_holding.updated_at = datetime.now(timezone.utc)
        self._session.commit()
        self._session.refresh(orm_holding)
        return self._to_domain(orm_holding)

    def get(self, portfolio_id: str, asset_symbol: str, sub_account_id: str | None = None) -> Holding | None:
        orm_holding = self._find(portfolio_id, asset_symbol, sub_account_id)
        if orm_holding is None:
            return None
        return self._to_domain(orm_holding)

    def fingerprint(self, portfolio_id: str, asset_symbol: str, sub_account_id: str | None = None) -> str | None:
        orm_holding = self._find(portfolio_id, asset_symbol, sub_account_id)
        if orm_holding is None:
            return None
        return orm_holding.ledger_fingerprint

    def list_for_portfolio(self, portfolio_id: str) -> list[Holding]:
        stmt = (
            select(models.HoldingOrm)
            .where(models.HoldingOrm.portfolio_id == portfolio_id)
            .order_by(models.HoldingOrm.asset_symbol.asc(), models.HoldingOrm.sub_account_key.asc())
        )
        return [self._to_domain(orm_holding) for orm_holding in self._session.scalars(stmt)]

    def prune(self, portfolio_id: str, *, keep: set[tuple[str, str | None]]) -> int:
        """Drop stored holdings whose (asset, sub-account) is not in `keep`."""
        stmt = select(models.HoldingOrm).where(models.HoldingOrm.portfolio_id == portfolio_id)
        removed = 0
        for orm_holding in self._session.scalars(stmt).all():
            if (orm_holding.asset_symbol, orm_holding.sub_account_key or None) not in keep:
                self._session.delete(orm_holding)
                removed += 1
        self._session.commit()
        return removed

    def _find(self, portfolio_id: str, asset_symbol: str, sub_account_id: str | None) -> models.HoldingOrm | None:
        stmt = (
            select(models.HoldingOrm)
            .where(models.HoldingOrm.portfolio_id == portfolio_id)
            .where(models.HoldingOrm.asset_symbol == asset_symbol)
            .where(models.HoldingOrm.sub_account_key == (sub_account_id or ""))
        )
        return self._session.scalar(stmt)

    @staticmethod
    def _to_domain(orm_holding: models.HoldingOrm) -> Holding:
        return Holding(
            asset_symbol=orm_holding.asset_symbol,
            quantity=orm_holding.quantity,
            invested_amount=orm_holding.invested_amount,
            sub_account_id=orm_holding.sub_account_key or None,
            transaction_count=orm_holding.transaction_count,
        )


class ForecastSnapshotRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, snapshot: ForecastSnapshot) -> ForecastSnapshot:
        orm_snapshot = models.ForecastSnapshotOrm(
            id=snapshot.id,
            portfolio_id=snapshot.portfolio_id,
            name=snapshot.name,
            created_at=_as_utc(snapshot.created_at),
            applied_ladders=dict(snapshot.applied_ladders),
            forecast=snapshot.forecast.model_dump(mode="json"),
        )
        self._session.add(orm_snapshot)
        self._session.commit()
        self._session.refresh(orm_snapshot)
        return self._to_domain(orm_snapshot)

    def get(self, snapshot_id: UUID) -> ForecastSnapshot | None:
        orm_snapshot = self._session.get(models.ForecastSnapshotOrm, snapshot_id)
        if orm_snapshot is None:
            return None
        return self._to_domain(orm_snapshot)

    def list_for_portfolio(self, portfolio_id: str) -> list[ForecastSnapshot]:
        stmt = (
            select(models.ForecastSnapshotOrm)
            .where(models.ForecastSnapshotOrm.portfolio_id == portfolio_id)
            .order_by(models.ForecastSnapshotOrm.created_at.asc())
        )
        return [self._to_domain(orm_snapshot) for orm_snapshot in self._session.scalars(stmt)]

    @staticmethod
    def _to_domain(orm_snapshot: models.ForecastSnapshotOrm) -> ForecastSnapshot:
        return ForecastSnapshot(
            id=orm_snapshot.id,
            name=orm_snapshot.name,
            portfolio_id=orm_snapshot.portfolio_id,
            created_at=_as_utc(orm_snapshot.created_at),
            applied_ladders=orm_snapshot.applied_ladders,
            forecast=Forecast.model_validate(orm_snapshot.forecast),
        )
