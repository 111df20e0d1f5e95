from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class TransactionOrm(Base):
    __tablename__ = "transactions"

    # Insertion sequence, breaks ties between equal timestamps on replay.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    asset_symbol: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sub_account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    portfolio_id: Mapped[str | None] = mapped_column(String, nullable=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    amount_invested: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)


class HoldingOrm(Base):
    __tablename__ = "holdings"
    __table_args__ = (UniqueConstraint("portfolio_id", "asset_symbol", "sub_account_key"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    portfolio_id: Mapped[str] = mapped_column(String, nullable=False)
    asset_symbol: Mapped[str] = mapped_column(String, nullable=False)
    # "" stands for "no sub-account" so the unique constraint also covers it.
    sub_account_key: Mapped[str] = mapped_column(String, nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    invested_amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    average_price: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ledger_fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ForecastSnapshotOrm(Base):
    __tablename__ = "forecast_snapshots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    portfolio_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applied_ladders: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    forecast: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
