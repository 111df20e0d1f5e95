from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, NamedTuple, NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

AssetSymbol = NewType("AssetSymbol", str)
OwnerId = NewType("OwnerId", str)
SubAccountId = NewType("SubAccountId", str)
PortfolioId = NewType("PortfolioId", str)
TransactionId = NewType("TransactionId", UUID)


class TransactionKind(StrEnum):
    ACQUIRE = "ACQUIRE"
    DISPOSE = "DISPOSE"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    STAKE = "STAKE"
    REWARD = "REWARD"


INCREASING_KINDS = frozenset(
    {TransactionKind.ACQUIRE, TransactionKind.TRANSFER_IN, TransactionKind.STAKE, TransactionKind.REWARD}
)
DECREASING_KINDS = frozenset({TransactionKind.DISPOSE, TransactionKind.TRANSFER_OUT})


class SliceKey(NamedTuple):
    """Scope of one replayable ledger slice."""

    owner_id: str
    asset_symbol: str
    sub_account_id: str | None = None


class Transaction(BaseModel):
    """A single recorded economic event. Never mutated once recorded.

    `amount_invested` is optional: when it is missing (or zero) a reduction
    falls back to `quantity * unit_price` as its cost basis.
    """

    model_config = ConfigDict(frozen=True)

    id: TransactionId = Field(default_factory=lambda: TransactionId(uuid4()))
    asset_symbol: AssetSymbol
    kind: TransactionKind
    quantity: Decimal = Field(ge=0)
    amount_invested: Decimal | None = Field(default=None, ge=0)
    unit_price: Decimal = Field(default=Decimal(0), ge=0)
    occurred_at: datetime
    owner_id: OwnerId
    sub_account_id: SubAccountId | None = None
    portfolio_id: PortfolioId | None = None
    notes: str | None = None

    @field_validator("asset_symbol", mode="before")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("asset_symbol must be non-empty")
        return value.strip().upper()

    @field_validator("owner_id")
    @classmethod
    def _validate_owner(cls, value: str) -> str:
        if not value:
            raise ValueError("owner_id must be non-empty")
        return value

    @field_validator("occurred_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def slice_key(self) -> SliceKey:
        return SliceKey(self.owner_id, self.asset_symbol, self.sub_account_id)


def parse_transaction(payload: dict[str, Any]) -> Transaction:
    """Validate an ingestion payload, reporting the first offending field."""
    try:
        return Transaction.model_validate(payload)
    except PydanticValidationError as err:
        raise as_validation_error(err) from err


def as_validation_error(err: PydanticValidationError, *, prefix: str | None = None) -> ValidationError:
    first = err.errors()[0]
    field = ".".join(str(part) for part in (prefix, *first["loc"]) if part is not None) or None
    return ValidationError(first["msg"], field=field, value=first.get("input"))
