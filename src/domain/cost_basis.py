from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, computed_field

from .errors import InvariantViolation, ValidationError
from .ledger import DECREASING_KINDS, INCREASING_KINDS, SliceKey, Transaction, TransactionKind

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


class Holding(BaseModel):
    """Current position derived by replaying one ledger slice."""

    model_config = ConfigDict(frozen=True)

    asset_symbol: str
    quantity: Decimal = ZERO
    invested_amount: Decimal = ZERO
    sub_account_id: str | None = None
    transaction_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_price(self) -> Decimal:
        if self.quantity > 0:
            return self.invested_amount / self.quantity
        return ZERO

    @property
    def is_empty(self) -> bool:
        return self.quantity == 0


class CostBasisEngine:
    """Replay a ledger slice into a Holding using average-cost accounting.

    Reductions (DISPOSE, TRANSFER_OUT) lower the invested amount by the
    transaction's own `amount_invested`, or by `quantity * unit_price` when
    that is missing or zero. The result is path dependent, so the replay
    order (occurred_at, then insertion order) matters.
    """

    def compute_holding(
        self,
        transactions: Iterable[Transaction],
        *,
        asset_symbol: str | None = None,
        sub_account_id: str | None = None,
    ) -> Holding:
        """`asset_symbol` and `sub_account_id` name the slice when it has no transactions left."""
        ordered = self._ordered(transactions)
        for tx in ordered:
            self._validate(tx)

        symbols = {tx.asset_symbol for tx in ordered}
        if asset_symbol is not None:
            symbols.add(asset_symbol.strip().upper())
        if not symbols:
            raise ValidationError("no transactions and no asset symbol given", field="asset_symbol")
        if len(symbols) > 1:
            raise ValidationError(f"slice mixes assets {sorted(symbols)}", field="asset_symbol", value=sorted(symbols))

        owners = {tx.owner_id for tx in ordered}
        if len(owners) > 1:
            raise ValidationError("slice mixes owners", field="owner_id", value=sorted(owners))

        sub_accounts = {tx.sub_account_id for tx in ordered}
        if not ordered or sub_account_id is not None:
            sub_accounts.add(sub_account_id)
        if len(sub_accounts) > 1:
            raise ValidationError("slice mixes sub-accounts", field="sub_account_id", value=sorted(map(str, sub_accounts)))

        (symbol,) = symbols
        quantity = ZERO
        invested = ZERO
        for tx in ordered:
            if tx.kind in INCREASING_KINDS:
                quantity += tx.quantity
                invested += tx.amount_invested or ZERO
            else:
                reduction = tx.amount_invested or tx.quantity * tx.unit_price
                quantity = max(ZERO, quantity - tx.quantity)
                invested = max(ZERO, invested - reduction)

            if quantity < 0 or invested < 0:
                raise InvariantViolation(
                    f"negative position for {symbol} after transaction {tx.id}: "
                    f"quantity={quantity} invested={invested}",
                    asset_symbol=symbol,
                )

        holding = Holding(
            asset_symbol=symbol,
            quantity=quantity,
            invested_amount=invested,
            sub_account_id=next(iter(sub_accounts), None),
            transaction_count=len(ordered),
        )
        logger.debug(
            "Replayed %d transactions for %s: quantity=%s invested=%s average=%s",
            len(ordered),
            symbol,
            holding.quantity,
            holding.invested_amount,
            holding.average_price,
        )
        return holding

    def compute_holdings(self, transactions: Iterable[Transaction]) -> dict[SliceKey, Holding]:
        """Split a whole ledger into slices and replay each of them."""
        slices: dict[SliceKey, list[Transaction]] = defaultdict(list)
        for tx in transactions:
            slices[tx.slice_key].append(tx)
        return {key: self.compute_holding(slices[key]) for key in sorted(slices, key=_key_sort)}

    @staticmethod
    def _ordered(transactions: Iterable[Transaction]) -> Sequence[Transaction]:
        # sorted() is stable, ties keep ledger insertion order
        return sorted(transactions, key=lambda tx: tx.occurred_at)

    @staticmethod
    def _validate(tx: Transaction) -> None:
        try:
            kind = TransactionKind(tx.kind)
        except ValueError as err:
            raise ValidationError(f"unknown transaction kind {tx.kind!r}", field="kind", value=tx.kind) from err
        if kind not in INCREASING_KINDS and kind not in DECREASING_KINDS:
            raise ValidationError(f"unsupported transaction kind {kind}", field="kind", value=kind)
        if tx.quantity < 0:
            raise ValidationError("quantity must be >= 0", field="quantity", value=tx.quantity)
        if tx.amount_invested is not None and tx.amount_invested < 0:
            raise ValidationError("amount_invested must be >= 0", field="amount_invested", value=tx.amount_invested)
        if tx.unit_price < 0:
            raise ValidationError("unit_price must be >= 0", field="unit_price", value=tx.unit_price)


def _key_sort(key: SliceKey) -> tuple[str, str, str]:
    return key.owner_id, key.asset_symbol, key.sub_account_id or ""
