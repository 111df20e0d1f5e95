from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any

from domain.errors import ValidationError
from domain.ledger import Transaction, TransactionKind, parse_transaction

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"asset_symbol", "kind", "quantity", "occurred_at"}
OPTIONAL_COLUMNS = ("amount_invested", "unit_price", "sub_account_id", "portfolio_id", "notes")

# Exchange export vocabulary mapped onto ledger kinds.
KIND_ALIASES = {
    "BUY": TransactionKind.ACQUIRE,
    "SELL": TransactionKind.DISPOSE,
    "STAKING": TransactionKind.STAKE,
    "DEPOSIT": TransactionKind.TRANSFER_IN,
    "WITHDRAWAL": TransactionKind.TRANSFER_OUT,
}


def load_transactions(csv_path: Path, *, owner_id: str, portfolio_id: str | None = None) -> list[Transaction]:
    """Load a ledger CSV, rejecting the whole file on the first malformed row.

    Rows keep file order, which is the insertion order used to break timestamp
    ties on replay.
    """
    try:
        with csv_path.open(newline="", encoding="utf-8") as f:
            transactions = _read_rows(csv.DictReader(f), csv_path, owner_id=owner_id, portfolio_id=portfolio_id)
    except (OSError, UnicodeDecodeError) as err:
        raise ValidationError(f"cannot read ledger CSV {csv_path}: {err}", field="csv", value=str(csv_path)) from err

    logger.info("Loaded %d transactions from %s", len(transactions), csv_path)
    return transactions


def _read_rows(
    reader: csv.DictReader[str], csv_path: Path, *, owner_id: str, portfolio_id: str | None
) -> list[Transaction]:
    if reader.fieldnames is None:
        raise ValidationError(f"ledger CSV {csv_path} is empty or missing headers", field="header")

    missing = REQUIRED_COLUMNS - {name.strip() for name in reader.fieldnames}
    if missing:
        raise ValidationError(
            f"ledger CSV {csv_path} missing required columns: {', '.join(sorted(missing))}", field="header"
        )

    transactions: list[Transaction] = []
    for line_no, row in enumerate(reader, start=2):
        payload = _row_payload(row, owner_id=owner_id, portfolio_id=portfolio_id)
        try:
            transactions.append(parse_transaction(payload))
        except ValidationError as err:
            raise ValidationError(f"line {line_no}: {err.reason}", field=err.field, value=err.value) from err
    return transactions


def _row_payload(row: dict[str, str], *, owner_id: str, portfolio_id: str | None) -> dict[str, Any]:
    cleaned = {key.strip(): (value or "").strip() for key, value in row.items() if key is not None}
    kind = cleaned["kind"].upper()
    payload: dict[str, Any] = {
        "asset_symbol": cleaned["asset_symbol"],
        "kind": KIND_ALIASES.get(kind, kind),
        "quantity": cleaned["quantity"],
        "occurred_at": cleaned["occurred_at"],
        "owner_id": owner_id,
    }
    for column in OPTIONAL_COLUMNS:
        if cleaned.get(column):
            payload[column] = cleaned[column]
    if portfolio_id is not None and "portfolio_id" not in payload:
        payload["portfolio_id"] = portfolio_id
    return payload
