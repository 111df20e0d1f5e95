from __future__ import annotations

from decimal import Decimal
from typing import Any


class PlannerError(Exception):
    """Base class for errors raised by the planning core."""


class ValidationError(PlannerError):
    """Caller supplied malformed input; nothing has been applied."""

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message if field is None else f"{field}: {message}")
        self.reason = message
        self.field = field
        self.value = value


class InvariantViolation(PlannerError):
    """A computed value broke an invariant the clamp rules should guarantee.

    Indicates corrupted ledger data. Never recovered from by clamping again.
    """

    def __init__(self, message: str, *, asset_symbol: str | None = None) -> None:
        super().__init__(message)
        self.asset_symbol = asset_symbol


class ConcurrencyConflict(PlannerError):
    def __init__(self, message: str, *, slice_key: Any, expected: str, actual: str) -> None:
        super().__init__(message)
        self.slice_key = slice_key
        self.expected = expected
        self.actual = actual


class StaleLadderWarning(UserWarning):
    def __init__(
        self,
        *,
        ladder_id: Any,
        asset_symbol: str,
        snapshot_quantity: Decimal,
        current_quantity: Decimal,
    ) -> None:
        self.ladder_id = ladder_id
        self.asset_symbol = asset_symbol
        self.snapshot_quantity = snapshot_quantity
        self.current_quantity = current_quantity
        super().__init__(
            f"Ladder {ladder_id} for {asset_symbol} was built against quantity={snapshot_quantity}, "
            f"holding is now quantity={current_quantity}; rebuild it"
        )
