from __future__ import annotations

import logging
import warnings
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Sequence
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .cost_basis import ZERO, Holding
from .errors import StaleLadderWarning, ValidationError

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


class TargetMode(StrEnum):
    EXACT_PRICE = "EXACT_PRICE"
    PERCENT_OF_AVERAGE = "PERCENT_OF_AVERAGE"


class StepState(StrEnum):
    PENDING = "PENDING"
    TRIGGERED = "TRIGGERED"
    DONE = "DONE"


class ExitRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_mode: TargetMode
    target_input: Decimal = Field(ge=0)
    sell_percentage: Decimal = Field(gt=0, le=100)
    notes: str | None = None


class ProfitLadderStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    order: int
    target_mode: TargetMode
    target_input: Decimal
    sell_percentage: Decimal
    derived_target_price: Decimal
    derived_sell_quantity: Decimal
    state: StepState = StepState.PENDING
    notes: str | None = None
    triggered_at: datetime | None = None
    done_at: datetime | None = None

    @property
    def projected_proceeds(self) -> Decimal:
        return self.derived_sell_quantity * self.derived_target_price


class LadderBasis(BaseModel):
    """Holding snapshot a ladder was derived from."""

    model_config = ConfigDict(frozen=True)

    quantity: Decimal
    invested_amount: Decimal
    average_price: Decimal

    @classmethod
    def of(cls, holding: Holding) -> LadderBasis:
        return cls(
            quantity=holding.quantity,
            invested_amount=holding.invested_amount,
            average_price=holding.average_price,
        )


class ProfitLadder(BaseModel):
    """Ordered take-profit steps for one asset.

    Sell quantities are fixed against `basis`. Later ledger changes do not
    update them; see `staleness`.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    asset_symbol: str
    basis: LadderBasis
    steps: tuple[ProfitLadderStep, ...] = ()

    @property
    def projected_proceeds(self) -> Decimal:
        return sum((step.projected_proceeds for step in self.steps), start=ZERO)

    @property
    def total_sell_quantity(self) -> Decimal:
        return sum((step.derived_sell_quantity for step in self.steps), start=ZERO)

    @property
    def remaining_quantity(self) -> Decimal:
        # Rule sets above 100% are accepted, the excess is ignored.
        return max(ZERO, self.basis.quantity - self.total_sell_quantity)

    def step(self, step_id: UUID) -> ProfitLadderStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise ValidationError(f"ladder {self.id} has no step {step_id}", field="step_id", value=step_id)

    def observe_price(self, price: Decimal, *, at: datetime | None = None) -> ProfitLadder:
        steps = tuple(observe_price(step, price, at=at) for step in self.steps)
        return self.model_copy(update={"steps": steps})

    def confirm_step(self, step_id: UUID, *, at: datetime | None = None) -> ProfitLadder:
        target = self.step(step_id)
        confirmed = confirm_execution(target, at=at)
        steps = tuple(confirmed if step.id == step_id else step for step in self.steps)
        return self.model_copy(update={"steps": steps})

    def staleness(self, holding: Holding) -> StaleLadderWarning | None:
        if holding.asset_symbol != self.asset_symbol:
            raise ValidationError(
                f"ladder is for {self.asset_symbol}, holding is {holding.asset_symbol}",
                field="asset_symbol",
                value=holding.asset_symbol,
            )
        if holding.quantity == self.basis.quantity and holding.invested_amount == self.basis.invested_amount:
            return None
        return StaleLadderWarning(
            ladder_id=self.id,
            asset_symbol=self.asset_symbol,
            snapshot_quantity=self.basis.quantity,
            current_quantity=holding.quantity,
        )


def build_ladder(holding: Holding, rules: Sequence[ExitRule]) -> ProfitLadder:
    steps: list[ProfitLadderStep] = []
    for index, rule in enumerate(rules):
        _check_rule(index, rule)
        if rule.target_mode == TargetMode.EXACT_PRICE:
            target_price = rule.target_input
        else:
            target_price = holding.average_price * (1 + rule.target_input / HUNDRED)

        steps.append(
            ProfitLadderStep(
                order=index + 1,
                target_mode=rule.target_mode,
                target_input=rule.target_input,
                sell_percentage=rule.sell_percentage,
                derived_target_price=target_price,
                derived_sell_quantity=holding.quantity * rule.sell_percentage / HUNDRED,
                notes=rule.notes,
            )
        )

    ladder = ProfitLadder(asset_symbol=holding.asset_symbol, basis=LadderBasis.of(holding), steps=tuple(steps))
    if ladder.total_sell_quantity > holding.quantity:
        logger.info(
            "Ladder %s for %s sells %s of %s held; excess is ignored",
            ladder.id,
            holding.asset_symbol,
            ladder.total_sell_quantity,
            holding.quantity,
        )
    return ladder


def observe_price(step: ProfitLadderStep, price: Decimal, *, at: datetime | None = None) -> ProfitLadderStep:
    """PENDING -> TRIGGERED once `price` reaches the target. Never reverts."""
    if price < 0:
        raise ValidationError("price must be >= 0", field="price", value=price)
    if step.state != StepState.PENDING or price < step.derived_target_price:
        return step
    return step.model_copy(update={"state": StepState.TRIGGERED, "triggered_at": at or _now()})


def confirm_execution(step: ProfitLadderStep, *, at: datetime | None = None) -> ProfitLadderStep:
    if step.state != StepState.TRIGGERED:
        raise ValidationError(
            f"step {step.id} is {step.state}, only {StepState.TRIGGERED} steps can be confirmed",
            field="state",
            value=step.state,
        )
    return step.model_copy(update={"state": StepState.DONE, "done_at": at or _now()})


def warn_if_stale(ladder: ProfitLadder, holding: Holding) -> bool:
    warning = ladder.staleness(holding)
    if warning is None:
        return False
    logger.warning("%s", warning)
    warnings.warn(warning, stacklevel=2)
    return True


class LadderSummary(BaseModel):
    total_steps: int
    pending_steps: int
    triggered_steps: int
    done_steps: int
    total_sell_quantity: Decimal
    remaining_quantity: Decimal
    projected_proceeds: Decimal
    estimated_profit: Decimal


def summarize_ladder(ladder: ProfitLadder) -> LadderSummary:
    counts = {state: 0 for state in StepState}
    for step in ladder.steps:
        counts[step.state] += 1

    estimated_profit = sum(
        (step.derived_sell_quantity * (step.derived_target_price - ladder.basis.average_price) for step in ladder.steps),
        start=ZERO,
    )
    return LadderSummary(
        total_steps=len(ladder.steps),
        pending_steps=counts[StepState.PENDING],
        triggered_steps=counts[StepState.TRIGGERED],
        done_steps=counts[StepState.DONE],
        total_sell_quantity=ladder.total_sell_quantity,
        remaining_quantity=ladder.remaining_quantity,
        projected_proceeds=ladder.projected_proceeds,
        estimated_profit=estimated_profit,
    )


def _check_rule(index: int, rule: ExitRule) -> None:
    if not 0 < rule.sell_percentage <= HUNDRED:
        raise ValidationError(
            "sell_percentage must be in (0, 100]", field=f"rules.{index}.sell_percentage", value=rule.sell_percentage
        )
    if rule.target_input < 0:
        raise ValidationError("target_input must be >= 0", field=f"rules.{index}.target_input", value=rule.target_input)


def _now() -> datetime:
    return datetime.now(timezone.utc)
