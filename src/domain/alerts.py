from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .cost_basis import ZERO
from .ladder import HUNDRED, ProfitLadderStep, StepState


class MarginKind(StrEnum):
    PERCENT = "PERCENT"
    ABSOLUTE = "ABSOLUTE"


class AlertKind(StrEnum):
    BEFORE_TARGET = "BEFORE_TARGET"
    ON_REACH = "ON_REACH"


class BeforeTargetPolicy(BaseModel):
    """Distance below the target at which an early alert fires.

    The sign of `value` is ignored; the alert always sits below the target.
    """

    model_config = ConfigDict(frozen=True)

    kind: MarginKind = MarginKind.PERCENT
    value: Decimal


class AlertPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    before_target: BeforeTargetPolicy | None = None
    on_reach: bool = True
    channels: tuple[str, ...] = ("email",)


class AlertTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: UUID
    kind: AlertKind
    trigger_price: Decimal
    fired_at: datetime | None = None
    channel_hints: tuple[str, ...] = Field(default_factory=tuple)

    @property
    def fired(self) -> bool:
        return self.fired_at is not None


def before_target_price(target_price: Decimal, margin: BeforeTargetPolicy) -> Decimal:
    distance = abs(margin.value)
    if margin.kind == MarginKind.PERCENT:
        price = target_price * (1 - distance / HUNDRED)
    else:
        price = target_price - distance
    return max(ZERO, price)


def bind_alerts(step: ProfitLadderStep, policy: AlertPolicy) -> list[AlertTrigger]:
    """Turn a ladder step into its notification triggers.

    On-reach triggers sit on the same price as the step's own PENDING ->
    TRIGGERED transition but are evaluated independently of it.
    """
    if step.state == StepState.DONE:
        return []

    triggers: list[AlertTrigger] = []
    if policy.before_target is not None:
        triggers.append(
            AlertTrigger(
                step_id=step.id,
                kind=AlertKind.BEFORE_TARGET,
                trigger_price=before_target_price(step.derived_target_price, policy.before_target),
                channel_hints=policy.channels,
            )
        )
    if policy.on_reach:
        triggers.append(
            AlertTrigger(
                step_id=step.id,
                kind=AlertKind.ON_REACH,
                trigger_price=step.derived_target_price,
                channel_hints=policy.channels,
            )
        )
    return triggers


def fire_alerts(triggers: Iterable[AlertTrigger], price: Decimal, *, at: datetime | None = None) -> list[AlertTrigger]:
    """Return the not-yet-fired triggers crossed by `price`, stamped with `fired_at`."""
    fired_at = at or datetime.now(timezone.utc)
    return [
        trigger.model_copy(update={"fired_at": fired_at})
        for trigger in triggers
        if not trigger.fired and price >= trigger.trigger_price
    ]
