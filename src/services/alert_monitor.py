from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from config import AppSettings
from domain.alerts import (
    AlertKind,
    AlertPolicy,
    AlertTrigger,
    BeforeTargetPolicy,
    MarginKind,
    bind_alerts,
    fire_alerts,
)
from domain.ladder import ProfitLadder, StepState

logger = logging.getLogger(__name__)


def default_alert_policy(settings: AppSettings) -> AlertPolicy:
    before_target = None
    if settings.before_target_margin_percent > 0:
        before_target = BeforeTargetPolicy(kind=MarginKind.PERCENT, value=settings.before_target_margin_percent)
    return AlertPolicy(before_target=before_target, on_reach=True, channels=tuple(settings.alert_channels))


class PriceCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    ladder: ProfitLadder
    fired: tuple[AlertTrigger, ...]


class AlertMonitor:
    """Applies a price observation to a ladder and its alert triggers.

    Ladder transitions and alert firing are computed independently; a trigger
    that has fired once is remembered and never fires again.
    """

    def __init__(self, policy: AlertPolicy) -> None:
        self._policy = policy
        self._fired: dict[UUID, set[tuple[UUID, AlertKind]]] = {}

    def triggers_for(self, ladder: ProfitLadder) -> list[AlertTrigger]:
        return [trigger for step in ladder.steps for trigger in bind_alerts(step, self._policy)]

    def check(self, ladder: ProfitLadder, price: Decimal, *, at: datetime | None = None) -> PriceCheck:
        at = at or datetime.now(timezone.utc)
        remembered = self._remembered(ladder)
        pending = [
            trigger for trigger in self.triggers_for(ladder) if (trigger.step_id, trigger.kind) not in remembered
        ]
        fired = fire_alerts(pending, price, at=at)
        for trigger in fired:
            remembered.add((trigger.step_id, trigger.kind))
            logger.info(
                "%s alert for %s step %s: price %s >= %s",
                trigger.kind,
                ladder.asset_symbol,
                trigger.step_id,
                price,
                trigger.trigger_price,
            )
        return PriceCheck(ladder=ladder.observe_price(price, at=at), fired=tuple(fired))

    def _remembered(self, ladder: ProfitLadder) -> set[tuple[UUID, AlertKind]]:
        # DONE and removed steps bind no triggers.
        live = {step.id for step in ladder.steps if step.state != StepState.DONE}
        remembered = {entry for entry in self._fired.get(ladder.id, set()) if entry[0] in live}
        self._fired[ladder.id] = remembered
        return remembered
