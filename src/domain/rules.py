"""Custom ladder rule payloads and built-in ladder templates.

Rule payloads arrive as free-form JSON from the configuration surface. They are
validated here into a tagged variant and only then turned into `ExitRule`s; a
payload with a single bad rule is rejected as a whole.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .ladder import ExitRule, TargetMode
from .ledger import as_validation_error


class _RuleBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    sell_percentage: Decimal = Field(gt=0, le=100)
    notes: str | None = None


class ExactPriceRule(_RuleBase):
    kind: Literal["exact_price"]
    price: Decimal = Field(ge=0)

    def to_exit_rule(self) -> ExitRule:
        return ExitRule(
            target_mode=TargetMode.EXACT_PRICE,
            target_input=self.price,
            sell_percentage=self.sell_percentage,
            notes=self.notes,
        )


class PercentOfAverageRule(_RuleBase):
    kind: Literal["percent_of_average"]
    percent: Decimal = Field(ge=0)

    def to_exit_rule(self) -> ExitRule:
        return ExitRule(
            target_mode=TargetMode.PERCENT_OF_AVERAGE,
            target_input=self.percent,
            sell_percentage=self.sell_percentage,
            notes=self.notes,
        )


RulePayload = Annotated[Union[ExactPriceRule, PercentOfAverageRule], Field(discriminator="kind")]

_rules_adapter: TypeAdapter[list[RulePayload]] = TypeAdapter(list[RulePayload])


def parse_rule_payload(payload: str | bytes | list[Any] | dict[str, Any]) -> list[ExitRule]:
    """Validate a custom rule payload.

    Accepts a JSON document or an already decoded value, either a list of rules
    or an object with a `rules` list.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as err:
            raise ValidationError(f"invalid JSON: {err.msg}", field="rules") from err

    if isinstance(payload, dict):
        if "rules" not in payload:
            raise ValidationError("missing rules list", field="rules")
        payload = payload["rules"]

    if not isinstance(payload, list):
        raise ValidationError("rules must be a list", field="rules", value=payload)

    try:
        parsed = _rules_adapter.validate_python(payload)
    except PydanticValidationError as err:
        raise as_validation_error(err, prefix="rules") from err

    return [rule.to_exit_rule() for rule in parsed]


def _percent_rule(sell_percentage: int, percent: int, notes: str) -> ExitRule:
    return ExitRule(
        target_mode=TargetMode.PERCENT_OF_AVERAGE,
        target_input=Decimal(percent),
        sell_percentage=Decimal(sell_percentage),
        notes=notes,
    )


LADDER_TEMPLATES: dict[str, tuple[ExitRule, ...]] = {
    "hodl": (),
    "tp-10-20-30": (
        _percent_rule(10, 25, "Sell 10% at +25%"),
        _percent_rule(20, 50, "Sell 20% at +50%"),
        _percent_rule(30, 100, "Sell 30% at +100%"),
    ),
    # Sums to 150%, the ladder simply sells out.
    "tp-25-50-75": (
        _percent_rule(25, 50, "Sell 25% at +50%"),
        _percent_rule(50, 100, "Sell 50% at +100%"),
        _percent_rule(75, 200, "Sell 75% at +200%"),
    ),
}


def template_rules(name: str) -> list[ExitRule]:
    try:
        return list(LADDER_TEMPLATES[name])
    except KeyError:
        raise ValidationError(
            f"unknown ladder template, expected one of {sorted(LADDER_TEMPLATES)}", field="template", value=name
        ) from None
