"""Declarative event predicates used to select call events from the bus."""
import re
import structlog
from pydantic import BaseModel, Field
from typing import Any, Callable, Literal
from .event_models import Event

log = structlog.get_logger()

Pattern = Callable[[Event], bool]


class Condition(BaseModel):
    """A single field test against an event."""
    field: str = Field(..., description="Field to match (type or payload.key)")
    operator: Literal["equals", "contains", "starts_with", "regex"] = "equals"
    value: Any = Field(..., description="Value to match against")

    def __call__(self, event: Event) -> bool:
        field_value = _get_field_value(event, self.field)

        if field_value is None:
            return False

        # Ids arrive as both ints and strings depending on the producer
        field_str = str(field_value)
        target_str = str(self.value)

        if self.operator == "equals":
            return field_str == target_str
        elif self.operator == "contains":
            return target_str in field_str
        elif self.operator == "starts_with":
            return field_str.startswith(target_str)
        elif self.operator == "regex":
            try:
                return re.match(target_str, field_str) is not None
            except re.error as e:
                log.warning("matcher.invalid_regex", error=str(e), pattern=target_str)
                return False

        return False


class Matcher(BaseModel):
    """A pure event predicate combining conditions with AND or OR logic.

    Conditions may themselves be matchers, so `type == X and (a == 1 or b == 2)`
    is expressed as an "all" matcher holding an "any" matcher.
    """
    conditions: list["Condition | Matcher"] = Field(default_factory=list)
    mode: Literal["all", "any"] = "all"

    def __call__(self, event: Event) -> bool:
        if not self.conditions:
            return True
        if self.mode == "all":
            return all(condition(event) for condition in self.conditions)
        return any(condition(event) for condition in self.conditions)


def _get_field_value(event: Event, field: str) -> Any:
    """
    Extract a field value from an event.

    Supports `type` and `payload.<key>`; anything else yields None.
    """
    if field.startswith("payload."):
        key = field[8:]
        if isinstance(event.payload, dict):
            return event.payload.get(key)
        return None
    if field == "type":
        return event.type
    return None


def event_type(name: str) -> Condition:
    return Condition(field="type", value=name)


def field_equals(key: str, value: Any) -> Condition:
    return Condition(field=f"payload.{key}", value=value)


def all_of(*conditions: Condition | Matcher) -> Matcher:
    return Matcher(conditions=list(conditions), mode="all")


def any_of(*conditions: Condition | Matcher) -> Matcher:
    return Matcher(conditions=list(conditions), mode="any")


Matcher.model_rebuild()
