"""Condition predicates for CUSTOM access-level bindings.

A binding's ``conditions`` JSON is parsed into a small set of predicate
kinds and evaluated against the request context:

- ``field_equals``  context[field] == value
- ``field_in``      context[field] in values
- ``time_window``   start <= now <= end (either bound optional)
- ``owner_match``   context[field] == context["user_id"]

Anything else is kept as an opaque predicate that always fails, so newer
condition kinds written by other services deny instead of granting.

Stored conditions may also use the flat legacy shape
``{"branch_id": ..., "time_range": {"start": ..., "end": ...}}``; each key
becomes a ``field_equals`` (or ``time_window`` for ``time_range``).
"""

from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID


class ConditionType(str, Enum):
    FIELD_EQUALS = "field_equals"
    FIELD_IN = "field_in"
    TIME_WINDOW = "time_window"
    OWNER_MATCH = "owner_match"


def _normalize(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string (or datetime) into naive UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any

    def evaluate(self, context: Dict[str, Any], now: datetime) -> bool:
        if self.field not in context:
            return False
        return _normalize(context[self.field]) == _normalize(self.value)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": ConditionType.FIELD_EQUALS.value, "field": self.field, "value": self.value}


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: Tuple[Any, ...]

    def evaluate(self, context: Dict[str, Any], now: datetime) -> bool:
        if self.field not in context:
            return False
        return _normalize(context[self.field]) in [_normalize(v) for v in self.values]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": ConditionType.FIELD_IN.value, "field": self.field, "values": list(self.values)}


@dataclass(frozen=True)
class TimeWindow:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def evaluate(self, context: Dict[str, Any], now: datetime) -> bool:
        if self.start is not None and now < self.start:
            return False
        if self.end is not None and now > self.end:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": ConditionType.TIME_WINDOW.value,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


@dataclass(frozen=True)
class OwnerMatch:
    field: str = "owner_id"

    def evaluate(self, context: Dict[str, Any], now: datetime) -> bool:
        owner = context.get(self.field)
        user_id = context.get("user_id")
        if owner is None or user_id is None:
            return False
        return _normalize(owner) == _normalize(user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": ConditionType.OWNER_MATCH.value, "field": self.field}


@dataclass(frozen=True)
class OpaquePredicate:
    """Unrecognised condition kept verbatim; never satisfied."""
    raw: Any

    def evaluate(self, context: Dict[str, Any], now: datetime) -> bool:
        return False

    def to_dict(self) -> Any:
        return self.raw


@dataclass(frozen=True)
class ConditionSet:
    """Conjunction of predicates. An empty set is always satisfied."""
    predicates: Tuple[Any, ...] = dataclass_field(default_factory=tuple)

    def evaluate(self, context: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return all(p.evaluate(context, now) for p in self.predicates)

    @property
    def is_empty(self) -> bool:
        return not self.predicates

    @property
    def has_opaque(self) -> bool:
        return any(isinstance(p, OpaquePredicate) for p in self.predicates)

    def to_list(self) -> List[Any]:
        return [p.to_dict() for p in self.predicates]


def _parse_typed(item: Dict[str, Any]):
    kind = item.get("type")
    try:
        condition_type = ConditionType(kind)
    except ValueError:
        return OpaquePredicate(item)

    if condition_type == ConditionType.FIELD_EQUALS:
        if "field" not in item or "value" not in item:
            raise ValueError("field_equals requires 'field' and 'value'")
        return FieldEquals(field=str(item["field"]), value=item["value"])

    if condition_type == ConditionType.FIELD_IN:
        values = item.get("values")
        if "field" not in item or not isinstance(values, (list, tuple)):
            raise ValueError("field_in requires 'field' and a list of 'values'")
        return FieldIn(field=str(item["field"]), values=tuple(values))

    if condition_type == ConditionType.TIME_WINDOW:
        start = _parse_datetime(item.get("start"))
        end = _parse_datetime(item.get("end"))
        if start is None and end is None:
            raise ValueError("time_window requires 'start' or 'end'")
        if start is not None and end is not None and start > end:
            raise ValueError("time_window 'start' is after 'end'")
        return TimeWindow(start=start, end=end)

    return OwnerMatch(field=str(item.get("field") or "owner_id"))


def _parse_legacy(data: Dict[str, Any]) -> List[Any]:
    predicates = []
    for key, value in data.items():
        if key == "time_range":
            if not isinstance(value, dict):
                raise ValueError("time_range must be an object with 'start'/'end'")
            predicates.append(TimeWindow(
                start=_parse_datetime(value.get("start")),
                end=_parse_datetime(value.get("end")),
            ))
        elif isinstance(value, list):
            predicates.append(FieldIn(field=key, values=tuple(value)))
        else:
            predicates.append(FieldEquals(field=key, value=value))
    return predicates


def parse_conditions(data: Any, *, strict: bool = True) -> ConditionSet:
    """Parse stored/submitted conditions JSON into a ``ConditionSet``.

    Args:
        data: None, a single typed predicate, a list of typed predicates,
            ``{"all": [...]}``, or the flat legacy mapping
        strict: raise ``ValueError`` on malformed predicates; when False the
            whole payload becomes an opaque (always failing) predicate

    Returns:
        ConditionSet
    """
    try:
        if data is None:
            return ConditionSet()
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict) and "type" in data:
            items = [data]
        elif isinstance(data, dict) and set(data) == {"all"}:
            items = data["all"]
            if not isinstance(items, list):
                raise ValueError("'all' must be a list of conditions")
        elif isinstance(data, dict):
            return ConditionSet(tuple(_parse_legacy(data)))
        else:
            raise ValueError(f"Unsupported conditions payload: {type(data).__name__}")

        predicates = []
        for item in items:
            if not isinstance(item, dict):
                raise ValueError("Each condition must be an object")
            predicates.append(_parse_typed(item))
        return ConditionSet(tuple(predicates))
    except (ValueError, TypeError):
        if strict:
            raise
        return ConditionSet((OpaquePredicate(data),))
