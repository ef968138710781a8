import datetime as dt
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, NamedTuple

from curator.models.entities import EntityRef, parse_ref_token
from curator.models.filters import Criterion, Modifier


class FieldKind(str, Enum):
    NUMBER = "NUMBER"
    DATE = "DATE"
    TEXT = "TEXT"
    ENUM = "ENUM"
    BOOL = "BOOL"
    SET = "SET"
    # Enumerated video resolution compared by pixel height
    RESOLUTION = "RESOLUTION"


_ORDERED = frozenset(
    {
        Modifier.EQUALS,
        Modifier.NOT_EQUALS,
        Modifier.GREATER_THAN,
        Modifier.LESS_THAN,
        Modifier.BETWEEN,
        Modifier.NOT_BETWEEN,
        Modifier.IS_NULL,
        Modifier.NOT_NULL,
    }
)

SUPPORTED_MODIFIERS: dict[FieldKind, frozenset[Modifier]] = {
    FieldKind.NUMBER: _ORDERED | {Modifier.INCLUDES, Modifier.EXCLUDES},
    FieldKind.DATE: _ORDERED,
    FieldKind.RESOLUTION: _ORDERED - {Modifier.IS_NULL, Modifier.NOT_NULL},
    FieldKind.TEXT: frozenset(
        {Modifier.EQUALS, Modifier.NOT_EQUALS, Modifier.INCLUDES, Modifier.EXCLUDES, Modifier.IS_NULL, Modifier.NOT_NULL}
    ),
    FieldKind.ENUM: frozenset(
        {Modifier.EQUALS, Modifier.NOT_EQUALS, Modifier.INCLUDES, Modifier.EXCLUDES, Modifier.IS_NULL, Modifier.NOT_NULL}
    ),
    FieldKind.BOOL: frozenset({Modifier.EQUALS, Modifier.NOT_EQUALS}),
    FieldKind.SET: frozenset(
        {
            Modifier.INCLUDES,
            Modifier.INCLUDES_ALL,
            Modifier.EXCLUDES,
            Modifier.EQUALS,
            Modifier.NOT_EQUALS,
            Modifier.IS_NULL,
            Modifier.NOT_NULL,
        }
    ),
}

# Minimum short-side pixel count per resolution label; a label spans up to the next one
RESOLUTION_HEIGHTS: dict[str, int] = {
    "144p": 144,
    "240p": 240,
    "360p": 360,
    "480p": 480,
    "540p": 540,
    "720p": 720,
    "1080p": 1080,
    "1440p": 1440,
    "1920p": 1920,
    "4k": 2160,
    "5k": 2880,
    "6k": 3384,
    "7k": 4096,
    "8k": 4320,
}

_RESOLUTION_ALIASES = {
    "very_low": "144p",
    "low": "240p",
    "r360p": "360p",
    "standard": "480p",
    "web_hd": "540p",
    "standard_hd": "720p",
    "full_hd": "1080p",
    "quad_hd": "1440p",
    "vr_hd": "1920p",
    "four_k": "4k",
    "five_k": "5k",
    "six_k": "6k",
    "seven_k": "7k",
    "eight_k": "8k",
}

_TRUTHY = {"true", "1", "yes", "y", "on"}
_FALSY = {"false", "0", "no", "n", "off"}


class MalformedValue(ValueError):
    """A criterion value that cannot be interpreted for its field kind."""


class SetGroup(NamedTuple):
    """
    One filter token after resolution.

    ``refs`` are fully qualified matches (including hierarchy descendants);
    ``ids`` are bare ids that match in any source.
    """

    refs: frozenset[EntityRef]
    ids: frozenset[str]

    def hit(self, values: Iterable[Any]) -> bool:
        for v in values:
            if isinstance(v, tuple):
                if v in self.refs or v[0] in self.ids:
                    return True
            elif str(v) in self.ids:
                return True
        return False


class Operands:
    """Criterion values parsed once for repeated evaluation."""

    __slots__ = ("low", "high", "values", "groups")

    def __init__(self, low: Any = None, high: Any = None, values: Any = None, groups: list[SetGroup] | None = None):
        self.low = low
        self.high = high
        self.values = values
        self.groups = groups or []


def parse_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        raise MalformedValue(f"not a number: {value!r}") from None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise MalformedValue(f"not a boolean: {value!r}")


def parse_date(value: Any) -> dt.date | dt.datetime:
    """
    Parse a criterion date.

    Returns a ``date`` for date-only input so comparisons run at day
    granularity, and a naive UTC ``datetime`` otherwise.
    """
    if isinstance(value, dt.datetime):
        return _naive(value)
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    try:
        if len(text) == 10:
            return dt.date.fromisoformat(text)
        return _naive(dt.datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise MalformedValue(f"not a date: {value!r}") from None


def parse_resolution(value: Any) -> tuple[int, float]:
    """Return the ``[min, max)`` short-side pixel range of a resolution label."""
    label = str(value).strip().lower()
    label = _RESOLUTION_ALIASES.get(label, label)
    if label not in RESOLUTION_HEIGHTS:
        raise MalformedValue(f"unknown resolution: {value!r}")
    heights = sorted(RESOLUTION_HEIGHTS.values())
    low = RESOLUTION_HEIGHTS[label]
    idx = heights.index(low)
    high = heights[idx + 1] if idx + 1 < len(heights) else float("inf")
    return low, high


def _naive(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is not None:
        return value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


def _as_datetime(value: Any) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return _naive(value)
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    try:
        parsed = parse_date(value)
    except MalformedValue:
        return None
    return _as_datetime(parsed)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def default_group(token: Any) -> SetGroup:
    entity_id, instance_id = parse_ref_token(token)
    if instance_id is None:
        return SetGroup(frozenset(), frozenset({entity_id}))
    return SetGroup(frozenset({EntityRef(entity_id, instance_id)}), frozenset())


class CriterionEvaluator:
    """
    Evaluates one typed comparison against an entity field value.

    Absent values never raise: numbers default to 0, text to the empty
    string, and absent dates fail every comparison except ``IS_NULL``.
    """

    @staticmethod
    def evaluate(entity_value: Any, criterion: Criterion, kind: FieldKind = FieldKind.NUMBER) -> bool:
        """Evaluate ``criterion`` directly; malformed criterion values yield False."""
        try:
            operands = CriterionEvaluator.prepare(criterion, kind)
        except MalformedValue:
            return False
        return CriterionEvaluator.test(entity_value, kind, criterion.modifier, operands)

    @staticmethod
    def prepare(
        criterion: Criterion,
        kind: FieldKind,
        resolve_group: Callable[[Any], SetGroup] | None = None,
    ) -> Operands:
        """
        Parse criterion values for ``kind``.

        Args:
            criterion: The raw criterion.
            kind: The field kind the criterion targets.
            resolve_group: Turns one set token into a ``SetGroup``, expanding
                hierarchy descendants where the field has a hierarchy.

        Raises:
            MalformedValue: If a value required by the modifier cannot be parsed.
        """
        modifier = criterion.modifier
        if modifier in (Modifier.IS_NULL, Modifier.NOT_NULL):
            return Operands()

        if kind == FieldKind.SET:
            resolver = resolve_group or default_group
            tokens = [t for t in _as_list(criterion.value) if _present(t)]
            return Operands(groups=[resolver(t) for t in tokens])

        if kind == FieldKind.BOOL:
            return Operands(low=parse_bool(criterion.value))

        if kind in (FieldKind.TEXT, FieldKind.ENUM):
            # Empty values place no constraint
            values = [str(v).casefold() for v in _as_list(criterion.value) if _present(v) and str(v).strip()]
            return Operands(values=frozenset(values))

        parse: Callable[[Any], Any]
        if kind == FieldKind.DATE:
            parse = parse_date
        elif kind == FieldKind.RESOLUTION:
            parse = parse_resolution
        else:
            parse = parse_number

        if modifier in (Modifier.BETWEEN, Modifier.NOT_BETWEEN):
            low = parse(criterion.value) if _present(criterion.value) else None
            high = parse(criterion.value2) if _present(criterion.value2) else None
            return Operands(low=low, high=high)
        if modifier in (Modifier.INCLUDES, Modifier.EXCLUDES):
            return Operands(values=frozenset(parse(v) for v in _as_list(criterion.value) if _present(v)))
        if not _present(criterion.value):
            raise MalformedValue(f"{modifier.value} requires a value")
        return Operands(low=parse(criterion.value))

    @staticmethod
    def is_unconstrained(kind: FieldKind, modifier: Modifier, operands: Operands) -> bool:
        """True when the criterion places no constraint and can be skipped."""
        if modifier in (Modifier.BETWEEN, Modifier.NOT_BETWEEN) and kind != FieldKind.SET:
            return operands.low is None and operands.high is None
        if kind == FieldKind.SET and modifier in (Modifier.INCLUDES, Modifier.INCLUDES_ALL, Modifier.EXCLUDES):
            return not operands.groups
        if kind in (FieldKind.TEXT, FieldKind.ENUM) and modifier not in (Modifier.IS_NULL, Modifier.NOT_NULL):
            return not operands.values
        return False

    @staticmethod
    def test(entity_value: Any, kind: FieldKind, modifier: Modifier, operands: Operands) -> bool:
        if kind == FieldKind.SET:
            return _test_set(entity_value, modifier, operands)
        if kind == FieldKind.DATE:
            return _test_date(entity_value, modifier, operands)
        if kind == FieldKind.TEXT:
            return _test_text(entity_value, modifier, operands)
        if kind == FieldKind.ENUM:
            return _test_enum(entity_value, modifier, operands)
        if kind == FieldKind.BOOL:
            if modifier == Modifier.NOT_EQUALS:
                return bool(entity_value) != operands.low
            return bool(entity_value) == operands.low
        if kind == FieldKind.RESOLUTION:
            return _test_resolution(entity_value, modifier, operands)
        return _test_number(entity_value, modifier, operands)


def _test_number(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    if modifier == Modifier.IS_NULL:
        return entity_value is None
    if modifier == Modifier.NOT_NULL:
        return entity_value is not None
    try:
        value = parse_number(entity_value) if entity_value is not None else 0.0
    except MalformedValue:
        value = 0.0
    if modifier == Modifier.INCLUDES:
        return value in ops.values
    if modifier == Modifier.EXCLUDES:
        return value not in ops.values
    return _compare_ordered(value, modifier, ops)


def _compare_ordered(value: Any, modifier: Modifier, ops: Operands) -> bool:
    if modifier == Modifier.EQUALS:
        return value == ops.low
    if modifier == Modifier.NOT_EQUALS:
        return value != ops.low
    if modifier == Modifier.GREATER_THAN:
        return value > ops.low
    if modifier == Modifier.LESS_THAN:
        return value < ops.low
    if modifier in (Modifier.BETWEEN, Modifier.NOT_BETWEEN):
        if ops.low is None and ops.high is None:
            return True
        inside = (ops.low is None or value >= ops.low) and (ops.high is None or value <= ops.high)
        return inside if modifier == Modifier.BETWEEN else not inside
    return False


def _test_date(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    value = _as_datetime(entity_value)
    if modifier == Modifier.IS_NULL:
        return value is None
    if modifier == Modifier.NOT_NULL:
        return value is not None
    if value is None:
        return False

    def project(bound: Any) -> Any:
        # Date-only bounds compare at day granularity
        return value.date() if type(bound) is dt.date else value

    if modifier in (Modifier.BETWEEN, Modifier.NOT_BETWEEN):
        if ops.low is None and ops.high is None:
            return True
        inside = (ops.low is None or project(ops.low) >= ops.low) and (
            ops.high is None or project(ops.high) <= ops.high
        )
        return inside if modifier == Modifier.BETWEEN else not inside
    return _compare_ordered(project(ops.low), modifier, ops)


def _test_text(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    if modifier == Modifier.IS_NULL:
        return not entity_value
    if modifier == Modifier.NOT_NULL:
        return bool(entity_value)
    if not ops.values:
        return True
    text = str(entity_value).casefold() if entity_value is not None else ""
    if modifier == Modifier.EQUALS:
        return text in ops.values
    if modifier == Modifier.NOT_EQUALS:
        return text not in ops.values
    if modifier == Modifier.INCLUDES:
        return any(v in text for v in ops.values)
    if modifier == Modifier.EXCLUDES:
        return not any(v in text for v in ops.values)
    return False


def _test_enum(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    if modifier == Modifier.IS_NULL:
        return not entity_value
    if modifier == Modifier.NOT_NULL:
        return bool(entity_value)
    if not ops.values:
        return True
    text = str(entity_value).casefold() if entity_value is not None else ""
    if modifier in (Modifier.EQUALS, Modifier.INCLUDES):
        return text in ops.values
    if modifier in (Modifier.NOT_EQUALS, Modifier.EXCLUDES):
        return text not in ops.values
    return False


def _test_resolution(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    try:
        pixels = parse_number(entity_value) if entity_value is not None else 0.0
    except MalformedValue:
        pixels = 0.0
    if modifier == Modifier.EQUALS:
        return ops.low[0] <= pixels < ops.low[1]
    if modifier == Modifier.NOT_EQUALS:
        return not (ops.low[0] <= pixels < ops.low[1])
    if modifier == Modifier.GREATER_THAN:
        return pixels >= ops.low[1]
    if modifier == Modifier.LESS_THAN:
        return pixels < ops.low[0]
    if modifier in (Modifier.BETWEEN, Modifier.NOT_BETWEEN):
        if ops.low is None and ops.high is None:
            return True
        inside = (ops.low is None or pixels >= ops.low[0]) and (ops.high is None or pixels < ops.high[1])
        return inside if modifier == Modifier.BETWEEN else not inside
    return False


def _test_set(entity_value: Any, modifier: Modifier, ops: Operands) -> bool:
    values = entity_value or ()
    if modifier == Modifier.IS_NULL:
        return not values
    if modifier == Modifier.NOT_NULL:
        return bool(values)
    groups = ops.groups
    if modifier == Modifier.INCLUDES:
        return not groups or any(g.hit(values) for g in groups)
    if modifier == Modifier.INCLUDES_ALL:
        # Each original token must be matched on its own
        return all(g.hit(values) for g in groups)
    if modifier == Modifier.EXCLUDES:
        return not any(g.hit(values) for g in groups)
    if modifier in (Modifier.EQUALS, Modifier.NOT_EQUALS):
        exact = len(set(values)) == len(groups) and all(g.hit(values) for g in groups)
        return exact if modifier == Modifier.EQUALS else not exact
    return False
