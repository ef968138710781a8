import datetime as dt

import pytest

from curator.models.entities import EntityRef
from curator.models.filters import Criterion, Modifier
from curator.services.query.criteria import CriterionEvaluator, FieldKind, MalformedValue, parse_resolution

evaluate = CriterionEvaluator.evaluate


def crit(modifier: str, value=None, value2=None) -> Criterion:
    return Criterion(modifier=modifier, value=value, value2=value2)


def test_modifier_is_case_insensitive():
    assert Criterion(modifier="greater_than", value=1).modifier == Modifier.GREATER_THAN


def test_number_comparisons():
    assert evaluate(5, crit("EQUALS", 5))
    assert evaluate(5, crit("NOT_EQUALS", 4))
    assert evaluate(5, crit("GREATER_THAN", "4"))
    assert not evaluate(5, crit("LESS_THAN", 5))
    assert evaluate(5, crit("BETWEEN", 1, 5))
    assert not evaluate(6, crit("BETWEEN", 1, 5))
    assert evaluate(6, crit("NOT_BETWEEN", 1, 5))


def test_between_with_one_bound_is_open_ended():
    assert evaluate(10, crit("BETWEEN", 10, None))
    assert evaluate(1000, crit("BETWEEN", 10, None))
    assert not evaluate(9, crit("BETWEEN", 10, None))
    assert evaluate(20, crit("BETWEEN", None, 20))
    assert not evaluate(21, crit("BETWEEN", None, 20))


def test_between_without_bounds_places_no_constraint():
    criterion = crit("BETWEEN")
    operands = CriterionEvaluator.prepare(criterion, FieldKind.NUMBER)
    assert CriterionEvaluator.is_unconstrained(FieldKind.NUMBER, criterion.modifier, operands)
    assert evaluate(-3, criterion)


def test_missing_number_defaults_to_zero():
    assert evaluate(None, crit("EQUALS", 0))
    assert evaluate(None, crit("LESS_THAN", 1))
    assert evaluate(None, crit("IS_NULL"))
    assert not evaluate(None, crit("NOT_NULL"))


def test_malformed_value_evaluates_false():
    assert not evaluate(5, crit("GREATER_THAN", "five"))
    with pytest.raises(MalformedValue):
        CriterionEvaluator.prepare(crit("GREATER_THAN", "five"), FieldKind.NUMBER)


def test_text_matching_is_case_insensitive():
    assert evaluate("Morning Walk", crit("INCLUDES", "walk"), FieldKind.TEXT)
    assert evaluate("Morning Walk", crit("EXCLUDES", "beach"), FieldKind.TEXT)
    assert evaluate("Morning Walk", crit("EQUALS", "morning walk"), FieldKind.TEXT)
    assert evaluate(None, crit("EQUALS", ""), FieldKind.TEXT)
    assert evaluate("", crit("IS_NULL"), FieldKind.TEXT)


def test_enum_accepts_value_lists():
    assert evaluate("FEMALE", crit("INCLUDES", ["female", "non_binary"]), FieldKind.ENUM)
    assert not evaluate("MALE", crit("EQUALS", ["female"]), FieldKind.ENUM)
    assert evaluate("MALE", crit("NOT_EQUALS", "female"), FieldKind.ENUM)


def test_text_value_lists_match_any_entry():
    assert evaluate("Morning Walk", crit("INCLUDES", ["beach", "walk"]), FieldKind.TEXT)
    assert not evaluate("Morning Walk", crit("EXCLUDES", ["beach", "walk"]), FieldKind.TEXT)
    assert evaluate("Beach Day", crit("EQUALS", ["morning walk", "beach day"]), FieldKind.TEXT)
    assert not evaluate("Beach Day", crit("NOT_EQUALS", ["morning walk", "beach day"]), FieldKind.TEXT)


@pytest.mark.parametrize("kind", [FieldKind.TEXT, FieldKind.ENUM])
@pytest.mark.parametrize("value", [[], "", ["", "  "], None])
def test_empty_text_and_enum_values_place_no_constraint(kind, value):
    for modifier in ("EQUALS", "NOT_EQUALS", "INCLUDES", "EXCLUDES"):
        criterion = crit(modifier, value)
        operands = CriterionEvaluator.prepare(criterion, kind)
        assert CriterionEvaluator.is_unconstrained(kind, criterion.modifier, operands)
        assert evaluate("MALE", criterion, kind)
        assert evaluate(None, criterion, kind)


def test_bool_parsing():
    assert evaluate(True, crit("EQUALS", "true"), FieldKind.BOOL)
    assert evaluate(False, crit("EQUALS", 0), FieldKind.BOOL)
    assert evaluate(False, crit("NOT_EQUALS", True), FieldKind.BOOL)
    assert not evaluate(True, crit("EQUALS", "maybe"), FieldKind.BOOL)


def test_dates_compare_at_day_granularity():
    created = dt.datetime(2023, 5, 1, 18, 30, tzinfo=dt.timezone.utc)
    assert evaluate(created, crit("EQUALS", "2023-05-01"), FieldKind.DATE)
    assert evaluate(created, crit("GREATER_THAN", "2023-04-30"), FieldKind.DATE)
    assert evaluate(dt.date(2023, 5, 1), crit("BETWEEN", "2023-01-01", "2023-05-01"), FieldKind.DATE)
    assert evaluate(created, crit("LESS_THAN", "2023-05-01T19:00:00Z"), FieldKind.DATE)


def test_absent_date_fails_all_but_is_null():
    assert not evaluate(None, crit("LESS_THAN", "2030-01-01"), FieldKind.DATE)
    assert not evaluate(None, crit("NOT_EQUALS", "2030-01-01"), FieldKind.DATE)
    assert evaluate(None, crit("IS_NULL"), FieldKind.DATE)


def test_resolution_ranges():
    assert parse_resolution("FULL_HD") == (1080, 1440)
    assert evaluate(1080, crit("EQUALS", "1080p"), FieldKind.RESOLUTION)
    assert not evaluate(720, crit("EQUALS", "1080p"), FieldKind.RESOLUTION)
    assert evaluate(2160, crit("GREATER_THAN", "1080p"), FieldKind.RESOLUTION)
    assert evaluate(720, crit("LESS_THAN", "1080p"), FieldKind.RESOLUTION)
    assert evaluate(1080, crit("BETWEEN", "720p", "1080p"), FieldKind.RESOLUTION)


def test_set_modifiers():
    values = frozenset({EntityRef("1", "main"), EntityRef("2", "main")})
    assert evaluate(values, crit("INCLUDES", ["2", "9"]), FieldKind.SET)
    assert evaluate(values, crit("INCLUDES_ALL", ["1", "2"]), FieldKind.SET)
    assert not evaluate(values, crit("INCLUDES_ALL", ["1", "9"]), FieldKind.SET)
    assert evaluate(values, crit("EXCLUDES", ["9"]), FieldKind.SET)
    assert evaluate(values, crit("EQUALS", ["1", "2"]), FieldKind.SET)
    assert not evaluate(values, crit("EQUALS", ["1"]), FieldKind.SET)
    assert evaluate(frozenset(), crit("IS_NULL"), FieldKind.SET)


def test_set_tokens_can_pin_a_source():
    values = frozenset({EntityRef("1", "main")})
    assert evaluate(values, crit("INCLUDES", ["1:main"]), FieldKind.SET)
    assert not evaluate(values, crit("INCLUDES", ["1:backup"]), FieldKind.SET)
