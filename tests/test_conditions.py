"""Condition operators and AND/OR combination."""

import pytest

from services.execution.conditions import evaluate_condition, evaluate_conditions, get_nested_value


CONTACT = {
    "id": "contact-1",
    "first_name": "Ana",
    "custom_fields": {"engagement_score": 80, "city": "Lisbon"},
}


def check(field, operator, value=None, variables=None, contact=CONTACT):
    return evaluate_condition({"field": field, "operator": operator, "value": value},
                              variables or {}, contact)


@pytest.mark.parametrize("operator,value,expected", [
    ("greater_than", 50, True),
    ("greater_than", "80", False),
    ("less_than", 100, True),
    ("greater_than_or_equal", 80, True),
    ("less_than_or_equal", 79, False),
    ("equals", "80", True),
    ("not_equals", 80, False),
])
def test_numeric_and_equality_on_custom_field(operator, value, expected):
    assert check("contact.engagement_score", operator, value) is expected


def test_numeric_comparison_with_non_number_is_false():
    assert check("contact.first_name", "greater_than", 5) is False
    assert check("contact.first_name", "less_than", 5) is False
    assert check("score", "greater_than", "abc", {"score": 10}) is False


def test_string_operators():
    assert check("contact.first_name", "contains", "n") is True
    assert check("contact.first_name", "not_contains", "z") is True
    assert check("contact.city", "starts_with", "Lis") is True
    assert check("contact.city", "ends_with", "bon") is True
    assert check("contact.city", "ends_with", "Lis") is False


def test_emptiness():
    variables = {"blank": "", "items": [], "name": "x"}
    assert check("blank", "is_empty", variables=variables) is True
    assert check("items", "is_empty", variables=variables) is True
    assert check("missing", "is_empty", variables=variables) is True
    assert check("name", "is_not_empty", variables=variables) is True
    assert check("contact.phone", "is_empty") is True


def test_equals_with_missing_values():
    assert check("missing", "equals", None) is True
    assert check("missing", "equals", "") is False


def test_unknown_operator_is_false():
    assert check("contact.first_name", "matches_regex", "A.*") is False


def test_nested_variables():
    variables = {"trigger": {"message": "Hello there", "items": [{"sku": "A1"}]}}
    assert check("trigger.message", "starts_with", "hello", variables) is False
    assert check("trigger.message", "starts_with", "Hello", variables) is True
    assert get_nested_value(variables, "trigger.items.0.sku") == "A1"
    assert get_nested_value(variables, "trigger.items.5.sku") is None
    assert get_nested_value({"a.b": 1}, "a.b") == 1


def test_and_or_combination():
    high = {"field": "contact.engagement_score", "operator": "greater_than", "value": 50}
    lisbon = {"field": "contact.city", "operator": "equals", "value": "Porto"}

    assert evaluate_conditions([high, lisbon], {}, CONTACT, logic="AND") is False
    assert evaluate_conditions([high, lisbon], {}, CONTACT, logic="OR") is True
    assert evaluate_conditions([high], {}, CONTACT, logic="or") is True
    assert evaluate_conditions([], {}, CONTACT) is True
    assert evaluate_conditions([high], {}, CONTACT, logic="XOR") is False
