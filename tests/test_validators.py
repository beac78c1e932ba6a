import uuid

import pytest
from sqlalchemy import Boolean, Column, Integer, String

from sacrud.errors import ConfigurationError
from sacrud.validators import validate_value


def text_column(**rules):
    return Column("value", String, info={"validate": rules})


@pytest.mark.parametrize(
    "rule, arg, valid, invalid, message",
    [
        ("is_email", True, "ann@library.org", "ann@library..org", "value must be a valid email address"),
        ("is_int", True, "-12", "1.5", "value must be an integer"),
        ("is_float", True, "1.5", "one", "value must be a decimal number"),
        ("is_numeric", True, "-3.25", "1e5", "value must be a number"),
        ("is_alpha", True, "Ann", "Ann2", "value must only contain letters without special characters"),
        ("is_alpha_or_special", True, "José María", "Ann!", "value must only contain letters"),
        ("is_date", True, "2024-02-29", "2023-02-29", "value must be a date"),
        ("is_uuid", 4, str(uuid.uuid4()), str(uuid.uuid1()), "value must be a UUID v4"),
        ("is_uuid", 1, str(uuid.uuid1()), "not-a-uuid", "value must be a UUID v1"),
        ("is_in", ["novel", "essay"], "novel", "poetry", "value must be one of: novel, essay"),
        ("matches", "^[A-Z]{3}$", "ABC", "abc", "value must match ^[A-Z]{3}$"),
    ],
)
def test_rules(rule, arg, valid, invalid, message):
    column = text_column(**{rule: arg})
    assert validate_value("value", column, valid) == []
    assert [error["message"] for error in validate_value("value", column, invalid)] == [message]


def test_boolean_rule_checks_the_dto_value():
    column = Column("value", Boolean, info={"validate": {"is_boolean": True}})
    assert validate_value("value", column, False) == []
    assert validate_value("value", column, "yes") == [
        {"field": "value", "message": "value must be boolean", "args": ""}
    ]


def test_range_rules():
    column = Column("value", Integer, info={"validate": {"min": 1, "max": 5}})
    assert validate_value("value", column, "3") == []
    assert [error["message"] for error in validate_value("value", column, 9)] == [
        "value must be less than or equal to 5"
    ]
    assert [error["message"] for error in validate_value("value", column, "x")] == ["value must be a valid int"]


def test_unknown_rule():
    with pytest.raises(ConfigurationError):
        validate_value("value", text_column(is_prime=True), "7")
