"""
Column validation rules

Rules are declared in the column info:

    email = db.Column(db.String, nullable=False, info={"validate": {"is_email": True}})
    role = db.Column(db.String, info={"validate": {"is_in": ["admin", "user"]}})
    token = db.Column(db.String, info={"validate": {"is_uuid": 4}})

`not_null` is implied by nullable=False columns without default.
"""
import re
import uuid

from email_validator import EmailNotValidError, validate_email

from .attr_parse import parse_attr, parse_datetime
from .errors import ConfigurationError

NUMERIC = re.compile(r"^[+-]?([0-9]*[.])?[0-9]+$")
INTEGER = re.compile(r"^[+-]?[0-9]+$")
ALPHA = re.compile(r"^[A-Za-z]+$")
ALPHA_OR_SPECIAL = re.compile("^[A-Za-zÀ-ÖØ-öø-ÿ\\s]*$")

# rules checked on the dto value before it is parsed into the column type
RAW_RULES = ("is_boolean",)

MESSAGES = {
    "not_null": "{field} cannot be null",
    "type": "{field} must be a valid {args}",
    "is_email": "{field} must be a valid email address",
    "is_int": "{field} must be an integer",
    "is_float": "{field} must be a decimal number",
    "is_numeric": "{field} must be a number",
    "is_alpha": "{field} must only contain letters without special characters",
    "is_alpha_or_special": "{field} must only contain letters",
    "is_date": "{field} must be a date",
    "is_uuid": "{field} must be a UUID v{args}",
    "is_boolean": "{field} must be boolean",
    "is_in": "{field} must be one of: {args}",
    "len": "{field} length must be between {args}",
    "min": "{field} must be greater than or equal to {args}",
    "max": "{field} must be less than or equal to {args}",
    "matches": "{field} must match {args}",
}


def is_email(value, arg) -> bool:
    if not arg:
        return True
    try:
        validate_email(str(value), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_float(value, arg) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def is_date(value, arg) -> bool:
    if hasattr(value, "year"):
        return True
    try:
        parse_datetime(value)
    except ValueError:
        return False
    return True


def is_uuid(value, arg) -> bool:
    try:
        parsed = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return False
    return arg is True or parsed.version == arg


RULES = {
    "is_email": is_email,
    "is_int": lambda value, arg: not isinstance(value, bool) and INTEGER.match(str(value)) is not None,
    "is_float": is_float,
    "is_numeric": lambda value, arg: not isinstance(value, bool) and NUMERIC.match(str(value)) is not None,
    "is_alpha": lambda value, arg: ALPHA.match(str(value)) is not None,
    "is_alpha_or_special": lambda value, arg: ALPHA_OR_SPECIAL.match(str(value)) is not None,
    "is_date": is_date,
    "is_uuid": is_uuid,
    "is_boolean": lambda value, arg: isinstance(value, bool),
    "is_in": lambda value, arg: value in arg,
    "len": lambda value, arg: arg[0] <= len(value) <= arg[1],
    "min": lambda value, arg: value >= arg,
    "max": lambda value, arg: value <= arg,
    "matches": lambda value, arg: re.search(arg, str(value)) is not None,
}


def format_args(arg) -> str:
    if isinstance(arg, bool) or arg is None:
        return ""
    if isinstance(arg, (list, tuple, set)):
        return ", ".join(str(item) for item in arg)
    return str(arg)


def error(field, rule, arg=None) -> dict:
    args = format_args(arg)
    return {"field": field, "message": MESSAGES[rule].format(field=field, args=args), "args": args}


def is_required(column, auto_identity: bool) -> bool:
    return not (column.nullable or auto_identity or column.default is not None or column.server_default is not None)


def validate_value(field, column, value) -> list:
    raw = value
    try:
        value = parse_attr(column, value)
    except (ValueError, TypeError):
        return [error(field, "type", column.type.python_type.__name__)]

    errors = []
    for rule, arg in column.info.get("validate", {}).items():
        if rule not in RULES:
            raise ConfigurationError(f"Unknown validation rule {rule} on {field}")
        try:
            valid = RULES[rule](raw if rule in RAW_RULES else value, arg)
        except TypeError:
            valid = False
        if not valid:
            errors.append(error(field, rule, arg))
    return errors


def validate(entity_type, dto: dict, partial: bool = False) -> list:
    """
    :param entity_type: EntityType the dto is built for
    :param dto: attribute values
    :param partial: only validate the attributes present in the dto
    :return: list of {"field", "message", "args"} errors, empty when valid
    """
    fields = [attr for attr in dto if attr in entity_type.attributes] if partial else entity_type.attributes
    errors = []
    for field in fields:
        column = entity_type.column(field)
        value = dto.get(field)
        if value is None:
            if is_required(column, field in entity_type.auto_identity):
                errors.append(error(field, "not_null"))
            continue
        errors.extend(validate_value(field, column, value))
    return errors
