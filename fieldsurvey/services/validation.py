"""Field-level validation.

Validation never raises: every check returns a list of human-readable
messages, and the runtime aggregates them into {field_id: [messages]} maps.
"""

import logging
import re
from datetime import date, datetime, time
from typing import Any, assert_never

from fieldsurvey.schemas.forms import (
    BaseField,
    CheckboxField,
    ChoiceField,
    DateField,
    FieldConfig,
    GeoField,
    MediaField,
    NumberField,
    RelationshipField,
    TextField,
    ValidationRule,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s\-()]{5,19}$")

FieldErrors = dict[str, list[str]]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


# ---------------------------------------------------------------------------
# Type-specific constraints
# ---------------------------------------------------------------------------


def _check_text(field: TextField, value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Please enter text"]
    errors: list[str] = []
    if field.min_length is not None and len(value) < field.min_length:
        errors.append(f"Must be at least {field.min_length} characters")
    if field.max_length is not None and len(value) > field.max_length:
        errors.append(f"Must be at most {field.max_length} characters")
    if field.pattern:
        try:
            if re.fullmatch(field.pattern, value) is None:
                errors.append("Invalid format")
        except re.error as exc:
            logger.warning("Skipping unusable pattern on field '%s': %s", field.id, exc)
    if field.type == "email" and not EMAIL_PATTERN.match(value):
        errors.append("Please enter a valid email address")
    if field.type == "phone" and not PHONE_PATTERN.match(value):
        errors.append("Please enter a valid phone number")
    return errors


def _check_number(field: NumberField, value: Any) -> list[str]:
    number = _as_number(value)
    if number is None:
        return ["Please enter a valid number"]
    if field.min is not None and number < field.min:
        return [f"Minimum value is {_format_bound(field.min)}"]
    if field.max is not None and number > field.max:
        return [f"Maximum value is {_format_bound(field.max)}"]
    return []


def _check_choice(field: ChoiceField, value: Any) -> list[str]:
    allowed = {option.value for option in field.options if not option.disabled}
    if field.allows_many:
        if not isinstance(value, (list, tuple)):
            return ["Please select one or more options"]
        errors = [f"'{item}' is not a valid option" for item in value if item not in allowed]
        if field.max_select is not None and len(value) > field.max_select:
            errors.append(f"Select at most {field.max_select} options")
        return errors
    if value not in allowed:
        return [f"'{value}' is not a valid option"]
    return []


def _check_date(field: DateField, value: Any) -> list[str]:
    if isinstance(value, (date, datetime, time)):
        return []
    if not isinstance(value, str):
        return ["Please enter a valid date" if field.type == "date" else "Please enter a valid time"]
    parse = date.fromisoformat if field.type == "date" else time.fromisoformat
    try:
        parse(value[:10] if field.type == "date" else value)
    except ValueError:
        return ["Please enter a valid date" if field.type == "date" else "Please enter a valid time"]
    return []


def _check_geo(field: GeoField, value: Any) -> list[str]:
    if not isinstance(value, dict):
        return ["Location is required"]
    errors: list[str] = []
    for key in ("latitude", "longitude", *field.required_fields):
        if value.get(key) is None:
            errors.append(f"Location is missing {key}")
    if field.require_accuracy is not None:
        accuracy = _as_number(value.get("accuracy"))
        if accuracy is None or accuracy > field.require_accuracy:
            errors.append(f"Location accuracy must be within {_format_bound(field.require_accuracy)} m")
    return errors


def _check_media(field: MediaField, value: Any) -> list[str]:
    items = value if isinstance(value, (list, tuple)) else [value]
    errors: list[str] = []
    if field.max_files is not None and len(items) > field.max_files:
        errors.append(f"At most {field.max_files} files allowed")
    for item in items:
        if not isinstance(item, dict) or not item.get("uri"):
            errors.append("Invalid media attachment")
            continue
        size = item.get("size") or (item.get("metadata") or {}).get("size")
        if field.max_size is not None and size is not None and size > field.max_size:
            errors.append(f"File exceeds maximum size of {field.max_size} bytes")
        mime = item.get("mimeType") or item.get("mime_type")
        if field.accepted_types and mime is not None and mime not in field.accepted_types:
            errors.append(f"File type '{mime}' is not accepted")
    return errors


def _check_relationship(field: RelationshipField, value: Any) -> list[str]:
    if field.multiple:
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) and item for item in value):
            return [f"Please select one or more {field.relation_to} records"]
        return []
    if not isinstance(value, str) or not value:
        return [f"Please select a {field.relation_to}"]
    return []


def check_type_constraints(field: FieldConfig, value: Any) -> list[str]:
    """Constraints implied by the field's kind, dispatched exhaustively over the field union."""
    match field:
        case TextField():
            return _check_text(field, value)
        case NumberField():
            return _check_number(field, value)
        case ChoiceField():
            return _check_choice(field, value)
        case CheckboxField():
            return [] if isinstance(value, bool) else ["Please tick or untick this box"]
        case DateField():
            return _check_date(field, value)
        case GeoField():
            return _check_geo(field, value)
        case MediaField():
            return _check_media(field, value)
        case RelationshipField():
            return _check_relationship(field, value)
        case _:
            assert_never(field)


# ---------------------------------------------------------------------------
# Declared rules
# ---------------------------------------------------------------------------


def check_rule(rule: ValidationRule, value: Any) -> str | None:
    """Return the rule's message when ``value`` violates it, else None.

    A rule whose own bound or pattern is unusable is skipped with a warning.
    """
    try:
        return _apply_rule(rule, value)
    except (TypeError, ValueError, re.error) as exc:
        logger.warning("Skipping unusable '%s' rule (value %r): %s", rule.type, rule.value, exc)
        return None


def _apply_rule(rule: ValidationRule, value: Any) -> str | None:
    match rule.type:
        case "required":
            failed = is_empty(value)
            default = "This field is required"
        case "min":
            number = _as_number(value)
            failed = number is None or number < float(rule.value)
            default = f"Minimum value is {rule.value}"
        case "max":
            number = _as_number(value)
            failed = number is None or number > float(rule.value)
            default = f"Maximum value is {rule.value}"
        case "minLength":
            failed = len(value) < int(rule.value) if hasattr(value, "__len__") else True
            default = f"Must be at least {rule.value} characters"
        case "maxLength":
            failed = len(value) > int(rule.value) if hasattr(value, "__len__") else True
            default = f"Must be at most {rule.value} characters"
        case "pattern":
            failed = not isinstance(value, str) or re.fullmatch(str(rule.value), value) is None
            default = "Invalid format"
        case "email":
            failed = not isinstance(value, str) or not EMAIL_PATTERN.match(value)
            default = "Please enter a valid email address"
        case "url":
            failed = not isinstance(value, str) or not URL_PATTERN.match(value)
            default = "Please enter a valid URL"
        case "phone":
            failed = not isinstance(value, str) or not PHONE_PATTERN.match(value)
            default = "Please enter a valid phone number"
        case _:
            logger.warning("Unknown validation rule type '%s'", rule.type)
            return None
    return (rule.message or default) if failed else None


def validate_field(field: BaseField, value: Any) -> list[str]:
    """Validate one field value. Empty optional values pass every check."""
    if field.disabled:
        return []
    required = field.required or any(rule.type == "required" for rule in field.validation)
    if is_empty(value):
        if not required:
            return []
        custom = next((r.message for r in field.validation if r.type == "required" and r.message), None)
        return [custom or "This field is required"]

    errors = check_type_constraints(field, value)
    for rule in field.validation:
        if rule.type == "required":
            continue
        message = check_rule(rule, value)
        if message is not None:
            errors.append(message)
    return errors
