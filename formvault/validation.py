"""Answer validation for formvault forms.

This module turns a form's field definitions into pass/fail decisions on a
submission's answers. Validation is split in two layers:

- ``check_field`` is the per-field rule: given one field definition and the
  answer for it, it returns that field's errors. It is a pure function.
- ``SchemaValidator`` runs the rule over every field of a form, in the order
  the fields are stored, and aggregates the errors into a ValidationResult.

Error order is part of the contract: hosts show ``errors[0]`` as the headline
message, so fields are always evaluated in stored order and every field is
evaluated even after an earlier one failed.

A required field with an empty answer produces exactly one "is required" error
and no type-specific checks. An optional field with an empty answer is always
valid.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser

from formvault.errors import FieldError
from formvault.types import FieldType

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating answers against a form's fields.

    Attributes:
        is_valid: Whether every field passed
        errors: Field-level errors in field order (empty if valid)
        missing_fields: Names of required fields that had no answer
        invalid_fields: Names of fields that failed a type-specific check

    Examples:
        >>> form = {"fields": [{"name": "name", "label": "Name", "type": "text", "required": True}]}
        >>> result = SchemaValidator(form).validate({"name": "Ada"})
        >>> result.is_valid
        True
        >>> result.errors
        []
    """
    is_valid: bool
    errors: List[FieldError]
    missing_fields: Optional[List[str]] = None
    invalid_fields: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }


def is_empty(value: Any) -> bool:
    """Whether an answer counts as not provided.

    ``None``, whitespace-only strings and empty lists are empty. Numbers,
    booleans (including ``False`` and ``0``) and dicts never are.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return len(value) == 0
    return False


def to_number(value: Any) -> Optional[float]:
    """Coerce an answer to a number, or return None if it is not numeric.

    Booleans count as 1 and 0, strings are parsed after trimming. The only
    spelled-out infinity accepted is ``Infinity`` with an optional sign.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if "_" in text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        word = text.lstrip("+-")
        if word.isalpha() and word != "Infinity":
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an answer or constraint into an aware datetime.

    Strings go through dateutil; ints and floats are epoch milliseconds.
    Naive results are taken as UTC. Returns None when unparsable.
    """
    try:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        elif isinstance(value, str):
            parsed = date_parser.parse(value)
        elif isinstance(value, datetime):
            parsed = value
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_number(value: Any) -> str:
    """Render a numeric bound the way it was written: 18 not 18.0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Type rules
#
# Each rule takes (label, field, value) for a non-empty value and returns the
# error messages for that field, in emission order.
# ---------------------------------------------------------------------------

def _check_email(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    if not EMAIL_PATTERN.search(str(value)):
        return [f"{label} must be a valid email address"]
    return []


def _check_number(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    number = to_number(value)
    if number is None:
        return [f"{label} must be a valid number"]

    messages = []
    rules = field.get("validation") or {}
    minimum = rules.get("min")
    maximum = rules.get("max")
    if minimum is not None and number < minimum:
        messages.append(f"{label} must be at least {format_number(minimum)}")
    if maximum is not None and number > maximum:
        messages.append(f"{label} must be at most {format_number(maximum)}")
    return messages


def _check_text(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    if not isinstance(value, str):
        return [f"{label} must be text"]

    messages = []
    rules = field.get("validation") or {}
    min_length = rules.get("minLength")
    max_length = rules.get("maxLength")
    if min_length and len(value) < min_length:
        messages.append(f"{label} must be at least {format_number(min_length)} characters")
    if max_length and len(value) > max_length:
        messages.append(f"{label} must be at most {format_number(max_length)} characters")

    pattern = rules.get("pattern")
    if pattern:
        try:
            matched = re.search(pattern, value) is not None
        except re.error:
            logger.warning("Field %r has an invalid pattern %r", field.get("name"), pattern)
            matched = False
        if not matched:
            messages.append(rules.get("customMessage") or f"{label} format is invalid")
    return messages


def _check_date(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    date = parse_date(value)
    if date is None:
        return [f"{label} must be a valid date"]

    min_date = (field.get("validation") or {}).get("minDate")
    if min_date:
        earliest = parse_date(min_date)
        if earliest is not None and date < earliest:
            return [f"{label} must be on or after {earliest.date().isoformat()}"]
    return []


def _check_checkbox(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    if not isinstance(value, list):
        return [f"{label} must be an array of values"]

    options = field.get("options") or []
    if options and any(item not in options for item in value):
        return [f"{label} contains invalid options"]
    return []


def _check_option(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    options = field.get("options") or []
    if options and value not in options:
        return [f"{label} must be one of the provided options"]
    return []


def _check_file(label: str, field: Dict[str, Any], value: Any) -> List[str]:
    if isinstance(value, list):
        messages = []
        if not value:
            messages.append(f"{label} must include at least one file")
        for item in value:
            messages.extend(_check_file(label, field, item))
        return messages

    if not isinstance(value, dict):
        return [f"{label} must be a file"]
    if not value.get("path") or not value.get("originalName"):
        return [f"{label} file metadata is missing"]
    return []


FIELD_RULES: Dict[str, Callable[[str, Dict[str, Any], Any], List[str]]] = {
    FieldType.EMAIL.value: _check_email,
    FieldType.NUMBER.value: _check_number,
    FieldType.TEXT.value: _check_text,
    FieldType.TEXTAREA.value: _check_text,
    FieldType.DATE.value: _check_date,
    FieldType.CHECKBOX.value: _check_checkbox,
    FieldType.RADIO.value: _check_option,
    FieldType.SELECT.value: _check_option,
    FieldType.FILE.value: _check_file,
}


def check_field(field: Dict[str, Any], value: Any) -> List[FieldError]:
    """Validate one answer against one field definition.

    Args:
        field: A stored field dict (name, label, type, required, options, validation)
        value: The answer for ``field["name"]``, or None if absent

    Returns:
        The field's errors, in emission order

    Examples:
        >>> age = {"name": "age", "label": "Age", "type": "number", "validation": {"min": 18}}
        >>> [e.message for e in check_field(age, 17)]
        ['Age must be at least 18']
        >>> check_field(age, None)
        []
    """
    name = field.get("name")
    label = field.get("label") or name

    if is_empty(value):
        if field.get("required"):
            return [FieldError(name, f"{label} is required")]
        return []

    rule = FIELD_RULES.get(field.get("type"))
    if rule is None:
        return []
    return [FieldError(name, message) for message in rule(label, field, value)]


class SchemaValidator:
    """Validates submission answers against a form's field list.

    Attributes:
        fields: The field definitions, in the order they are evaluated

    Examples:
        >>> form = {"fields": [
        ...     {"name": "email", "label": "Email", "type": "email", "required": True},
        ...     {"name": "age", "label": "Age", "type": "number", "validation": {"min": 18}},
        ... ]}
        >>> result = SchemaValidator(form).validate({"age": 12})
        >>> [e.message for e in result.errors]
        ['Email is required', 'Age must be at least 18']
    """

    def __init__(self, form: Dict[str, Any]) -> None:
        self.fields: List[Dict[str, Any]] = list(form.get("fields") or [])

    def validate(self, answers: Dict[str, Any]) -> ValidationResult:
        """Validate answers against every field.

        Args:
            answers: Mapping of field name to submitted value

        Returns:
            ValidationResult with errors in field order
        """
        errors: List[FieldError] = []
        missing_fields: List[str] = []
        invalid_fields: List[str] = []

        for field in self.fields:
            value = answers.get(field.get("name"))
            field_errors = check_field(field, value)
            if not field_errors:
                continue
            errors.extend(field_errors)
            if is_empty(value):
                missing_fields.append(field.get("name"))
            else:
                invalid_fields.append(field.get("name"))

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            missing_fields=missing_fields,
            invalid_fields=invalid_fields,
        )


def validate(form: Dict[str, Any], answers: Dict[str, Any]) -> ValidationResult:
    """Shortcut for ``SchemaValidator(form).validate(answers)``."""
    return SchemaValidator(form).validate(answers)


__all__ = [
    "ValidationResult",
    "SchemaValidator",
    "FIELD_RULES",
    "check_field",
    "is_empty",
    "to_number",
    "parse_date",
    "validate",
]
