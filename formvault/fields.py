"""Field definitions and form structure checks.

A form's fields are stored as plain dicts inside the form document. This module
owns the typed view of those dicts (Field, FieldValidation, ShowWhen,
FormSettings), the materialization step every write goes through, and the
structural checks that reject a form definition before it is persisted.

Materialization:
- assigns an ``id`` to every field that lacks one (ids never change afterwards)
- trims and lowercases ``name``, lowercases ``type``, trims ``label``
- fills defaults: ``required=False``, ``options=[]``, ``validation={}``,
  ``conditionalFields=[]``
- takes ``order`` from the payload when it is a number, else the array position,
  then re-ranks every sibling list to a dense ``0..n-1`` sequence

Conditional fields are a recursive list of fields shown only when a parent
field has a given value. The recursion is bounded at write time by
``max_depth``.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator, ValidationError

from formvault.errors import FieldError, FormStructureError
from formvault.store.base import new_id
from formvault.types import CHOICE_FIELD_TYPES, FieldType, FormStatus

DEFAULT_MAX_DEPTH = 5

FIELD_NAME_PATTERN = r"^[a-z0-9_]+$"

# camelCase document key -> FieldValidation attribute
_VALIDATION_KEYS = {
    "min": "min",
    "max": "max",
    "minLength": "min_length",
    "maxLength": "max_length",
    "pattern": "pattern",
    "customMessage": "custom_message",
    "minDate": "min_date",
}


FORM_DEFINITION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["title"],
    "properties": {
        "title": {"type": "string", "minLength": 1, "maxLength": 200},
        "description": {"type": "string", "maxLength": 1000},
        "status": {"enum": [s.value for s in FormStatus]},
        "fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
        "settings": {
            "type": "object",
            "properties": {
                "submitButtonText": {"type": "string"},
                "successMessage": {"type": "string"},
                "allowMultipleSubmissions": {"type": "boolean"},
            },
        },
    },
    "definitions": {
        "field": {
            "type": "object",
            "required": ["id", "label", "type", "name"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "label": {"type": "string", "minLength": 1, "maxLength": 200},
                "type": {"enum": [t.value for t in FieldType]},
                "name": {"type": "string", "pattern": FIELD_NAME_PATTERN},
                "required": {"type": "boolean"},
                "options": {"type": "array", "items": {"type": "string"}},
                "validation": {
                    "type": "object",
                    "properties": {
                        "min": {"type": "number"},
                        "max": {"type": "number"},
                        "minLength": {"type": "integer", "minimum": 0},
                        "maxLength": {"type": "integer", "minimum": 0},
                        "pattern": {"type": "string"},
                        "customMessage": {"type": "string"},
                        "minDate": {"type": "string"},
                    },
                    "additionalProperties": False,
                },
                "order": {"type": "integer", "minimum": 0},
                "conditionalFields": {
                    "type": "array",
                    "items": {"$ref": "#/definitions/field"},
                },
                "showWhen": {
                    "type": "object",
                    "required": ["parentFieldName"],
                    "properties": {
                        "parentFieldName": {"type": "string"},
                        "parentFieldValue": {"type": ["string", "number", "boolean"]},
                    },
                },
            },
        },
    },
}

_definition_validator = Draft7Validator(FORM_DEFINITION_SCHEMA)


@dataclass
class FieldValidation:
    """Constraint bag attached to a field. Unset constraints are omitted."""
    min: Optional[Any] = None
    max: Optional[Any] = None
    min_length: Optional[Any] = None
    max_length: Optional[Any] = None
    pattern: Optional[Any] = None
    custom_message: Optional[Any] = None
    min_date: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, attr in _VALIDATION_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FieldValidation":
        data = data or {}
        return cls(**{attr: data.get(key) for key, attr in _VALIDATION_KEYS.items()})


@dataclass
class ShowWhen:
    parent_field_name: str
    parent_field_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parentFieldName": self.parent_field_name,
            "parentFieldValue": self.parent_field_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShowWhen":
        return cls(
            parent_field_name=data.get("parentFieldName"),
            parent_field_value=data.get("parentFieldValue"),
        )


@dataclass
class Field:
    """One form input definition.

    Attributes:
        id: Stable identifier, assigned once
        label: Display text, also the export column header
        type: One of FieldType (kept as the raw string until checked)
        name: Machine key used in submission answers
        required: Whether an empty answer is rejected
        options: Allowed values for select, radio and checkbox fields
        validation: Type-specific constraints
        order: Display and export position among siblings
        conditional_fields: Child fields shown only when show_when matches
        show_when: Visibility condition on a parent field's value
    """
    id: Optional[str]
    label: Optional[str]
    type: Optional[str]
    name: Optional[str]
    required: bool = False
    options: List[Any] = field(default_factory=list)
    validation: FieldValidation = field(default_factory=FieldValidation)
    order: Any = None
    conditional_fields: List["Field"] = field(default_factory=list)
    show_when: Optional[ShowWhen] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored document shape.

        Missing identity keys are left out so structure checks report them as
        required rather than as wrongly typed.
        """
        result: Dict[str, Any] = {}
        for key in ("id", "label", "type", "name"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result["required"] = self.required
        result["options"] = list(self.options)
        result["validation"] = self.validation.to_dict()
        result["order"] = self.order
        result["conditionalFields"] = [f.to_dict() for f in self.conditional_fields]
        if self.show_when is not None:
            result["showWhen"] = self.show_when.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Field":
        """Create Field from a stored or inbound dict.

        Accepts ``_id`` as an alias for ``id``. Nested conditional fields that
        are not dicts are dropped here; ``materialize_fields`` reports them.
        """
        options = data.get("options")
        show_when = data.get("showWhen")
        children = data.get("conditionalFields") or []
        return cls(
            id=data.get("id") or data.get("_id"),
            label=_strip(data.get("label")),
            type=_lower(data.get("type")),
            name=_lower(data.get("name")),
            required=bool(data.get("required", False)),
            options=list(options) if isinstance(options, list) else [],
            validation=FieldValidation.from_dict(
                data.get("validation") if isinstance(data.get("validation"), dict) else None
            ),
            order=data.get("order"),
            conditional_fields=[cls.from_dict(c) for c in children if isinstance(c, dict)],
            show_when=ShowWhen.from_dict(show_when) if isinstance(show_when, dict) else None,
        )


@dataclass
class FormSettings:
    submit_button_text: str = "Submit"
    success_message: str = "Thank you for your submission!"
    allow_multiple_submissions: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitButtonText": self.submit_button_text,
            "successMessage": self.success_message,
            "allowMultipleSubmissions": self.allow_multiple_submissions,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FormSettings":
        """Create FormSettings, falling back to defaults for missing keys."""
        data = data or {}
        defaults = cls()
        return cls(
            submit_button_text=data.get("submitButtonText", defaults.submit_button_text),
            success_message=data.get("successMessage", defaults.success_message),
            allow_multiple_submissions=data.get(
                "allowMultipleSubmissions", defaults.allow_multiple_submissions
            ),
        )


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def materialize_fields(raw_fields: Any, path: str = "fields") -> List[Dict[str, Any]]:
    """Normalize an inbound field list into stored field dicts.

    Args:
        raw_fields: The ``fields`` value of a create or update payload
        path: Dotted path used in error messages

    Returns:
        New list of field dicts with ids, defaults and dense ``order``

    Raises:
        FormStructureError: If ``raw_fields`` is not a list of objects
    """
    errors = _check_shapes(raw_fields, path)
    if errors:
        raise FormStructureError(errors)

    fields = [Field.from_dict(item) for item in raw_fields]
    _assign_identity(fields)
    return [f.to_dict() for f in fields]


def _check_shapes(raw_fields: Any, path: str) -> List[FieldError]:
    if not isinstance(raw_fields, list):
        return [FieldError(path, "Fields must be an array")]
    errors = []
    for index, item in enumerate(raw_fields):
        if not isinstance(item, dict):
            errors.append(FieldError(f"{path}.{index}", "Field definition must be an object"))
        elif item.get("conditionalFields") is not None:
            errors.extend(_check_shapes(item["conditionalFields"], f"{path}.{index}.conditionalFields"))
    return errors


def _assign_identity(fields: List[Field]) -> None:
    for position, f in enumerate(fields):
        if not f.id:
            f.id = new_id()
        if not _is_number(f.order):
            f.order = position
        _assign_identity(f.conditional_fields)
    ranked = sorted(range(len(fields)), key=lambda i: (fields[i].order, i))
    for rank, index in enumerate(ranked):
        fields[index].order = rank


def sort_fields(fields: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Return a copy of ``fields`` sorted by ``order``, conditional fields included.

    The sort is stable, so fields sharing an order keep their stored sequence.
    """
    result = []
    for f in sorted(fields or [], key=lambda f: f.get("order") or 0):
        f = dict(f)
        if f.get("conditionalFields"):
            f["conditionalFields"] = sort_fields(f["conditionalFields"])
        result.append(f)
    return result


def iter_fields(fields: List[Dict[str, Any]], path: str = "fields", depth: int = 1):
    """Yield ``(path, depth, field)`` for every field in the tree, parents first."""
    for index, f in enumerate(fields):
        field_path = f"{path}.{index}"
        yield field_path, depth, f
        yield from iter_fields(f.get("conditionalFields") or [], f"{field_path}.conditionalFields", depth + 1)


def check_form_structure(form: Dict[str, Any], max_depth: int = DEFAULT_MAX_DEPTH) -> None:
    """Reject a form definition that violates a structural invariant.

    Args:
        form: The prospective form (title, description, status, fields, settings)
        max_depth: Deepest allowed level of conditional fields (top level is 1)

    Raises:
        FormStructureError: With one FieldError per violation
    """
    schema_errors = sorted(
        _definition_validator.iter_errors(form),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    if schema_errors:
        raise FormStructureError([_translate_error(e) for e in schema_errors])

    errors: List[FieldError] = []
    seen: Dict[str, str] = {}
    for path, depth, f in iter_fields(form.get("fields") or []):
        if depth > max_depth:
            errors.append(FieldError(path, f"Conditional fields cannot be nested deeper than {max_depth} levels"))
            continue

        key = f["name"].lower()
        if key in seen:
            errors.append(FieldError(f"{path}.name", "Field names must be unique within a form"))
        else:
            seen[key] = path

        if f["type"] in CHOICE_FIELD_TYPES and not f.get("options"):
            errors.append(FieldError(f"{path}.options", f'Field "{f["label"]}" requires at least one option'))

        pattern = (f.get("validation") or {}).get("pattern")
        if pattern:
            try:
                re.compile(pattern)
            except re.error as exc:
                errors.append(FieldError(f"{path}.validation.pattern", f"Invalid pattern: {exc}"))

    if errors:
        raise FormStructureError(errors)


def _translate_error(error: ValidationError) -> FieldError:
    """Translate a jsonschema error on a form definition into a FieldError."""
    path = ".".join(str(p) for p in error.absolute_path)

    if error.validator == "required":
        missing = error.message.split("'")[1] if "'" in error.message else "field"
        full_path = f"{path}.{missing}" if path else missing
        return FieldError(full_path, f"{missing} is required")

    if error.validator == "type":
        return FieldError(path, f"{path} must be of type {error.validator_value}")

    if error.validator == "enum":
        allowed = ", ".join(str(v) for v in error.validator_value)
        return FieldError(path, f"{path} must be one of: {allowed}")

    if error.validator == "pattern" and path.endswith(".name"):
        return FieldError(path, "Field name can only contain lowercase letters, numbers, and underscores")

    if error.validator == "minLength" and error.validator_value == 1:
        return FieldError(path, f"{path} cannot be empty")

    if error.validator == "maxLength":
        return FieldError(path, f"{path} cannot exceed {error.validator_value} characters")

    if error.validator == "additionalProperties":
        return FieldError(path, f"{path}: {error.message}")

    return FieldError(path, f"{path} is invalid: {error.message}")


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "FORM_DEFINITION_SCHEMA",
    "Field",
    "FieldValidation",
    "ShowWhen",
    "FormSettings",
    "materialize_fields",
    "sort_fields",
    "iter_fields",
    "check_form_structure",
]
