"""Core type definitions for formvault.

This module defines the enumerations shared by the validator, the document
store and the repositories:
- FieldType: Input types a form field can declare
- FormStatus: Publication states of a form
- SubmissionStatus: Review states of a submission
- SortOrder: Direction for list queries
- EventType: Notifications emitted after form mutations
- ErrorType: Categories carried by every FormVaultError

Values are the exact strings stored in documents, so every enum subclasses
``str`` and compares equal to its persisted value.
"""

from enum import Enum
from typing import Any, Dict, List

from typing_extensions import TypedDict


class FieldType(str, Enum):
    """Input types a form field can declare."""
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    EMAIL = "email"
    DATE = "date"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    FILE = "file"


# Values of the field types whose answers must come from the field's option list
CHOICE_FIELD_TYPES = frozenset(t.value for t in (FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX))


class FormStatus(str, Enum):
    """Publication states of a form.

    Only ACTIVE forms accept public submissions.
    """
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class SubmissionStatus(str, Enum):
    """Review states of a submission. Any state may move to any other."""
    PENDING = "pending"
    REVIEWED = "reviewed"
    ARCHIVED = "archived"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class EventType(str, Enum):
    """Notifications emitted after a form mutation.

    STATUS_CHANGED follows an update that only touched ``status``;
    FORM_CHANGED follows any structural edit, including field reordering.
    """
    FORM_STATUS_CHANGED = "form.status_changed"
    FORM_CHANGED = "form.changed"


class ErrorType(str, Enum):
    """Error categories used to map failures onto host responses."""
    NOT_FOUND = "not_found"
    NOT_ACCEPTING = "not_accepting"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INVALID_REQUEST = "invalid_request"
    STORAGE = "storage"


class Pagination(TypedDict):
    total: int
    page: int
    pages: int


class Page(TypedDict):
    """One page of a list query: the documents plus the pagination block."""
    data: List[Dict[str, Any]]
    pagination: Pagination


__all__ = [
    "FieldType",
    "CHOICE_FIELD_TYPES",
    "FormStatus",
    "SubmissionStatus",
    "SortOrder",
    "EventType",
    "ErrorType",
    "Pagination",
    "Page",
]
