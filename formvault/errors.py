"""Structured error types for formvault.

Every failure a caller is expected to handle is a subclass of FormVaultError.
Each carries an ErrorType so a host can map it onto a response status without
inspecting messages, and validation-style errors carry a list of FieldError
records indexed by field name (or by a dotted path into a form definition).

Missing documents are reported as ``None`` by the store and the repositories'
lookup methods; the NotFoundError family is raised only where an operation
cannot proceed without its parent form (submitting, exporting, re-validating).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from formvault.types import ErrorType


@dataclass(frozen=True)
class FieldError:
    """A single field-level failure.

    Attributes:
        field: Field name for answer validation, or a dotted path such as
            ``fields.2.name`` for form-definition errors
        message: Human-readable error description

    Examples:
        >>> err = FieldError(field="email", message="Email is required")
        >>> err.to_dict()
        {'field': 'email', 'message': 'Email is required'}
    """
    field: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"field": self.field, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        return cls(field=data["field"], message=data["message"])


class FormVaultError(Exception):
    """Base class for all formvault errors.

    Attributes:
        message: Human-readable summary
        errors: Field-level details, empty when the error is not field-specific
    """

    error_type: ErrorType = ErrorType.INVALID_REQUEST

    def __init__(self, message: str, errors: Optional[Sequence[FieldError]] = None):
        self.message = message
        self.errors: List[FieldError] = list(errors or [])
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error envelope returned to hosts."""
        result: Dict[str, Any] = {
            "success": False,
            "type": self.error_type.value,
            "message": self.message,
        }
        if self.errors:
            result["errors"] = [e.to_dict() for e in self.errors]
        return result


class NotFoundError(FormVaultError):
    error_type = ErrorType.NOT_FOUND


class FormNotFoundError(NotFoundError):
    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__("Form not found")


class FormNotAcceptingError(FormVaultError):
    """Raised when a submission targets a form whose status is not active."""

    error_type = ErrorType.NOT_ACCEPTING

    def __init__(self, form_id: str, status: str):
        self.form_id = form_id
        self.status = status
        super().__init__("Form is not accepting submissions")


class SubmissionValidationError(FormVaultError):
    """Submitted answers failed validation against the form's fields.

    Attributes:
        cleanup_paths: Paths of uploaded files that belonged to the rejected
            submission and were handed to the file collaborator for removal
    """

    error_type = ErrorType.VALIDATION

    def __init__(
        self,
        errors: Sequence[FieldError],
        cleanup_paths: Optional[Sequence[str]] = None,
        message: str = "Validation failed",
    ):
        self.cleanup_paths: List[str] = list(cleanup_paths or [])
        super().__init__(message, errors)


class ConflictError(FormVaultError):
    error_type = ErrorType.CONFLICT


class FormStructureError(ConflictError):
    """A form definition violates a structural invariant.

    Duplicate field names, choice fields without options, malformed field
    definitions and over-deep conditional trees all end up here, before
    anything is written.
    """

    def __init__(self, errors: Sequence[FieldError], message: str = "Invalid form definition"):
        super().__init__(message, errors)


class StaleRevisionError(ConflictError):
    """An update carried a revision that no longer matches the stored document."""

    def __init__(self, collection: str, doc_id: str, expected: int, actual: int):
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Document {collection}/{doc_id} is at revision {actual}, not {expected}"
        )


class DuplicateVersionError(ConflictError):
    def __init__(self, form_id: str, version: int):
        self.form_id = form_id
        self.version = version
        super().__init__(f"Version {version} of form {form_id} already exists")


class InvalidRequestError(FormVaultError, ValueError):
    """A call was made with arguments that can never succeed."""

    error_type = ErrorType.INVALID_REQUEST


class StorageError(FormVaultError):
    """An I/O or database failure inside a store backend.

    Always chained from the underlying exception and never retried.
    """

    error_type = ErrorType.STORAGE


__all__ = [
    "FieldError",
    "FormVaultError",
    "NotFoundError",
    "FormNotFoundError",
    "FormNotAcceptingError",
    "SubmissionValidationError",
    "ConflictError",
    "FormStructureError",
    "StaleRevisionError",
    "DuplicateVersionError",
    "InvalidRequestError",
    "StorageError",
]
