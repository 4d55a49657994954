"""FormVault: form-builder core.

FormVault stores dynamic form definitions and the submissions made against
them:
- Form definitions with typed fields, validation rules and nested
  conditional fields, versioned on every structural edit
- Rule-based validation of submitted answers with field-level messages
- Interchangeable flat-file and SQL document stores
- Tabular export of a form's submissions

Basic usage:
    >>> from formvault import FormVault
    >>> from formvault.store import SQLDocumentStore
    >>> vault = FormVault(SQLDocumentStore.from_url("sqlite://"))
    >>> form = vault.create_form({
    ...     "title": "Signup",
    ...     "fields": [{"label": "Email", "name": "email", "type": "email", "required": True}],
    ... })
    >>> print(vault.forms.get(form["id"])["status"])
    active
"""

__version__ = "0.1.0"
__author__ = "FormVault Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formvault.config import Settings
from formvault.errors import FieldError, FormVaultError
from formvault.runtime import FormVault
from formvault.validation import SchemaValidator, ValidationResult

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormVault",
    "Settings",
    "FieldError",
    "FormVaultError",
    "SchemaValidator",
    "ValidationResult",
]
