"""Document storage for forms, submissions and form versions.

Two interchangeable backends implement the DocumentStore contract:
FileDocumentStore (one JSON file per document) and SQLDocumentStore (one
SQLAlchemy table). ``open_store`` picks one from Settings.
"""

from formvault.config import Settings
from formvault.store.base import (
    FORM_VERSIONS,
    FORMS,
    SUBMISSIONS,
    DocumentStore,
    new_id,
)
from formvault.store.file import FileDocumentStore
from formvault.store.sql import SQLDocumentStore


def open_store(settings: Settings) -> DocumentStore:
    """Create the backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "database":
        return SQLDocumentStore.from_url(settings.database_url)
    return FileDocumentStore(settings.data_dir)


__all__ = [
    "FORMS",
    "SUBMISSIONS",
    "FORM_VERSIONS",
    "DocumentStore",
    "FileDocumentStore",
    "SQLDocumentStore",
    "new_id",
    "open_store",
]
