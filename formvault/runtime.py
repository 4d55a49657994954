"""FormVault facade wiring storage, repositories and events together.

This module provides the FormVault class that a host application (an HTTP
layer, a worker, a CLI) builds once and calls into. It owns the document
store, the upload storage and the event emitter, and sanitizes inbound text
before it reaches the repositories.

Usage:
    >>> from formvault.runtime import FormVault
    >>> from formvault.store import SQLDocumentStore
    >>> vault = FormVault(SQLDocumentStore.from_url("sqlite://"))
    >>> form = vault.create_form({
    ...     "title": "Contact",
    ...     "fields": [{"label": "Name", "name": "name", "type": "text", "required": True}],
    ... })
    >>> form["version"]
    1
    >>> vault.submit(form["id"], {"name": "Ada"})["status"]
    'pending'
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from formvault.config import Settings, configure_logging, get_settings
from formvault.events import EventEmitter
from formvault.fields import DEFAULT_MAX_DEPTH
from formvault.forms import FormRepository
from formvault.sanitize import sanitize_value
from formvault.store import DocumentStore, open_store
from formvault.submissions import SubmissionRepository, Upload
from formvault.uploads import FileStorage, LocalFileStorage

logger = logging.getLogger(__name__)


class FormVault:
    """Entry point for hosts.

    Attributes:
        store: The document store backend
        events: Emitter receiving form change notifications
        forms: FormRepository bound to ``store``
        submissions: SubmissionRepository bound to ``store``

    Examples:
        >>> from formvault.store import SQLDocumentStore
        >>> vault = FormVault(SQLDocumentStore.from_url("sqlite://"))
        >>> vault.forms.list()["pagination"]
        {'total': 0, 'page': 1, 'pages': 0}
    """

    def __init__(
        self,
        store: DocumentStore,
        files: Optional[FileStorage] = None,
        events: Optional[EventEmitter] = None,
        public_base_url: Optional[str] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        form_page_limit: int = 10,
        submission_page_limit: int = 20,
    ) -> None:
        self.store = store
        self.files = files
        self.events = events if events is not None else EventEmitter()
        self.forms = FormRepository(
            store,
            events=self.events,
            files=files,
            max_depth=max_depth,
            page_limit=form_page_limit,
        )
        self.submissions = SubmissionRepository(
            store,
            self.forms,
            files=files,
            public_base_url=public_base_url,
            page_limit=submission_page_limit,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FormVault":
        """Build a FormVault from Settings (environment and ``.env`` by default).

        Also applies ``settings.log_level`` to the root logger.
        """
        settings = settings or get_settings()
        configure_logging(settings.log_level)
        store = open_store(settings)
        logger.info("Opened %s document store", settings.storage_backend)
        return cls(
            store,
            files=LocalFileStorage(settings.upload_dir),
            public_base_url=settings.public_base_url,
            max_depth=settings.max_conditional_depth,
            form_page_limit=settings.form_page_limit,
            submission_page_limit=settings.submission_page_limit,
        )

    def create_form(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Sanitize and create a form."""
        return self.forms.create(sanitize_value(_plain(payload)))

    def update_form(self, form_id: str, updates: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Sanitize and apply a partial form update."""
        return self.forms.update(form_id, sanitize_value(_plain(updates)))

    def submit(
        self,
        form_id: str,
        answers: Any,
        uploaded_files: Optional[Iterable[Upload]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Sanitize answers and store a submission.

        Uploaded file metadata is added after sanitizing, so stored paths and
        file names are kept exactly as the upload middleware reported them.
        """
        return self.submissions.submit(
            form_id,
            sanitize_value(_plain(answers)),
            uploaded_files=uploaded_files,
            metadata=metadata,
        )

    def update_submission(
        self,
        form_id: str,
        submission_id: str,
        status: Optional[str] = None,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Sanitize and apply a submission status and/or answers update."""
        if answers is not None:
            answers = sanitize_value(_plain(answers))
        return self.submissions.update(form_id, submission_id, status=status, answers=answers)


def _plain(value: Any) -> Any:
    """Turn read-only mappings into dicts so the sanitizer walks into them."""
    if isinstance(value, Mapping) and not isinstance(value, dict):
        return dict(value)
    return value


__all__ = [
    "FormVault",
]
