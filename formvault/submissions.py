"""Submission intake, review and export.

SubmissionRepository accepts answers for active forms only, merges uploaded
file metadata into the answers, validates them against the form's fields in
stored order and persists them with status ``pending``. A rejected submission
writes nothing; the uploaded files that came with it are handed to the file
storage for removal and their paths are reported on the raised error.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from formvault.errors import (
    FieldError,
    FormNotAcceptingError,
    FormNotFoundError,
    InvalidRequestError,
    StorageError,
    SubmissionValidationError,
)
from formvault.export import ExportProjector, ExportResult
from formvault.forms import FormRepository
from formvault.store.base import SUBMISSIONS, DocumentStore, utc_now
from formvault.types import FormStatus, Page, SubmissionStatus
from formvault.uploads import FileStorage, UploadedFile, merge_uploads, upload_paths
from formvault.validation import SchemaValidator

logger = logging.getLogger(__name__)

Upload = Union[UploadedFile, Dict[str, Any]]


class SubmissionRepository:
    """Typed access to the ``submissions`` collection.

    Attributes:
        store: Backend holding submissions, scoped by ``formId``
        forms: Repository used to look up the target form
        files: Optional upload storage for discarding rejected uploads
        public_base_url: Prefix for the ``url`` of stored file answers
        validator: Factory building a validator for a form
        page_limit: Default page size for ``list``
    """

    def __init__(
        self,
        store: DocumentStore,
        forms: FormRepository,
        files: Optional[FileStorage] = None,
        public_base_url: Optional[str] = None,
        validator: Callable[[Dict[str, Any]], SchemaValidator] = SchemaValidator,
        page_limit: int = 20,
    ) -> None:
        self.store = store
        self.forms = forms
        self.files = files
        self.public_base_url = public_base_url or None
        self.validator = validator
        self.page_limit = page_limit
        self.projector = ExportProjector()

    def submit(
        self,
        form_id: str,
        answers: Any,
        uploaded_files: Optional[Iterable[Upload]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Validate and store a submission.

        Args:
            form_id: Target form
            answers: Mapping of field name to value
            uploaded_files: Files already written by the upload middleware
            metadata: Request details such as ``ipAddress`` and ``userAgent``

        Returns:
            The stored submission

        Raises:
            FormNotFoundError: If the form does not exist
            FormNotAcceptingError: If the form is not active; checked before
                the answers are looked at
            SubmissionValidationError: If the answers are invalid
            StorageError: If the write fails
        """
        uploads = [u if isinstance(u, UploadedFile) else UploadedFile.from_dict(u) for u in uploaded_files or []]
        paths = upload_paths(uploads)

        form = self.forms.get(form_id, sort_fields=False)
        if form is None:
            self._discard(paths)
            raise FormNotFoundError(form_id)
        if form.get("status") != FormStatus.ACTIVE.value:
            self._discard(paths)
            raise FormNotAcceptingError(form_id, form.get("status"))
        if not isinstance(answers, Mapping):
            self._discard(paths)
            raise SubmissionValidationError([FieldError("answers", "Answers are required")], cleanup_paths=paths)

        merged = merge_uploads(dict(answers), uploads, self.public_base_url)
        result = self.validator(form).validate(merged)
        if not result.is_valid:
            logger.info("Rejected submission for form %s: %d errors", form_id, len(result.errors))
            self._discard(paths)
            raise SubmissionValidationError(result.errors, cleanup_paths=paths)

        meta = dict(metadata or {})
        meta.setdefault("submittedAt", utc_now())
        try:
            submission = self.store.create(SUBMISSIONS, {
                "formId": form_id,
                "formVersion": form.get("version", 1),
                "answers": merged,
                "status": SubmissionStatus.PENDING.value,
                "metadata": meta,
            })
        except StorageError:
            self._discard(paths)
            raise

        logger.info("Stored submission %s for form %s", submission["id"], form_id)
        return submission

    def get(self, form_id: str, submission_id: str) -> Optional[Dict[str, Any]]:
        """Get one submission of a form.

        Args:
            form_id: Form the submission belongs to
            submission_id: Submission identifier

        Returns:
            The submission, or None if it does not exist under that form
        """
        return self.store.get(SUBMISSIONS, submission_id, scope=form_id)

    def update(
        self,
        form_id: str,
        submission_id: str,
        status: Optional[str] = None,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Change a submission's review status and/or replace its answers.

        New answers are validated against the form as it is now, not the
        version the submission was made against.

        Returns:
            The updated submission, or None if it does not exist

        Raises:
            InvalidRequestError: If neither argument is given or the status is unknown
            FormNotFoundError: If answers are given and the form is gone
            SubmissionValidationError: If the new answers are invalid
        """
        if status is None and answers is None:
            raise InvalidRequestError("Nothing to update: provide a status or answers")

        changes: Dict[str, Any] = {}
        if status is not None:
            try:
                changes["status"] = SubmissionStatus(status).value
            except ValueError:
                raise InvalidRequestError(f"Invalid submission status: {status!r}") from None

        with self.store.locked(SUBMISSIONS, submission_id):
            if self.get(form_id, submission_id) is None:
                return None
            if answers is not None:
                changes["answers"] = self._revalidate(form_id, answers)
            updated = self.store.update(SUBMISSIONS, submission_id, changes, scope=form_id)

        logger.info("Updated submission %s of form %s: %s", submission_id, form_id, sorted(changes))
        return updated

    def delete(self, form_id: str, submission_id: str) -> bool:
        """Delete one submission of a form.

        Args:
            form_id: Form the submission belongs to
            submission_id: Submission identifier

        Returns:
            True if a submission was removed, False if it did not exist
        """
        removed = self.store.delete(SUBMISSIONS, submission_id, scope=form_id)
        if removed:
            logger.info("Deleted submission %s of form %s", submission_id, form_id)
        return removed

    def list(
        self,
        form_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "createdAt",
        order: str = "desc",
    ) -> Page:
        """One page of a form's submissions, newest first by default."""
        return self.store.list(
            SUBMISSIONS,
            scope=form_id,
            filter={"status": status},
            page=page,
            limit=limit or self.page_limit,
            sort_by=sort_by,
            order=order,
        )

    def export(self, form_id: str) -> ExportResult:
        """All submissions of a form as table rows, newest first.

        Raises:
            FormNotFoundError: If the form does not exist
        """
        form = self.forms.get(form_id)
        if form is None:
            raise FormNotFoundError(form_id)
        submissions = self.store.all(SUBMISSIONS, scope=form_id, sort_by="createdAt", order="desc")
        logger.debug("Exporting %d submissions of form %s", len(submissions), form_id)
        return self.projector.project(form, submissions)

    def stats(self, form_id: str) -> Dict[str, int]:
        """Submission counts of a form, in total and per status."""
        counts = {status.value: 0 for status in SubmissionStatus}
        submissions = self.store.all(SUBMISSIONS, scope=form_id)
        for submission in submissions:
            status = submission.get("status")
            if status in counts:
                counts[status] += 1
        return {"total": len(submissions), **counts}

    def _revalidate(self, form_id: str, answers: Any) -> Dict[str, Any]:
        if not isinstance(answers, Mapping):
            raise SubmissionValidationError([FieldError("answers", "Answers are required")])
        form = self.forms.get(form_id, sort_fields=False)
        if form is None:
            raise FormNotFoundError(form_id)
        result = self.validator(form).validate(dict(answers))
        if not result.is_valid:
            raise SubmissionValidationError(result.errors)
        return dict(answers)

    def _discard(self, paths: List[str]) -> None:
        if paths and self.files is not None:
            logger.debug("Discarding %d uploaded files", len(paths))
            self.files.discard(paths)


__all__ = [
    "SubmissionRepository",
]
