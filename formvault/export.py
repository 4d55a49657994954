"""Tabular export of a form's submissions.

Each submission becomes one row: three fixed columns (submission id, submit
time, status) followed by one column per form field, headed by the field's
label and ordered by the field's ``order``. Answers that are lists or file
objects are flattened to display strings.
"""

import csv
import io
from dataclasses import dataclass, field
from typing import Any, Dict, List

from formvault.fields import sort_fields
from formvault.store.base import get_path

SUBMISSION_ID_COLUMN = "Submission ID"
SUBMITTED_AT_COLUMN = "Submitted At"
STATUS_COLUMN = "Status"
FIXED_COLUMNS = (SUBMISSION_ID_COLUMN, SUBMITTED_AT_COLUMN, STATUS_COLUMN)

FILE_PLACEHOLDER = "[file]"


def flatten_answer(value: Any) -> Any:
    """Render one answer as a single export cell.

    Examples:
        >>> flatten_answer(["a", "b"])
        'a, b'
        >>> flatten_answer({"path": "uploads/cv.pdf", "originalName": "cv.pdf"})
        'uploads/cv.pdf'
        >>> flatten_answer(None)
        ''
    """
    if isinstance(value, list):
        return ", ".join(str(flatten_answer(item)) for item in value)
    if isinstance(value, dict):
        return value.get("url") or value.get("path") or value.get("originalName") or FILE_PLACEHOLDER
    if value is None:
        return ""
    return value


@dataclass
class ExportResult:
    """Rows ready to be written as a table.

    Attributes:
        title: Title of the exported form
        columns: Column headers in output order
        rows: One dict per submission, keyed by column header
    """
    title: str
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def filename(self) -> str:
        return f"{self.title}-submissions.csv"

    def to_csv(self) -> str:
        """Render the rows as CSV text with a header row.

        Returns:
            CSV text with one column per entry of ``columns``
        """
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=self.columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(self.rows)
        return buffer.getvalue()


class ExportProjector:
    """Projects submissions onto a form's field order."""

    def columns(self, form: Dict[str, Any]) -> List[str]:
        """Column headers for a form: the fixed columns, then field labels.

        Args:
            form: Form definition

        Returns:
            Header names in field order; a repeated label appears once
        """
        labels = [f.get("label") or f.get("name") for f in sort_fields(form.get("fields"))]
        columns = list(FIXED_COLUMNS)
        for label in labels:
            if label not in columns:
                columns.append(label)
        return columns

    def project_row(self, form: Dict[str, Any], submission: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten one submission into a row keyed by column header.

        Args:
            form: Form definition supplying labels and field order
            submission: Submission to flatten

        Returns:
            Row dict; unanswered fields map to an empty cell
        """
        answers = submission.get("answers") or {}
        row: Dict[str, Any] = {
            SUBMISSION_ID_COLUMN: submission.get("id"),
            SUBMITTED_AT_COLUMN: get_path(submission, "metadata.submittedAt") or submission.get("createdAt"),
            STATUS_COLUMN: submission.get("status"),
        }
        for f in sort_fields(form.get("fields")):
            row[f.get("label") or f.get("name")] = flatten_answer(answers.get(f.get("name")))
        return row

    def project(self, form: Dict[str, Any], submissions: List[Dict[str, Any]]) -> ExportResult:
        """Project many submissions into an ExportResult.

        Args:
            form: Form definition
            submissions: Submissions in the order the rows should appear

        Returns:
            ExportResult with the form title, columns and one row per submission
        """
        return ExportResult(
            title=form.get("title") or "",
            columns=self.columns(form),
            rows=[self.project_row(form, s) for s in submissions],
        )


__all__ = [
    "FIXED_COLUMNS",
    "ExportResult",
    "ExportProjector",
    "flatten_answer",
]
