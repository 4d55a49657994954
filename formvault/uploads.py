"""Uploaded-file handling at the edge of the submission flow.

The host's multipart middleware writes file bytes to disk and hands over one
UploadedFile record per file. Before validation those records are turned into
file-metadata answers ``{filename, originalName, mimeType, size, path, url}``
and merged into the submission's answers under their field name; several files
for one field become a list.

When a submission is rejected after its files were written, the repository
hands the file paths to a FileStorage for removal. Removal is best-effort:
failures are logged and never reach the submitter.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from typing_extensions import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    """One file received by the upload middleware.

    Attributes:
        fieldname: Form field name the file was posted under
        filename: Name the file was stored as
        originalname: Name of the file on the submitter's machine
        mimetype: Declared content type
        size: Size in bytes
        path: Where the bytes were written
    """
    fieldname: str
    filename: str
    originalname: str
    mimetype: str
    size: int
    path: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadedFile":
        """Create UploadedFile from a middleware record (multer-style keys)."""
        return cls(
            fieldname=data["fieldname"],
            filename=data["filename"],
            originalname=data.get("originalname") or data["filename"],
            mimetype=data.get("mimetype") or "application/octet-stream",
            size=int(data.get("size") or 0),
            path=str(data["path"]),
        )

    def to_answer(self, base_url: Optional[str] = None) -> Dict[str, Any]:
        """The file-metadata object stored in a submission's answers."""
        path = self.path.replace("\\", "/")
        url = f"{base_url.rstrip('/')}/{path.lstrip('/')}" if base_url else None
        return {
            "filename": self.filename,
            "originalName": self.originalname,
            "mimeType": self.mimetype,
            "size": self.size,
            "path": path,
            "url": url,
        }


def merge_uploads(
    answers: Dict[str, Any],
    uploads: Iterable[UploadedFile],
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a copy of ``answers`` with file metadata under each upload's field name.

    A file replaces any answer the client sent for the same field. A second
    file for a field turns the value into a list.
    """
    merged = dict(answers)
    files: Dict[str, Any] = {}
    for upload in uploads:
        info = upload.to_answer(base_url)
        existing = files.get(upload.fieldname)
        if existing is None:
            files[upload.fieldname] = info
        elif isinstance(existing, list):
            existing.append(info)
        else:
            files[upload.fieldname] = [existing, info]
    merged.update(files)
    return merged


class FileStorage(Protocol):
    """What the repositories need from the file storage collaborator."""

    def discard(self, paths: Iterable[str]) -> None:
        """Remove files of a rejected submission. Must not raise."""

    def remove_form_files(self, form_id: str) -> None:
        """Remove every stored upload of a deleted form. Must not raise."""


class LocalFileStorage:
    """FileStorage for uploads kept on the local filesystem.

    Attributes:
        upload_dir: Directory holding one subdirectory of uploads per form
    """

    def __init__(self, upload_dir: Union[str, Path]) -> None:
        self.upload_dir = Path(upload_dir)

    def form_dir(self, form_id: str) -> Path:
        """Directory holding the uploads of one form.

        Args:
            form_id: Form identifier

        Returns:
            Path under ``upload_dir``; it may not exist yet
        """
        return self.upload_dir / form_id

    def discard(self, paths: Iterable[str]) -> None:
        """Delete uploaded files of a rejected submission.

        Missing files are skipped and other failures are logged, never raised.

        Args:
            paths: Paths of the files to delete
        """
        for path in paths:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                logger.debug("Uploaded file already gone: %s", path)
            except OSError as exc:
                logger.warning("Failed to clean up uploaded file %s: %s", path, exc)

    def remove_form_files(self, form_id: str) -> None:
        """Delete the upload directory of a deleted form.

        Failures are logged, never raised.

        Args:
            form_id: Form identifier
        """
        directory = self.form_dir(form_id)
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
            logger.info("Removed uploads of form %s", form_id)
        except OSError as exc:
            logger.warning("Failed to remove uploads of form %s: %s", form_id, exc)


def upload_paths(uploads: Iterable[UploadedFile]) -> List[str]:
    return [u.path for u in uploads if u.path]


__all__ = [
    "UploadedFile",
    "merge_uploads",
    "FileStorage",
    "LocalFileStorage",
    "upload_paths",
]
