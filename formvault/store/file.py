"""Flat-file DocumentStore backend.

Layout under ``root``::

    <root>/<formId>/form.json                     forms
    <root>/<formId>/submissions/<id>.json         submissions (scoped by formId)
    <root>/<formId>/form_versions/<id>.json       form versions (scoped by formId)
    <root>/_<collection>/<id>.json                any other unscoped collection

Documents are written as indented JSON through a temporary file and
``os.replace`` so a reader never sees a half-written document. Deleting a form
removes only ``form.json``; the form directory goes away only if nothing else
is left in it, so submissions outlive their form.
"""

import glob
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from formvault.errors import StorageError
from formvault.store.base import FORMS, DocumentStore

logger = logging.getLogger(__name__)


class FileDocumentStore(DocumentStore):
    """DocumentStore keeping one JSON file per document.

    Attributes:
        root: Directory holding one subdirectory per form
        root_collection: Collection stored as ``<root>/<id>/<root_document>``
        root_document: File name of a root collection document
    """

    def __init__(
        self,
        root: Union[str, Path],
        scopes: Optional[Mapping[str, str]] = None,
        root_collection: str = FORMS,
        root_document: str = "form.json",
    ) -> None:
        super().__init__(scopes)
        self.root = Path(root)
        self.root_collection = root_collection
        self.root_document = root_document

    # -- paths --------------------------------------------------------------

    def _path(self, collection: str, doc_id: str, scope: Optional[str]) -> Optional[Path]:
        # None means the document cannot exist at any path
        if not _is_segment(doc_id):
            return None
        if collection == self.root_collection:
            return self.root / doc_id / self.root_document
        if collection in self.scopes:
            if scope is None:
                return self._find_scoped(collection, doc_id)
            if not _is_segment(scope):
                return None
            return self.root / scope / collection / f"{doc_id}.json"
        return self.root / f"_{collection}" / f"{doc_id}.json"

    def _find_scoped(self, collection: str, doc_id: str) -> Optional[Path]:
        matches = sorted(self.root.glob(f"*/{collection}/{glob.escape(doc_id)}.json"))
        return matches[0] if matches else None

    # -- primitives ---------------------------------------------------------

    def _read(self, collection: str, doc_id: str, scope: Optional[str]) -> Optional[Dict[str, Any]]:
        path = self._path(collection, doc_id, scope)
        if path is None:
            return None
        return _read_json(path)

    def _write(self, collection: str, document: Dict[str, Any], scope: Optional[str]) -> None:
        path = self._path(collection, document["id"], scope)
        if path is None:
            raise StorageError(f"Cannot locate {collection}/{document['id']} without its scope")
        _write_json(path, document)

    def _remove(self, collection: str, doc_id: str, scope: Optional[str]) -> bool:
        path = self._path(collection, doc_id, scope)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path, exc)
            raise StorageError(f"Failed to delete {collection}/{doc_id}") from exc

        if collection == self.root_collection:
            _remove_if_empty(path.parent)
        return True

    def _scan(self, collection: str, scope: Optional[str]) -> List[Dict[str, Any]]:
        if collection == self.root_collection:
            paths = [p / self.root_document for p in self._subdirs(self.root)]
        elif collection in self.scopes:
            if scope is not None:
                scopes = [self.root / scope] if _is_segment(scope) else []
            else:
                scopes = self._subdirs(self.root)
            paths = [p for d in scopes for p in _json_files(d / collection)]
        else:
            paths = _json_files(self.root / f"_{collection}")

        documents = [doc for doc in (_read_json(p) for p in paths) if doc is not None]
        documents.sort(key=lambda doc: (doc.get("createdAt") or "", doc.get("id") or ""))
        return documents

    def _subdirs(self, directory: Path) -> List[Path]:
        try:
            return [p for p in directory.iterdir() if p.is_dir() and not p.name.startswith("_")]
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to list {directory}") from exc


def _is_segment(value: Any) -> bool:
    return (
        isinstance(value, str)
        and bool(value)
        and "/" not in value
        and "\\" not in value
        and value not in (".", "..")
    )


def _remove_if_empty(directory: Path) -> None:
    try:
        if not any(directory.iterdir()):
            directory.rmdir()
    except OSError as exc:
        logger.debug("Kept directory %s: %s", directory, exc)


def _json_files(directory: Path) -> List[Path]:
    try:
        return [p for p in directory.iterdir() if p.suffix == ".json" and not p.name.startswith(".")]
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise StorageError(f"Failed to list {directory}") from exc


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.error("Failed to read %s: %s", path, exc)
        raise StorageError(f"Failed to read {path}") from exc


def _write_json(path: Path, document: Dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except (OSError, TypeError, ValueError) as exc:
        logger.error("Failed to write %s: %s", path, exc)
        raise StorageError(f"Failed to write {path}") from exc


__all__ = [
    "FileDocumentStore",
]
