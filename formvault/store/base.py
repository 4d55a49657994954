"""Document store contract shared by the flat-file and database backends.

A DocumentStore keeps JSON-compatible documents in named collections. The
public operations (create, get, update, delete, list, all) are implemented
once here; a backend only provides four primitives:

- ``_read(collection, doc_id, scope)`` -> document or None
- ``_write(collection, document, scope)`` -> None (insert or replace)
- ``_remove(collection, doc_id, scope)`` -> whether a document was removed
- ``_scan(collection, scope)`` -> documents in insertion order

Keeping id generation, timestamping, merging, filtering, sorting and
pagination in this class is what makes the two backends behave identically.

Some collections are scoped by a parent field (submissions and form versions
live under a form). For those, the parent id is read from the payload on
create and may be passed as ``scope=`` on the other calls; backends use it to
find documents directly.

Every write holds a per-document re-entrant lock. Callers that need a
read-modify-write sequence to be atomic wrap it in ``store.locked(...)``.
"""

import itertools
import logging
import math
import os
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from formvault.errors import InvalidRequestError, StaleRevisionError
from formvault.types import Page, SortOrder

logger = logging.getLogger(__name__)

FORMS = "forms"
SUBMISSIONS = "submissions"
FORM_VERSIONS = "form_versions"

# collection -> payload field holding the parent id
DEFAULT_SCOPES: Dict[str, str] = {
    SUBMISSIONS: "formId",
    FORM_VERSIONS: "formId",
}

PROTECTED_KEYS = frozenset({"id", "createdAt", "updatedAt", "revision"})

_counter = itertools.count(int.from_bytes(os.urandom(3), "big"))
_counter_lock = threading.Lock()


def new_id() -> str:
    """Generate a collision-resistant document id.

    Layout: 12 hex digits of millisecond time, 6 hex digits of a process-wide
    counter, 8 random hex digits. Ids created by one process sort in creation
    order.
    """
    with _counter_lock:
        count = next(_counter) & 0xFFFFFF
    millis = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    return f"{millis:012x}{count:06x}{os.urandom(4).hex()}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path such as ``metadata.submittedAt``; None if absent."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Rank types so mixed values never compare across types
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    return (2, repr(value))


def query_documents(
    documents: List[Dict[str, Any]],
    filter: Optional[Mapping[str, Any]] = None,
    sort_by: str = "createdAt",
    order: str = "desc",
) -> List[Dict[str, Any]]:
    """Filter and sort documents that arrive in insertion order.

    Filtering is an equality match on each ``filter`` item (None values are
    ignored). Sorting is stable, so ties keep insertion order in both
    directions, and documents without the sort key always come last.
    """
    try:
        direction = SortOrder(order)
    except ValueError:
        raise InvalidRequestError(f"Invalid sort order: {order!r}") from None

    criteria = {k: v for k, v in (filter or {}).items() if v is not None}
    matched = [
        doc for doc in documents
        if all(get_path(doc, key) == value for key, value in criteria.items())
    ]

    present = [doc for doc in matched if get_path(doc, sort_by) is not None]
    absent = [doc for doc in matched if get_path(doc, sort_by) is None]
    present.sort(
        key=lambda doc: _sort_key(get_path(doc, sort_by)),
        reverse=direction is SortOrder.DESC,
    )
    return present + absent


def paginate(documents: List[Dict[str, Any]], page: int, limit: int) -> Page:
    """Slice one 1-indexed page; a page past the end is empty, not an error."""
    if page < 1:
        raise InvalidRequestError("Page must be a positive integer")
    if limit < 1:
        raise InvalidRequestError("Limit must be a positive integer")
    total = len(documents)
    start = (page - 1) * limit
    return {
        "data": documents[start:start + limit],
        "pagination": {
            "total": total,
            "page": page,
            "pages": math.ceil(total / limit),
        },
    }


class KeyedLock:
    """A registry of re-entrant locks, one per key.

    Entries are reference counted and dropped once the last holder or waiter
    leaves, so the registry only holds keys that are in use.
    """

    def __init__(self) -> None:
        self._locks: Dict[Any, List[Any]] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Any) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class DocumentStore(ABC):
    """Base class for document store backends.

    Attributes:
        scopes: Mapping of collection name to the payload field holding the
            parent id for scoped collections
    """

    def __init__(self, scopes: Optional[Mapping[str, str]] = None) -> None:
        self.scopes: Dict[str, str] = dict(DEFAULT_SCOPES if scopes is None else scopes)
        self._locks = KeyedLock()

    # -- backend primitives -------------------------------------------------

    @abstractmethod
    def _read(self, collection: str, doc_id: str, scope: Optional[str]) -> Optional[Dict[str, Any]]:
        """Load one document, or None if it does not exist."""

    @abstractmethod
    def _write(self, collection: str, document: Dict[str, Any], scope: Optional[str]) -> None:
        """Insert or replace one document."""

    @abstractmethod
    def _remove(self, collection: str, doc_id: str, scope: Optional[str]) -> bool:
        """Delete one document; return whether it existed."""

    @abstractmethod
    def _scan(self, collection: str, scope: Optional[str]) -> List[Dict[str, Any]]:
        """Load every document of a collection (within scope) in insertion order."""

    # -- public operations --------------------------------------------------

    def scope_of(self, collection: str, document: Mapping[str, Any]) -> Optional[str]:
        field = self.scopes.get(collection)
        return document.get(field) if field else None

    @contextmanager
    def locked(self, collection: str, doc_id: str) -> Iterator[None]:
        """Hold the write lock of one document for a read-modify-write sequence."""
        with self._locks.hold((collection, doc_id)):
            yield

    def create(self, collection: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Store a new document and return it with id, timestamps and revision.

        Raises:
            InvalidRequestError: If a scoped collection's payload lacks its parent id
        """
        scope = self.scope_of(collection, payload)
        if collection in self.scopes and not scope:
            raise InvalidRequestError(
                f"Documents in {collection!r} need a {self.scopes[collection]!r} value"
            )

        now = utc_now()
        document = {k: v for k, v in payload.items() if k not in PROTECTED_KEYS}
        document.update(id=new_id(), createdAt=now, updatedAt=now, revision=1)

        with self.locked(collection, document["id"]):
            self._write(collection, document, scope)
        logger.debug("Created %s/%s", collection, document["id"])
        return document

    def get(self, collection: str, doc_id: str, scope: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self._read(collection, doc_id, scope)

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: Mapping[str, Any],
        scope: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """Shallow-merge ``changes`` onto a stored document.

        Nested values are replaced, not merged. ``id``, ``createdAt``,
        ``updatedAt`` and ``revision`` in ``changes`` are ignored.

        Args:
            expected_revision: If given, the update is rejected unless the
                stored document is at exactly this revision

        Returns:
            The merged document, or None if no such document exists

        Raises:
            StaleRevisionError: If ``expected_revision`` does not match
        """
        with self.locked(collection, doc_id):
            current = self._read(collection, doc_id, scope)
            if current is None:
                return None
            revision = current.get("revision", 1)
            if expected_revision is not None and expected_revision != revision:
                raise StaleRevisionError(collection, doc_id, expected_revision, revision)

            merged = dict(current)
            merged.update({k: v for k, v in changes.items() if k not in PROTECTED_KEYS})
            merged["updatedAt"] = utc_now()
            merged["revision"] = revision + 1
            self._write(collection, merged, scope or self.scope_of(collection, current))
        return merged

    def delete(self, collection: str, doc_id: str, scope: Optional[str] = None) -> bool:
        """Delete a document. Deleting a missing id is not an error."""
        with self.locked(collection, doc_id):
            removed = self._remove(collection, doc_id, scope)
        if removed:
            logger.debug("Deleted %s/%s", collection, doc_id)
        return removed

    def all(
        self,
        collection: str,
        scope: Optional[str] = None,
        filter: Optional[Mapping[str, Any]] = None,
        sort_by: str = "createdAt",
        order: str = "desc",
    ) -> List[Dict[str, Any]]:
        """Every matching document, sorted, without pagination."""
        return query_documents(self._scan(collection, scope), filter, sort_by, order)

    def list(
        self,
        collection: str,
        scope: Optional[str] = None,
        filter: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "createdAt",
        order: str = "desc",
    ) -> Page:
        """One page of matching documents plus ``{total, page, pages}``.

        Raises:
            InvalidRequestError: For a page or limit below 1 or an unknown order
        """
        documents = self.all(collection, scope, filter, sort_by, order)
        return paginate(documents, page, limit)


__all__ = [
    "FORMS",
    "SUBMISSIONS",
    "FORM_VERSIONS",
    "DEFAULT_SCOPES",
    "DocumentStore",
    "KeyedLock",
    "new_id",
    "utc_now",
    "get_path",
    "query_documents",
    "paginate",
]
