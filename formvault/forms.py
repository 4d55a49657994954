"""Form persistence with field materialization, reordering and versioning.

FormRepository is the only writer of the ``forms`` collection. On top of the
DocumentStore it guarantees that:

- every stored field has an id, defaults and a dense ``order``
- no stored form violates a structural invariant (see ``check_form_structure``)
- every structural update first tries to snapshot the previous state as a
  FormVersion and then bumps ``version``; a status-only update does neither
- a snapshot failure is logged and never blocks the update
- every read returns fields sorted by ``order``

Read-modify-write sequences (update with snapshot, field edits, reorder) hold
the form's store lock, so concurrent edits of one form are applied one after
another instead of overwriting each other.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from formvault.errors import DuplicateVersionError, FieldError, FormStructureError
from formvault.events import EventEmitter, FormEvent
from formvault.fields import (
    DEFAULT_MAX_DEPTH,
    FormSettings,
    check_form_structure,
    materialize_fields,
    sort_fields,
)
from formvault.store.base import FORM_VERSIONS, FORMS, DocumentStore, utc_now
from formvault.types import EventType, FormStatus, Page
from formvault.uploads import FileStorage

logger = logging.getLogger(__name__)

EDITABLE_KEYS = ("title", "description", "status", "fields", "settings")

# Keys clients echo back from a read; they are owned by the repository
READ_ONLY_KEYS = frozenset({"id", "_id", "version", "createdAt", "updatedAt", "revision"})


class FormRepository:
    """Typed access to the ``forms`` collection.

    Attributes:
        store: Backend holding forms and form versions
        events: Emitter receiving form change notifications
        files: Optional upload storage cleaned when a form is deleted
        max_depth: Deepest allowed level of conditional fields
        page_limit: Default page size for ``list``
    """

    def __init__(
        self,
        store: DocumentStore,
        events: Optional[EventEmitter] = None,
        files: Optional[FileStorage] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        page_limit: int = 10,
    ) -> None:
        self.store = store
        self.events = events if events is not None else EventEmitter()
        self.files = files
        self.max_depth = max_depth
        self.page_limit = page_limit

    # -- reads --------------------------------------------------------------

    def get(self, form_id: str, sort_fields: bool = True) -> Optional[Dict[str, Any]]:
        """Load a form.

        Args:
            form_id: The form identifier
            sort_fields: Return fields sorted by ``order`` (default) or in
                stored order, which is the order answers are validated in

        Returns:
            The form, or None if it does not exist
        """
        form = self.store.get(FORMS, form_id)
        if form is None or not sort_fields:
            return form
        return _present(form)

    def list(
        self,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "createdAt",
        order: str = "desc",
    ) -> Page:
        """One page of forms, newest first by default, fields sorted."""
        result = self.store.list(
            FORMS,
            filter={"status": status},
            page=page,
            limit=limit or self.page_limit,
            sort_by=sort_by,
            order=order,
        )
        result["data"] = [_present(form) for form in result["data"]]
        return result

    def list_public(self, page: int = 1, limit: Optional[int] = None) -> Page:
        """One page of forms currently accepting submissions."""
        return self.list(status=FormStatus.ACTIVE.value, page=page, limit=limit)

    def versions(self, form_id: str) -> List[Dict[str, Any]]:
        """Stored snapshots of a form, oldest first."""
        return self.store.all(FORM_VERSIONS, scope=form_id, sort_by="version", order="asc")

    # -- writes -------------------------------------------------------------

    def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and store a new form at version 1.

        Raises:
            FormStructureError: If the definition is invalid; nothing is stored
        """
        definition = {
            "description": "",
            "status": FormStatus.ACTIVE.value,
            "fields": [],
            "settings": FormSettings().to_dict(),
            **self._prepare(_editable(payload), current=None),
        }
        check_form_structure(definition, self.max_depth)
        created = self.store.create(FORMS, {**definition, "version": 1})
        logger.info("Created form %s with %d fields", created["id"], len(created["fields"]))
        return _present(created)

    def update(self, form_id: str, updates: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update to a form.

        Any update other than a status-only one is structural: the current
        state is snapshotted first (failures are logged and ignored) and
        ``version`` is incremented. ``fields``, when present, replaces the
        whole field list and is materialized again.

        Returns:
            The updated form with sorted fields, or None if it does not exist

        Raises:
            FormStructureError: If the result would be invalid; nothing is stored
        """
        changes = _editable(updates)
        with self.store.locked(FORMS, form_id):
            current = self.store.get(FORMS, form_id)
            if current is None:
                return None
            if not changes:
                logger.debug("Empty update for form %s ignored", form_id)
                return _present(current)

            changes = self._prepare(changes, current)
            check_form_structure(_definition({**current, **changes}), self.max_depth)

            status_only = set(changes) == {"status"}
            if not status_only:
                self._snapshot(current)
                changes["version"] = current.get("version", 1) + 1
            updated = self.store.update(FORMS, form_id, changes)

        if updated is None:
            return None
        self._notify(EventType.FORM_STATUS_CHANGED if status_only else EventType.FORM_CHANGED, updated)
        return _present(updated)

    def delete(self, form_id: str) -> bool:
        """Delete a form and its stored uploads.

        Submissions of the form are kept and keep pointing at the deleted id.

        Returns:
            Whether the form existed
        """
        with self.store.locked(FORMS, form_id):
            removed = self.store.delete(FORMS, form_id)
        if removed:
            logger.info("Deleted form %s", form_id)
            if self.files is not None:
                self.files.remove_form_files(form_id)
        return removed

    def add_field(self, form_id: str, field: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Append a field; without an explicit ``order`` it goes last."""
        with self.store.locked(FORMS, form_id):
            current = self.store.get(FORMS, form_id)
            if current is None:
                return None
            return self.update(form_id, {"fields": list(current.get("fields") or []) + [dict(field)]})

    def update_field(self, form_id: str, field_id: str, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge ``changes`` into one field, at any depth. The field id never changes.

        Returns:
            The updated form, or None if the form or the field does not exist
        """
        def edit(field: Dict[str, Any]) -> Dict[str, Any]:
            return {**field, **changes, "id": field["id"]}

        return self._edit_field(form_id, field_id, edit)

    def remove_field(self, form_id: str, field_id: str) -> Optional[Dict[str, Any]]:
        """Remove one field, at any depth, with its conditional fields.

        Returns:
            The updated form, or None if the form or the field does not exist
        """
        return self._edit_field(form_id, field_id, lambda field: None)

    def reorder(self, form_id: str, orders: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Move fields to new positions.

        Applies each ``{field_id: order}`` item to the matching top-level
        field (ids not in the form are ignored), stable-sorts all fields by
        order and stores them in that sequence. The given values are kept as
        they are, so applying the same mapping twice yields the same order.

        Returns:
            The updated form, or None if it does not exist

        Raises:
            FormStructureError: If an order is not a non-negative integer
        """
        if not isinstance(orders, Mapping):
            raise FormStructureError([FieldError("fieldOrders", "Field orders must be an object")])
        bad = [
            FieldError(f"fieldOrders.{field_id}", "Order must be a non-negative integer")
            for field_id, order in orders.items()
            if isinstance(order, bool) or not isinstance(order, int) or order < 0
        ]
        if bad:
            raise FormStructureError(bad)

        with self.store.locked(FORMS, form_id):
            current = self.store.get(FORMS, form_id)
            if current is None:
                return None

            fields = [dict(f) for f in current.get("fields") or []]
            known = {f["id"] for f in fields}
            for f in fields:
                if f["id"] in orders:
                    f["order"] = orders[f["id"]]
            unknown = set(orders) - known
            if unknown:
                logger.debug("Ignoring unknown field ids in reorder of form %s: %s", form_id, sorted(unknown))

            fields.sort(key=lambda f: f.get("order") or 0)
            updated = self.store.update(FORMS, form_id, {"fields": fields})

        if updated is None:
            return None
        self._notify(EventType.FORM_CHANGED, updated)
        return _present(updated)

    # -- helpers ------------------------------------------------------------

    def _prepare(self, changes: Dict[str, Any], current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Normalize editable keys of a create or update payload."""
        prepared = dict(changes)
        for key in ("title", "description"):
            if isinstance(prepared.get(key), str):
                prepared[key] = prepared[key].strip()
        if "fields" in prepared:
            prepared["fields"] = materialize_fields(prepared["fields"])
        if isinstance(prepared.get("settings"), Mapping):
            base = (current or {}).get("settings") or {}
            prepared["settings"] = FormSettings.from_dict({**base, **prepared["settings"]}).to_dict()
        return prepared

    def _edit_field(
        self,
        form_id: str,
        field_id: str,
        edit: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        with self.store.locked(FORMS, form_id):
            current = self.store.get(FORMS, form_id)
            if current is None:
                return None
            fields, found = _edit_tree(current.get("fields") or [], field_id, edit)
            if not found:
                return None
            return self.update(form_id, {"fields": fields})

    def _snapshot(self, form: Dict[str, Any]) -> None:
        """Store the pre-update state of ``form`` as a FormVersion.

        Never raises: the update it precedes must go ahead regardless.
        """
        version = form.get("version", 1)
        try:
            if self.store.all(FORM_VERSIONS, scope=form["id"], filter={"version": version}):
                raise DuplicateVersionError(form["id"], version)
            self.store.create(FORM_VERSIONS, {
                "formId": form["id"],
                "version": version,
                "title": form.get("title"),
                "description": form.get("description"),
                "fields": form.get("fields"),
                "settings": form.get("settings"),
                "archivedAt": utc_now(),
            })
        except Exception as exc:
            logger.warning("Form versioning error for form %s version %s: %s", form["id"], version, exc)

    def _notify(self, event_type: EventType, form: Dict[str, Any]) -> None:
        self.events.emit(FormEvent(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=event_type,
            form_id=form["id"],
            ts=datetime.now(timezone.utc),
            status=form.get("status"),
            title=form.get("title"),
        ))


def _editable(payload: Any) -> Dict[str, Any]:
    """Keep the editable keys of a payload, dropping read-only ones.

    Raises:
        FormStructureError: If the payload is not an object or has unknown keys
    """
    if not isinstance(payload, Mapping):
        raise FormStructureError([FieldError("form", "Form payload must be an object")])
    unknown = [key for key in payload if key not in EDITABLE_KEYS and key not in READ_ONLY_KEYS]
    if unknown:
        raise FormStructureError([FieldError(key, f"Unknown form property: {key}") for key in unknown])
    return {key: payload[key] for key in EDITABLE_KEYS if key in payload}


def _definition(form: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: form[key] for key in EDITABLE_KEYS if key in form}


def _present(form: Dict[str, Any]) -> Dict[str, Any]:
    presented = dict(form)
    presented["fields"] = sort_fields(form.get("fields"))
    return presented


def _edit_tree(
    fields: List[Dict[str, Any]],
    field_id: str,
    edit: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
) -> Tuple[List[Dict[str, Any]], bool]:
    result = []
    found = False
    for field in fields:
        if not found and field.get("id") == field_id:
            found = True
            replacement = edit(dict(field))
            if replacement is not None:
                result.append(replacement)
            continue
        children = field.get("conditionalFields") or []
        if not found and children:
            children, found = _edit_tree(children, field_id, edit)
            field = {**field, "conditionalFields": children}
        result.append(field)
    return result, found


__all__ = [
    "FormRepository",
]
