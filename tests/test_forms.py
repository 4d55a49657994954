"""Tests for FormRepository.

Tests cover:
- Creation defaults and field materialization
- Field sorting on every read
- Partial updates, versioning and snapshot failure handling
- Field-level edits and reordering
- Deletion and change events
"""

import logging

import pytest

from formvault.errors import FormStructureError, StorageError
from formvault.forms import FormRepository
from formvault.store import FORM_VERSIONS
from formvault.types import EventType


def names(form):
    return [f["name"] for f in form["fields"]]


class TestCreate:
    """Test form creation."""

    def test_defaults(self, forms):
        """Should store version 1, active status and default settings."""
        form = forms.create({"title": "  Feedback  "})

        assert form["title"] == "Feedback"
        assert form["description"] == ""
        assert form["status"] == "active"
        assert form["version"] == 1
        assert form["fields"] == []
        assert form["settings"] == {
            "submitButtonText": "Submit",
            "successMessage": "Thank you for your submission!",
            "allowMultipleSubmissions": True,
        }

    def test_fields_are_materialized(self, contact_form):
        assert names(contact_form) == ["full_name", "email", "age"]
        assert [f["order"] for f in contact_form["fields"]] == [0, 1, 2]
        assert all(f["id"] for f in contact_form["fields"])

    def test_explicit_status(self, forms):
        assert forms.create({"title": "Draft", "status": "draft"})["status"] == "draft"

    def test_invalid_definition_stores_nothing(self, forms):
        """Should reject a duplicate field name before writing."""
        with pytest.raises(FormStructureError) as exc_info:
            forms.create({
                "title": "Dup",
                "fields": [
                    {"label": "A", "name": "email", "type": "email"},
                    {"label": "B", "name": "Email", "type": "email"},
                ],
            })

        assert exc_info.value.errors[0].field == "fields.1.name"
        assert forms.list()["pagination"]["total"] == 0

    def test_unknown_property_is_rejected(self, forms):
        with pytest.raises(FormStructureError) as exc_info:
            forms.create({"title": "T", "theme": "dark"})
        assert exc_info.value.errors[0].message == "Unknown form property: theme"

    def test_non_object_payload(self, forms):
        with pytest.raises(FormStructureError):
            forms.create(["title"])

    def test_read_only_keys_are_ignored(self, forms):
        form = forms.create({"title": "T", "id": "mine", "version": 9})

        assert form["id"] != "mine"
        assert form["version"] == 1

    def test_depth_bound_comes_from_repository(self, store):
        forms = FormRepository(store, max_depth=1)
        with pytest.raises(FormStructureError):
            forms.create({
                "title": "Deep",
                "fields": [{
                    "label": "Parent",
                    "name": "parent",
                    "type": "text",
                    "conditionalFields": [{"label": "Child", "name": "child", "type": "text"}],
                }],
            })


class TestReadOrdering:
    """Test that reads return fields sorted by order."""

    @pytest.fixture
    def shuffled(self, forms):
        return forms.create({
            "title": "Shuffled",
            "fields": [
                {"label": "C", "name": "c", "type": "text", "order": 9},
                {"label": "A", "name": "a", "type": "text", "order": 1},
                {"label": "B", "name": "b", "type": "text", "order": 4},
            ],
        })

    def test_create_returns_sorted_fields(self, shuffled):
        assert names(shuffled) == ["a", "b", "c"]

    def test_get_sorts_fields(self, forms, shuffled):
        assert names(forms.get(shuffled["id"])) == ["a", "b", "c"]

    def test_get_in_storage_order(self, forms, shuffled):
        """Should keep declaration order when asked for storage order."""
        assert names(forms.get(shuffled["id"], sort_fields=False)) == ["c", "a", "b"]

    def test_list_sorts_fields(self, forms, shuffled):
        page = forms.list()
        assert names(page["data"][0]) == ["a", "b", "c"]

    def test_get_missing(self, forms):
        assert forms.get("missing") is None


class TestList:
    """Test form listing."""

    def test_filter_by_status(self, forms):
        forms.create({"title": "Live"})
        forms.create({"title": "Hidden", "status": "draft"})

        assert [f["title"] for f in forms.list(status="draft")["data"]] == ["Hidden"]
        assert [f["title"] for f in forms.list_public()["data"]] == ["Live"]

    def test_default_page_size(self, forms):
        for i in range(12):
            forms.create({"title": f"Form {i}"})

        page = forms.list()
        assert len(page["data"]) == 10
        assert page["pagination"] == {"total": 12, "page": 1, "pages": 2}

    def test_sort_by_title(self, forms):
        for title in ("b", "c", "a"):
            forms.create({"title": title})

        titles = [f["title"] for f in forms.list(sort_by="title", order="asc")["data"]]
        assert titles == ["a", "b", "c"]


class TestUpdate:
    """Test partial updates and versioning."""

    def test_title_update_creates_snapshot(self, forms, contact_form):
        """Should snapshot the previous state and bump the version."""
        updated = forms.update(contact_form["id"], {"title": "X"})

        assert updated["title"] == "X"
        assert updated["version"] == 2

        versions = forms.versions(contact_form["id"])
        assert len(versions) == 1
        assert versions[0]["version"] == 1
        assert versions[0]["title"] == "Contact"
        assert versions[0]["formId"] == contact_form["id"]
        assert [f["name"] for f in versions[0]["fields"]] == ["full_name", "email", "age"]

    def test_status_only_update_is_not_versioned(self, forms, contact_form):
        updated = forms.update(contact_form["id"], {"status": "archived"})

        assert updated["status"] == "archived"
        assert updated["version"] == 1
        assert forms.versions(contact_form["id"]) == []

    def test_versions_accumulate_in_order(self, forms, contact_form):
        forms.update(contact_form["id"], {"title": "Two"})
        forms.update(contact_form["id"], {"description": "Three"})

        versions = forms.versions(contact_form["id"])
        assert [v["version"] for v in versions] == [1, 2]
        assert [v["title"] for v in versions] == ["Contact", "Two"]
        assert forms.get(contact_form["id"])["version"] == 3

    def test_empty_update_returns_form_unchanged(self, forms, contact_form):
        result = forms.update(contact_form["id"], {})

        assert result["version"] == 1
        assert result["revision"] == contact_form["revision"]

    def test_read_only_keys_are_stripped(self, forms, contact_form):
        updated = forms.update(contact_form["id"], {"version": 40, "createdAt": "x", "title": "New"})

        assert updated["version"] == 2
        assert updated["createdAt"] == contact_form["createdAt"]

    def test_unknown_key_is_rejected(self, forms, contact_form):
        with pytest.raises(FormStructureError):
            forms.update(contact_form["id"], {"colour": "red"})

    def test_invalid_update_persists_nothing(self, forms, contact_form):
        """Should leave the form and its versions untouched on failure."""
        with pytest.raises(FormStructureError):
            forms.update(contact_form["id"], {"fields": [{"label": "Plan", "name": "plan", "type": "select"}]})

        assert forms.get(contact_form["id"]) == contact_form
        assert forms.versions(contact_form["id"]) == []

    def test_invalid_status(self, forms, contact_form):
        with pytest.raises(FormStructureError):
            forms.update(contact_form["id"], {"status": "paused"})

    def test_fields_replacement_is_materialized(self, forms, contact_form):
        updated = forms.update(contact_form["id"], {"fields": [{"label": "Only", "name": "Only", "type": "text"}]})

        assert names(updated) == ["only"]
        assert updated["fields"][0]["id"]

    def test_settings_are_merged(self, forms, contact_form):
        updated = forms.update(contact_form["id"], {"settings": {"submitButtonText": "Send"}})

        assert updated["settings"]["submitButtonText"] == "Send"
        assert updated["settings"]["successMessage"] == "Thank you for your submission!"

    def test_update_missing_form(self, forms):
        assert forms.update("missing", {"title": "X"}) is None

    def test_snapshot_failure_does_not_block_update(self, forms, store, contact_form, monkeypatch, caplog):
        """Should log a failed snapshot and still apply the update."""
        original_create = store.create

        def failing_create(collection, payload):
            if collection == FORM_VERSIONS:
                raise StorageError("disk full")
            return original_create(collection, payload)

        monkeypatch.setattr(store, "create", failing_create)

        with caplog.at_level(logging.WARNING, logger="formvault.forms"):
            updated = forms.update(contact_form["id"], {"title": "Still saved"})

        assert updated["title"] == "Still saved"
        assert updated["version"] == 2
        assert forms.versions(contact_form["id"]) == []
        assert "Form versioning error" in caplog.text

    def test_duplicate_snapshot_is_skipped(self, forms, store, contact_form):
        """Should not store a second snapshot for the same version."""
        store.create(FORM_VERSIONS, {"formId": contact_form["id"], "version": 1, "title": "Earlier"})

        updated = forms.update(contact_form["id"], {"title": "Next"})

        assert updated["version"] == 2
        versions = forms.versions(contact_form["id"])
        assert len(versions) == 1
        assert versions[0]["title"] == "Earlier"


class TestFieldEdits:
    """Test add, update and remove of single fields."""

    def test_add_field_goes_last(self, forms, contact_form):
        updated = forms.add_field(contact_form["id"], {"label": "Phone", "name": "phone", "type": "text"})

        assert names(updated) == ["full_name", "email", "age", "phone"]
        assert updated["fields"][-1]["order"] == 3
        assert updated["version"] == 2

    def test_add_duplicate_field(self, forms, contact_form):
        with pytest.raises(FormStructureError):
            forms.add_field(contact_form["id"], {"label": "Email 2", "name": "email", "type": "email"})

    def test_add_field_to_missing_form(self, forms):
        assert forms.add_field("missing", {"label": "A", "name": "a", "type": "text"}) is None

    def test_update_field_keeps_id(self, forms, contact_form):
        email = contact_form["fields"][1]
        updated = forms.update_field(contact_form["id"], email["id"], {"label": "E-mail", "id": "other"})

        field = updated["fields"][1]
        assert field["id"] == email["id"]
        assert field["label"] == "E-mail"
        assert field["required"] is True

    def test_update_nested_field(self, forms):
        form = forms.create({
            "title": "Pets",
            "fields": [{
                "label": "Has pet",
                "name": "has_pet",
                "type": "radio",
                "options": ["yes", "no"],
                "conditionalFields": [{"id": "child", "label": "Pet", "name": "pet", "type": "text"}],
            }],
        })

        updated = forms.update_field(form["id"], "child", {"required": True})
        assert updated["fields"][0]["conditionalFields"][0]["required"] is True

    def test_update_unknown_field(self, forms, contact_form):
        assert forms.update_field(contact_form["id"], "nope", {"label": "X"}) is None

    def test_remove_field(self, forms, contact_form):
        age = contact_form["fields"][2]
        updated = forms.remove_field(contact_form["id"], age["id"])

        assert names(updated) == ["full_name", "email"]
        assert updated["version"] == 2

    def test_remove_unknown_field(self, forms, contact_form):
        assert forms.remove_field(contact_form["id"], "nope") is None
        assert forms.get(contact_form["id"])["version"] == 1


class TestReorder:
    """Test field reordering."""

    def test_reorder_moves_fields(self, forms, contact_form):
        full_name, email, age = (f["id"] for f in contact_form["fields"])
        updated = forms.reorder(contact_form["id"], {age: 0, full_name: 2, email: 1})

        assert names(updated) == ["age", "email", "full_name"]
        assert [f["order"] for f in updated["fields"]] == [0, 1, 2]

    def test_reorder_is_idempotent(self, forms, contact_form):
        """Should give the same order when the same map is applied twice."""
        full_name, email, age = (f["id"] for f in contact_form["fields"])
        orders = {age: 0, full_name: 5}

        first = forms.reorder(contact_form["id"], orders)
        second = forms.reorder(contact_form["id"], orders)

        assert names(first) == names(second)
        assert [f["order"] for f in first["fields"]] == [f["order"] for f in second["fields"]]

    def test_reorder_with_shared_order_is_idempotent(self, forms, contact_form):
        """Should keep the given values so a repeated map sorts the same way."""
        full_name, email, age = (f["id"] for f in contact_form["fields"])
        orders = {full_name: 2, email: 3}

        first = forms.reorder(contact_form["id"], orders)
        second = forms.reorder(contact_form["id"], orders)

        assert names(first) == ["full_name", "age", "email"]
        assert names(second) == ["full_name", "age", "email"]
        assert [f["order"] for f in second["fields"]] == [2, 2, 3]

    def test_reorder_stores_sorted_sequence(self, forms, contact_form):
        full_name, email, age = (f["id"] for f in contact_form["fields"])
        forms.reorder(contact_form["id"], {age: 0, full_name: 9})

        assert names(forms.get(contact_form["id"], sort_fields=False)) == ["age", "email", "full_name"]

    def test_unknown_ids_are_ignored(self, forms, contact_form):
        updated = forms.reorder(contact_form["id"], {"ghost": 0})
        assert names(updated) == ["full_name", "email", "age"]

    def test_reorder_is_not_versioned(self, forms, contact_form):
        age = contact_form["fields"][2]["id"]
        updated = forms.reorder(contact_form["id"], {age: 0})

        assert updated["version"] == 1
        assert forms.versions(contact_form["id"]) == []

    @pytest.mark.parametrize("order", ["first", None, True, -1, 1.5])
    def test_invalid_order(self, forms, contact_form, order):
        field_id = contact_form["fields"][0]["id"]
        with pytest.raises(FormStructureError):
            forms.reorder(contact_form["id"], {field_id: order})

    def test_reorder_missing_form(self, forms):
        assert forms.reorder("missing", {}) is None


class TestDelete:
    """Test form deletion."""

    def test_delete_removes_form_and_uploads(self, forms, files, contact_form):
        assert forms.delete(contact_form["id"]) is True
        assert forms.get(contact_form["id"]) is None
        assert files.removed_forms == [contact_form["id"]]

    def test_delete_missing(self, forms, files):
        assert forms.delete("missing") is False
        assert files.removed_forms == []


class TestEvents:
    """Test change notifications."""

    def test_status_change_event(self, forms, events, contact_form):
        seen = []
        events.on_any(seen.append)

        forms.update(contact_form["id"], {"status": "archived"})

        assert [e.type for e in seen] == [EventType.FORM_STATUS_CHANGED]
        assert seen[0].form_id == contact_form["id"]
        assert seen[0].status == "archived"
        assert seen[0].title == "Contact"

    def test_structural_change_event(self, forms, events, contact_form):
        seen = []
        events.on(EventType.FORM_CHANGED, seen.append)

        forms.update(contact_form["id"], {"title": "Renamed"})
        forms.reorder(contact_form["id"], {})

        assert len(seen) == 2
        assert seen[0].title == "Renamed"

    def test_failed_update_emits_nothing(self, forms, events, contact_form):
        seen = []
        events.on_any(seen.append)

        with pytest.raises(FormStructureError):
            forms.update(contact_form["id"], {"title": ""})

        assert seen == []

    def test_failing_listener_does_not_break_update(self, forms, events, contact_form):
        def broken(event):
            raise RuntimeError("listener down")

        events.on_any(broken)
        updated = forms.update(contact_form["id"], {"title": "Fine"})

        assert updated["title"] == "Fine"
