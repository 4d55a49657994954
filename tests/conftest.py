"""Shared fixtures.

The ``store`` fixture is parametrized over both backends so every test that
uses it runs once against flat files and once against SQLite.
"""

import pytest

from formvault.events import EventEmitter
from formvault.forms import FormRepository
from formvault.store import FileDocumentStore, SQLDocumentStore
from formvault.submissions import SubmissionRepository


class RecordingFileStorage:
    """FileStorage double that records what it was asked to remove."""

    def __init__(self):
        self.discarded = []
        self.removed_forms = []

    def discard(self, paths):
        self.discarded.extend(paths)

    def remove_form_files(self, form_id):
        self.removed_forms.append(form_id)


@pytest.fixture(params=["file", "sql"])
def store(request, tmp_path):
    if request.param == "file":
        yield FileDocumentStore(tmp_path / "forms")
        return
    store = SQLDocumentStore.from_url(f"sqlite:///{tmp_path / 'test.db'}")
    yield store
    store.engine.dispose()


@pytest.fixture
def files():
    return RecordingFileStorage()


@pytest.fixture
def events():
    return EventEmitter()


@pytest.fixture
def forms(store, events, files):
    return FormRepository(store, events=events, files=files)


@pytest.fixture
def submissions(store, forms, files):
    return SubmissionRepository(store, forms, files=files, public_base_url="https://forms.example.com")


@pytest.fixture
def contact_payload():
    return {
        "title": "Contact",
        "description": "Get in touch",
        "fields": [
            {
                "label": "Full name",
                "name": "full_name",
                "type": "text",
                "required": True,
                "validation": {"minLength": 2},
            },
            {"label": "Email", "name": "email", "type": "email", "required": True},
            {"label": "Age", "name": "age", "type": "number", "validation": {"min": 18, "max": 100}},
        ],
    }


@pytest.fixture
def contact_form(forms, contact_payload):
    return forms.create(contact_payload)
