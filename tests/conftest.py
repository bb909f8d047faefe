"""Common test fixtures for the QuickNote store."""

import datetime
import tempfile
from pathlib import Path

import pytest

from quicknote_store.config import config
from quicknote_store.models.schema import Note
from quicknote_store.services.export_service import ArchiveExporter
from quicknote_store.services.import_service import ArchiveImporter
from quicknote_store.storage.attachment_store import AttachmentStore
from quicknote_store.storage.context import StoreContext
from quicknote_store.storage.note_store import NoteStore


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the store and for exports."""
    with tempfile.TemporaryDirectory() as store_dir:
        with tempfile.TemporaryDirectory() as export_dir:
            yield Path(store_dir), Path(export_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    store_dir, export_dir = temp_dirs
    monkeypatch.setattr(config, "base_dir", store_dir)
    monkeypatch.setattr(config, "attachments_dir", store_dir / "attachments")
    monkeypatch.setattr(config, "database_path", store_dir / "db" / "notes.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "export_dir", export_dir)
    yield config


@pytest.fixture
def store_context(test_config):
    """An initialized store context using the test configuration."""
    context = StoreContext().initialize()
    yield context
    context.close()


@pytest.fixture
def attachment_store(store_context):
    return AttachmentStore(store_context)


@pytest.fixture
def note_store(store_context, attachment_store):
    return NoteStore(store_context, attachment_store)


@pytest.fixture
def exporter(attachment_store, temp_dirs):
    _, export_dir = temp_dirs
    return ArchiveExporter(attachment_store, export_dir=export_dir)


@pytest.fixture
def importer(note_store):
    return ArchiveImporter(note_store)


@pytest.fixture
def fresh_store(tmp_path):
    """A second, empty store (note store plus its attachment store)."""
    context = StoreContext.from_directory(tmp_path / "fresh").initialize()
    attachments = AttachmentStore(context)
    yield NoteStore(context, attachments)
    context.close()


@pytest.fixture
def source_files(tmp_path):
    """Factory writing small files outside the store to attach from."""
    source_dir = tmp_path / "sources"
    source_dir.mkdir()

    def make(name: str, data: bytes = b"payload") -> Path:
        path = source_dir / name
        path.write_bytes(data)
        return path

    return make


@pytest.fixture
def make_note():
    """Factory for notes with fixed timestamps."""

    def make(note_id: str, title: str, content: str = "", updated_offset_hours: int = 0, **fields):
        created = datetime.datetime(2024, 1, 15, 10, 30, tzinfo=datetime.timezone.utc)
        updated = created + datetime.timedelta(hours=updated_offset_hours)
        return Note(
            id=note_id,
            title=title,
            content=content,
            created_at=created,
            updated_at=updated,
            **fields,
        )

    return make
