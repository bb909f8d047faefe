# tests/test_models.py
"""Tests for the data models used by the QuickNote store."""
import datetime
import time

import pytest
from pydantic import ValidationError

from quicknote_store.exceptions import ValidationError as QuickNoteValidationError
from quicknote_store.models.schema import (
    Attachment,
    AttachmentType,
    ImportResult,
    MergeStrategy,
    Note,
    NoteSnapshot,
    StorageStats,
    generate_id,
    infer_attachment_type,
    infer_mime_type,
    validate_relative_path,
)

UTC = datetime.timezone.utc


def _image(path="1_photo.jpg", **fields):
    return Attachment(name=path, relative_path=path, type=AttachmentType.IMAGE, **fields)


class TestNoteModel:
    """Tests for the Note model."""

    def test_note_creation_defaults(self):
        note = Note.new()
        assert note.id
        assert note.title == ""
        assert note.content == ""
        assert note.folder is None
        assert note.tags == frozenset()
        assert note.attachments == ()
        assert note.pinned is False
        assert note.created_at == note.updated_at
        assert note.created_at.tzinfo is not None

    def test_note_is_immutable(self):
        note = Note.new(title="Frozen")
        with pytest.raises(ValidationError):
            note.title = "Changed"

    def test_unsafe_id_rejected(self):
        for bad_id in ("../escape", "a/b", "has space", ""):
            with pytest.raises(ValidationError):
                Note(id=bad_id, title="Bad")

    def test_updated_before_created_rejected(self):
        created = datetime.datetime(2024, 1, 2, tzinfo=UTC)
        with pytest.raises(ValidationError):
            Note(title="T", created_at=created, updated_at=created - datetime.timedelta(seconds=1))

    def test_naive_timestamps_become_utc(self):
        note = Note(title="T", created_at=datetime.datetime(2024, 1, 1, 12, 0))
        assert note.created_at.tzinfo == UTC
        assert note.updated_at == note.created_at

    def test_blank_folder_and_tags_normalised(self):
        note = Note(title="T", folder="   ", tags=[" work ", "", "home"])
        assert note.folder is None
        assert note.tags == frozenset({"work", "home"})

    def test_duplicate_attachment_ids_rejected(self):
        attachment = _image()
        with pytest.raises(ValidationError):
            Note(title="T", attachments=(attachment, attachment))


class TestNoteLifecycle:
    """Tests for copy-with-replace edits."""

    def test_with_changes_returns_new_snapshot(self):
        note = Note.new(title="Before")
        changed = note.with_changes(title="After")
        assert note.title == "Before"
        assert changed.title == "After"
        assert changed.id == note.id

    def test_content_change_refreshes_updated_at(self):
        old = datetime.datetime(2020, 1, 1, tzinfo=UTC)
        note = Note(title="Old", created_at=old, updated_at=old)
        changed = note.with_changes(content="new text")
        assert changed.updated_at > old
        assert changed.created_at == old

    def test_no_op_change_keeps_updated_at(self):
        old = datetime.datetime(2020, 1, 1, tzinfo=UTC)
        note = Note(title="Same", created_at=old, updated_at=old)
        assert note.with_changes(title="Same").updated_at == old

    def test_explicit_updated_at_wins(self):
        old = datetime.datetime(2020, 1, 1, tzinfo=UTC)
        later = datetime.datetime(2021, 1, 1, tzinfo=UTC)
        note = Note(title="T", created_at=old, updated_at=old)
        assert note.with_changes(title="U", updated_at=later).updated_at == later

    def test_id_is_immutable(self):
        note = Note.new(title="T")
        with pytest.raises(ValueError):
            note.with_changes(id="other")

    def test_attachment_helpers(self):
        image = _image("1_a.png")
        voice = Attachment(
            name="memo.m4a",
            relative_path="1_memo.m4a",
            type=AttachmentType.VOICE,
            duration_seconds=3.5,
        )
        note = Note.new(title="T").add_attachment(image).add_attachment(voice)
        assert note.images == (image,)
        assert note.voice_notes == (voice,)
        assert note.files == ()
        assert note.attachment_paths == ["1_a.png", "1_memo.m4a"]

        replaced = note.replace_attachment(image.id, _image("1_b.png"))
        assert replaced.attachment_paths == ["1_b.png", "1_memo.m4a"]
        assert note.remove_attachment(voice.id).attachment_paths == ["1_a.png"]

    def test_tag_helpers(self):
        note = Note.new(title="T").add_tag("work").add_tag("home")
        assert note.tags == frozenset({"work", "home"})
        assert note.remove_tag("work").tags == frozenset({"home"})
        assert note.remove_tag("missing").tags == note.tags

    def test_derived_text_properties(self):
        note = Note.new(title="Title", content="one two  three")
        assert note.character_count == len("Title") + len("one two  three")
        assert note.word_count == 3
        assert note.preview_text == "one two three"
        assert Note.new(title="", content="  ").is_empty
        assert Note.new(content="x" * 150).preview_text.endswith("...")


class TestAttachmentModel:
    """Tests for the Attachment model."""

    def test_mime_type_inferred(self):
        assert _image("1_photo.JPG").mime_type == "image/jpeg"
        unknown = Attachment(name="data.xyz", relative_path="1_data.xyz")
        assert unknown.mime_type == "application/octet-stream"

    def test_relative_path_must_stay_in_root(self):
        for bad in ("/etc/passwd", "../up.jpg", "a/../../b.jpg", "dir\\file.jpg"):
            with pytest.raises(ValidationError):
                Attachment(name="x.jpg", relative_path=bad)

    def test_duration_only_for_voice(self):
        with pytest.raises(ValidationError):
            Attachment(name="a.jpg", relative_path="a.jpg", duration_seconds=1.0)

    def test_negative_size_rejected(self):
        with pytest.raises(ValidationError):
            Attachment(name="a.jpg", relative_path="a.jpg", size_bytes=-1)

    def test_size_formatted(self):
        assert _image(size_bytes=2048).size_formatted == "2.0 KB"
        assert _image().size_formatted == "Unknown size"


class TestHelpers:
    """Tests for module-level helpers."""

    def test_generate_id_unique_and_safe(self):
        ids = {generate_id() for _ in range(200)}
        assert len(ids) == 200
        for note_id in ids:
            Note(id=note_id, title="ok")

    def test_generate_id_sortable(self):
        first = generate_id()
        time.sleep(0.002)
        assert generate_id() > first

    def test_type_and_mime_inference(self):
        assert infer_attachment_type("IMG_1.heic") == AttachmentType.IMAGE
        assert infer_attachment_type("report.pdf") == AttachmentType.FILE
        assert infer_attachment_type("no_extension") == AttachmentType.FILE
        assert infer_mime_type("report.pdf") == "application/pdf"

    def test_validate_relative_path_normalises(self):
        assert validate_relative_path("sub/./file.jpg") == "sub/file.jpg"
        with pytest.raises(ValueError):
            validate_relative_path("   ")

    def test_merge_strategy_parse(self):
        assert MergeStrategy.parse("lastWriteWins") is MergeStrategy.LAST_WRITE_WINS
        assert MergeStrategy.parse("skip_older") is MergeStrategy.SKIP_OLDER
        assert MergeStrategy.parse(MergeStrategy.SKIP_OLDER) is MergeStrategy.SKIP_OLDER
        with pytest.raises(QuickNoteValidationError):
            MergeStrategy.parse("newestWins")


class TestValueTypes:
    """Tests for snapshot and result types."""

    def test_snapshot_attachment_paths_distinct(self):
        shared = _image("shared.jpg")
        first = Note.new(title="A").add_attachment(shared)
        second = Note.new(title="B").add_attachment(_image("shared.jpg")).add_attachment(
            _image("other.jpg")
        )
        snapshot = NoteSnapshot(notes=[first, second])
        assert snapshot.attachment_paths() == ["shared.jpg", "other.jpg"]

    def test_storage_stats_attachment_count(self):
        stats = StorageStats(image_count=2, file_count=1, voice_count=3)
        assert stats.attachment_count == 6
        assert stats.to_dict()["attachment_count"] == 6

    def test_import_result_summary(self):
        result = ImportResult(created=2, skipped=1, media_imported=2, warnings=["w"])
        assert result.success
        assert result.total_processed == 3
        text = result.summary()
        assert "Created 2 notes" in text
        assert "Skipped 1 notes" in text
        assert "1 warnings" in text

    def test_import_result_failed(self):
        result = ImportResult.failed("boom")
        assert not result.success
        assert result.to_dict()["errors"] == ["boom"]
        assert ImportResult().summary() == "No changes made"
