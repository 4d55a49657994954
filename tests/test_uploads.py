"""Unit tests for uploaded file handling."""

import logging

from formvault.uploads import LocalFileStorage, UploadedFile, merge_uploads, upload_paths


def record(**overrides):
    data = {
        "fieldname": "photo",
        "filename": "1700-p.png",
        "originalname": "p.png",
        "mimetype": "image/png",
        "size": "2048",
        "path": "uploads\\forms\\f1\\1700-p.png",
    }
    data.update(overrides)
    return data


class TestUploadedFile:
    """Test conversion of middleware records."""

    def test_from_dict(self):
        upload = UploadedFile.from_dict(record())

        assert upload.fieldname == "photo"
        assert upload.size == 2048

    def test_defaults_for_missing_metadata(self):
        upload = UploadedFile.from_dict(record(originalname=None, mimetype=None, size=None))

        assert upload.originalname == "1700-p.png"
        assert upload.mimetype == "application/octet-stream"
        assert upload.size == 0

    def test_to_answer_normalizes_path(self):
        answer = UploadedFile.from_dict(record()).to_answer("https://forms.example.com/")

        assert answer == {
            "filename": "1700-p.png",
            "originalName": "p.png",
            "mimeType": "image/png",
            "size": 2048,
            "path": "uploads/forms/f1/1700-p.png",
            "url": "https://forms.example.com/uploads/forms/f1/1700-p.png",
        }

    def test_to_answer_without_base_url(self):
        assert UploadedFile.from_dict(record()).to_answer()["url"] is None


class TestMergeUploads:
    """Test merging file metadata into answers."""

    def test_file_replaces_client_value(self):
        uploads = [UploadedFile.from_dict(record())]
        merged = merge_uploads({"photo": "fake", "name": "Ada"}, uploads)

        assert merged["name"] == "Ada"
        assert merged["photo"]["originalName"] == "p.png"

    def test_several_files_become_list(self):
        uploads = [UploadedFile.from_dict(record(filename=f"{i}.png")) for i in range(3)]
        merged = merge_uploads({}, uploads)

        assert [f["filename"] for f in merged["photo"]] == ["0.png", "1.png", "2.png"]

    def test_input_is_not_mutated(self):
        answers = {"name": "Ada"}
        merge_uploads(answers, [UploadedFile.from_dict(record())])
        assert answers == {"name": "Ada"}

    def test_upload_paths(self):
        uploads = [UploadedFile.from_dict(record(path="a")), UploadedFile.from_dict(record(path="b"))]
        assert upload_paths(uploads) == ["a", "b"]


class TestLocalFileStorage:
    """Test best-effort file removal."""

    def test_discard_removes_files(self, tmp_path):
        path = tmp_path / "f1" / "cv.pdf"
        path.parent.mkdir()
        path.write_bytes(b"%PDF")

        LocalFileStorage(tmp_path).discard([str(path)])
        assert not path.exists()

    def test_discard_missing_file_does_not_raise(self, tmp_path, caplog):
        with caplog.at_level(logging.DEBUG, logger="formvault.uploads"):
            LocalFileStorage(tmp_path).discard([str(tmp_path / "gone.pdf")])
        assert "already gone" in caplog.text

    def test_remove_form_files(self, tmp_path):
        storage = LocalFileStorage(tmp_path)
        (tmp_path / "f1").mkdir()
        (tmp_path / "f1" / "a.png").write_bytes(b"x")

        storage.remove_form_files("f1")
        assert not storage.form_dir("f1").exists()

    def test_remove_files_of_form_without_uploads(self, tmp_path):
        LocalFileStorage(tmp_path).remove_form_files("never-uploaded")
