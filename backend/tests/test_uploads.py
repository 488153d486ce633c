"""Tests for local media storage."""
import io

import pytest

from src.data.uploads import discard_upload, safe_filename, save_upload
from src.errors import UploadTooLarge


@pytest.mark.parametrize(
    "original, expected",
    [
        ("photo.jpg", "photo.jpg"),
        ("my photo (1).png", "my_photo_1_.png"),
        ("../../etc/passwd", "passwd"),
        ("模型.glb", "模型.glb"),
        ("", "upload"),
    ],
)
def test_safe_filename(original, expected):
    assert safe_filename(original) == expected


def test_save_upload_writes_file_and_builds_url(tmp_path):
    stored = save_upload(tmp_path, "scene.glb", io.BytesIO(b"glTF-data"), max_bytes=1024)
    assert stored.filename.endswith("_scene.glb")
    assert stored.url == f"/uploads/{stored.filename}"
    assert stored.size == len(b"glTF-data")
    assert (tmp_path / stored.filename).read_bytes() == b"glTF-data"


def test_save_upload_too_large_leaves_nothing(tmp_path):
    with pytest.raises(UploadTooLarge):
        save_upload(tmp_path, "big.jpg", io.BytesIO(b"x" * 100), max_bytes=10)
    assert list(tmp_path.iterdir()) == []


def test_discard_upload(tmp_path):
    stored = save_upload(tmp_path, "a.txt", io.BytesIO(b"a"), max_bytes=10)
    discard_upload(tmp_path, stored)
    assert not (tmp_path / stored.filename).exists()
