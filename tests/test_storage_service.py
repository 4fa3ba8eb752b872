import pytest

from app.services.storage_service import StorageService


def test_save_and_load_round_trip(tmp_path):
    storage = StorageService(str(tmp_path))
    key, original = storage.save_bytes(b"jpeg-bytes", "my receipt (1).jpg", "user@example.com")

    assert original == "my receipt (1).jpg"
    user_dir, name = key.split("/")
    assert user_dir == "userexample.com"
    assert name.endswith("_myreceipt1.jpg")
    assert storage.load(key) == b"jpeg-bytes"


def test_rejects_empty_and_escaping_keys(tmp_path):
    storage = StorageService(str(tmp_path))
    with pytest.raises(ValueError):
        storage.save_bytes(b"", "a.png", "u1")
    with pytest.raises(ValueError, match="Invalid file key"):
        storage.get_full_path("../outside.png")
    with pytest.raises(ValueError, match="File not found"):
        storage.load("u1/missing.png")
