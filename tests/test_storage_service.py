# tests/test_storage_service.py
import pytest

from app.services.storage_service import LocalObjectStorage, StorageError


def test_upload_then_download(tmp_path):
    storage = LocalObjectStorage(tmp_path)
    path = storage.upload("call-recordings", "1/2024/01/15/7.wav", b"audio", "audio/wav")

    assert path == "1/2024/01/15/7.wav"
    assert storage.exists("call-recordings", path)
    assert storage.download("call-recordings", path) == b"audio"
    assert (tmp_path / "call-recordings" / "1" / "2024" / "01" / "15" / "7.wav").is_file()


def test_upload_overwrites(tmp_path):
    storage = LocalObjectStorage(tmp_path)
    storage.upload("call-analyses", "1/a.json", b"{}")
    storage.upload("call-analyses", "1/a.json", b'{"v": 2}')
    assert storage.download("call-analyses", "1/a.json") == b'{"v": 2}'


def test_path_traversal_is_rejected(tmp_path):
    storage = LocalObjectStorage(tmp_path)
    with pytest.raises(StorageError):
        storage.upload("call-recordings", "../call-analyses/evil.json", b"x")


def test_missing_object(tmp_path):
    storage = LocalObjectStorage(tmp_path)
    assert not storage.exists("call-transcripts", "1/none.json")
    with pytest.raises(StorageError):
        storage.download("call-transcripts", "1/none.json")
