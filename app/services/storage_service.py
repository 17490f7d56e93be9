# app/services/storage_service.py
from __future__ import annotations

import logging
from pathlib import Path

from app.config import get_settings

log = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class LocalObjectStorage:
    """
    Bucket/path object storage on the local filesystem.

    Uploads overwrite whatever is stored at the same path, so re-running the
    pipeline for a call replaces its artifacts in place.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    @classmethod
    def from_settings(cls) -> "LocalObjectStorage":
        return cls(get_settings().STORAGE_ROOT)

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        bucket_root = (self.root / bucket).resolve()
        if bucket_root not in target.parents:
            raise StorageError(f"Refusing to write outside bucket {bucket!r}: {path!r}")
        return target

    def upload(self, bucket: str, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        target = self._resolve(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as exc:
            raise StorageError(f"Failed to upload {bucket}/{path}: {exc}") from exc
        log.debug("Stored %s bytes (%s) at %s/%s", len(data), content_type, bucket, path)
        return path

    def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {bucket}/{path}: {exc}") from exc

    def exists(self, bucket: str, path: str) -> bool:
        return self._resolve(bucket, path).is_file()
