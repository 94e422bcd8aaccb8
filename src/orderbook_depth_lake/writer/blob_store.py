from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Protocol

from orderbook_depth_lake.core.errors import StoreError

logger = logging.getLogger(__name__)

_TMP_DIR_NAME = ".tmp"


class BlobStore(Protocol):
    def put(self, key: str, data: bytes) -> None: ...

    def list(self, prefix: str) -> list[str]: ...


class LocalBlobStore:
    """Write-once key/value blobs stored as files under ``root_dir``.

    Keys are ``/``-separated relative paths. A blob is first written to a
    temporary file and then hard-linked into place, so readers never see a
    partial file and an existing key is never overwritten.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def put(self, key: str, data: bytes) -> None:
        final_path = self._path_for(key)
        tmp_dir = self._root_dir / _TMP_DIR_NAME
        tmp_path = tmp_dir / f"{uuid.uuid4().hex}.part"
        try:
            final_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            final_path.hardlink_to(tmp_path)
        except FileExistsError as exc:
            raise StoreError(f"key already exists: {key}") from exc
        except OSError as exc:
            raise StoreError(f"failed to write {key}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def list(self, prefix: str) -> list[str]:
        directory_part = prefix.rpartition("/")[0]
        base = self._path_for(directory_part) if directory_part else self._root_dir
        if not base.is_dir():
            return []

        keys: list[str] = []
        try:
            for path in base.rglob("*"):
                if not path.is_file():
                    continue
                relative = path.relative_to(self._root_dir)
                if relative.parts and relative.parts[0] == _TMP_DIR_NAME:
                    continue
                key = relative.as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        except OSError as exc:
            raise StoreError(f"failed to list {prefix!r}: {exc}") from exc
        return sorted(keys)

    def _path_for(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise StoreError(f"invalid blob key: {key!r}")
        return self._root_dir.joinpath(*parts)
