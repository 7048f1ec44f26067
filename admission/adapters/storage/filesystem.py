"""Local filesystem blob location.

Each location is a directory; blob paths are relative to it. Paths that would
resolve outside the directory are rejected.
"""

from __future__ import annotations

import os
from pathlib import Path

from admission.adapters.storage.base import AbstractBlobStore


class FileSystemBlobStore(AbstractBlobStore):
    """Blob location backed by a directory on local disk."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        if not path:
            raise ValueError("blob path must be a non-empty string")
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise ValueError(f"blob path escapes the store root: {path!r}")
        return target

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()
