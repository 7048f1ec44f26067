"""In-memory metadata and blob stores (single process, thread-safe)."""

from __future__ import annotations

import itertools
import threading

from admission.adapters.storage.base import AbstractBlobStore, AbstractMetadataStore, StoredItem


class InMemoryMetadataStore(AbstractMetadataStore):
    """Dict-backed metadata rows with a process-wide sequence counter."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rows: dict[str, StoredItem] = {}
        self._sequence = itertools.count(1)

    def query(self, owner_id: str) -> list[StoredItem]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.owner_id == owner_id]
        return sorted(rows, key=lambda row: row.eviction_key)

    def count(self, owner_id: str) -> int:
        with self._lock:
            return sum(1 for row in self._rows.values() if row.owner_id == owner_id)

    def get(self, item_id: str) -> StoredItem | None:
        with self._lock:
            return self._rows.get(item_id)

    def insert(self, item: StoredItem) -> None:
        with self._lock:
            if item.id in self._rows:
                raise ValueError(f"item '{item.id}' already exists")
            self._rows[item.id] = item

    def delete(self, item_id: str) -> bool:
        with self._lock:
            return self._rows.pop(item_id, None) is not None

    def next_sequence_no(self) -> int:
        with self._lock:
            return next(self._sequence)


class InMemoryBlobStore(AbstractBlobStore):
    """Dict-backed blob location."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._blobs: dict[str, bytes] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

    def write(self, path: str, data: bytes) -> None:
        with self._lock:
            self._blobs[path] = bytes(data)

    def read(self, path: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(path)

    def delete(self, path: str) -> bool:
        with self._lock:
            return self._blobs.pop(path, None) is not None

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._blobs
