"""Storage interfaces for stored items.

An item lives in two places: a metadata row (the source of truth for how many
items an owner has) and a blob holding its bytes. There is no transaction
spanning both, so callers order writes and deletes explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class StoredItem:
    """Metadata row for one stored item.

    Attributes:
        id: Item identifier.
        owner_id: Owning identity.
        created_at: UNIX epoch milliseconds.
        size_bytes: Blob size.
        blob_ref: Blob path within its location.
        sequence_no: Store-assigned, strictly increasing insert number.
        blob_location: Location the blob was written to; None for legacy rows
            written before locations were recorded.
        category: Quota category that produced the item.
    """

    id: str
    owner_id: str
    created_at: int
    size_bytes: int
    blob_ref: str | None
    sequence_no: int
    blob_location: str | None = None
    category: str | None = None

    @property
    def eviction_key(self) -> tuple[int, int]:
        return (self.created_at, self.sequence_no)


class AbstractMetadataStore(ABC):
    """Interface for item metadata rows."""

    @abstractmethod
    def query(self, owner_id: str) -> list[StoredItem]:
        """Owner's rows ordered by (created_at, sequence_no) ascending."""
        raise NotImplementedError

    @abstractmethod
    def count(self, owner_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def get(self, item_id: str) -> StoredItem | None:
        raise NotImplementedError

    @abstractmethod
    def insert(self, item: StoredItem) -> None:
        """Insert a row.

        Raises:
            ValueError: If a row with the same id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, item_id: str) -> bool:
        """Delete a row. Returns False when it did not exist."""
        raise NotImplementedError

    @abstractmethod
    def next_sequence_no(self) -> int:
        """Allocate the next insert sequence number."""
        raise NotImplementedError


class AbstractBlobStore(ABC):
    """Interface for one blob location (bucket, directory, ...)."""

    @abstractmethod
    def write(self, path: str, data: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete a blob.

        Returns:
            True when a blob was removed, False when none existed.

        Raises:
            Exception: Any other failure to delete.
        """
        raise NotImplementedError

    @abstractmethod
    def exists(self, path: str) -> bool:
        raise NotImplementedError
