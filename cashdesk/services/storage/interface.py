"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets as the hosted store without tying flows to gspread
2. Use in-memory storage for tests and storage-less runs
3. Keep business logic decoupled from storage implementation

The interface mirrors a document store: one collection per entity type,
whole-collection reads filtered in Python, single-document writes.
There are no transactions; callers that touch several documents write
them one after the other.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

from cashdesk.models.audit import ActivityLogEntry, EntityType
from cashdesk.models.entities import StoredRecord

RecordT = TypeVar("RecordT", bound=StoredRecord)


class DocumentStorageInterface(ABC, Generic[RecordT]):
    """
    Abstract interface for one collection of documents.

    Any storage implementation (Google Sheets, in-memory, etc.)
    must implement these methods.
    """

    collection: str

    @abstractmethod
    async def add(self, record: RecordT) -> RecordT:
        """
        Insert a new document.

        Args:
            record: The record to store (its id is kept)

        Returns:
            The stored record

        Raises:
            DuplicateError: If a document with this id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, record_id: str) -> Optional[RecordT]:
        """
        Retrieve a document by id.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def update(self, record: RecordT) -> RecordT:
        """
        Replace an existing document.

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """
        Delete a document by id.

        Returns:
            True if a document was deleted, False if none matched
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[RecordT]:
        """Every document of the collection, in storage order."""
        pass

    async def find(self, **equals: Any) -> list[RecordT]:
        """Documents whose fields equal every given value."""
        records = await self.list_all()
        return [
            record for record in records
            if all(_field_matches(record, name, value) for name, value in equals.items())
        ]


def _field_matches(record: StoredRecord, name: str, expected: Any) -> bool:
    actual = getattr(record, name, None)
    if hasattr(actual, "value") and not hasattr(expected, "value"):
        actual = actual.value
    return actual == expected


class ActivityLogStorageInterface(ABC):
    """
    Abstract interface for activity log storage.

    Activity logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_entry(self, entry: ActivityLogEntry) -> bool:
        """
        Append an activity entry to the log.

        Returns:
            True if logged successfully

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_entries(self, limit: Optional[int] = None) -> list[ActivityLogEntry]:
        """
        Activity entries, newest first.

        Args:
            limit: Maximum number of entries to return (None for all)
        """
        pass

    @abstractmethod
    async def get_entries_by_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ActivityLogEntry]:
        """
        All entries for one entity, in chronological order.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
