"""
In-Memory Storage

Same contract as the Google Sheets storage, kept in process memory.
Used by the tests and when no spreadsheet is configured. Records are
copied on the way in and out so callers never share state with the store.
"""

from typing import Generic, Optional

from cashdesk.models.audit import ActivityLogEntry, EntityType
from cashdesk.services.storage.interface import (
    ActivityLogStorageInterface,
    DocumentStorageInterface,
    DuplicateError,
    NotFoundError,
    RecordT,
)


class InMemoryDocumentStorage(DocumentStorageInterface[RecordT], Generic[RecordT]):

    def __init__(self, collection: str):
        self.collection = collection
        self._documents: dict[str, RecordT] = {}

    async def add(self, record: RecordT) -> RecordT:
        if record.id in self._documents:
            raise DuplicateError(f"{self.collection} document already exists: {record.id}")
        self._documents[record.id] = record.model_copy(deep=True)
        return record

    async def get(self, record_id: str) -> Optional[RecordT]:
        record = self._documents.get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update(self, record: RecordT) -> RecordT:
        if record.id not in self._documents:
            raise NotFoundError(f"{self.collection} document not found: {record.id}")
        self._documents[record.id] = record.model_copy(deep=True)
        return record

    async def delete(self, record_id: str) -> bool:
        return self._documents.pop(record_id, None) is not None

    async def list_all(self) -> list[RecordT]:
        return [record.model_copy(deep=True) for record in self._documents.values()]


class InMemoryActivityLogStorage(ActivityLogStorageInterface):
    """Append-only list of entries."""

    def __init__(self):
        self._entries: list[ActivityLogEntry] = []

    async def append_entry(self, entry: ActivityLogEntry) -> bool:
        self._entries.append(entry)
        return True

    async def list_entries(self, limit: Optional[int] = None) -> list[ActivityLogEntry]:
        entries = sorted(self._entries, key=lambda e: e.timestamp, reverse=True)
        return entries if limit is None else entries[:limit]

    async def get_entries_by_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ActivityLogEntry]:
        entries = [
            e for e in self._entries
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        entries.sort(key=lambda e: e.timestamp)
        return entries
