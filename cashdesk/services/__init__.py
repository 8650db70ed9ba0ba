"""Services package."""

from cashdesk.services.storage import (
    ActivityLogStorageInterface,
    ConnectionError,
    DocumentStorageInterface,
    DuplicateError,
    GoogleSheetsActivityLogStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    InMemoryActivityLogStorage,
    InMemoryDocumentStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    "ActivityLogStorageInterface",
    "ConnectionError",
    "DocumentStorageInterface",
    "DuplicateError",
    "GoogleSheetsActivityLogStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
    "InMemoryActivityLogStorage",
    "InMemoryDocumentStorage",
    "NotFoundError",
    "StorageError",
]
