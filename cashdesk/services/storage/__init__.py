"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the hosted backend; the in-memory backend serves tests
and runs without a configured spreadsheet.
"""

from cashdesk.services.storage.interface import (
    ActivityLogStorageInterface,
    ConnectionError,
    DocumentStorageInterface,
    DuplicateError,
    NotFoundError,
    StorageError,
)
from cashdesk.services.storage.google_sheets import (
    GoogleSheetsActivityLogStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    record_columns,
    record_to_row,
    row_to_record,
)
from cashdesk.services.storage.memory import (
    InMemoryActivityLogStorage,
    InMemoryDocumentStorage,
)

__all__ = [
    # Interfaces
    "ActivityLogStorageInterface",
    "DocumentStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsActivityLogStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
    "record_columns",
    "record_to_row",
    "row_to_record",
    # In-memory implementation
    "InMemoryActivityLogStorage",
    "InMemoryDocumentStorage",
]
