"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger lives in SQLite; Google Sheets is a read-only import source.
"""

from finora.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerReader,
    LedgerStorageInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    UnitOfWork,
)
from finora.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteDatabase,
    SQLiteLedgerStorage,
    SQLiteUnitOfWork,
)
from finora.services.storage.google_sheets import GoogleSheetsClient

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerReader",
    "LedgerStorageInterface",
    "UnitOfWork",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteDatabase",
    "SQLiteLedgerStorage",
    "SQLiteUnitOfWork",
    # Import source
    "GoogleSheetsClient",
]
