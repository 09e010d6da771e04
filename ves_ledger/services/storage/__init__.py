"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a Google Sheets backend; both are swappable
behind the same interfaces.
"""

from ves_ledger.services.storage.interface import (
    AccountNotFoundError,
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InvariantViolationError,
    LayerStorageInterface,
    NotFoundError,
    StorageError,
)
from ves_ledger.services.storage.memory import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryLayerStorage,
    InMemoryStore,
)
from ves_ledger.services.storage.google_sheets import (
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLayerStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "LayerStorageInterface",
    # Exceptions
    "AccountNotFoundError",
    "ConnectionError",
    "DuplicateError",
    "InvariantViolationError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryLayerStorage",
    "InMemoryStore",
    # Google Sheets implementation
    "GoogleSheetsAccountStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLayerStorage",
]
