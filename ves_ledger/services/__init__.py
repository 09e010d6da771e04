"""Services package."""

from ves_ledger.services.storage import (
    AccountNotFoundError,
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLayerStorage,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryLayerStorage,
    InMemoryStore,
    LayerStorageInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    "AccountNotFoundError",
    "AccountStorageInterface",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAccountStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLayerStorage",
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryLayerStorage",
    "InMemoryStore",
    "LayerStorageInterface",
    "NotFoundError",
    "StorageError",
]
