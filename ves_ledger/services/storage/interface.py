"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the FIFO engine decoupled from storage implementation

The interface is intentionally small - just the operations the layer
engine and the cost aggregator need.

CONTRACT: Every write either succeeds or raises. A failed write must not
leave a partially updated layer behind.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ves_ledger.models.audit import AuditEvent
from ves_ledger.models.layer import BankAccount, VESLayer


class LayerStorageInterface(ABC):
    """
    Abstract interface for VES layer storage.

    Layers are inserted once and afterwards only their remaining
    amount (and the active flag that follows from it) changes.
    Nothing in this interface deletes a layer.
    """

    @abstractmethod
    async def insert_layer(self, layer: VESLayer) -> VESLayer:
        """
        Persist a new layer.

        Args:
            layer: The layer to store

        Returns:
            The stored layer

        Raises:
            AccountNotFoundError: If the owning account doesn't exist
            DuplicateError: If a layer with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_layer_remaining(
        self,
        layer_id: str,
        new_remaining_ves: Decimal,
        new_is_active: bool,
    ) -> VESLayer:
        """
        Atomically set a layer's remaining amount and active flag.

        Args:
            layer_id: The layer to update
            new_remaining_ves: New remaining amount
            new_is_active: New active flag (False once remaining hits zero)

        Returns:
            The updated layer

        Raises:
            NotFoundError: If the layer doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def query_active_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        """
        Layers of an account that still have VES left, oldest first.

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def query_all_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        """
        Every layer of an account, consumed ones included, oldest first.

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def get_layer_by_id(self, layer_id: str) -> Optional[VESLayer]:
        """
        Retrieve a layer by its ID.

        Returns:
            The layer if found, None otherwise
        """
        pass

    @abstractmethod
    async def query_layers_by_user(
        self,
        user_id: str,
        only_active: bool = True,
    ) -> list[VESLayer]:
        """
        Layers across all accounts of a user, oldest first.

        Args:
            user_id: Owner to filter by
            only_active: If True, skip fully consumed layers
        """
        pass


class AccountStorageInterface(ABC):
    """
    Abstract interface for the bank account records the ledger touches.

    Accounts are owned by the surrounding application. The ledger only
    reads them and writes back the cached historical cost.
    """

    @abstractmethod
    async def get_account(self, account_id: str) -> BankAccount:
        """
        Retrieve an account.

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def update_historical_cost(
        self,
        account_id: str,
        historical_cost_usd: Decimal,
    ) -> BankAccount:
        """
        Store the account's historical USD cost.

        Returns:
            The updated account

        Raises:
            AccountNotFoundError: If the account doesn't exist
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one transaction).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'layer', 'account')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class AccountNotFoundError(NotFoundError):
    """Referenced bank account does not exist."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Bank account not found: {account_id}")


class InvariantViolationError(StorageError):
    """A write would break a layer invariant. Retrying cannot help."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
