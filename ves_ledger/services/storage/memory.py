"""
In-Memory Storage Implementation

Keeps accounts, layers and audit events in process memory.
Used by the test suite and by embedders that persist elsewhere.

The three storages share one InMemoryStore, the same way the
Google Sheets storages share one GoogleSheetsClient.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from ves_ledger.models.audit import AuditEvent
from ves_ledger.models.layer import BankAccount, VESLayer
from ves_ledger.services.storage.interface import (
    AccountNotFoundError,
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    InvariantViolationError,
    LayerStorageInterface,
    NotFoundError,
)


def _sorted_fifo(layers: list[VESLayer]) -> list[VESLayer]:
    return sorted(layers, key=lambda layer: layer.fifo_key)


class InMemoryStore:
    """Shared backing dictionaries. Copies go in and out, never references."""

    def __init__(self):
        self.accounts: dict[str, BankAccount] = {}
        self.layers: dict[str, VESLayer] = {}
        self.events: list[AuditEvent] = []

    def add_account(self, account: BankAccount) -> BankAccount:
        """Register an account (accounts are created by the host app)."""
        self.accounts[account.id] = account.model_copy(deep=True)
        return account

    def require_account(self, account_id: str) -> BankAccount:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise AccountNotFoundError(account_id)


class InMemoryLayerStorage(LayerStorageInterface):
    """In-memory implementation of layer storage."""

    def __init__(self, store: Optional[InMemoryStore] = None):
        self._store = store or InMemoryStore()

    @property
    def store(self) -> InMemoryStore:
        return self._store

    async def insert_layer(self, layer: VESLayer) -> VESLayer:
        self._store.require_account(layer.bank_account_id)
        if layer.id in self._store.layers:
            raise DuplicateError(f"Layer already exists: {layer.id}")
        self._store.layers[layer.id] = layer.model_copy(deep=True)
        return layer.model_copy(deep=True)

    async def update_layer_remaining(
        self,
        layer_id: str,
        new_remaining_ves: Decimal,
        new_is_active: bool,
    ) -> VESLayer:
        current = self._store.layers.get(layer_id)
        if current is None:
            raise NotFoundError(f"Layer not found: {layer_id}")
        if new_remaining_ves > current.remaining_ves:
            raise InvariantViolationError(
                f"remaining_ves of layer {layer_id} can only decrease "
                f"({current.remaining_ves} -> {new_remaining_ves})"
            )
        if new_is_active != (new_remaining_ves > 0):
            raise InvariantViolationError(
                f"is_active={new_is_active} disagrees with remaining_ves={new_remaining_ves}"
            )

        data = current.model_dump()
        data.update(
            remaining_ves=new_remaining_ves,
            is_active=new_is_active,
            updated_at=datetime.utcnow(),
        )
        # Validate before swapping in, so a bad value never lands
        try:
            updated = VESLayer.model_validate(data)
        except ValidationError as e:
            raise InvariantViolationError(f"Layer {layer_id} update rejected: {e}")
        self._store.layers[layer_id] = updated
        return updated.model_copy(deep=True)

    async def query_active_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        self._store.require_account(account_id)
        return _sorted_fifo([
            layer.model_copy(deep=True)
            for layer in self._store.layers.values()
            if layer.bank_account_id == account_id and layer.remaining_ves > 0
        ])

    async def query_all_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        self._store.require_account(account_id)
        return _sorted_fifo([
            layer.model_copy(deep=True)
            for layer in self._store.layers.values()
            if layer.bank_account_id == account_id
        ])

    async def get_layer_by_id(self, layer_id: str) -> Optional[VESLayer]:
        layer = self._store.layers.get(layer_id)
        return layer.model_copy(deep=True) if layer else None

    async def query_layers_by_user(
        self,
        user_id: str,
        only_active: bool = True,
    ) -> list[VESLayer]:
        return _sorted_fifo([
            layer.model_copy(deep=True)
            for layer in self._store.layers.values()
            if layer.user_id == user_id and (layer.is_active or not only_active)
        ])


class InMemoryAccountStorage(AccountStorageInterface):
    """In-memory implementation of account storage."""

    def __init__(self, store: Optional[InMemoryStore] = None):
        self._store = store or InMemoryStore()

    async def get_account(self, account_id: str) -> BankAccount:
        return self._store.require_account(account_id).model_copy(deep=True)

    async def update_historical_cost(
        self,
        account_id: str,
        historical_cost_usd: Decimal,
    ) -> BankAccount:
        account = self._store.require_account(account_id)
        updated = account.model_copy(
            update={
                "historical_cost_usd": historical_cost_usd,
                "updated_at": datetime.utcnow(),
            }
        )
        self._store.accounts[account_id] = updated
        return updated.model_copy(deep=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """In-memory implementation of audit storage. Append-only."""

    def __init__(self, store: Optional[InMemoryStore] = None):
        self._store = store or InMemoryStore()

    async def append_event(self, event: AuditEvent) -> bool:
        self._store.events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._store.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._store.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._store.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
