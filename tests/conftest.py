"""Shared fixtures: an in-memory store with two registered VES accounts."""

from datetime import datetime
from decimal import Decimal

import pytest

from ves_ledger.models.layer import BankAccount
from ves_ledger.services.storage import (
    InMemoryLayerStorage,
    InMemoryStore,
)


T1 = datetime(2024, 1, 1, 9, 0, 0)
T2 = datetime(2024, 1, 2, 9, 0, 0)
T3 = datetime(2024, 1, 3, 9, 0, 0)


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_account(BankAccount(id="acct1", user_id="user1", bank="Banesco"))
    store.add_account(BankAccount(id="acct2", user_id="user1", bank="Mercantil"))
    return store


@pytest.fixture
def layer_storage(store) -> InMemoryLayerStorage:
    return InMemoryLayerStorage(store)


def total_remaining(layers) -> Decimal:
    return sum((layer.remaining_ves for layer in layers), Decimal("0"))
