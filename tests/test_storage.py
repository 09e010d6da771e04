"""
Tests for the storage backends.

The Google Sheets storages run against an in-process fake worksheet;
no real API calls are made.
"""

import asyncio
import time
from datetime import datetime
from decimal import Decimal

import pytest
from gspread.utils import a1_to_rowcol

from conftest import T1, T2
from ves_ledger.layers import LayerEngine
from ves_ledger.models.audit import AuditEventBuilder, AuditEventType
from ves_ledger.models.layer import BankAccount, VESLayer
from ves_ledger.services.storage import (
    AccountNotFoundError,
    DuplicateError,
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsLayerStorage,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryStore,
    InvariantViolationError,
    NotFoundError,
    StorageError,
)
from ves_ledger.services.storage.google_sheets import (
    ACCOUNT_COLUMNS,
    AUDIT_COLUMNS,
    LAYER_COLUMNS,
)


def _layer(layer_id="l1", account="acct1", remaining="100", when=T1, user_id=None) -> VESLayer:
    return VESLayer(
        id=layer_id,
        bank_account_id=account,
        amount_ves=Decimal("100"),
        remaining_ves=Decimal(remaining),
        exchange_rate=Decimal("50"),
        created_at=when,
        user_id=user_id,
    )


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

class TestInMemoryLayerStorage:
    """Tests for the in-memory layer storage."""

    def test_insert_requires_account(self, layer_storage):
        with pytest.raises(AccountNotFoundError, match="missing"):
            asyncio.run(layer_storage.insert_layer(_layer(account="missing")))

    def test_duplicate_id_rejected(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer())
            await layer_storage.insert_layer(_layer())

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_remaining_only_decreases(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer(remaining="40"))
            await layer_storage.update_layer_remaining("l1", Decimal("50"), True)

        with pytest.raises(InvariantViolationError, match="only decrease"):
            asyncio.run(scenario())

    def test_is_active_must_match_remaining(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer())
            await layer_storage.update_layer_remaining("l1", Decimal("0"), True)

        with pytest.raises(InvariantViolationError, match="disagrees"):
            asyncio.run(scenario())

    def test_negative_remaining_rejected(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer())
            with pytest.raises(InvariantViolationError, match="rejected"):
                await layer_storage.update_layer_remaining("l1", Decimal("-1"), False)
            return await layer_storage.get_layer_by_id("l1")

        assert asyncio.run(scenario()).remaining_ves == Decimal("100")

    def test_update_unknown_layer(self, layer_storage):
        with pytest.raises(NotFoundError):
            asyncio.run(layer_storage.update_layer_remaining("nope", Decimal("0"), False))

    def test_update_and_queries(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer("l2", when=T2))
            await layer_storage.insert_layer(_layer("l1", when=T1))
            updated = await layer_storage.update_layer_remaining("l1", Decimal("0"), False)
            return (
                updated,
                await layer_storage.query_active_layers_by_account("acct1"),
                await layer_storage.query_all_layers_by_account("acct1"),
            )

        updated, active, everything = asyncio.run(scenario())

        assert updated.remaining_ves == 0
        assert updated.is_active is False
        assert [l.id for l in active] == ["l2"]
        assert [l.id for l in everything] == ["l1", "l2"]

    def test_returned_layers_are_copies(self, layer_storage):
        async def scenario():
            await layer_storage.insert_layer(_layer())
            fetched = await layer_storage.get_layer_by_id("l1")
            fetched.remaining_ves = Decimal("1")
            return await layer_storage.get_layer_by_id("l1")

        assert asyncio.run(scenario()).remaining_ves == Decimal("100")

    def test_query_unknown_account(self, layer_storage):
        with pytest.raises(AccountNotFoundError):
            asyncio.run(layer_storage.query_all_layers_by_account("missing"))


class TestInMemoryAccountAndAudit:
    """Tests for in-memory account and audit storage."""

    def test_update_historical_cost(self, store):
        storage = InMemoryAccountStorage(store)

        async def scenario():
            await storage.update_historical_cost("acct1", Decimal("200"))
            return await storage.get_account("acct1")

        account = asyncio.run(scenario())
        assert account.historical_cost_usd == Decimal("200")
        assert account.bank == "Banesco"

    def test_unknown_account(self, store):
        with pytest.raises(AccountNotFoundError, match="Bank account not found"):
            asyncio.run(InMemoryAccountStorage(store).get_account("missing"))

    def test_audit_queries(self, store):
        storage = InMemoryAuditStorage(store)
        first = AuditEventBuilder.layer_created("l1", "acct1", Decimal("1"), Decimal("50"))
        second = AuditEventBuilder.shortfall_detected("acct1", Decimal("10"), Decimal("9"))

        async def scenario():
            await storage.append_event(first)
            await storage.append_event(second)
            return (
                await storage.get_events_by_entity("layer", "l1"),
                await storage.get_recent_events(limit=1),
            )

        by_entity, recent = asyncio.run(scenario())
        assert [e.event_id for e in by_entity] == [first.event_id]
        assert len(recent) == 1


# =============================================================================
# GOOGLE SHEETS BACKEND
# =============================================================================

class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storages: cells are strings."""

    def __init__(self, header: list[str]):
        self.rows: list[list[str]] = [list(header)]
        self.update_calls: list[str] = []

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(["" if v is None else str(v) for v in values])

    def update(self, range_name=None, values=None, **kwargs):
        self.update_calls.append(range_name)
        start = range_name.split(":")[0]
        row, col = a1_to_rowcol(start)
        for r_offset, new_values in enumerate(values):
            target = self.rows[row - 1 + r_offset]
            for c_offset, value in enumerate(new_values):
                target[col - 1 + c_offset] = str(value)


class FakeSheetsClient:
    def __init__(self):
        self.layers = FakeWorksheet(LAYER_COLUMNS)
        self.accounts = FakeWorksheet(ACCOUNT_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_layers_sheet(self):
        return self.layers

    def get_accounts_sheet(self):
        return self.accounts

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture
def sheets_client() -> FakeSheetsClient:
    client = FakeSheetsClient()
    asyncio.run(
        GoogleSheetsAccountStorage(client).add_account(
            BankAccount(id="acct1", user_id="user1", bank="Banesco", amount=Decimal("4000"))
        )
    )
    return client


class TestGoogleSheetsLayerStorage:
    """Tests for the Sheets layer storage against a fake worksheet."""

    def test_insert_and_read_back(self, sheets_client):
        storage = GoogleSheetsLayerStorage(sheets_client)

        async def scenario():
            await storage.insert_layer(_layer("l2", when=T2, user_id="user1"))
            await storage.insert_layer(_layer("l1", when=T1, user_id="user1"))
            return (
                await storage.query_all_layers_by_account("acct1"),
                await storage.query_layers_by_user("user1"),
            )

        layers, by_user = asyncio.run(scenario())

        assert [l.id for l in layers] == ["l1", "l2"]
        assert layers[0].amount_ves == Decimal("100")
        assert layers[0].exchange_rate == Decimal("50")
        assert layers[0].created_at == T1
        assert len(by_user) == 2
        assert sheets_client.layers.rows[1][LAYER_COLUMNS.index("equivalent_usd")] == "2"

    def test_update_writes_only_mutable_cells(self, sheets_client):
        storage = GoogleSheetsLayerStorage(sheets_client)

        async def scenario():
            await storage.insert_layer(_layer())
            await storage.update_layer_remaining("l1", Decimal("0"), False)
            return await storage.get_layer_by_id("l1")

        layer = asyncio.run(scenario())
        row = sheets_client.layers.rows[1]

        assert sheets_client.layers.update_calls == ["G2:I2"]
        assert row[LAYER_COLUMNS.index("remaining_ves")] == "0"
        assert row[LAYER_COLUMNS.index("is_active")] == "False"
        assert row[LAYER_COLUMNS.index("amount_ves")] == "100"
        assert layer.remaining_ves == 0
        assert layer.is_active is False

    def test_unknown_account(self, sheets_client):
        storage = GoogleSheetsLayerStorage(sheets_client)
        with pytest.raises(AccountNotFoundError):
            asyncio.run(storage.insert_layer(_layer(account="missing")))
        with pytest.raises(AccountNotFoundError):
            asyncio.run(storage.query_active_layers_by_account("missing"))

    def test_duplicate_and_missing(self, sheets_client):
        storage = GoogleSheetsLayerStorage(sheets_client)
        asyncio.run(storage.insert_layer(_layer()))

        with pytest.raises(DuplicateError):
            asyncio.run(storage.insert_layer(_layer()))
        with pytest.raises(NotFoundError):
            asyncio.run(storage.update_layer_remaining("nope", Decimal("0"), False))
        assert asyncio.run(storage.get_layer_by_id("nope")) is None

    def test_increase_fails_without_retry(self, sheets_client):
        """Test an invariant violation is raised at once, not retried with backoff."""
        storage = GoogleSheetsLayerStorage(sheets_client)

        async def scenario():
            await storage.insert_layer(_layer())
            await storage.update_layer_remaining("l1", Decimal("50"), True)
            started = time.monotonic()
            with pytest.raises(InvariantViolationError, match="only decrease"):
                await storage.update_layer_remaining("l1", Decimal("90"), True)
            return time.monotonic() - started

        assert asyncio.run(scenario()) < 1
        assert sheets_client.layers.rows[1][LAYER_COLUMNS.index("remaining_ves")] == "50"

    def test_invalid_update_fails_without_retry(self, sheets_client):
        storage = GoogleSheetsLayerStorage(sheets_client)

        async def scenario():
            await storage.insert_layer(_layer())
            started = time.monotonic()
            with pytest.raises(InvariantViolationError, match="rejected"):
                await storage.update_layer_remaining("l1", Decimal("-1"), False)
            return time.monotonic() - started

        assert asyncio.run(scenario()) < 1
        assert sheets_client.layers.update_calls == []

    def test_malformed_row_is_an_error(self, sheets_client):
        sheets_client.layers.rows.append(["bad", "acct1", "", "", "not-a-number"])
        storage = GoogleSheetsLayerStorage(sheets_client)

        with pytest.raises(StorageError, match="Malformed layer row 2"):
            asyncio.run(storage.query_all_layers_by_account("acct1"))

    def test_engine_over_sheets(self, sheets_client):
        """Test FIFO consumption end to end on the Sheets backend."""
        storage = GoogleSheetsLayerStorage(sheets_client)

        async def scenario():
            engine = LayerEngine(storage)
            await engine.record_inflow("acct1", 5000, 50, T1)
            await engine.record_inflow("acct1", 6000, 60, T2)
            result = await engine.consume_outflow("acct1", 7000)
            return result, await storage.query_all_layers_by_account("acct1")

        result, layers = asyncio.run(scenario())

        assert abs(result.total_cost_usd - Decimal("133.33")) < Decimal("0.01")
        assert [l.remaining_ves for l in layers] == [Decimal("0"), Decimal("4000")]
        assert [l.is_active for l in layers] == [False, True]


class TestGoogleSheetsAccountStorage:
    """Tests for the Sheets account storage."""

    def test_read_and_update_cost(self, sheets_client):
        storage = GoogleSheetsAccountStorage(sheets_client)

        async def scenario():
            before = await storage.get_account("acct1")
            await storage.update_historical_cost("acct1", Decimal("66.67"))
            return before, await storage.get_account("acct1")

        before, after = asyncio.run(scenario())

        assert before.amount == Decimal("4000")
        assert before.historical_cost_usd == 0
        assert after.historical_cost_usd == Decimal("66.67")
        assert sheets_client.accounts.update_calls == ["G2:H2"]

    def test_duplicate_account(self, sheets_client):
        storage = GoogleSheetsAccountStorage(sheets_client)
        with pytest.raises(DuplicateError):
            asyncio.run(storage.add_account(BankAccount(id="acct1")))

    def test_unknown_account(self, sheets_client):
        storage = GoogleSheetsAccountStorage(sheets_client)
        with pytest.raises(AccountNotFoundError):
            asyncio.run(storage.get_account("missing"))
        with pytest.raises(AccountNotFoundError):
            asyncio.run(storage.update_historical_cost("missing", Decimal("1")))


class TestGoogleSheetsAuditStorage:
    """Tests for the Sheets audit storage."""

    def test_round_trip_by_correlation(self, sheets_client):
        storage = GoogleSheetsAuditStorage(sheets_client)
        event = AuditEventBuilder.shortfall_detected(
            bank_account_id="acct1",
            requested_ves=Decimal("10000"),
            shortfall_ves=Decimal("6000"),
            correlation_id=None,
        )
        event = event.model_copy(update={"correlation_id": event.event_id})

        async def scenario():
            await storage.append_event(event)
            return await storage.get_events_by_correlation_id(event.event_id)

        events = asyncio.run(scenario())

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.SHORTFALL_DETECTED
        assert events[0].details["shortfall_ves"] == "6000"

    def test_malformed_rows_skipped(self, sheets_client):
        sheets_client.audit.rows.append(["not-a-uuid", "yesterday"])
        storage = GoogleSheetsAuditStorage(sheets_client)

        async def scenario():
            await storage.append_event(
                AuditEventBuilder.system_error("Boom", "it broke")
            )
            return await storage.get_recent_events()

        events = asyncio.run(scenario())
        assert [e.event_type for e in events] == [AuditEventType.SYSTEM_ERROR]
        assert isinstance(events[0].timestamp, datetime)
