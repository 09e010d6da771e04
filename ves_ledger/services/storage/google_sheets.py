"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Users can inspect their layers directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal/small-business ledger)
- No transactions: a layer update writes its three mutable cells in a
  single range update, so a row is never left half-written
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing the FIFO engine.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ves_ledger.config import get_settings
from ves_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ves_ledger.models.layer import BankAccount, VESLayer
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


# Column mappings for VESLayers sheet
LAYER_COLUMNS = [
    "id",
    "bank_account_id",
    "transaction_id",
    "user_id",
    "amount_ves",
    "exchange_rate",
    "remaining_ves",
    "is_active",
    "updated_at",
    "created_at",
    "equivalent_usd",
]

# remaining_ves, is_active and updated_at are adjacent so one range write covers them
LAYER_MUTABLE_FIRST_COL = LAYER_COLUMNS.index("remaining_ves") + 1
LAYER_MUTABLE_LAST_COL = LAYER_COLUMNS.index("updated_at") + 1

# Column mappings for BankAccounts sheet
ACCOUNT_COLUMNS = [
    "id",
    "user_id",
    "bank",
    "account_number",
    "currency",
    "amount",
    "historical_cost_usd",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

# Misses, collisions and invariant violations are answers, not transient failures
write_retry = retry(
    retry=retry_if_not_exception_type(
        (NotFoundError, DuplicateError, InvariantViolationError)
    ),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_getter(row: list):
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_layers_sheet(self) -> gspread.Worksheet:
        """Get or create the VESLayers worksheet."""
        return self._get_or_create_sheet(
            self._settings.layers_sheet_name, LAYER_COLUMNS, rows=5000
        )

    def get_accounts_sheet(self) -> gspread.Worksheet:
        """Get or create the BankAccounts worksheet."""
        return self._get_or_create_sheet(
            self._settings.accounts_sheet_name, ACCOUNT_COLUMNS, rows=200
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _account_to_row(account: BankAccount) -> list:
    return [
        account.id,
        account.user_id or "",
        account.bank,
        account.account_number,
        account.currency,
        str(account.amount),
        str(account.historical_cost_usd),
        account.updated_at.isoformat(),
    ]


def _row_to_account(row: list) -> BankAccount:
    safe_get = _safe_getter(row)
    return BankAccount(
        id=safe_get(0),
        user_id=safe_get(1) or None,
        bank=safe_get(2),
        account_number=safe_get(3),
        currency=safe_get(4, "VES"),
        amount=Decimal(safe_get(5, "0")),
        historical_cost_usd=Decimal(safe_get(6, "0")),
        updated_at=datetime.fromisoformat(safe_get(7)) if safe_get(7) else datetime.utcnow(),
    )


def _find_account_row(sheet: gspread.Worksheet, account_id: str) -> tuple[int, list]:
    """Return (1-based row index, row values) or raise AccountNotFoundError."""
    all_rows = sheet.get_all_values()
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
        if row and row[0] == account_id:
            return idx, row
    raise AccountNotFoundError(account_id)


class GoogleSheetsLayerStorage(LayerStorageInterface):
    """
    Google Sheets implementation of layer storage.

    Layers are stored as rows in a worksheet with one layer per row.
    Rows are never deleted; consumed layers stay with remaining_ves = 0.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _layer_to_row(self, layer: VESLayer) -> list:
        """Convert a VESLayer to a spreadsheet row."""
        return [
            layer.id,
            layer.bank_account_id,
            layer.transaction_id or "",
            layer.user_id or "",
            str(layer.amount_ves),
            str(layer.exchange_rate),
            str(layer.remaining_ves),
            str(layer.is_active),
            layer.updated_at.isoformat(),
            layer.created_at.isoformat(),
            str(layer.equivalent_usd),
        ]

    def _row_to_layer(self, row: list) -> VESLayer:
        """Convert a spreadsheet row to a VESLayer."""
        safe_get = _safe_getter(row)
        return VESLayer(
            id=safe_get(0),
            bank_account_id=safe_get(1),
            transaction_id=safe_get(2) or None,
            user_id=safe_get(3) or None,
            amount_ves=Decimal(safe_get(4)),
            exchange_rate=Decimal(safe_get(5)),
            remaining_ves=Decimal(safe_get(6)),
            is_active=safe_get(7).lower() == "true",
            updated_at=datetime.fromisoformat(safe_get(8)),
            created_at=datetime.fromisoformat(safe_get(9)),
        )

    def _load_layers(self) -> list[tuple[int, VESLayer]]:
        """
        Every layer with its sheet row number.

        A malformed row raises instead of being skipped: a missing layer
        would silently shift FIFO order and lose cost.
        """
        sheet = self._client.get_layers_sheet()
        layers = []
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                layers.append((idx, self._row_to_layer(row)))
            except Exception as e:
                raise StorageError(f"Malformed layer row {idx}: {e}")
        return layers

    def _require_account(self, account_id: str) -> None:
        _find_account_row(self._client.get_accounts_sheet(), account_id)

    @write_retry
    async def insert_layer(self, layer: VESLayer) -> VESLayer:
        """Append a new layer row."""
        try:
            self._require_account(layer.bank_account_id)
            if any(existing.id == layer.id for _, existing in self._load_layers()):
                raise DuplicateError(f"Layer already exists: {layer.id}")
            sheet = self._client.get_layers_sheet()
            sheet.append_row(self._layer_to_row(layer), value_input_option="RAW")
            return layer
        except (NotFoundError, DuplicateError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert layer: {e}")

    @write_retry
    async def update_layer_remaining(
        self,
        layer_id: str,
        new_remaining_ves: Decimal,
        new_is_active: bool,
    ) -> VESLayer:
        """Rewrite remaining_ves, is_active and updated_at in one range update."""
        try:
            for idx, layer in self._load_layers():
                if layer.id != layer_id:
                    continue
                if new_remaining_ves > layer.remaining_ves:
                    raise InvariantViolationError(
                        f"remaining_ves of layer {layer_id} can only decrease"
                    )
                data = layer.model_dump()
                data.update(
                    remaining_ves=new_remaining_ves,
                    is_active=new_is_active,
                    updated_at=datetime.utcnow(),
                )
                try:
                    updated = VESLayer.model_validate(data)
                except ValidationError as e:
                    raise InvariantViolationError(
                        f"Layer {layer_id} update rejected: {e}"
                    )
                cell_range = (
                    f"{rowcol_to_a1(idx, LAYER_MUTABLE_FIRST_COL)}:"
                    f"{rowcol_to_a1(idx, LAYER_MUTABLE_LAST_COL)}"
                )
                sheet = self._client.get_layers_sheet()
                sheet.update(
                    range_name=cell_range,
                    values=[[
                        str(updated.remaining_ves),
                        str(updated.is_active),
                        updated.updated_at.isoformat(),
                    ]],
                    value_input_option="RAW",
                )
                return updated

            raise NotFoundError(f"Layer not found: {layer_id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update layer: {e}")

    async def query_active_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        layers = await self.query_all_layers_by_account(account_id)
        return [layer for layer in layers if layer.remaining_ves > 0]

    async def query_all_layers_by_account(
        self,
        account_id: str,
    ) -> list[VESLayer]:
        try:
            self._require_account(account_id)
            layers = [
                layer for _, layer in self._load_layers()
                if layer.bank_account_id == account_id
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list layers: {e}")

        layers.sort(key=lambda layer: layer.fifo_key)
        return layers

    async def get_layer_by_id(self, layer_id: str) -> Optional[VESLayer]:
        for _, layer in self._load_layers():
            if layer.id == layer_id:
                return layer
        return None

    async def query_layers_by_user(
        self,
        user_id: str,
        only_active: bool = True,
    ) -> list[VESLayer]:
        layers = [
            layer for _, layer in self._load_layers()
            if layer.user_id == user_id and (layer.is_active or not only_active)
        ]
        layers.sort(key=lambda layer: layer.fifo_key)
        return layers


class GoogleSheetsAccountStorage(AccountStorageInterface):
    """
    Google Sheets implementation of account storage.

    The BankAccounts sheet is maintained by the host application;
    we only read it and update the historical cost column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @write_retry
    async def add_account(self, account: BankAccount) -> BankAccount:
        """Register an account row (normally done by the host app)."""
        try:
            sheet = self._client.get_accounts_sheet()
            if any(row and row[0] == account.id for row in sheet.get_all_values()[1:]):
                raise DuplicateError(f"Account already exists: {account.id}")
            sheet.append_row(_account_to_row(account), value_input_option="RAW")
            return account
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to add account: {e}")

    async def get_account(self, account_id: str) -> BankAccount:
        try:
            _, row = _find_account_row(self._client.get_accounts_sheet(), account_id)
            return _row_to_account(row)
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")

    @write_retry
    async def update_historical_cost(
        self,
        account_id: str,
        historical_cost_usd: Decimal,
    ) -> BankAccount:
        try:
            sheet = self._client.get_accounts_sheet()
            idx, row = _find_account_row(sheet, account_id)
            account = _row_to_account(row).model_copy(
                update={
                    "historical_cost_usd": historical_cost_usd,
                    "updated_at": datetime.utcnow(),
                }
            )
            first_col = ACCOUNT_COLUMNS.index("historical_cost_usd") + 1
            last_col = ACCOUNT_COLUMNS.index("updated_at") + 1
            sheet.update(
                range_name=f"{rowcol_to_a1(idx, first_col)}:{rowcol_to_a1(idx, last_col)}",
                values=[[
                    str(account.historical_cost_usd),
                    account.updated_at.isoformat(),
                ]],
                value_input_option="RAW",
            )
            return account
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue  # Skip malformed audit rows
        return events

    @write_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
