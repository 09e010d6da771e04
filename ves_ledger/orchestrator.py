"""
Main Orchestrator for the VES Ledger

This module ties together the layer engine, the cost aggregator, the
account store and the audit log, and is what the transaction-recording
and reporting parts of the application call.

DESIGN DECISION: The orchestrator enforces the boundaries:
- Invalid input is rejected and audited, never "fixed"
- Every inflow and outflow is audited with its correlation id
- A shortfall is audited and reported; whether it blocks the
  transaction is the caller's policy (see LayerEngine.shortfall_handler)
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ves_ledger.audit import AuditLogger, create_correlation_id
from ves_ledger.config import get_settings
from ves_ledger.layers import LayerEngine, ShortfallError, ShortfallHandler
from ves_ledger.models.layer import (
    ConsolidatedLayerGroup,
    ConsumptionResult,
    LayerSummary,
    ReconciliationReport,
    VESLayer,
)
from ves_ledger.queries import CostAggregator
from ves_ledger.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
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
from ves_ledger.validation import LayerValidationError, to_decimal
from ves_ledger.validation.validator import Number


class VESLedger:
    """
    Entry point for everything that moves or reports VES cost basis.

    Flow for an outflow:
    1. Validate input (reject + audit on failure)
    2. Engine plans FIFO consumption under the account lock
    3. Shortfall policy sees the plan (may refuse; nothing written)
    4. Engine applies the plan
    5. Audit the consumption (and the shortfall, if any)
    6. Attach realized gain/loss when the caller gave the USD value
    """

    def __init__(
        self,
        layer_storage: LayerStorageInterface,
        account_storage: Optional[AccountStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        shortfall_handler: Optional[ShortfallHandler] = None,
        engine: Optional[LayerEngine] = None,
        aggregator: Optional[CostAggregator] = None,
    ):
        if engine is not None and shortfall_handler is not None:
            raise ValueError(
                "Pass shortfall_handler to the LayerEngine, not alongside an engine"
            )
        self._layer_storage = layer_storage
        self._account_storage = account_storage
        self._audit_logger = audit_logger or AuditLogger()
        self._engine = engine or LayerEngine(layer_storage, shortfall_handler)
        self._aggregator = aggregator or CostAggregator(layer_storage)

    @property
    def engine(self) -> LayerEngine:
        return self._engine

    @property
    def aggregator(self) -> CostAggregator:
        return self._aggregator

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _audit_failure(
        self,
        operation: str,
        bank_account_id: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        """Storage failures are external-service errors; anything else is a system error."""
        if isinstance(error, StorageError):
            await self._audit_logger.log_external_service_error(
                service="layer_storage",
                error_message=f"{operation}: {error}",
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_error(
                error_type=type(error).__name__,
                error_message=str(error),
                details={"operation": operation, "bank_account_id": bank_account_id},
                correlation_id=correlation_id,
            )

    async def record_inflow(
        self,
        bank_account_id: str,
        amount_ves: Number,
        exchange_rate: Number,
        timestamp: Optional[datetime] = None,
        *,
        transaction_id: Optional[str] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VESLayer:
        """Record VES entering an account. See LayerEngine.record_inflow."""
        correlation_id = correlation_id or create_correlation_id()

        try:
            layer = await self._engine.record_inflow(
                bank_account_id,
                amount_ves,
                exchange_rate,
                timestamp,
                transaction_id=transaction_id,
                user_id=user_id,
            )
        except LayerValidationError as e:
            await self._audit_logger.log_invalid_input(
                operation="record_inflow",
                error_code=e.error_code,
                error_message=str(e),
                bank_account_id=bank_account_id if isinstance(bank_account_id, str) else None,
                correlation_id=correlation_id,
            )
            raise
        except NotFoundError:
            raise
        except Exception as e:
            await self._audit_failure("record_inflow", bank_account_id, e, correlation_id)
            raise

        await self._audit_logger.log_layer_created(layer, correlation_id=correlation_id)
        return layer

    async def consume_outflow(
        self,
        bank_account_id: str,
        amount_ves: Number,
        *,
        outflow_value_usd: Optional[Number] = None,
        shortfall_handler: Optional[ShortfallHandler] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ConsumptionResult:
        """
        Consume layers FIFO for VES leaving an account.

        Args:
            outflow_value_usd: What the outgoing VES was worth at the
                current/market rate. When given, the result carries
                `gain_loss` = outflow_value_usd - total_cost_usd.

        Raises:
            InvalidAmountError, AccountNotFoundError, ShortfallError
            (the last only if the shortfall policy refuses the outflow)
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._engine.consume_outflow(
                bank_account_id,
                amount_ves,
                shortfall_handler=shortfall_handler,
            )
        except LayerValidationError as e:
            await self._audit_logger.log_invalid_input(
                operation="consume_outflow",
                error_code=e.error_code,
                error_message=str(e),
                bank_account_id=bank_account_id if isinstance(bank_account_id, str) else None,
                correlation_id=correlation_id,
            )
            raise
        except ShortfallError as e:
            await self._audit_logger.log_shortfall_rejected(
                e.result,
                reason=str(e),
                correlation_id=correlation_id,
            )
            raise
        except NotFoundError:
            raise
        except Exception as e:
            await self._audit_failure("consume_outflow", bank_account_id, e, correlation_id)
            raise

        if outflow_value_usd is not None:
            value = to_decimal(outflow_value_usd)
            result.outflow_value_usd = value
            result.gain_loss = result.gain_loss_usd(value)

        await self._audit_logger.log_outflow_consumed(result, correlation_id=correlation_id)
        return result

    async def recalculate_and_store_historical_cost(
        self,
        bank_account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Write the account's current historical USD cost onto its record.

        Returns:
            The stored historical cost

        Raises:
            AccountNotFoundError: unknown account
            RuntimeError: no account storage configured
        """
        if self._account_storage is None:
            raise RuntimeError("Account storage is not configured")

        # Held so no outflow lands between reading the cost and storing it
        async with self._engine.account_lock(bank_account_id):
            account = await self._account_storage.get_account(bank_account_id)
            cost = await self._aggregator.get_account_historical_cost_usd(bank_account_id)
            await self._account_storage.update_historical_cost(bank_account_id, cost)

        await self._audit_logger.log_historical_cost_recalculated(
            bank_account_id=bank_account_id,
            previous_cost_usd=account.historical_cost_usd,
            new_cost_usd=cost,
            correlation_id=correlation_id,
        )
        return cost

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_active_layers(self, bank_account_id: str) -> list[VESLayer]:
        return await self._aggregator.get_active_layers(bank_account_id)

    async def get_all_layers(self, bank_account_id: str) -> list[VESLayer]:
        return await self._aggregator.get_all_layers(bank_account_id)

    async def get_account_historical_cost_usd(self, bank_account_id: str) -> Decimal:
        return await self._aggregator.get_account_historical_cost_usd(bank_account_id)

    async def get_consolidated_layers(
        self,
        bank_account_id: str,
    ) -> list[ConsolidatedLayerGroup]:
        return await self._aggregator.get_consolidated_layers(bank_account_id)

    async def get_weighted_average_rate(self, bank_account_id: str) -> Decimal:
        return await self._aggregator.get_weighted_average_rate(bank_account_id)

    async def get_layer_summary(self, bank_account_id: str) -> LayerSummary:
        return await self._aggregator.get_layer_summary(bank_account_id)

    async def reconcile_account(
        self,
        bank_account_id: str,
        account_balance_ves: Optional[Number] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Check the account's VES balance against its layers and audit the outcome.

        Args:
            account_balance_ves: Balance to check. If None, the balance is
                read from the account record (requires account storage).
        """
        if account_balance_ves is None:
            if self._account_storage is None:
                raise RuntimeError("Account storage is not configured")
            account = await self._account_storage.get_account(bank_account_id)
            account_balance_ves = account.amount

        report = await self._aggregator.reconcile_account(bank_account_id, account_balance_ves)
        await self._audit_logger.log_reconciliation(report, correlation_id=correlation_id)
        return report


def create_app_components(
    backend: Optional[str] = None,
    shortfall_handler: Optional[ShortfallHandler] = None,
) -> tuple[VESLedger, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "google_sheets". Defaults to the
                 VES_LEDGER_STORAGE_BACKEND setting.
        shortfall_handler: Shortfall policy for the ledger's engine.

    Returns:
        (ledger, sheets_client) - sheets_client is None for the memory backend
    """
    backend = backend or get_settings().ledger.storage_backend

    sheets_client: Optional[GoogleSheetsClient] = None
    layer_storage: LayerStorageInterface
    account_storage: AccountStorageInterface
    audit_storage: AuditStorageInterface

    if backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        layer_storage = GoogleSheetsLayerStorage(sheets_client)
        account_storage = GoogleSheetsAccountStorage(sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    elif backend == "memory":
        store = InMemoryStore()
        layer_storage = InMemoryLayerStorage(store)
        account_storage = InMemoryAccountStorage(store)
        audit_storage = InMemoryAuditStorage(store)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    ledger = VESLedger(
        layer_storage=layer_storage,
        account_storage=account_storage,
        audit_logger=AuditLogger(audit_storage),
        shortfall_handler=shortfall_handler,
    )
    return ledger, sheets_client
