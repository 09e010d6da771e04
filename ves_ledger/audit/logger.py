"""
Audit Logger

DESIGN DECISION: Every movement of VES through the layers is logged.
This provides:
1. Complete traceability of cost basis
2. Debugging capability when balances and layers disagree
3. A record of every shortfall the ledger reported

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ves_ledger.models.audit import AuditEvent, AuditEventBuilder
from ves_ledger.models.layer import ConsumptionResult, ReconciliationReport, VESLayer
from ves_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_layer_created(
        self,
        layer: VESLayer,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new layer."""
        event = AuditEventBuilder.layer_created(
            layer_id=layer.id,
            bank_account_id=layer.bank_account_id,
            amount_ves=layer.amount_ves,
            exchange_rate=layer.exchange_rate,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_outflow_consumed(
        self,
        result: ConsumptionResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a FIFO consumption, and its shortfall if it had one."""
        event = AuditEventBuilder.outflow_consumed(
            bank_account_id=result.bank_account_id,
            requested_ves=result.requested_ves,
            total_cost_usd=result.total_cost_usd,
            layers=[
                {
                    "layer_id": item.layer_id,
                    "amount_consumed": str(item.amount_consumed),
                    "cost_usd": str(item.cost_usd),
                    "exchange_rate": str(item.exchange_rate),
                }
                for item in result.consumed
            ],
            correlation_id=correlation_id,
        )
        await self.log(event)

        if result.has_shortfall:
            await self.log(
                AuditEventBuilder.shortfall_detected(
                    bank_account_id=result.bank_account_id,
                    requested_ves=result.requested_ves,
                    shortfall_ves=result.shortfall_ves,
                    correlation_id=correlation_id,
                )
            )

    async def log_shortfall_rejected(
        self,
        result: ConsumptionResult,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an outflow the shortfall policy refused."""
        event = AuditEventBuilder.shortfall_rejected(
            bank_account_id=result.bank_account_id,
            requested_ves=result.requested_ves,
            shortfall_ves=result.shortfall_ves,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_invalid_input(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        bank_account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rejected input."""
        event = AuditEventBuilder.invalid_input_rejected(
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            bank_account_id=bank_account_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_historical_cost_recalculated(
        self,
        bank_account_id: str,
        previous_cost_usd: Decimal,
        new_cost_usd: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account cost rollup."""
        event = AuditEventBuilder.historical_cost_recalculated(
            bank_account_id=bank_account_id,
            previous_cost_usd=previous_cost_usd,
            new_cost_usd=new_cost_usd,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_reconciliation(
        self,
        report: ReconciliationReport,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a reconciliation check, at warning level when it failed."""
        event = AuditEventBuilder.reconciliation_checked(
            bank_account_id=report.bank_account_id,
            account_balance_ves=report.account_balance_ves,
            layered_ves=report.layered_ves,
            discrepancy_ves=report.discrepancy_ves,
            is_balanced=report.is_balanced,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a transaction that moves VES.
    Pass it through all subsequent operations.
    """
    return uuid4()
