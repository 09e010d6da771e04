"""
Audit Models for the VES Ledger

Every movement of VES through the layer system is logged for audit purposes.
This provides:
1. Complete traceability of which layers paid for which outflow
2. Visibility of shortfalls and reconciliation discrepancies
3. Ability to reconstruct an account's cost history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Layer lifecycle
    LAYER_CREATED = "layer_created"
    OUTFLOW_CONSUMED = "outflow_consumed"

    # Shortfalls
    SHORTFALL_DETECTED = "shortfall_detected"
    SHORTFALL_REJECTED = "shortfall_rejected"

    # Input problems
    INVALID_INPUT_REJECTED = "invalid_input_rejected"

    # Account rollups
    HISTORICAL_COST_RECALCULATED = "historical_cost_recalculated"
    RECONCILIATION_PASSED = "reconciliation_passed"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'layer', 'account')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one transaction)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


def _money(value: Decimal) -> str:
    """Decimals go into details as strings so they survive JSON."""
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.layer_created(layer_id, account_id, ...)
        event = AuditEventBuilder.shortfall_detected(account_id, ...)
    """

    @staticmethod
    def layer_created(
        layer_id: str,
        bank_account_id: str,
        amount_ves: Decimal,
        exchange_rate: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LAYER_CREATED,
            entity_type="layer",
            entity_id=layer_id,
            correlation_id=correlation_id,
            description=f"Layer created: {amount_ves} VES @ {exchange_rate}",
            details={
                "bank_account_id": bank_account_id,
                "amount_ves": _money(amount_ves),
                "exchange_rate": _money(exchange_rate),
            },
        )

    @staticmethod
    def outflow_consumed(
        bank_account_id: str,
        requested_ves: Decimal,
        total_cost_usd: Decimal,
        layers: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OUTFLOW_CONSUMED,
            entity_type="account",
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=(
                f"Outflow of {requested_ves} VES consumed {len(layers)} layers "
                f"(cost ${total_cost_usd:.2f})"
            ),
            details={
                "requested_ves": _money(requested_ves),
                "total_cost_usd": _money(total_cost_usd),
                "layers": layers,
            },
        )

    @staticmethod
    def shortfall_detected(
        bank_account_id: str,
        requested_ves: Decimal,
        shortfall_ves: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHORTFALL_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=(
                f"Shortfall: {shortfall_ves} of {requested_ves} VES "
                "not covered by any layer"
            ),
            details={
                "requested_ves": _money(requested_ves),
                "shortfall_ves": _money(shortfall_ves),
            },
        )

    @staticmethod
    def shortfall_rejected(
        bank_account_id: str,
        requested_ves: Decimal,
        shortfall_ves: Decimal,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHORTFALL_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=f"Outflow rejected because of a {shortfall_ves} VES shortfall",
            details={
                "requested_ves": _money(requested_ves),
                "shortfall_ves": _money(shortfall_ves),
            },
            error_message=reason,
        )

    @staticmethod
    def invalid_input_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        bank_account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVALID_INPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account" if bank_account_id else None,
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=f"Rejected {operation}: {error_code}",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def historical_cost_recalculated(
        bank_account_id: str,
        previous_cost_usd: Decimal,
        new_cost_usd: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HISTORICAL_COST_RECALCULATED,
            entity_type="account",
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=f"Historical cost updated to ${new_cost_usd:.2f}",
            details={
                "previous_cost_usd": _money(previous_cost_usd),
                "new_cost_usd": _money(new_cost_usd),
            },
        )

    @staticmethod
    def reconciliation_checked(
        bank_account_id: str,
        account_balance_ves: Decimal,
        layered_ves: Decimal,
        discrepancy_ves: Decimal,
        is_balanced: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        if is_balanced:
            event_type = AuditEventType.RECONCILIATION_PASSED
            severity = AuditSeverity.INFO
            description = "Account balance matches its VES layers"
        else:
            event_type = AuditEventType.RECONCILIATION_MISMATCH
            severity = AuditSeverity.WARNING
            description = f"Account balance differs from its layers by {discrepancy_ves} VES"
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            entity_type="account",
            entity_id=bank_account_id,
            correlation_id=correlation_id,
            description=description,
            details={
                "account_balance_ves": _money(account_balance_ves),
                "layered_ves": _money(layered_ves),
                "discrepancy_ves": _money(discrepancy_ves),
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
