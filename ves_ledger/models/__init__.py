"""
Data Models Package

This package contains all Pydantic models used by the VES ledger.
All data flowing through the layer system must conform to these schemas.
"""

from ves_ledger.models.layer import (
    BankAccount,
    ConsolidatedLayerGroup,
    ConsumedLayer,
    ConsumptionResult,
    LayerSummary,
    ReconciliationReport,
    VESLayer,
    generate_layer_id,
)
from ves_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Layer models
    "BankAccount",
    "ConsolidatedLayerGroup",
    "ConsumedLayer",
    "ConsumptionResult",
    "LayerSummary",
    "ReconciliationReport",
    "VESLayer",
    "generate_layer_id",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
