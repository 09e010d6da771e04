"""
VES Ledger - Source Package

FIFO cost-basis tracking for Venezuelan bolívar (VES) balances.
Each inflow of VES becomes a layer stamped with the USD exchange rate of
the moment; outflows consume layers oldest-first, so the USD cost of
whatever VES remains is always known.

DESIGN PRINCIPLES:
1. One inflow, one layer
2. Oldest VES leaves first
3. No silent corrections: shortfalls and discrepancies are reported
4. Every movement is auditable
5. Storage layer is swappable
"""

from ves_ledger.layers import LayerEngine, ShortfallError, reject_shortfall
from ves_ledger.orchestrator import VESLedger, create_app_components
from ves_ledger.queries import CostAggregator
from ves_ledger.services.storage import AccountNotFoundError
from ves_ledger.validation import InvalidAmountError, InvalidRateError

__version__ = "1.0.0"

__all__ = [
    "AccountNotFoundError",
    "CostAggregator",
    "InvalidAmountError",
    "InvalidRateError",
    "LayerEngine",
    "ShortfallError",
    "VESLedger",
    "create_app_components",
    "reject_shortfall",
]
