"""FIFO layer engine package."""

from ves_ledger.layers.engine import (
    LayerEngine,
    ShortfallError,
    ShortfallHandler,
    plan_fifo_consumption,
    reject_shortfall,
)

__all__ = [
    "LayerEngine",
    "ShortfallError",
    "ShortfallHandler",
    "plan_fifo_consumption",
    "reject_shortfall",
]
