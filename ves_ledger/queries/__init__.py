from ves_ledger.queries.aggregator import (
    CostAggregator,
    consolidate_by_rate,
    historical_cost,
    weighted_average_rate,
)

__all__ = [
    "CostAggregator",
    "consolidate_by_rate",
    "historical_cost",
    "weighted_average_rate",
]
