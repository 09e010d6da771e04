"""
Cost Aggregator

DESIGN DECISION: Reporting is READ-ONLY.
Nothing in this module changes remaining_ves or is_active. Dashboards
and reports can call it as often as they like, concurrently with writes.
A read racing a consumption may see a layer mid-update; reporting
tolerates that, the engine does not depend on it.

Historical cost answers "what did this VES cost me in USD", as opposed
to what it is worth at today's rate:

    Layer 1: 5000 VES @ 50 = $100
    Layer 2: 6000 VES @ 60 = $100
    Historical cost = $200, weighted average rate = 11000 / 200 = 55
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ves_ledger.config import get_settings
from ves_ledger.models.layer import (
    ConsolidatedLayerGroup,
    LayerSummary,
    ReconciliationReport,
    VESLayer,
)
from ves_ledger.services.storage import LayerStorageInterface
from ves_ledger.validation.validator import Number, to_decimal


ZERO = Decimal("0")


def historical_cost(layers: list[VESLayer]) -> Decimal:
    """Sum of remaining_ves / exchange_rate over layers that still have VES."""
    return sum(
        (layer.historical_cost_usd for layer in layers if layer.remaining_ves > 0),
        ZERO,
    )


def weighted_average_rate(layers: list[VESLayer]) -> Decimal:
    """Remaining VES per USD of historical cost; 0 when nothing remains."""
    total_remaining = sum((layer.remaining_ves for layer in layers), ZERO)
    if total_remaining <= 0:
        return ZERO
    return total_remaining / historical_cost(layers)


def consolidate_by_rate(
    layers: list[VESLayer],
    quantum: Decimal = Decimal("0.01"),
) -> list[ConsolidatedLayerGroup]:
    """
    Merge active layers whose rates round to the same value.

    Rates are rounded half-up to `quantum` for the grouping key. Two
    genuinely different rates that only differ past that precision end up
    in the same group; that is the documented behavior of the breakdown.

    Groups are sorted by rate, lowest first. Under steady devaluation the
    lowest rate is the oldest VES, i.e. the next to be consumed.
    """
    groups: dict[Decimal, ConsolidatedLayerGroup] = {}

    for layer in layers:
        if layer.remaining_ves <= 0:
            continue

        key = layer.exchange_rate.quantize(quantum, rounding=ROUND_HALF_UP)
        group = groups.get(key)
        if group is None:
            group = ConsolidatedLayerGroup(
                exchange_rate=key,
                oldest_date=layer.created_at,
                newest_date=layer.created_at,
            )
            groups[key] = group

        group.amount_ves += layer.amount_ves
        group.remaining_ves += layer.remaining_ves
        group.layers_count += 1
        group.historical_cost_usd += layer.historical_cost_usd
        if layer.created_at < group.oldest_date:
            group.oldest_date = layer.created_at
        if layer.created_at > group.newest_date:
            group.newest_date = layer.created_at

    return [groups[key] for key in sorted(groups)]


class CostAggregator:
    """
    Read-side computations over the layer store.

    GUARANTEES:
    - Only returns figures computed from stored layers
    - Never mutates a layer
    - Same answer twice in a row when nothing was written in between
    """

    def __init__(
        self,
        storage: LayerStorageInterface,
        rate_group_quantum: Optional[Decimal] = None,
        reconciliation_tolerance_ves: Optional[Decimal] = None,
    ):
        self._storage = storage
        if rate_group_quantum is None or reconciliation_tolerance_ves is None:
            ledger_settings = get_settings().ledger
            if rate_group_quantum is None:
                rate_group_quantum = ledger_settings.rate_group_quantum
            if reconciliation_tolerance_ves is None:
                reconciliation_tolerance_ves = ledger_settings.reconciliation_tolerance_ves
        self._quantum = rate_group_quantum
        self._tolerance = reconciliation_tolerance_ves

    async def get_active_layers(self, bank_account_id: str) -> list[VESLayer]:
        """Active layers of an account, oldest first."""
        layers = await self._storage.query_active_layers_by_account(bank_account_id)
        return sorted(
            (layer for layer in layers if layer.remaining_ves > 0),
            key=lambda layer: layer.fifo_key,
        )

    async def get_all_layers(self, bank_account_id: str) -> list[VESLayer]:
        """Every layer of an account, consumed ones included, oldest first."""
        layers = await self._storage.query_all_layers_by_account(bank_account_id)
        return sorted(layers, key=lambda layer: layer.fifo_key)

    async def get_layer(self, layer_id: str) -> Optional[VESLayer]:
        return await self._storage.get_layer_by_id(layer_id)

    async def get_layers_by_user(
        self,
        user_id: str,
        only_active: bool = True,
    ) -> list[VESLayer]:
        return await self._storage.query_layers_by_user(user_id, only_active)

    async def get_account_historical_cost_usd(self, bank_account_id: str) -> Decimal:
        """Historical USD cost of the account's remaining VES (0 with no layers)."""
        return historical_cost(await self.get_active_layers(bank_account_id))

    async def get_weighted_average_rate(self, bank_account_id: str) -> Decimal:
        """
        Total remaining VES / total historical cost.

        Returns 0 when the account has no remaining VES, so callers that
        divide by this value must guard against zero.
        """
        return weighted_average_rate(await self.get_active_layers(bank_account_id))

    async def get_consolidated_layers(
        self,
        bank_account_id: str,
    ) -> list[ConsolidatedLayerGroup]:
        """Active layers grouped by rounded exchange rate, lowest rate first."""
        layers = await self.get_active_layers(bank_account_id)
        return consolidate_by_rate(layers, self._quantum)

    async def get_layer_summary(self, bank_account_id: str) -> LayerSummary:
        """Counts, totals and date range over all of an account's layers."""
        layers = await self.get_all_layers(bank_account_id)
        if not layers:
            return LayerSummary(bank_account_id=bank_account_id)

        active = [layer for layer in layers if layer.remaining_ves > 0]
        return LayerSummary(
            bank_account_id=bank_account_id,
            total_layers=len(layers),
            active_layers=len(active),
            total_ves_original=sum((layer.amount_ves for layer in layers), ZERO),
            total_ves_remaining=sum((layer.remaining_ves for layer in active), ZERO),
            total_usd_historical_cost=historical_cost(active),
            average_exchange_rate=weighted_average_rate(active),
            oldest_layer_date=layers[0].created_at,
            newest_layer_date=layers[-1].created_at,
        )

    async def reconcile_account(
        self,
        bank_account_id: str,
        account_balance_ves: Number,
    ) -> ReconciliationReport:
        """
        Compare an account's VES balance against its layers.

        The report says whether they agree. It does not fix anything.
        """
        layers = await self.get_active_layers(bank_account_id)
        layered = sum((layer.remaining_ves for layer in layers), ZERO)
        balance = to_decimal(account_balance_ves)
        return ReconciliationReport(
            bank_account_id=bank_account_id,
            account_balance_ves=balance,
            layered_ves=layered,
            discrepancy_ves=balance - layered,
            tolerance_ves=self._tolerance,
        )
