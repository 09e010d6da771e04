"""
VES Layer Engine

The write side of the ledger:
- record_inflow: VES enters an account -> one new layer at the current rate
- consume_outflow: VES leaves an account -> layers drained oldest first

DESIGN DECISION: Consumption is planned, then applied.
The plan is a pure function over a snapshot of the account's active
layers. A shortfall handler sees the plan BEFORE any layer is written,
so a policy that refuses the outflow leaves storage untouched.

CONCURRENCY: FIFO correctness depends on reading the active layers and
writing their new remaining amounts as one step. Two outflows racing on
the same account would otherwise both spend the same VES. Every write
for an account runs under that account's asyncio.Lock; different
accounts never wait on each other.
"""

import asyncio
import inspect
import weakref
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Union

import structlog

from ves_ledger.models.layer import ConsumedLayer, ConsumptionResult, VESLayer
from ves_ledger.services.storage import LayerStorageInterface
from ves_ledger.validation import (
    validate_account_id,
    validate_amount,
    validate_rate,
)
from ves_ledger.validation.validator import Number


ShortfallHandler = Callable[[ConsumptionResult], Union[None, Awaitable[None]]]


class ShortfallError(Exception):
    """An outflow was refused because layers could not cover it."""

    def __init__(self, result: ConsumptionResult):
        self.result = result
        super().__init__(
            f"Insufficient VES in layers for account {result.bank_account_id}. "
            f"Requested: {result.requested_ves}, "
            f"available: {result.total_consumed_ves}, "
            f"shortfall: {result.shortfall_ves}"
        )


def reject_shortfall(result: ConsumptionResult) -> None:
    """Shortfall handler that blocks any outflow the layers can't fully cover."""
    raise ShortfallError(result)


def plan_fifo_consumption(
    bank_account_id: str,
    layers: list[VESLayer],
    amount_ves: Decimal,
) -> tuple[ConsumptionResult, list[tuple[VESLayer, Decimal]]]:
    """
    Work out which layers an outflow drains, without writing anything.

    Args:
        bank_account_id: Account the outflow leaves
        layers: The account's layers (any order, consumed ones allowed)
        amount_ves: Positive VES amount leaving the account

    Returns:
        (result, updates) where updates is [(layer, new_remaining_ves), ...]
        in the order the layers were drained.
    """
    candidates = sorted(
        (
            layer for layer in layers
            if layer.bank_account_id == bank_account_id and layer.remaining_ves > 0
        ),
        key=lambda layer: layer.fifo_key,  # oldest first, ties by id
    )

    still_needed = amount_ves
    total_cost = Decimal("0")
    consumed: list[ConsumedLayer] = []
    updates: list[tuple[VESLayer, Decimal]] = []

    for layer in candidates:
        if still_needed <= 0:
            break

        take = min(layer.remaining_ves, still_needed)
        cost = take / layer.exchange_rate
        new_remaining = layer.remaining_ves - take

        consumed.append(
            ConsumedLayer(
                layer_id=layer.id,
                amount_consumed=take,
                cost_usd=cost,
                exchange_rate=layer.exchange_rate,
                remaining_after=new_remaining,
            )
        )
        updates.append((layer, new_remaining))
        total_cost += cost
        still_needed -= take

    result = ConsumptionResult(
        bank_account_id=bank_account_id,
        requested_ves=amount_ves,
        consumed=consumed,
        total_consumed_ves=amount_ves - still_needed,
        total_cost_usd=total_cost,
        shortfall_ves=still_needed,
    )
    return result, updates


class LayerEngine:
    """
    Creates and consumes VES layers.

    GUARANTEES:
    - One inflow, one layer. Layers are never merged.
    - remaining_ves only decreases; layers are never deleted.
    - A newer layer is never touched while an older one has VES left.
    - A shortfall is reported in the result, never covered by a made-up layer.
    """

    def __init__(
        self,
        storage: LayerStorageInterface,
        shortfall_handler: Optional[ShortfallHandler] = None,
    ):
        """
        Args:
            storage: Where layers live.
            shortfall_handler: Called with the planned result when an outflow
                exceeds the account's layers, before anything is written.
                Raise from it to refuse the outflow. If None, the outflow
                proceeds and the caller inspects `shortfall_ves`.
        """
        self._storage = storage
        self._shortfall_handler = shortfall_handler
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._logger = structlog.get_logger(__name__)

    def account_lock(self, bank_account_id: str) -> asyncio.Lock:
        """
        The lock serializing writes for one account.

        Locks are held weakly: an account nobody is writing to drops its
        lock, and the next writer gets a fresh one. Anyone holding or
        waiting on a lock keeps it alive, so two writers always share it.
        """
        lock = self._locks.get(bank_account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[bank_account_id] = lock
        return lock

    async def record_inflow(
        self,
        bank_account_id: str,
        amount_ves: Number,
        exchange_rate: Number,
        timestamp: Optional[datetime] = None,
        *,
        transaction_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> VESLayer:
        """
        Record VES entering an account as a new layer.

        Raises:
            InvalidAmountError: amount_ves <= 0
            InvalidRateError: exchange_rate <= 0
            AccountNotFoundError: unknown account (from storage)
        """
        bank_account_id = validate_account_id(bank_account_id)
        amount = validate_amount(amount_ves)
        rate = validate_rate(exchange_rate)
        created_at = timestamp or datetime.utcnow()

        layer = VESLayer(
            bank_account_id=bank_account_id,
            amount_ves=amount,
            remaining_ves=amount,
            exchange_rate=rate,
            created_at=created_at,
            updated_at=created_at,
            transaction_id=transaction_id,
            user_id=user_id,
        )

        async with self.account_lock(bank_account_id):
            stored = await self._storage.insert_layer(layer)

        self._logger.debug(
            "ves_layer_created",
            layer_id=stored.id,
            bank_account_id=bank_account_id,
            amount_ves=str(stored.amount_ves),
            exchange_rate=str(stored.exchange_rate),
            equivalent_usd=f"{stored.equivalent_usd:.2f}",
        )
        return stored

    async def consume_outflow(
        self,
        bank_account_id: str,
        amount_ves: Number,
        shortfall_handler: Optional[ShortfallHandler] = None,
    ) -> ConsumptionResult:
        """
        Consume layers oldest-first for VES leaving an account.

        Args:
            bank_account_id: Account the VES leaves
            amount_ves: Positive amount leaving
            shortfall_handler: Overrides the engine's handler for this call

        Returns:
            ConsumptionResult; check `shortfall_ves` for uncovered VES.

        Raises:
            InvalidAmountError: amount_ves <= 0
            AccountNotFoundError: unknown account (from storage)
            Whatever the shortfall handler raises (nothing written in that case)
        """
        bank_account_id = validate_account_id(bank_account_id)
        amount = validate_amount(amount_ves)
        handler = shortfall_handler or self._shortfall_handler

        async with self.account_lock(bank_account_id):
            layers = await self._storage.query_active_layers_by_account(bank_account_id)
            result, updates = plan_fifo_consumption(bank_account_id, layers, amount)

            if result.has_shortfall and handler is not None:
                outcome = handler(result)
                if inspect.isawaitable(outcome):
                    await outcome

            for layer, new_remaining in updates:
                await self._storage.update_layer_remaining(
                    layer.id,
                    new_remaining,
                    new_remaining > 0,
                )
                self._logger.debug(
                    "ves_layer_consumed",
                    layer_id=layer.id,
                    consumed_ves=str(layer.remaining_ves - new_remaining),
                    exchange_rate=str(layer.exchange_rate),
                    remaining_ves=str(new_remaining),
                )

        self._logger.debug(
            "ves_outflow_consumed",
            bank_account_id=bank_account_id,
            requested_ves=str(result.requested_ves),
            total_cost_usd=f"{result.total_cost_usd:.2f}",
            shortfall_ves=str(result.shortfall_ves),
        )
        return result
