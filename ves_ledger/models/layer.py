"""
Core Data Models for the VES Ledger

These models define the strict schemas for VES cost-basis layers and
everything derived from them.

A layer is one inflow of VES into a bank account, stamped with the
USD exchange rate in effect when it arrived. Outflows consume layers
oldest-first (FIFO), which lets us know what the remaining VES
"cost" in USD.

Example:
    Day 1: sell $100 at rate 50  -> layer of 5000 VES, cost $100
    Day 2: sell $100 at rate 60  -> layer of 6000 VES, cost $100
    Day 3: spend 7000 VES        -> 5000 VES ($100) + 2000 VES ($33.33)

DESIGN DECISION: Amounts and rates are Decimal, never float.
Conservation of VES across thousands of partial consumptions has to be
exact, not approximately exact.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


def generate_layer_id() -> str:
    """Compact random identifier for a new layer."""
    return uuid4().hex


# =============================================================================
# LAYER MODEL
# =============================================================================

class VESLayer(BaseModel):
    """
    A batch of VES that entered an account at a specific exchange rate.

    CRITICAL: `amount_ves` and `exchange_rate` never change after creation.
    `remaining_ves` only ever goes down. A fully consumed layer is kept
    (with remaining_ves == 0) for audit history; it is never deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=generate_layer_id,
        min_length=1,
        description="Unique layer identifier"
    )
    bank_account_id: str = Field(
        ...,
        min_length=1,
        description="Account this layer belongs to"
    )

    # Amounts
    amount_ves: Decimal = Field(
        ...,
        gt=0,
        description="Original VES amount at creation"
    )
    remaining_ves: Decimal = Field(
        ...,
        ge=0,
        description="VES still unconsumed (FIFO)"
    )
    exchange_rate: Decimal = Field(
        ...,
        gt=0,
        description="VES per 1 USD when the layer was created"
    )

    # Timestamps
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Creation time, the FIFO ordering key"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last time remaining_ves changed"
    )

    # Stored, but always recomputed from remaining_ves
    is_active: bool = Field(
        default=True,
        description="True while remaining_ves > 0"
    )

    # Traceability
    transaction_id: Optional[str] = Field(
        default=None,
        description="Transaction that brought this VES in"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the account"
    )

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_to_naive_utc(cls, v: datetime) -> datetime:
        """Aware timestamps become naive UTC so every layer sorts together."""
        if v.tzinfo is not None and v.utcoffset() is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode='after')
    def validate_remaining(self) -> 'VESLayer':
        """Remaining can never exceed the original amount."""
        if self.remaining_ves > self.amount_ves:
            raise ValueError(
                f"remaining_ves ({self.remaining_ves}) cannot exceed "
                f"amount_ves ({self.amount_ves})"
            )
        self.is_active = self.remaining_ves > 0
        return self

    @computed_field
    @property
    def equivalent_usd(self) -> Decimal:
        """USD value of the original amount at the layer's rate."""
        return self.amount_ves / self.exchange_rate

    @property
    def historical_cost_usd(self) -> Decimal:
        """USD cost of what is still left in this layer."""
        return self.remaining_ves / self.exchange_rate

    @property
    def consumed_ves(self) -> Decimal:
        return self.amount_ves - self.remaining_ves

    @property
    def fifo_key(self) -> tuple[datetime, str]:
        """Sort key: oldest first, ties broken by id."""
        return (self.created_at, self.id)


# =============================================================================
# CONSUMPTION MODELS
# =============================================================================

class ConsumedLayer(BaseModel):
    """How much a single layer gave up to an outflow."""

    layer_id: str
    amount_consumed: Decimal = Field(..., gt=0)
    cost_usd: Decimal = Field(..., ge=0)
    exchange_rate: Decimal = Field(..., gt=0)
    remaining_after: Decimal = Field(
        ...,
        ge=0,
        description="Layer's remaining_ves after this consumption"
    )


class ConsumptionResult(BaseModel):
    """
    Full breakdown of a FIFO outflow.

    CRITICAL: A shortfall is reported here, not raised.
    Callers MUST look at `shortfall_ves` (or `has_shortfall`) and decide
    what it means for their transaction. The ledger never fabricates
    a layer to cover it.
    """

    bank_account_id: str
    requested_ves: Decimal = Field(..., gt=0)
    consumed: list[ConsumedLayer] = Field(default_factory=list)
    total_consumed_ves: Decimal = Field(default=Decimal("0"), ge=0)
    total_cost_usd: Decimal = Field(default=Decimal("0"), ge=0)
    shortfall_ves: Decimal = Field(default=Decimal("0"), ge=0)

    # Filled in when the caller knows what the outflow was worth in USD
    outflow_value_usd: Optional[Decimal] = None
    gain_loss: Optional[Decimal] = None

    @model_validator(mode='after')
    def validate_totals(self) -> 'ConsumptionResult':
        """Consumed plus shortfall must add up to what was requested."""
        if self.total_consumed_ves + self.shortfall_ves != self.requested_ves:
            raise ValueError(
                "total_consumed_ves + shortfall_ves must equal requested_ves"
            )
        return self

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall_ves > 0

    @property
    def layer_ids(self) -> list[str]:
        return [item.layer_id for item in self.consumed]

    def gain_loss_usd(self, outflow_value_usd: Decimal) -> Decimal:
        """
        Realized gain (positive) or loss (negative) in USD.

        Args:
            outflow_value_usd: What the VES that left was worth at the
                current/market rate. Computed by the caller.
        """
        return Decimal(str(outflow_value_usd)) - self.total_cost_usd


# =============================================================================
# REPORTING MODELS
# =============================================================================

class ConsolidatedLayerGroup(BaseModel):
    """
    Active layers sharing (approximately) the same exchange rate.

    This is a presentation shape only. Grouping happens on the rate
    rounded to a fixed number of decimals, so two rates that differ only
    past that precision land in the same group.
    """

    exchange_rate: Decimal = Field(
        ...,
        description="Rounded rate used as the grouping key"
    )
    amount_ves: Decimal = Decimal("0")
    remaining_ves: Decimal = Decimal("0")
    layers_count: int = Field(default=0, ge=0)
    oldest_date: datetime
    newest_date: datetime
    historical_cost_usd: Decimal = Decimal("0")

    @property
    def consumed_percent(self) -> Decimal:
        """Share of the group's original VES already consumed (0-100)."""
        if self.amount_ves == 0:
            return Decimal("0")
        return (self.amount_ves - self.remaining_ves) / self.amount_ves * 100

    @property
    def spans_multiple_dates(self) -> bool:
        return self.oldest_date != self.newest_date


class LayerSummary(BaseModel):
    """Summary statistics over every layer of an account, consumed or not."""

    bank_account_id: str
    total_layers: int = 0
    active_layers: int = 0
    total_ves_original: Decimal = Decimal("0")
    total_ves_remaining: Decimal = Decimal("0")
    total_usd_historical_cost: Decimal = Decimal("0")
    average_exchange_rate: Decimal = Decimal("0")
    oldest_layer_date: Optional[datetime] = None
    newest_layer_date: Optional[datetime] = None


class ReconciliationReport(BaseModel):
    """
    Comparison of an account's VES balance against its layers.

    A discrepancy is a data-integrity signal. It is reported,
    NEVER silently corrected.
    """

    bank_account_id: str
    account_balance_ves: Decimal
    layered_ves: Decimal
    discrepancy_ves: Decimal = Field(
        ...,
        description="account_balance_ves - layered_ves"
    )
    tolerance_ves: Decimal = Decimal("0")
    checked_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_balanced(self) -> bool:
        return abs(self.discrepancy_ves) <= self.tolerance_ves


# =============================================================================
# ACCOUNT MODEL
# =============================================================================

class BankAccount(BaseModel):
    """
    The parts of a bank account record the ledger reads or writes.

    The ledger only ever writes `historical_cost_usd` back to it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    bank: str = Field(default="", max_length=200)
    account_number: str = Field(default="", max_length=50)
    currency: str = Field(default="VES", max_length=3)
    amount: Decimal = Field(
        default=Decimal("0"),
        description="Current balance in the account's currency"
    )
    historical_cost_usd: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Cached historical USD cost of the VES balance"
    )
    updated_at: datetime = Field(default_factory=datetime.utcnow)
