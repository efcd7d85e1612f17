"""Value objects passed between the domain functions and the service layer.

Domain functions never mutate their inputs; they return updated copies made
with `model_copy(update=...)`.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from oilrig.domain.amounts import ZERO


class MachineState(BaseModel):
    machine_id: UUID
    machine_type: str
    level: int = Field(ge=1)
    fuel_oil: Decimal = Field(ge=0)
    is_active: bool
    last_processed_at: Optional[datetime] = None

    class Config:
        frozen = True


class LedgerState(BaseModel):
    player_id: UUID
    oil_balance: Decimal = Field(default=ZERO, ge=0)
    diamond_balance: Decimal = Field(default=ZERO, ge=0)
    minerals: Dict[str, int] = Field(default_factory=dict)
    mineral_progress: Dict[str, Decimal] = Field(default_factory=dict)
    daily_diamond_count: Decimal = Field(default=ZERO, ge=0)
    daily_diamond_window_started_at: Optional[datetime] = None
    cashout_cooldown_until: Optional[datetime] = None
    purchased_slots: int = Field(default=0, ge=0)

    class Config:
        frozen = True


class ResourceDelta(BaseModel):
    """What one machine produced and burnt over one accrual window."""

    ticks: Decimal = ZERO
    minerals: Dict[str, Decimal] = Field(default_factory=dict)
    diamonds: Decimal = ZERO
    fuel_consumed: Decimal = ZERO

    class Config:
        frozen = True

    def is_zero(self) -> bool:
        return (
            self.ticks == 0
            and self.diamonds == 0
            and self.fuel_consumed == 0
            and all(v == 0 for v in self.minerals.values())
        )


class AccrualResult(BaseModel):
    machine: MachineState
    delta: ResourceDelta
    clock_skew: bool = False


class CreditReport(BaseModel):
    """How a delta landed on the ledger after the daily cap was applied."""

    minerals_credited: Dict[str, int] = Field(default_factory=dict)
    diamonds_raw: Decimal = ZERO
    diamonds_credited: Decimal = ZERO
    diamonds_converted: Decimal = ZERO
    oil_from_excess: Decimal = ZERO


class ClaimStatus(str, Enum):
    pending = "pending"
    settled = "settled"
    rejected = "rejected"


class ClaimState(BaseModel):
    claim_id: UUID
    player_id: UUID
    diamonds: Decimal = Field(gt=0)
    status: ClaimStatus = ClaimStatus.pending
    created_at: datetime
    round_id: Optional[UUID] = None
    resolved_at: Optional[datetime] = None

    class Config:
        frozen = True


class RoundStatus(str, Enum):
    open = "open"
    settling = "settling"
    closed = "closed"


class RoundState(BaseModel):
    round_id: UUID
    status: RoundStatus
    revenue: Decimal = ZERO
    carried_in: Decimal = ZERO

    class Config:
        frozen = True


class PayoutStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class PayoutRecord(BaseModel):
    round_id: UUID
    claim_id: UUID
    player_id: UUID
    diamonds: Decimal
    amount: Decimal


class SettlementResult(BaseModel):
    revenue_pool: Decimal
    carried_in: Decimal
    payout_pool: Decimal
    total_claimed: Decimal
    total_paid: Decimal
    residual: Decimal
    payouts: List[PayoutRecord] = Field(default_factory=list)
