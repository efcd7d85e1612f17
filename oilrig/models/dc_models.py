from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from oilrig.domain.economy_config import MachineType, Mineral
from oilrig.domain.models import CreditReport
from oilrig.domain.outcomes import Rejection
from oilrig.models.schema_models import ClaimSchema


class CurrencyModel(str, Enum):
    wld = "wld"
    usdc = "usdc"


class PurchaseMachineModel(BaseModel):
    machine_type: MachineType


class RefuelModel(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)


class ExchangeMineralsModel(BaseModel):
    mineral: Mineral
    amount: int = Field(gt=0)


class CashoutRequestModel(BaseModel):
    amount: Decimal = Field(gt=0)


class OpenRoundModel(BaseModel):
    round_date: Optional[date] = None


class SettleRoundModel(BaseModel):
    revenue: Optional[Decimal] = Field(default=None, ge=0)


class PayoutPaidModel(BaseModel):
    transfer_ref: str = Field(min_length=1)


class OilPurchaseModel(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: CurrencyModel = CurrencyModel.wld


class SlotPurchaseModel(BaseModel):
    packs: int = Field(default=1, gt=0)


class MachineModel(BaseModel):
    machine_id: UUID
    machine_type: str
    level: int
    fuel_oil: Decimal
    tank_capacity: Decimal
    is_active: bool
    last_processed_at: Optional[datetime] = None
    next_upgrade_cost: Optional[Decimal] = None


class LedgerSnapshot(BaseModel):
    """Player ledger as returned to the client after every action."""

    player_id: UUID
    config_version: int
    oil_balance: Decimal
    diamond_balance: Decimal
    minerals: Dict[str, int]
    daily_diamond_count: Decimal
    daily_diamond_cap: Decimal
    daily_diamond_window_started_at: Optional[datetime] = None
    cashout_cooldown_until: Optional[datetime] = None
    purchased_slots: int = 0
    machine_slots: int = 0
    machines: List[MachineModel] = []


class ActionResult(BaseModel):
    ok: bool
    error: Optional[Rejection] = None
    snapshot: LedgerSnapshot
    machine_id: Optional[UUID] = None
    claim: Optional[ClaimSchema] = None
    credit: Optional[CreditReport] = None
    slots_added: Optional[int] = None
