from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class ClaimSchema(BaseModel):
    claim_id: UUID
    player_id: UUID
    diamonds: Decimal
    status: str
    created_at: datetime
    round_id: Optional[UUID] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayoutSchema(BaseModel):
    payout_id: UUID
    round_id: UUID
    claim_id: UUID
    player_id: UUID
    diamonds: Decimal
    amount: Decimal
    status: str
    transfer_ref: Optional[str] = None
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoundSchema(BaseModel):
    round_id: UUID
    round_date: date
    status: str
    revenue: Optional[Decimal] = None
    revenue_pool: Optional[Decimal] = None
    carried_in: Optional[Decimal] = None
    payout_pool: Optional[Decimal] = None
    total_claimed: Optional[Decimal] = None
    total_paid: Optional[Decimal] = None
    residual: Optional[Decimal] = None
    residual_carried: bool = False
    opened_at: datetime
    settling_started_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    payouts: List[PayoutSchema] = []

    class Config:
        from_attributes = True
