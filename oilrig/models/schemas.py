from datetime import datetime

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.schema import Column
from sqlalchemy.types import Boolean, Date, DateTime, Integer, Numeric, String, Uuid
from uuid6 import uuid7

# Amounts are fixed precision: 8 decimal places.
Amount = Numeric(30, 8, asdecimal=True)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class PlayerState(Base):
    __tablename__ = "player_state"
    player_id = Column(Uuid, primary_key=True)
    oil_balance = Column(Amount, nullable=False, default=0)
    diamond_balance = Column(Amount, nullable=False, default=0)
    minerals = Column(JsonDocument, nullable=False, default=dict)
    mineral_progress = Column(JsonDocument, nullable=False, default=dict)
    daily_diamond_count = Column(Amount, nullable=False, default=0)
    daily_diamond_window_started_at = Column(DateTime, nullable=True)
    cashout_cooldown_until = Column(DateTime, nullable=True)
    purchased_slots = Column(Integer, nullable=False, default=0)
    last_active_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    version = Column(Integer, nullable=False)

    # Optimistic concurrency: a stale UPDATE raises StaleDataError.
    __mapper_args__ = {"version_id_col": version}

    machines = relationship(
        "PlayerMachine",
        back_populates="player",
        order_by="PlayerMachine.created_at",
        cascade="all, delete-orphan",
    )


class PlayerMachine(Base):
    __tablename__ = "player_machines"
    machine_id = Column(Uuid, primary_key=True, default=uuid7)
    player_id = Column(Uuid, ForeignKey("player_state.player_id"), index=True, nullable=False)
    machine_type = Column(String, nullable=False)
    level = Column(Integer, nullable=False, default=1)
    fuel_oil = Column(Amount, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=False)
    last_processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    player = relationship("PlayerState", back_populates="machines")


class CashoutClaim(Base):
    __tablename__ = "cashout_claims"
    claim_id = Column(Uuid, primary_key=True, default=uuid7)
    player_id = Column(Uuid, ForeignKey("player_state.player_id"), index=True, nullable=False)
    diamonds = Column(Amount, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    created_at = Column(DateTime, nullable=False)
    round_id = Column(Uuid, ForeignKey("cashout_rounds.round_id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CashoutRound(Base):
    __tablename__ = "cashout_rounds"
    round_id = Column(Uuid, primary_key=True, default=uuid7)
    round_date = Column(Date, nullable=False, unique=True)
    status = Column(String, nullable=False, default="open")
    revenue = Column(Amount, nullable=True)
    revenue_pool = Column(Amount, nullable=True)
    carried_in = Column(Amount, nullable=True)
    payout_pool = Column(Amount, nullable=True)
    total_claimed = Column(Amount, nullable=True)
    total_paid = Column(Amount, nullable=True)
    residual = Column(Amount, nullable=True)
    residual_carried = Column(Boolean, nullable=False, default=False)
    opened_at = Column(DateTime, nullable=False)
    settling_started_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    payouts = relationship(
        "CashoutPayout",
        back_populates="round",
        order_by="CashoutPayout.created_at",
        cascade="all, delete-orphan",
    )


class CashoutPayout(Base):
    __tablename__ = "cashout_payouts"
    __table_args__ = (UniqueConstraint("claim_id"),)
    payout_id = Column(Uuid, primary_key=True, default=uuid7)
    round_id = Column(Uuid, ForeignKey("cashout_rounds.round_id"), index=True, nullable=False)
    claim_id = Column(Uuid, ForeignKey("cashout_claims.claim_id"), nullable=False)
    player_id = Column(Uuid, nullable=False, index=True)
    diamonds = Column(Amount, nullable=False)
    amount = Column(Amount, nullable=False)
    status = Column(String, nullable=False, default="pending")
    transfer_ref = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    round = relationship("CashoutRound", back_populates="payouts")


class OilPurchase(Base):
    __tablename__ = "oil_purchases"
    purchase_id = Column(Uuid, primary_key=True, default=uuid7)
    player_id = Column(Uuid, ForeignKey("player_state.player_id"), index=True, nullable=False)
    currency = Column(String, nullable=False)
    amount = Column(Amount, nullable=False)
    oil_credited = Column(Amount, nullable=False)
    revenue_wld = Column(Amount, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, index=True)
    # Set when a settling round takes this revenue.
    round_id = Column(Uuid, ForeignKey("cashout_rounds.round_id"), nullable=True, index=True)


class SlotPurchase(Base):
    __tablename__ = "slot_purchases"
    purchase_id = Column(Uuid, primary_key=True, default=uuid7)
    player_id = Column(Uuid, ForeignKey("player_state.player_id"), index=True, nullable=False)
    packs = Column(Integer, nullable=False)
    slots_added = Column(Integer, nullable=False)
    revenue_wld = Column(Amount, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    round_id = Column(Uuid, ForeignKey("cashout_rounds.round_id"), nullable=True, index=True)


class EconomyConfigVersion(Base):
    __tablename__ = "economy_config"
    version = Column(Integer, primary_key=True)
    payload = Column(JsonDocument, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
