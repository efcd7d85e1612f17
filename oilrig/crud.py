from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from oilrig.domain.amounts import ZERO
from oilrig.domain.models import ClaimState, ClaimStatus, MachineState, PayoutRecord, PayoutStatus, RoundStatus
from oilrig.models.schemas import (
    CashoutClaim,
    CashoutPayout,
    CashoutRound,
    EconomyConfigVersion,
    OilPurchase,
    PlayerMachine,
    PlayerState,
    SlotPurchase,
)

# None of the helpers below commit; the service layer owns session.begin().


class ReadData:
    @staticmethod
    async def lock_player(player_id: UUID, session: AsyncSession, create: bool = True) -> Optional[PlayerState]:
        """Read the player row with its machines under SELECT ... FOR UPDATE

        Args:
            player_id (UUID): To identify the player
            session (AsyncSession): Session inside an open transaction
            create (bool): Insert an empty player row when none exists

        Returns:
            Optional[PlayerState]: Locked row, None when missing and create is False
        """
        stmt = (
            select(PlayerState)
            .where(PlayerState.player_id == player_id)
            .options(selectinload(PlayerState.machines))
            .with_for_update()
        )
        result = await session.execute(stmt)
        row = result.scalars().first()
        if row is None and create:
            row = PlayerState(
                player_id=player_id,
                oil_balance=ZERO,
                diamond_balance=ZERO,
                minerals={},
                mineral_progress={},
                daily_diamond_count=ZERO,
                purchased_slots=0,
                machines=[],
            )
            session.add(row)
            await session.flush()
        return row

    @staticmethod
    async def read_player(player_id: UUID, session: AsyncSession) -> Optional[PlayerState]:
        stmt = (
            select(PlayerState)
            .where(PlayerState.player_id == player_id)
            .options(selectinload(PlayerState.machines))
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_claim(claim_id: UUID, session: AsyncSession, lock: bool = False) -> Optional[CashoutClaim]:
        stmt = select(CashoutClaim).where(CashoutClaim.claim_id == claim_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_round(round_id: UUID, session: AsyncSession, lock: bool = False) -> Optional[CashoutRound]:
        stmt = (
            select(CashoutRound)
            .where(CashoutRound.round_id == round_id)
            .options(selectinload(CashoutRound.payouts))
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_round_by_date(round_date: date, session: AsyncSession) -> Optional[CashoutRound]:
        stmt = (
            select(CashoutRound)
            .where(CashoutRound.round_date == round_date)
            .options(selectinload(CashoutRound.payouts))
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_pending_claims(barrier: datetime, session: AsyncSession) -> List[CashoutClaim]:
        """Read pending claims not yet attached to a round, created at or before the barrier

        Args:
            barrier (datetime): settling_started_at of the round being settled
            session (AsyncSession): Session inside an open transaction

        Returns:
            List[CashoutClaim]: Locked claims ordered by creation time
        """
        stmt = (
            select(CashoutClaim)
            .where(
                CashoutClaim.status == ClaimStatus.pending.value,
                CashoutClaim.round_id.is_(None),
                CashoutClaim.created_at <= barrier,
            )
            .order_by(CashoutClaim.created_at)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_uncarried_residual_rounds(session: AsyncSession) -> List[CashoutRound]:
        stmt = (
            select(CashoutRound)
            .where(
                CashoutRound.status == RoundStatus.closed.value,
                CashoutRound.residual_carried.is_(False),
                CashoutRound.residual > 0,
            )
            .order_by(CashoutRound.closed_at)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_unattributed_purchases(
        until: datetime, session: AsyncSession
    ) -> List[Union[OilPurchase, SlotPurchase]]:
        """Read the purchases confirmed at or before `until` that no round has taken yet

        Args:
            until (datetime): Barrier of the round being settled
            session (AsyncSession): Session inside an open transaction

        Returns:
            List[Union[OilPurchase, SlotPurchase]]: Locked oil and slot purchases
        """
        purchases = []
        for model in (OilPurchase, SlotPurchase):
            stmt = (
                select(model)
                .where(model.round_id.is_(None), model.created_at <= until)
                .order_by(model.created_at)
                .with_for_update()
            )
            result = await session.execute(stmt)
            purchases.extend(result.scalars().all())
        return purchases

    @staticmethod
    async def read_payout(payout_id: UUID, session: AsyncSession, lock: bool = False) -> Optional[CashoutPayout]:
        stmt = select(CashoutPayout).where(CashoutPayout.payout_id == payout_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_latest_config(session: AsyncSession) -> Optional[EconomyConfigVersion]:
        stmt = select(EconomyConfigVersion).order_by(EconomyConfigVersion.version.desc()).limit(1)
        result = await session.execute(stmt)
        return result.scalars().first()


class CreateData:
    @staticmethod
    def add_machine(player: PlayerState, machine: MachineState, now: datetime) -> PlayerMachine:
        row = PlayerMachine(
            machine_id=machine.machine_id,
            player_id=player.player_id,
            machine_type=machine.machine_type,
            level=machine.level,
            fuel_oil=machine.fuel_oil,
            is_active=machine.is_active,
            last_processed_at=machine.last_processed_at,
            created_at=now,
        )
        player.machines.append(row)
        return row

    @staticmethod
    def add_claim(claim: ClaimState, session: AsyncSession) -> CashoutClaim:
        row = CashoutClaim(
            claim_id=claim.claim_id,
            player_id=claim.player_id,
            diamonds=claim.diamonds,
            status=claim.status.value,
            created_at=claim.created_at,
            round_id=claim.round_id,
            resolved_at=claim.resolved_at,
        )
        session.add(row)
        return row

    @staticmethod
    def add_payout(payout: PayoutRecord, now: datetime, cashout_round: CashoutRound) -> CashoutPayout:
        row = CashoutPayout(
            round_id=payout.round_id,
            claim_id=payout.claim_id,
            player_id=payout.player_id,
            diamonds=payout.diamonds,
            amount=payout.amount,
            status=PayoutStatus.pending.value,
            created_at=now,
        )
        cashout_round.payouts.append(row)
        return row

    @staticmethod
    def add_oil_purchase(
        player_id: UUID,
        currency: str,
        amount: Decimal,
        oil_credited: Decimal,
        revenue_wld: Decimal,
        now: datetime,
        session: AsyncSession,
    ) -> OilPurchase:
        row = OilPurchase(
            player_id=player_id,
            currency=currency,
            amount=amount,
            oil_credited=oil_credited,
            revenue_wld=revenue_wld,
            created_at=now,
        )
        session.add(row)
        return row

    @staticmethod
    def add_slot_purchase(
        player_id: UUID, packs: int, slots_added: int, revenue_wld: Decimal, now: datetime, session: AsyncSession
    ) -> SlotPurchase:
        row = SlotPurchase(
            player_id=player_id,
            packs=packs,
            slots_added=slots_added,
            revenue_wld=revenue_wld,
            created_at=now,
        )
        session.add(row)
        return row

    @staticmethod
    def add_round(round_date: date, now: datetime, session: AsyncSession) -> CashoutRound:
        row = CashoutRound(
            round_date=round_date,
            status=RoundStatus.open.value,
            residual_carried=False,
            opened_at=now,
            payouts=[],
        )
        session.add(row)
        return row

    @staticmethod
    def add_config_version(version: int, payload: dict, now: datetime, session: AsyncSession) -> EconomyConfigVersion:
        row = EconomyConfigVersion(version=version, payload=payload, created_at=now)
        session.add(row)
        return row


class UpdateData:
    @staticmethod
    def start_settling(cashout_round: CashoutRound, revenue: Decimal, now: datetime) -> None:
        cashout_round.status = RoundStatus.settling.value
        cashout_round.revenue = revenue
        cashout_round.settling_started_at = now

    @staticmethod
    def attribute_purchases(purchases: List[Union[OilPurchase, SlotPurchase]], round_id: UUID) -> None:
        for purchase in purchases:
            purchase.round_id = round_id

    @staticmethod
    def close_round(cashout_round: CashoutRound, result, now: datetime) -> None:
        """Write the settlement figures and close the round

        Args:
            cashout_round (CashoutRound): Round locked for phase 2
            result (SettlementResult): Output of the settlement computation
            now (datetime): Closing time
        """
        cashout_round.revenue_pool = result.revenue_pool
        cashout_round.carried_in = result.carried_in
        cashout_round.payout_pool = result.payout_pool
        cashout_round.total_claimed = result.total_claimed
        cashout_round.total_paid = result.total_paid
        cashout_round.residual = result.residual
        cashout_round.status = RoundStatus.closed.value
        cashout_round.closed_at = now

    @staticmethod
    def mark_payout_paid(payout: CashoutPayout, transfer_ref: str, now: datetime) -> None:
        payout.status = PayoutStatus.paid.value
        payout.transfer_ref = transfer_ref
        payout.paid_at = now
