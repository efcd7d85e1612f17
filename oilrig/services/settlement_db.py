"""DB service layer for cashout rounds.

Settlement runs in two phases:
1. open -> settling under the round's row lock; the transition time is the
   barrier and the round revenue is fixed.
2. in one transaction: collect pending claims created at or before the
   barrier, compute payouts, write them, mark claims settled, consume
   carried residuals and close the round.

A round found in `settling` resumes phase 2 with its recorded barrier.
"""

import logging
from asyncio import Lock
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from oilrig.converter import DataConverter
from oilrig.crud import CreateData, ReadData, UpdateData
from oilrig.domain.amounts import MAX_AMOUNT, ZERO, round_amount
from oilrig.domain.models import ClaimStatus, PayoutStatus, RoundState, RoundStatus
from oilrig.domain.outcomes import InvalidRequestError, NotFoundError, TransientFailure
from oilrig.domain.settlement import settle
from oilrig.models.schema_models import PayoutSchema, RoundSchema
from oilrig.time_utils import utc_now

MAX_ATTEMPTS = 3

data_converter = DataConverter()


class SettlementService:
    def __init__(self, session_factory, config_store, clock=utc_now):
        self.Session = session_factory
        self.config_store = config_store
        self.clock = clock
        self.lock = Lock()  # one settlement at a time in this process

    async def open_round(self, round_date: Optional[date] = None) -> RoundSchema:
        """Open the cashout round of a date; returns the existing round when already opened."""
        now = self.clock()
        round_date = round_date or now.date()
        try:
            async with self.Session() as session:
                async with session.begin():
                    existing = await ReadData.read_round_by_date(round_date, session)
                    if existing is not None:
                        return RoundSchema.model_validate(existing)
                    cashout_round = CreateData.add_round(round_date, now, session)
                    await session.flush()
                    logging.info(f"Opened cashout round {cashout_round.round_id} for {round_date}")
                    return RoundSchema.model_validate(cashout_round)
        except IntegrityError:
            # Opened concurrently by another worker.
            async with self.Session() as session:
                existing = await ReadData.read_round_by_date(round_date, session)
                if existing is None:
                    raise
                return RoundSchema.model_validate(existing)

    async def open_round_for_today(self) -> None:
        """Scheduler job."""
        cashout_round = await self.open_round()
        logging.info(f"Daily cashout round {cashout_round.round_id} is {cashout_round.status}")

    async def get_round(self, round_id: UUID) -> RoundSchema:
        async with self.Session() as session:
            cashout_round = await ReadData.read_round(round_id, session)
            if cashout_round is None:
                raise NotFoundError(f"Round {round_id} not found")
            return RoundSchema.model_validate(cashout_round)

    async def settle_round(self, round_id: UUID, revenue: Optional[Decimal] = None) -> RoundSchema:
        """Settle a round

        Args:
            round_id (UUID): Round to settle
            revenue (Optional[Decimal]): Round revenue in WLD. Defaults to the revenue of the oil and
                                         slot purchases no earlier round has taken.

        Raises:
            NotFoundError: Unknown round
            InvalidRequestError: The round is already closed, or revenue is negative
            TransientFailure: Phase 2 kept conflicting with concurrent claim updates

        Returns:
            RoundSchema: The closed round with its payouts
        """
        if revenue is not None and revenue < 0:
            raise InvalidRequestError("Revenue must not be negative")
        if revenue is not None and revenue >= MAX_AMOUNT:
            raise InvalidRequestError(f"Revenue must be below {MAX_AMOUNT:f}")

        async with self.lock:
            await self._begin_settling(round_id, revenue)
            for attempt in range(1, MAX_ATTEMPTS + 1):
                try:
                    await self._finish_settling(round_id)
                    break
                except (StaleDataError, IntegrityError) as e:
                    logging.warning(
                        f"Settlement of round {round_id} conflicted (attempt {attempt}/{MAX_ATTEMPTS}): {e}"
                    )
            else:
                raise TransientFailure(f"Round {round_id} could not be settled, try again")
        return await self.get_round(round_id)

    async def _begin_settling(self, round_id: UUID, revenue: Optional[Decimal]) -> None:
        async with self.Session() as session:
            async with session.begin():
                cashout_round = await ReadData.read_round(round_id, session, lock=True)
                if cashout_round is None:
                    raise NotFoundError(f"Round {round_id} not found")
                if cashout_round.status == RoundStatus.closed.value:
                    raise InvalidRequestError(f"Round {round_id} is already closed")
                if cashout_round.status == RoundStatus.settling.value:
                    logging.info(
                        f"Resuming settlement of round {round_id} "
                        f"(barrier {cashout_round.settling_started_at})"
                    )
                    return

                now = self.clock()
                # Every purchase is taken by exactly one round, even when revenue is given.
                purchases = await ReadData.read_unattributed_purchases(now, session)
                if revenue is None:
                    revenue = sum((p.revenue_wld for p in purchases), ZERO)
                UpdateData.attribute_purchases(purchases, round_id)
                UpdateData.start_settling(cashout_round, round_amount(revenue), now)
                logging.info(f"Round {round_id} is settling with revenue {cashout_round.revenue}")

    async def _finish_settling(self, round_id: UUID) -> None:
        config = self.config_store.get_config()
        async with self.Session() as session:
            async with session.begin():
                cashout_round = await ReadData.read_round(round_id, session, lock=True)
                if cashout_round.status != RoundStatus.settling.value:
                    return

                barrier = cashout_round.settling_started_at
                claim_rows = await ReadData.read_pending_claims(barrier, session)
                residual_rounds = [
                    r
                    for r in await ReadData.read_uncarried_residual_rounds(session)
                    if r.round_id != round_id
                ]
                carried_in = sum((r.residual for r in residual_rounds), ZERO)

                result = settle(
                    RoundState(
                        round_id=round_id,
                        status=RoundStatus.settling,
                        revenue=cashout_round.revenue,
                        carried_in=carried_in,
                    ),
                    [data_converter.row_to_claim(c) for c in claim_rows],
                    config,
                )

                now = self.clock()
                for payout in result.payouts:
                    CreateData.add_payout(payout, now, cashout_round)
                for claim_row in claim_rows:
                    settled = data_converter.row_to_claim(claim_row).model_copy(
                        update={"status": ClaimStatus.settled, "round_id": round_id, "resolved_at": now}
                    )
                    data_converter.apply_claim(settled, claim_row)
                for residual_round in residual_rounds:
                    residual_round.residual_carried = True
                UpdateData.close_round(cashout_round, result, now)

        logging.info(
            f"Round {round_id} closed: pool {result.payout_pool} "
            f"(revenue share {result.revenue_pool}, carried {result.carried_in}), "
            f"paid {result.total_paid} to {len(result.payouts)} claims, residual {result.residual}"
        )

    async def mark_payout_paid(self, payout_id: UUID, transfer_ref: str) -> PayoutSchema:
        """Record the external transfer of a payout. Repeating the same reference is a no-op."""
        async with self.Session() as session:
            async with session.begin():
                payout = await ReadData.read_payout(payout_id, session, lock=True)
                if payout is None:
                    raise NotFoundError(f"Payout {payout_id} not found")
                if payout.status == PayoutStatus.paid.value:
                    if payout.transfer_ref != transfer_ref:
                        raise InvalidRequestError(
                            f"Payout {payout_id} was already paid with reference {payout.transfer_ref}"
                        )
                    return PayoutSchema.model_validate(payout)
                UpdateData.mark_payout_paid(payout, transfer_ref, self.clock())
                logging.info(f"Payout {payout_id} marked paid ({transfer_ref})")
                return PayoutSchema.model_validate(payout)
