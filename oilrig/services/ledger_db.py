"""DB service layer for player ledger use cases.

- Routers should not touch DB sessions directly; they call this module.
- This layer owns session/transaction boundaries.
- Every mutation of one player runs under that player's lock, inside one
  transaction, on the row read with SELECT ... FOR UPDATE.
- Every action first accrues all of the player's machines up to `now`.
"""

import logging
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from uuid6 import uuid7

from oilrig.converter import DataConverter
from oilrig.crud import CreateData, ReadData
from oilrig.domain import cashout, ledger as ledger_rules, upgrades
from oilrig.domain.accrual import accrue
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.models import CreditReport, LedgerState, MachineState
from oilrig.domain.outcomes import (
    ConcurrentModificationError,
    NotFoundError,
    Rejection,
    TransientFailure,
)
from oilrig.models.dc_models import ActionResult, LedgerSnapshot
from oilrig.models.schema_models import ClaimSchema
from oilrig.models.schemas import PlayerState
from oilrig.time_utils import utc_now

MAX_ATTEMPTS = 3

data_converter = DataConverter()


class PlayerContext:
    """Working state of one player inside one transaction."""

    def __init__(self, session, row: PlayerState, now, config: EconomyConfig, ledger: LedgerState):
        self.session = session
        self.row = row
        self.now = now
        self.config = config
        self.ledger = ledger
        self.machines: Dict[UUID, MachineState] = {}
        self.credit = CreditReport()
        self.machine_id: Optional[UUID] = None
        self.claim: Optional[ClaimSchema] = None
        self.slots_added: Optional[int] = None

    def machine(self, machine_id: UUID) -> MachineState:
        if machine_id not in self.machines:
            raise NotFoundError(f"Machine {machine_id} not found for player {self.row.player_id}")
        return self.machines[machine_id]


Action = Callable[[PlayerContext], Awaitable[Optional[Rejection]]]


def _merge_credit(total: CreditReport, report: CreditReport) -> CreditReport:
    minerals = dict(total.minerals_credited)
    for mineral, amount in report.minerals_credited.items():
        minerals[mineral] = minerals.get(mineral, 0) + amount
    return CreditReport(
        minerals_credited=minerals,
        diamonds_raw=total.diamonds_raw + report.diamonds_raw,
        diamonds_credited=total.diamonds_credited + report.diamonds_credited,
        diamonds_converted=total.diamonds_converted + report.diamonds_converted,
        oil_from_excess=total.oil_from_excess + report.oil_from_excess,
    )


class LedgerService:
    def __init__(
        self,
        session_factory,
        config_store,
        player_locks,
        clock=utc_now,
        rng_factory=None,
    ):
        self.Session = session_factory
        self.config_store = config_store
        self.player_locks = player_locks
        self.clock = clock
        # Returns the drop generator for one operation; None means expected values.
        self.rng_factory = rng_factory or (lambda: None)

    async def get_snapshot(self, player_id: UUID) -> LedgerSnapshot:
        """Read the stored ledger without accruing. Unknown players read as empty."""
        config = self.config_store.get_config()
        async with self.Session() as session:
            row = await ReadData.read_player(player_id, session)
            if row is None:
                return data_converter.build_snapshot(LedgerState(player_id=player_id), [], config)
            machines = [data_converter.row_to_machine(m) for m in row.machines]
            return data_converter.build_snapshot(data_converter.row_to_ledger(row), machines, config)

    async def process_machines(self, player_id: UUID) -> ActionResult:
        """Accrue every machine of the player up to now."""

        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            return None

        return await self._run(player_id, action)

    async def purchase_machine(self, player_id: UUID, machine_type: str) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = upgrades.purchase(
                machine_type, ctx.ledger, ctx.config, ctx.now, uuid7(), owned_machines=len(ctx.machines)
            )
            if isinstance(result, Rejection):
                return result
            CreateData.add_machine(ctx.row, result.machine, ctx.now)
            ctx.machines[result.machine.machine_id] = result.machine
            ctx.ledger = result.ledger
            ctx.machine_id = result.machine.machine_id
            logging.info(
                f"Player {player_id} bought {machine_type} machine {result.machine.machine_id} "
                f"for {result.oil_spent} OIL"
            )
            return None

        return await self._run(player_id, action)

    async def upgrade_machine(self, player_id: UUID, machine_id: UUID) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = upgrades.upgrade(ctx.machine(machine_id), ctx.ledger, ctx.config)
            if isinstance(result, Rejection):
                return result
            ctx.machines[machine_id] = result.machine
            ctx.ledger = result.ledger
            ctx.machine_id = machine_id
            logging.info(
                f"Player {player_id} upgraded machine {machine_id} to level {result.machine.level} "
                f"for {result.oil_spent} OIL (refunded {result.oil_refunded})"
            )
            return None

        return await self._run(player_id, action, create_player=False)

    async def refuel_machine(
        self, player_id: UUID, machine_id: UUID, amount: Optional[Decimal] = None
    ) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = upgrades.refuel(ctx.machine(machine_id), ctx.ledger, ctx.config, ctx.now, amount)
            if isinstance(result, Rejection):
                return result
            ctx.machines[machine_id] = result.machine
            ctx.ledger = result.ledger
            ctx.machine_id = machine_id
            logging.info(f"Player {player_id} refuelled machine {machine_id} with {result.oil_spent} OIL")
            return None

        return await self._run(player_id, action, create_player=False)

    async def start_machine(self, player_id: UUID, machine_id: UUID) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = upgrades.start(ctx.machine(machine_id), ctx.now)
            if isinstance(result, Rejection):
                return result
            ctx.machines[machine_id] = result
            ctx.machine_id = machine_id
            return None

        return await self._run(player_id, action, create_player=False)

    async def stop_machine(self, player_id: UUID, machine_id: UUID) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            ctx.machines[machine_id] = upgrades.stop(ctx.machine(machine_id), ctx.now)
            ctx.machine_id = machine_id
            return None

        return await self._run(player_id, action, create_player=False)

    async def exchange_minerals(self, player_id: UUID, mineral: str, amount: int) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = ledger_rules.exchange_minerals(ctx.ledger, mineral, amount, ctx.config)
            if isinstance(result, Rejection):
                return result
            ctx.ledger = result
            return None

        return await self._run(player_id, action, create_player=False)

    async def request_cashout(self, player_id: UUID, amount: Decimal) -> ActionResult:
        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = cashout.request(ctx.ledger, amount, ctx.config, ctx.now, uuid7())
            if isinstance(result, Rejection):
                return result
            claim_row = CreateData.add_claim(result.claim, ctx.session)
            ctx.ledger = result.ledger
            await ctx.session.flush()
            ctx.claim = ClaimSchema.model_validate(claim_row)
            logging.info(f"Player {player_id} requested cashout of {amount} diamonds (claim {result.claim.claim_id})")
            return None

        return await self._run(player_id, action, create_player=False)

    async def confirm_oil_purchase(self, player_id: UUID, amount: Decimal, currency: str) -> ActionResult:
        """Credit OIL for a payment confirmed by the payment collaborator."""

        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            ctx.ledger, oil, revenue_wld = ledger_rules.credit_oil_purchase(
                ctx.ledger, amount, currency, ctx.config
            )
            if revenue_wld is None:
                logging.warning(
                    f"No usdc_to_wld_rate configured: purchase by {player_id} adds no round revenue"
                )
            CreateData.add_oil_purchase(
                player_id, currency, amount, oil, revenue_wld or Decimal("0"), ctx.now, ctx.session
            )
            logging.info(f"Player {player_id} bought {oil} OIL for {amount} {currency}")
            return None

        return await self._run(player_id, action)

    async def confirm_slot_purchase(self, player_id: UUID, packs: int) -> ActionResult:
        """Add machine slots for a slot pack payment confirmed by the payment collaborator."""

        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            result = ledger_rules.credit_slot_purchase(ctx.ledger, packs, ctx.config)
            if isinstance(result, Rejection):
                return result
            ctx.ledger, ctx.slots_added, revenue_wld = result
            CreateData.add_slot_purchase(player_id, packs, ctx.slots_added, revenue_wld, ctx.now, ctx.session)
            logging.info(f"Player {player_id} bought {ctx.slots_added} machine slots for {revenue_wld} WLD")
            return None

        return await self._run(player_id, action)

    async def reject_claim(self, claim_id: UUID) -> ActionResult:
        """Reject a pending claim and refund its diamonds to the owner."""
        async with self.Session() as session:
            claim_row = await ReadData.read_claim(claim_id, session)
            if claim_row is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            player_id = claim_row.player_id

        async def action(ctx: PlayerContext) -> Optional[Rejection]:
            locked = await ReadData.read_claim(claim_id, ctx.session, lock=True)
            refund = cashout.reject_claim(data_converter.row_to_claim(locked), ctx.ledger, ctx.now)
            data_converter.apply_claim(refund.claim, locked)
            ctx.ledger = refund.ledger
            await ctx.session.flush()
            ctx.claim = ClaimSchema.model_validate(locked)
            logging.info(f"Claim {claim_id} rejected, refunded {locked.diamonds} diamonds to {player_id}")
            return None

        return await self._run(player_id, action, create_player=False)

    async def _run(self, player_id: UUID, action: Action, create_player: bool = True) -> ActionResult:
        """Run one action as an atomic read-modify-write of the player

        Args:
            player_id (UUID): Player whose ledger is modified
            action (Action): Mutates the context, returns a Rejection or None
            create_player (bool): Create the player on first contact

        Raises:
            NotFoundError: Unknown player when create_player is False, or unknown machine
            TransientFailure: The write kept conflicting after MAX_ATTEMPTS

        Returns:
            ActionResult: Outcome with the snapshot after the action
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                async with self.player_locks.hold(player_id):
                    async with self.Session() as session:
                        async with session.begin():
                            return await self._attempt(session, player_id, action, create_player)
            except (StaleDataError, IntegrityError, ConcurrentModificationError) as e:
                logging.warning(
                    f"Concurrent modification of player {player_id} "
                    f"(attempt {attempt}/{MAX_ATTEMPTS}): {e}"
                )
        raise TransientFailure(f"Player {player_id} is busy, try again")

    async def _attempt(self, session, player_id: UUID, action: Action, create_player: bool) -> ActionResult:
        row = await ReadData.lock_player(player_id, session, create=create_player)
        if row is None:
            raise NotFoundError(f"Player {player_id} not found")
        now = self.clock()
        config = self.config_store.get_config()
        rng = self.rng_factory()

        ctx = PlayerContext(session, row, now, config, data_converter.row_to_ledger(row))
        for machine_row in row.machines:
            result = accrue(data_converter.row_to_machine(machine_row), config, now, rng)
            if result.clock_skew:
                logging.warning(
                    f"CLOCK_SKEW: machine {machine_row.machine_id} last processed at "
                    f"{machine_row.last_processed_at}, now is {now}"
                )
            ctx.ledger, report = ledger_rules.apply_accrual(ctx.ledger, result.delta, config, now)
            ctx.credit = _merge_credit(ctx.credit, report)
            ctx.machines[machine_row.machine_id] = result.machine

        if ctx.credit.diamonds_converted > 0:
            logging.info(
                f"Player {player_id} hit the daily diamond cap: {ctx.credit.diamonds_converted} "
                f"diamonds converted to {ctx.credit.oil_from_excess} OIL"
            )

        rejection = await action(ctx)

        data_converter.apply_ledger(ctx.ledger, row)
        for machine_row in row.machines:
            data_converter.apply_machine(ctx.machines[machine_row.machine_id], machine_row)
        # Always touch the row so the version column advances.
        row.last_active_at = now
        await session.flush()

        machines: List[MachineState] = [ctx.machines[m.machine_id] for m in row.machines]
        return ActionResult(
            ok=rejection is None,
            error=rejection,
            snapshot=data_converter.build_snapshot(ctx.ledger, machines, config),
            machine_id=ctx.machine_id,
            claim=ctx.claim,
            credit=ctx.credit,
            slots_added=ctx.slots_added,
        )
