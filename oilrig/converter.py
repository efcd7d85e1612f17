from decimal import Decimal
from typing import List

from oilrig.domain.accrual import tank_capacity
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.ledger import machine_slots
from oilrig.domain.models import ClaimState, ClaimStatus, LedgerState, MachineState
from oilrig.domain.upgrades import upgrade_cost
from oilrig.models.dc_models import LedgerSnapshot, MachineModel
from oilrig.models.schemas import CashoutClaim, PlayerMachine, PlayerState


class DataConverter:
    """This class is used to convert data between rows, domain state and client models."""

    def row_to_ledger(self, row: PlayerState) -> LedgerState:
        """Convert the player_state row to the domain ledger

        Args:
            row (PlayerState): Locked player row

        Returns:
            LedgerState: Immutable ledger used by the domain functions
        """
        return LedgerState(
            player_id=row.player_id,
            oil_balance=row.oil_balance,
            diamond_balance=row.diamond_balance,
            minerals={k: int(v) for k, v in (row.minerals or {}).items()},
            mineral_progress={k: Decimal(v) for k, v in (row.mineral_progress or {}).items()},
            daily_diamond_count=row.daily_diamond_count,
            daily_diamond_window_started_at=row.daily_diamond_window_started_at,
            cashout_cooldown_until=row.cashout_cooldown_until,
            purchased_slots=row.purchased_slots or 0,
        )

    def apply_ledger(self, ledger: LedgerState, row: PlayerState) -> None:
        """Write the domain ledger back onto the row (flushed by the caller's transaction)."""
        row.oil_balance = ledger.oil_balance
        row.diamond_balance = ledger.diamond_balance
        # New dict objects so the JSON columns are detected as changed.
        row.minerals = dict(ledger.minerals)
        row.mineral_progress = {k: str(v) for k, v in ledger.mineral_progress.items()}
        row.daily_diamond_count = ledger.daily_diamond_count
        row.daily_diamond_window_started_at = ledger.daily_diamond_window_started_at
        row.cashout_cooldown_until = ledger.cashout_cooldown_until
        row.purchased_slots = ledger.purchased_slots

    def row_to_machine(self, row: PlayerMachine) -> MachineState:
        return MachineState(
            machine_id=row.machine_id,
            machine_type=row.machine_type,
            level=row.level,
            fuel_oil=row.fuel_oil,
            is_active=row.is_active,
            last_processed_at=row.last_processed_at,
        )

    def apply_machine(self, machine: MachineState, row: PlayerMachine) -> None:
        row.machine_type = machine.machine_type
        row.level = machine.level
        row.fuel_oil = machine.fuel_oil
        row.is_active = machine.is_active
        row.last_processed_at = machine.last_processed_at

    def row_to_claim(self, row: CashoutClaim) -> ClaimState:
        return ClaimState(
            claim_id=row.claim_id,
            player_id=row.player_id,
            diamonds=row.diamonds,
            status=ClaimStatus(row.status),
            created_at=row.created_at,
            round_id=row.round_id,
            resolved_at=row.resolved_at,
        )

    def apply_claim(self, claim: ClaimState, row: CashoutClaim) -> None:
        row.status = claim.status.value
        row.round_id = claim.round_id
        row.resolved_at = claim.resolved_at

    def build_snapshot(
        self, ledger: LedgerState, machines: List[MachineState], config: EconomyConfig
    ) -> LedgerSnapshot:
        """Build the snapshot sent to the client

        Args:
            ledger (LedgerState): Ledger after the action
            machines (List[MachineState]): Owned machines after the action
            config (EconomyConfig): Config snapshot the action ran against

        Returns:
            LedgerSnapshot: Balances, cap status and machines with their tank and next upgrade cost
        """
        machine_models = []
        for machine in machines:
            stats = config.machines.get(machine.machine_type)
            machine_models.append(
                MachineModel(
                    machine_id=machine.machine_id,
                    machine_type=machine.machine_type,
                    level=machine.level,
                    fuel_oil=machine.fuel_oil,
                    tank_capacity=tank_capacity(config, machine.machine_type, machine.level)
                    if stats
                    else Decimal("0"),
                    is_active=machine.is_active,
                    last_processed_at=machine.last_processed_at,
                    next_upgrade_cost=upgrade_cost(config, machine.machine_type, machine.level)
                    if stats and machine.level < stats.max_level
                    else None,
                )
            )
        return LedgerSnapshot(
            player_id=ledger.player_id,
            config_version=config.version,
            oil_balance=ledger.oil_balance,
            diamond_balance=ledger.diamond_balance,
            minerals=dict(ledger.minerals),
            daily_diamond_count=ledger.daily_diamond_count,
            daily_diamond_cap=config.diamond_controls.daily_cap_per_user,
            daily_diamond_window_started_at=ledger.daily_diamond_window_started_at,
            cashout_cooldown_until=ledger.cashout_cooldown_until,
            purchased_slots=ledger.purchased_slots,
            machine_slots=machine_slots(ledger, config),
            machines=machine_models,
        )
