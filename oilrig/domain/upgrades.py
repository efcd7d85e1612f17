"""Machine purchases, level-ups and tank handling.

Every function either returns the complete new state (ledger and machine
together) or a Rejection; nothing is partially debited.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from oilrig.domain.accrual import tank_capacity
from oilrig.domain.amounts import ZERO, check_amount, floor_amount
from oilrig.domain.economy_config import EconomyConfig, MachineType
from oilrig.domain.ledger import machine_slots
from oilrig.domain.models import LedgerState, MachineState
from oilrig.domain.outcomes import ErrorCode, InvalidRequestError, Rejection, reject


class MachineChange(BaseModel):
    machine: MachineState
    ledger: LedgerState
    oil_spent: Decimal = ZERO
    oil_refunded: Decimal = ZERO


def upgrade_cost(config: EconomyConfig, machine_type: str, level: int) -> Decimal:
    """Cost in OIL to go from `level` to `level + 1`.

    cost = cost_oil * upgrade_cost_multiplier ** level
    """
    stats = config.machine(machine_type)
    return floor_amount(
        stats.cost_oil * config.progression.upgrade_cost_multiplier ** level
    )


def upgrade(
    machine: MachineState, ledger: LedgerState, config: EconomyConfig
) -> Union[MachineChange, Rejection]:
    """Raise a machine one level, paying with OIL.

    If the new tank is smaller than the fuel held, the overflow goes back to
    the OIL balance.
    """
    stats = config.machine(machine.machine_type)
    if machine.level >= stats.max_level:
        return reject(
            ErrorCode.MAX_LEVEL,
            f"Machine is already at max level {stats.max_level}",
        )

    cost = upgrade_cost(config, machine.machine_type, machine.level)
    if ledger.oil_balance < cost:
        return reject(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Upgrade costs {cost} OIL, balance is {ledger.oil_balance}",
        )

    new_level = machine.level + 1
    capacity = tank_capacity(config, machine.machine_type, new_level)
    overflow = max(machine.fuel_oil - capacity, ZERO)

    upgraded = machine.model_copy(
        update={"level": new_level, "fuel_oil": machine.fuel_oil - overflow}
    )
    debited = ledger.model_copy(
        update={"oil_balance": ledger.oil_balance - cost + overflow}
    )
    return MachineChange(
        machine=upgraded, ledger=debited, oil_spent=cost, oil_refunded=overflow
    )


def purchase(
    machine_type: str,
    ledger: LedgerState,
    config: EconomyConfig,
    now: datetime,
    machine_id: UUID,
    owned_machines: int = 0,
) -> Union[MachineChange, Rejection]:
    """Buy a level-1 machine that starts running with a full tank.

    Slots are checked before the price: a player at the slot limit gets
    SLOT_LIMIT whatever their balance.
    """
    if machine_type not in {t.value for t in MachineType} or machine_type not in config.machines:
        raise InvalidRequestError(f"Unknown machine type: {machine_type}")

    slots = machine_slots(ledger, config)
    if owned_machines >= slots:
        return reject(
            ErrorCode.SLOT_LIMIT,
            f"All {slots} machine slots are in use",
        )

    cost = config.machine(machine_type).cost_oil
    if ledger.oil_balance < cost:
        return reject(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Machine costs {cost} OIL, balance is {ledger.oil_balance}",
        )

    fuel = tank_capacity(config, machine_type, 1)
    machine = MachineState(
        machine_id=machine_id,
        machine_type=machine_type,
        level=1,
        fuel_oil=fuel,
        is_active=fuel > 0,
        last_processed_at=now,
    )
    debited = ledger.model_copy(update={"oil_balance": ledger.oil_balance - cost})
    return MachineChange(machine=machine, ledger=debited, oil_spent=cost)


def refuel(
    machine: MachineState,
    ledger: LedgerState,
    config: EconomyConfig,
    now: datetime,
    amount: Optional[Decimal] = None,
) -> Union[MachineChange, Rejection]:
    """Move OIL from the balance into the tank.

    Fills up to the tank capacity when `amount` is omitted. An idle machine
    restarts its clock at `now` so the idle time is not billed as production.
    """
    if amount is not None:
        check_amount(amount)

    capacity = tank_capacity(config, machine.machine_type, machine.level)
    room = max(capacity - machine.fuel_oil, ZERO)
    if room == 0:
        raise InvalidRequestError("Tank is already full")
    if ledger.oil_balance <= 0:
        return reject(ErrorCode.INSUFFICIENT_FUNDS, "No OIL available to fuel")

    requested = room if amount is None else amount
    fill = floor_amount(min(room, requested, ledger.oil_balance))
    if fill <= 0:
        return reject(ErrorCode.INSUFFICIENT_FUNDS, "No OIL available to fuel")

    update = {"fuel_oil": machine.fuel_oil + fill, "is_active": True}
    if not machine.is_active:
        update["last_processed_at"] = _advance(machine, now)
    return MachineChange(
        machine=machine.model_copy(update=update),
        ledger=ledger.model_copy(update={"oil_balance": ledger.oil_balance - fill}),
        oil_spent=fill,
    )


def _advance(machine: MachineState, now: datetime) -> datetime:
    """`last_processed_at` never moves backwards."""
    if machine.last_processed_at is not None and machine.last_processed_at > now:
        return machine.last_processed_at
    return now


def start(machine: MachineState, now: datetime) -> Union[MachineState, Rejection]:
    if machine.fuel_oil <= 0:
        return reject(ErrorCode.INSUFFICIENT_FUNDS, "Machine has no fuel")
    if machine.is_active:
        return machine
    return machine.model_copy(
        update={"is_active": True, "last_processed_at": _advance(machine, now)}
    )


def stop(machine: MachineState, now: datetime) -> MachineState:
    """Deactivate a machine. The caller accrues it up to `now` first."""
    return machine.model_copy(
        update={"is_active": False, "last_processed_at": _advance(machine, now)}
    )
