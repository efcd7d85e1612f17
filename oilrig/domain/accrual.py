"""Offline accrual of one machine over the time since it was last processed.

Rule of thumb:
- A machine cannot produce beyond its fuel reserve.
- `last_processed_at` advances by exactly the interval that was consumed, so
  calling `accrue` again with the same `now` produces nothing.
- Randomness comes from the `rng` argument. Without one, every tick is
  credited at its expected value.
"""

from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Optional

import numpy as np

from oilrig.domain.amounts import US_PER_HOUR, ZERO, floor_amount, round_amount
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.models import AccrualResult, MachineState, ResourceDelta


def _level_factor(multiplier: Decimal, level: int) -> Decimal:
    # Level 1 is the base stat for any multiplier, including 0 (0 ** 0 is undefined for Decimal).
    if level <= 1:
        return Decimal(1)
    return multiplier ** (level - 1)


def effective_speed(config: EconomyConfig, machine_type: str, level: int) -> Decimal:
    """Actions (ticks) per hour at the given level."""
    stats = config.machine(machine_type)
    return stats.speed_actions_per_hour * _level_factor(
        config.progression.level_speed_multiplier, level
    )


def effective_burn(config: EconomyConfig, machine_type: str, level: int) -> Decimal:
    """OIL burnt per hour at the given level."""
    stats = config.machine(machine_type)
    return stats.oil_burn_per_hour * _level_factor(
        config.progression.level_oil_burn_multiplier, level
    )


def tank_capacity(config: EconomyConfig, machine_type: str, level: int) -> Decimal:
    stats = config.machine(machine_type)
    return floor_amount(
        stats.tank_capacity
        * _level_factor(config.progression.level_capacity_multiplier, level)
    )


def burn_per_action(config: EconomyConfig, machine_type: str, level: int) -> Decimal:
    speed = effective_speed(config, machine_type, level)
    if speed == 0:
        return ZERO
    return effective_burn(config, machine_type, level) / speed


def _sample(ticks: Decimal, rate: Decimal, rng: Optional[np.random.Generator]) -> Decimal:
    """Drops for `ticks` independent trials at `rate`.

    Whole ticks are sampled (binomial == one Bernoulli trial per tick); the
    fractional tick always contributes its expected value.
    """
    if rate == 0 or ticks == 0:
        return ZERO
    if rng is None:
        return round_amount(ticks * rate)
    whole = int(ticks.to_integral_value(rounding=ROUND_DOWN))
    fraction = ticks - whole
    hits = int(rng.binomial(whole, float(rate))) if whole > 0 else 0
    return round_amount(Decimal(hits) + fraction * rate)


def accrue(
    machine: MachineState,
    config: EconomyConfig,
    now: datetime,
    rng: Optional[np.random.Generator] = None,
) -> AccrualResult:
    """Compute what a machine produced between `last_processed_at` and `now`.

    Args:
        machine (MachineState): machine as last persisted
        config (EconomyConfig): config snapshot of the current operation
        now (datetime): time captured once by the caller
        rng (np.random.Generator, optional): drop sampler. None selects expected-value mode.

    Returns:
        AccrualResult: updated machine, resource delta and the clock-skew flag
    """
    zero = ResourceDelta()
    if not machine.is_active or machine.last_processed_at is None:
        return AccrualResult(machine=machine, delta=zero)

    last = machine.last_processed_at
    if now < last:
        return AccrualResult(machine=machine, delta=zero, clock_skew=True)

    elapsed_us = (now - last) // timedelta(microseconds=1)
    if elapsed_us == 0:
        return AccrualResult(machine=machine, delta=zero)

    speed = effective_speed(config, machine.machine_type, machine.level)
    burn = effective_burn(config, machine.machine_type, machine.level)

    if speed == 0:
        # Nothing to produce; the window is spent idle.
        idle = machine.model_copy(update={"last_processed_at": now})
        return AccrualResult(machine=idle, delta=zero)

    fuel_limited = False
    consumed_us = elapsed_us
    if burn > 0:
        fuel_us = int(
            (machine.fuel_oil * US_PER_HOUR / burn).to_integral_value(rounding=ROUND_DOWN)
        )
        if fuel_us <= elapsed_us:
            fuel_limited = True
            consumed_us = fuel_us

    hours = Decimal(consumed_us) / US_PER_HOUR
    ticks = floor_amount(hours * speed)

    if fuel_limited:
        fuel_used = machine.fuel_oil
    else:
        fuel_used = min(round_amount(hours * burn), machine.fuel_oil)
    fuel_after = machine.fuel_oil - fuel_used

    rewards = config.mining.action_rewards
    minerals: Dict[str, Decimal] = {}
    for mineral in sorted(rewards.minerals):
        minerals[mineral] = _sample(ticks, rewards.minerals[mineral].drop_rate, rng)
    diamonds = _sample(ticks, rewards.diamond.drop_rate_per_action, rng)

    updated = machine.model_copy(
        update={
            "fuel_oil": fuel_after,
            "is_active": fuel_after > 0,
            "last_processed_at": last + timedelta(microseconds=consumed_us),
        }
    )
    delta = ResourceDelta(
        ticks=ticks, minerals=minerals, diamonds=diamonds, fuel_consumed=fuel_used
    )
    return AccrualResult(machine=updated, delta=delta)
