"""
Unit tests for offline machine accrual

Tests cover:
- The reference scenario (2 actions/hour, 3 hours)
- Fuel-limited production and deactivation
- Idempotent re-accrual and split-window conservation
- Clock skew
- Level curves
- Seeded drop sampling
"""

from datetime import timedelta
from decimal import Decimal

import numpy as np
import pytest

from conftest import T0, make_config, make_machine, scenario_config
from oilrig.domain.accrual import (
    accrue,
    burn_per_action,
    effective_burn,
    effective_speed,
    tank_capacity,
)


class TestAccrualScenario:
    """Test suite for the worked accrual examples"""

    def test_three_hours_at_one_oil_per_hour(self):
        """speed 2/h, burn 1/h, fuel 10, 3h -> 6 ticks, 3 OIL burnt, 3 expected gold"""
        config = scenario_config(burn_per_hour=1)
        machine = make_machine(fuel=10)

        result = accrue(machine, config, T0 + timedelta(hours=3))

        assert result.delta.ticks == 6
        assert result.delta.fuel_consumed == 3
        assert result.machine.fuel_oil == 7
        assert result.delta.minerals["gold"] == 3
        assert result.machine.is_active
        assert result.machine.last_processed_at == T0 + timedelta(hours=3)
        assert not result.clock_skew

    def test_three_hours_at_two_oil_per_hour(self):
        """burn 2/h over the same window leaves 4 OIL in the tank"""
        config = scenario_config(burn_per_hour=2)
        machine = make_machine(fuel=10)

        result = accrue(machine, config, T0 + timedelta(hours=3))

        assert result.delta.ticks == 6
        assert result.machine.fuel_oil == 4
        assert result.delta.minerals["gold"] == 3

    def test_fuel_consumed_matches_burn_per_action(self):
        """fuel_consumed == ticks * burn_per_action"""
        config = scenario_config(burn_per_hour=1)
        machine = make_machine(fuel=10)

        result = accrue(machine, config, T0 + timedelta(hours=3))

        per_action = burn_per_action(config, "mini", 1)
        assert per_action == Decimal("0.5")
        assert result.delta.fuel_consumed == result.delta.ticks * per_action

    def test_expected_drops_for_every_mineral(self):
        config = scenario_config()
        result = accrue(make_machine(fuel=10), config, T0 + timedelta(hours=3))

        rewards = config.mining.action_rewards
        for mineral, reward in rewards.minerals.items():
            assert result.delta.minerals[mineral] == 6 * reward.drop_rate
        assert result.delta.diamonds == 6 * rewards.diamond.drop_rate_per_action


class TestFuelLimits:
    """Test suite for production bounded by fuel"""

    def test_production_stops_when_tank_runs_dry(self):
        """Only the fuelled interval produces; the machine deactivates at empty"""
        config = scenario_config(burn_per_hour=1)
        machine = make_machine(fuel=1)

        result = accrue(machine, config, T0 + timedelta(hours=3))

        assert result.delta.ticks == 2
        assert result.delta.fuel_consumed == 1
        assert result.machine.fuel_oil == 0
        assert not result.machine.is_active
        # The clock stops where the fuel ran out
        assert result.machine.last_processed_at == T0 + timedelta(hours=1)

    def test_fuel_never_goes_negative(self):
        config = make_config()
        machine = make_machine(fuel="0.3", machine_type="mega")

        result = accrue(machine, config, T0 + timedelta(days=30))

        assert result.machine.fuel_oil == 0
        assert result.delta.fuel_consumed == Decimal("0.3")

    def test_inactive_machine_produces_nothing(self):
        machine = make_machine(fuel=10, active=False)

        result = accrue(machine, scenario_config(), T0 + timedelta(hours=5))

        assert result.delta.is_zero()
        assert result.machine == machine

    def test_zero_speed_machine_only_advances_its_clock(self):
        config = make_config({"machines.mini.speed_actions_per_hour": 0})
        machine = make_machine(fuel=10)

        result = accrue(machine, config, T0 + timedelta(hours=2))

        assert result.delta.is_zero()
        assert result.machine.fuel_oil == 10
        assert result.machine.last_processed_at == T0 + timedelta(hours=2)


class TestIdempotence:
    """Test suite for exactly-once accrual"""

    def test_second_call_with_same_now_is_zero(self):
        """Re-accruing an already processed window yields nothing"""
        config = scenario_config()
        now = T0 + timedelta(hours=3)

        first = accrue(make_machine(fuel=10), config, now)
        second = accrue(first.machine, config, now)

        assert second.delta.is_zero()
        assert second.machine == first.machine

    def test_split_windows_add_up_to_one_window(self):
        """Accruing 0->1h then 1h->3h equals accruing 0->3h in expected mode"""
        config = scenario_config()
        machine = make_machine(fuel=10)

        whole = accrue(machine, config, T0 + timedelta(hours=3))
        part1 = accrue(machine, config, T0 + timedelta(hours=1))
        part2 = accrue(part1.machine, config, T0 + timedelta(hours=3))

        assert part1.delta.ticks + part2.delta.ticks == whole.delta.ticks
        assert part1.delta.fuel_consumed + part2.delta.fuel_consumed == whole.delta.fuel_consumed
        assert part2.machine.fuel_oil == whole.machine.fuel_oil
        for mineral in whole.delta.minerals:
            assert part1.delta.minerals[mineral] + part2.delta.minerals[mineral] == whole.delta.minerals[mineral]


class TestClockSkew:
    """Test suite for timestamps that move backwards"""

    def test_now_before_last_processed_is_flagged(self):
        """The machine is left untouched and the delta is zero"""
        machine = make_machine(fuel=10, last=T0)

        result = accrue(machine, scenario_config(), T0 - timedelta(minutes=5))

        assert result.clock_skew
        assert result.delta.is_zero()
        assert result.machine == machine


class TestLevelCurves:
    """Test suite for compounding level multipliers"""

    def test_level_one_uses_base_stats(self):
        config = make_config()
        stats = config.machine("light")

        assert effective_speed(config, "light", 1) == stats.speed_actions_per_hour
        assert effective_burn(config, "light", 1) == stats.oil_burn_per_hour
        assert tank_capacity(config, "light", 1) == stats.tank_capacity

    def test_curves_compound_per_level(self):
        """Stat at level L is base * multiplier ** (L - 1)"""
        config = make_config()

        assert effective_speed(config, "mini", 3) == Decimal("60") * Decimal("1.1") ** 2
        assert effective_burn(config, "mini", 3) == Decimal("5") * Decimal("1.05") ** 2
        assert tank_capacity(config, "mini", 3) == Decimal("60.50000000")

    @pytest.mark.parametrize(
        "multiplier",
        ["level_speed_multiplier", "level_oil_burn_multiplier", "level_capacity_multiplier"],
    )
    def test_zero_multiplier_keeps_base_stats_at_level_one(self, multiplier):
        """A zero multiplier only affects levels above 1"""
        config = make_config({f"progression.{multiplier}": 0})
        stats = config.machine("mini")

        assert effective_speed(config, "mini", 1) == stats.speed_actions_per_hour
        assert effective_burn(config, "mini", 1) == stats.oil_burn_per_hour
        assert tank_capacity(config, "mini", 1) == stats.tank_capacity

    def test_accrue_under_zero_speed_multiplier(self):
        config = make_config({"progression.level_speed_multiplier": 0})

        level_one = accrue(make_machine(fuel=10), config, T0 + timedelta(hours=1))
        level_two = accrue(make_machine(fuel=10, level=2), config, T0 + timedelta(hours=1))

        assert level_one.delta.ticks == 60
        assert level_one.delta.fuel_consumed == 5
        assert level_two.delta.is_zero()


class TestSeededDrops:
    """Test suite for the injected random generator"""

    def test_same_seed_same_drops(self):
        config = make_config()
        machine = make_machine(fuel=50)
        now = T0 + timedelta(hours=5)

        first = accrue(machine, config, now, np.random.default_rng(42))
        second = accrue(machine, config, now, np.random.default_rng(42))

        assert first.delta == second.delta

    def test_sampled_drops_are_bounded_by_ticks(self):
        """Whole ticks are Bernoulli trials, so drops are whole and never exceed the tick count"""
        config = make_config()
        machine = make_machine(fuel=50)

        result = accrue(machine, config, T0 + timedelta(hours=5), np.random.default_rng(7))

        assert result.delta.ticks == 300
        for amount in result.delta.minerals.values():
            assert 0 <= amount <= result.delta.ticks
            assert amount == amount.to_integral_value()

    def test_sampling_does_not_change_fuel_or_clock(self):
        config = make_config()
        machine = make_machine(fuel=50)
        now = T0 + timedelta(hours=5)

        sampled = accrue(machine, config, now, np.random.default_rng(1))
        expected = accrue(machine, config, now)

        assert sampled.machine == expected.machine
        assert sampled.delta.ticks == expected.delta.ticks
