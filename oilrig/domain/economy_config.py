"""Economy configuration: pricing, machine stats, drop tables, caps and curves.

A loaded config is frozen. Admin updates never mutate it; they are merged into
a copy of the raw payload, validated again by `load` and swapped in as a new
version (see `oilrig.config_store`).
"""

import copy
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, Optional

from pydantic import BaseModel, BeforeValidator, Field, ValidationError

from oilrig.domain.amounts import to_amount
from oilrig.domain.outcomes import ConfigValidationError


def _coerce_amount(value):
    if value is None or isinstance(value, bool):
        return value
    try:
        return to_amount(value)
    except (ArithmeticError, TypeError, ValueError):
        raise ValueError(f"{value!r} is not a number")


Amount = Annotated[Decimal, BeforeValidator(_coerce_amount)]


class MachineType(str, Enum):
    mini = "mini"
    light = "light"
    heavy = "heavy"
    mega = "mega"


class Mineral(str, Enum):
    bronze = "bronze"
    silver = "silver"
    gold = "gold"
    iron = "iron"


class _Frozen(BaseModel):
    class Config:
        frozen = True
        extra = "forbid"


class PricingConfig(_Frozen):
    oil_per_wld: Amount = Field(ge=0)
    oil_per_usdc: Amount = Field(ge=0)
    usdc_to_wld_rate: Optional[Amount] = Field(default=None, ge=0)


class MachineStats(_Frozen):
    cost_oil: Amount = Field(gt=0)
    speed_actions_per_hour: Amount = Field(ge=0)
    oil_burn_per_hour: Amount = Field(ge=0)
    tank_capacity: Amount = Field(ge=0)
    max_level: int = Field(ge=1)


class MineralReward(_Frozen):
    drop_rate: Amount = Field(ge=0, le=1)
    oil_value: Amount = Field(ge=0)


class DiamondReward(_Frozen):
    drop_rate_per_action: Amount = Field(ge=0, le=1)


class ActionRewards(_Frozen):
    minerals: Dict[str, MineralReward]
    diamond: DiamondReward


class MiningConfig(_Frozen):
    action_rewards: ActionRewards


class DiamondControls(_Frozen):
    daily_cap_per_user: Amount = Field(ge=0)
    # Excess diamonds are converted, never dropped, so the rate must be positive.
    excess_diamond_oil_value: Amount = Field(gt=0)


class ProgressionConfig(_Frozen):
    level_speed_multiplier: Amount = Field(ge=0)
    level_oil_burn_multiplier: Amount = Field(ge=0)
    level_capacity_multiplier: Amount = Field(ge=0)
    upgrade_cost_multiplier: Amount = Field(gt=1)


class CashoutConfig(_Frozen):
    enabled: bool = False
    minimum_diamonds_required: Amount = Field(default=Decimal("0"), ge=0)
    cooldown_days: Amount = Field(default=Decimal("0"), ge=0)


class TreasuryConfig(_Frozen):
    payout_percentage: Amount = Field(ge=0, le=1)


class SlotsConfig(_Frozen):
    base_slots: int = Field(default=10, ge=0)
    max_total_slots: int = Field(default=30, ge=0)
    slot_pack_price_wld: Amount = Field(default=Decimal("1"), gt=0)
    slot_pack_size: int = Field(default=5, ge=1)


class EconomyConfig(_Frozen):
    version: int = Field(default=1, ge=1)
    pricing: PricingConfig
    machines: Dict[str, MachineStats]
    mining: MiningConfig
    diamond_controls: DiamondControls
    progression: ProgressionConfig
    cashout: CashoutConfig = CashoutConfig()
    treasury: TreasuryConfig
    slots: SlotsConfig = SlotsConfig()

    def machine(self, machine_type: str) -> MachineStats:
        return self.machines[str(getattr(machine_type, "value", machine_type))]

    def to_raw(self) -> dict:
        """JSON-safe payload (Decimals as strings) that `load` accepts back."""
        return self.model_dump(mode="json")


DEFAULT_ECONOMY = {
    "pricing": {"oil_per_wld": 1000, "oil_per_usdc": 800, "usdc_to_wld_rate": "0.8"},
    "machines": {
        "mini": {"cost_oil": 100, "speed_actions_per_hour": 60, "oil_burn_per_hour": 5, "tank_capacity": 50, "max_level": 10},
        "light": {"cost_oil": 500, "speed_actions_per_hour": 120, "oil_burn_per_hour": 10, "tank_capacity": 120, "max_level": 10},
        "heavy": {"cost_oil": 2000, "speed_actions_per_hour": 300, "oil_burn_per_hour": 25, "tank_capacity": 300, "max_level": 15},
        "mega": {"cost_oil": 10000, "speed_actions_per_hour": 900, "oil_burn_per_hour": 60, "tank_capacity": 800, "max_level": 20},
    },
    "mining": {
        "action_rewards": {
            "minerals": {
                "bronze": {"drop_rate": "0.5", "oil_value": 1},
                "silver": {"drop_rate": "0.25", "oil_value": 3},
                "gold": {"drop_rate": "0.05", "oil_value": 20},
                "iron": {"drop_rate": "0.4", "oil_value": 2},
            },
            "diamond": {"drop_rate_per_action": "0.001"},
        }
    },
    "diamond_controls": {"daily_cap_per_user": 5, "excess_diamond_oil_value": 50},
    "progression": {
        "level_speed_multiplier": "1.1",
        "level_oil_burn_multiplier": "1.05",
        "level_capacity_multiplier": "1.1",
        "upgrade_cost_multiplier": "1.5",
    },
    "cashout": {"enabled": True, "minimum_diamonds_required": 10, "cooldown_days": 7},
    "treasury": {"payout_percentage": "0.5"},
    "slots": {"base_slots": 10, "max_total_slots": 30, "slot_pack_price_wld": 1, "slot_pack_size": 5},
}


def _field_path(loc) -> str:
    return ".".join(str(part) for part in loc) or "config"


def load(raw: dict) -> EconomyConfig:
    """Validate a raw config payload.

    Args:
        raw (dict): JSON-like payload, numbers may be int, float, str or Decimal

    Raises:
        ConfigValidationError: the first violated invariant, identified by field path

    Returns:
        EconomyConfig: frozen config
    """
    if not isinstance(raw, dict):
        raise ConfigValidationError("config", "must be an object")
    try:
        config = EconomyConfig.model_validate(raw)
    except ValidationError as e:
        error = e.errors()[0]
        raise ConfigValidationError(_field_path(error["loc"]), error["msg"]) from e

    expected_types = {t.value for t in MachineType}
    if set(config.machines) != expected_types:
        raise ConfigValidationError(
            "machines", f"must define exactly {sorted(expected_types)}"
        )
    expected_minerals = {m.value for m in Mineral}
    if set(config.mining.action_rewards.minerals) != expected_minerals:
        raise ConfigValidationError(
            "mining.action_rewards.minerals",
            f"must define exactly {sorted(expected_minerals)}",
        )
    if config.slots.max_total_slots < config.slots.base_slots:
        raise ConfigValidationError(
            "slots.max_total_slots", "must be greater than or equal to slots.base_slots"
        )
    return config


def merge_updates(base: dict, updates: dict) -> dict:
    """Deep-merge `updates` into a copy of `base`.

    Keys may be nested objects or dotted paths (``"diamond_controls.daily_cap_per_user"``),
    the form the admin console sends.
    """
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        target = merged
        parts = key.split(".")
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        leaf = parts[-1]
        if isinstance(value, dict) and isinstance(target.get(leaf), dict):
            target[leaf] = merge_updates(target[leaf], value)
        else:
            target[leaf] = copy.deepcopy(value)
    return merged
