"""Ledger rules: crediting accruals under the daily diamond cap, mineral
exchange and OIL purchases.

Diamonds beyond the daily cap change form (into OIL at
`excess_diamond_oil_value`); they are never dropped.
"""

from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Optional, Tuple, Union

from oilrig.domain.amounts import ZERO, check_amount, floor_amount, round_amount
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.models import CreditReport, LedgerState, ResourceDelta
from oilrig.domain.outcomes import ErrorCode, InvalidRequestError, Rejection, reject

DAILY_WINDOW = timedelta(hours=24)

SUPPORTED_CURRENCIES = ("wld", "usdc")


def roll_daily_window(ledger: LedgerState, now: datetime) -> LedgerState:
    """Reset the daily diamond counter once `now` has left the 24h window."""
    started = ledger.daily_diamond_window_started_at
    if started is not None and now - started >= DAILY_WINDOW:
        return ledger.model_copy(
            update={"daily_diamond_count": ZERO, "daily_diamond_window_started_at": None}
        )
    return ledger


def apply_accrual(
    ledger: LedgerState, delta: ResourceDelta, config: EconomyConfig, now: datetime
) -> Tuple[LedgerState, CreditReport]:
    """Credit one machine's resource delta.

    Args:
        ledger (LedgerState): ledger before the credit
        delta (ResourceDelta): output of `accrue`
        config (EconomyConfig): config snapshot of the current operation
        now (datetime): operation time

    Returns:
        Tuple[LedgerState, CreditReport]: updated ledger and how the diamonds landed
    """
    ledger = roll_daily_window(ledger, now)

    minerals = dict(ledger.minerals)
    progress = dict(ledger.mineral_progress)
    credited_minerals = {}
    for mineral, amount in delta.minerals.items():
        carried = progress.get(mineral, ZERO) + amount
        whole = int(carried.to_integral_value(rounding=ROUND_DOWN))
        minerals[mineral] = minerals.get(mineral, 0) + whole
        progress[mineral] = carried - whole
        credited_minerals[mineral] = whole

    controls = config.diamond_controls
    room = max(controls.daily_cap_per_user - ledger.daily_diamond_count, ZERO)
    credited = min(delta.diamonds, room)
    excess = delta.diamonds - credited
    oil_from_excess = floor_amount(excess * controls.excess_diamond_oil_value)

    window_started = ledger.daily_diamond_window_started_at
    if credited > 0 and window_started is None:
        window_started = now

    updated = ledger.model_copy(
        update={
            "minerals": minerals,
            "mineral_progress": progress,
            "diamond_balance": ledger.diamond_balance + credited,
            "daily_diamond_count": ledger.daily_diamond_count + credited,
            "daily_diamond_window_started_at": window_started,
            "oil_balance": ledger.oil_balance + oil_from_excess,
        }
    )
    report = CreditReport(
        minerals_credited=credited_minerals,
        diamonds_raw=delta.diamonds,
        diamonds_credited=credited,
        diamonds_converted=excess,
        oil_from_excess=oil_from_excess,
    )
    return updated, report


def exchange_minerals(
    ledger: LedgerState, mineral: str, amount: int, config: EconomyConfig
) -> Union[LedgerState, Rejection]:
    """Sell whole minerals for OIL at the mineral's configured value."""
    rewards = config.mining.action_rewards.minerals
    if mineral not in rewards:
        raise InvalidRequestError(f"Unknown mineral: {mineral}")
    if amount <= 0:
        raise InvalidRequestError("Amount must be positive")

    held = ledger.minerals.get(mineral, 0)
    if held < amount:
        return reject(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Not enough {mineral}: have {held}, need {amount}",
        )
    minerals = dict(ledger.minerals)
    minerals[mineral] = held - amount
    return ledger.model_copy(
        update={
            "minerals": minerals,
            "oil_balance": ledger.oil_balance + amount * rewards[mineral].oil_value,
        }
    )


def credit_oil_purchase(
    ledger: LedgerState, amount: Decimal, currency: str, config: EconomyConfig
) -> Tuple[LedgerState, Decimal, Optional[Decimal]]:
    """Credit OIL bought with real currency.

    Returns:
        Tuple[LedgerState, Decimal, Optional[Decimal]]: updated ledger, OIL credited and the
        revenue in WLD (None when a USDC purchase has no exchange rate configured)
    """
    if currency not in SUPPORTED_CURRENCIES:
        raise InvalidRequestError(f"Unsupported currency: {currency}")
    check_amount(amount)

    pricing = config.pricing
    if currency == "wld":
        oil = floor_amount(amount * pricing.oil_per_wld)
        revenue_wld = round_amount(amount)
    else:
        oil = floor_amount(amount * pricing.oil_per_usdc)
        revenue_wld = (
            round_amount(amount * pricing.usdc_to_wld_rate)
            if pricing.usdc_to_wld_rate is not None
            else None
        )
    updated = ledger.model_copy(update={"oil_balance": ledger.oil_balance + oil})
    return updated, oil, revenue_wld


def machine_slots(ledger: LedgerState, config: EconomyConfig) -> int:
    """How many machines the player may own."""
    slots = config.slots
    return min(slots.base_slots + ledger.purchased_slots, slots.max_total_slots)


def credit_slot_purchase(
    ledger: LedgerState, packs: int, config: EconomyConfig
) -> Union[Tuple[LedgerState, int, Decimal], Rejection]:
    """Add machine slots bought in packs with WLD.

    A purchase that would raise the slots above `max_total_slots` is rejected
    whole; packs are never split.

    Returns:
        Union[Tuple[LedgerState, int, Decimal], Rejection]: updated ledger, slots added and
        the revenue in WLD, or SLOT_LIMIT
    """
    if packs <= 0:
        raise InvalidRequestError("Packs must be positive")

    slots = config.slots
    added = packs * slots.slot_pack_size
    if slots.base_slots + ledger.purchased_slots + added > slots.max_total_slots:
        return reject(
            ErrorCode.SLOT_LIMIT,
            f"{added} more slots would exceed the limit of {slots.max_total_slots}",
        )
    revenue_wld = round_amount(packs * slots.slot_pack_price_wld)
    updated = ledger.model_copy(update={"purchased_slots": ledger.purchased_slots + added})
    return updated, added, revenue_wld
