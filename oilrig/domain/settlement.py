"""Round settlement: proportional distribution of a bounded payout pool.

payout_pool = floor(revenue * payout_percentage) + carried_in
payout_i    = floor(payout_pool * claim_i / total_claimed)

Every payout is floored, so their sum never exceeds the pool. The rounding
remainder is reported as `residual` and carried into the next round.
"""

from decimal import Decimal
from typing import List

from oilrig.domain.amounts import ZERO, floor_amount
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.models import (
    ClaimState,
    ClaimStatus,
    PayoutRecord,
    RoundState,
    RoundStatus,
    SettlementResult,
)
from oilrig.domain.outcomes import InvalidRequestError


def _units(amount: Decimal) -> int:
    return int(floor_amount(amount).scaleb(8))


def revenue_pool(revenue: Decimal, config: EconomyConfig) -> Decimal:
    return floor_amount(revenue * config.treasury.payout_percentage)


def settle(
    round_state: RoundState, claims: List[ClaimState], config: EconomyConfig
) -> SettlementResult:
    """Compute payout records for a round that is being settled.

    Args:
        round_state (RoundState): round in `settling` with revenue and carried_in set
        claims (List[ClaimState]): claims collected for the round; only pending ones are paid
        config (EconomyConfig): config snapshot (treasury.payout_percentage)

    Returns:
        SettlementResult: pool figures and one payout record per pending claim
    """
    if round_state.status != RoundStatus.settling:
        raise InvalidRequestError(
            f"Round {round_state.round_id} is {round_state.status.value}, expected settling"
        )
    if round_state.revenue < 0:
        raise InvalidRequestError("Revenue must not be negative")

    pending = [c for c in claims if c.status == ClaimStatus.pending]
    base_pool = revenue_pool(round_state.revenue, config)
    pool = base_pool + round_state.carried_in
    total_claimed = sum((c.diamonds for c in pending), ZERO)

    payouts = []
    if total_claimed > 0:
        # Integer units of 1e-8 keep the floor exact.
        pool_units = _units(pool)
        total_units = _units(total_claimed)
        for claim in pending:
            share_units = pool_units * _units(claim.diamonds) // total_units
            payouts.append(
                PayoutRecord(
                    round_id=round_state.round_id,
                    claim_id=claim.claim_id,
                    player_id=claim.player_id,
                    diamonds=claim.diamonds,
                    amount=Decimal(share_units).scaleb(-8),
                )
            )

    total_paid = sum((p.amount for p in payouts), ZERO)
    return SettlementResult(
        revenue_pool=base_pool,
        carried_in=round_state.carried_in,
        payout_pool=pool,
        total_claimed=total_claimed,
        total_paid=total_paid,
        residual=pool - total_paid,
        payouts=payouts,
    )
