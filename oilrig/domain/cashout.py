"""Cashout claims: converting diamonds into a pending payout claim.

Diamonds are reserved (debited) when the claim is created so the same
balance cannot be claimed twice; an admin rejection refunds them.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Union
from uuid import UUID

from pydantic import BaseModel

from oilrig.domain.amounts import check_amount, floor_amount
from oilrig.domain.economy_config import EconomyConfig
from oilrig.domain.models import ClaimState, ClaimStatus, LedgerState
from oilrig.domain.outcomes import ErrorCode, InvalidRequestError, Rejection, reject


class CashoutResult(BaseModel):
    claim: ClaimState
    ledger: LedgerState


class RejectionRefund(BaseModel):
    claim: ClaimState
    ledger: LedgerState


def request(
    ledger: LedgerState,
    amount: Decimal,
    config: EconomyConfig,
    now: datetime,
    claim_id: UUID,
) -> Union[CashoutResult, Rejection]:
    """Validate a cashout request and reserve the diamonds.

    Checks run in a fixed order: enabled, amount shape, minimum, cooldown,
    balance. The cooldown is checked before the balance so that a second
    request inside the cooldown is always ON_COOLDOWN.
    """
    rules = config.cashout
    if not rules.enabled:
        return reject(ErrorCode.DISABLED, "Cashout is disabled")

    check_amount(amount, "Cashout amount")
    if floor_amount(amount) != amount:
        raise InvalidRequestError("Cashout amount has too many decimal places")

    if amount < rules.minimum_diamonds_required:
        return reject(
            ErrorCode.BELOW_MINIMUM,
            f"Minimum {rules.minimum_diamonds_required} diamonds required",
        )

    if ledger.cashout_cooldown_until is not None and now < ledger.cashout_cooldown_until:
        return reject(
            ErrorCode.ON_COOLDOWN,
            f"Next cashout available at {ledger.cashout_cooldown_until.isoformat()}",
        )

    if ledger.diamond_balance < amount:
        return reject(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Requested {amount} diamonds, balance is {ledger.diamond_balance}",
        )

    claim = ClaimState(
        claim_id=claim_id,
        player_id=ledger.player_id,
        diamonds=amount,
        status=ClaimStatus.pending,
        created_at=now,
    )
    reserved = ledger.model_copy(
        update={
            "diamond_balance": ledger.diamond_balance - amount,
            "cashout_cooldown_until": now + timedelta(days=float(rules.cooldown_days)),
        }
    )
    return CashoutResult(claim=claim, ledger=reserved)


def reject_claim(
    claim: ClaimState, ledger: LedgerState, now: datetime
) -> RejectionRefund:
    """Reject a pending claim and give the reserved diamonds back.

    Raises:
        InvalidRequestError: the claim is already settled or rejected
    """
    if claim.status != ClaimStatus.pending:
        raise InvalidRequestError(f"Claim {claim.claim_id} is already {claim.status.value}")
    if claim.player_id != ledger.player_id:
        raise InvalidRequestError("Claim belongs to another player")

    rejected = claim.model_copy(
        update={"status": ClaimStatus.rejected, "resolved_at": now}
    )
    refunded = ledger.model_copy(
        update={"diamond_balance": ledger.diamond_balance + claim.diamonds}
    )
    return RejectionRefund(claim=rejected, ledger=refunded)
