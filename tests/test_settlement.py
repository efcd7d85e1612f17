"""
Unit tests for round settlement

Tests cover:
- The reference payout example
- Boundedness of the total payout
- Residual and carried-in amounts
- Only pending claims are paid
"""

from decimal import Decimal
from uuid import uuid4

import numpy as np
import pytest

from conftest import T0, make_config
from oilrig.domain.models import ClaimState, ClaimStatus, RoundState, RoundStatus
from oilrig.domain.outcomes import InvalidRequestError
from oilrig.domain.settlement import settle


def make_round(revenue, carried_in="0", status=RoundStatus.settling):
    return RoundState(
        round_id=uuid4(),
        status=status,
        revenue=Decimal(str(revenue)),
        carried_in=Decimal(str(carried_in)),
    )


def make_claim(diamonds, status=ClaimStatus.pending):
    return ClaimState(
        claim_id=uuid4(),
        player_id=uuid4(),
        diamonds=Decimal(str(diamonds)),
        status=status,
        created_at=T0,
    )


class TestSettlement:
    """Test suite for the proportional distribution"""

    def test_reference_example(self):
        """revenue 1000 at 50% -> pool 500; claims 300/700 -> 150/350"""
        config = make_config()
        claims = [make_claim(300), make_claim(700)]

        result = settle(make_round(1000), claims, config)

        assert result.payout_pool == 500
        assert [p.amount for p in result.payouts] == [Decimal("150"), Decimal("350")]
        assert result.total_paid == 500
        assert result.residual == 0

    def test_rounding_remainder_becomes_residual(self):
        config = make_config()
        claims = [make_claim(1), make_claim(1), make_claim(1)]

        result = settle(make_round(2), claims, config)

        assert all(p.amount == Decimal("0.33333333") for p in result.payouts)
        assert result.residual == Decimal("0.00000001")
        assert result.total_paid + result.residual == result.payout_pool

    def test_carried_in_is_added_to_pool(self):
        result = settle(make_round(100, carried_in="0.5"), [make_claim(10)], make_config())

        assert result.revenue_pool == 50
        assert result.payout_pool == Decimal("50.5")
        assert result.payouts[0].amount == Decimal("50.5")

    def test_no_claims_keeps_whole_pool(self):
        result = settle(make_round(1000), [], make_config())

        assert result.payouts == []
        assert result.residual == 500

    def test_only_pending_claims_are_paid(self):
        claims = [make_claim(10), make_claim(10, status=ClaimStatus.rejected)]

        result = settle(make_round(40), claims, make_config())

        assert len(result.payouts) == 1
        assert result.total_claimed == 10
        assert result.payouts[0].amount == 20

    @pytest.mark.parametrize("seed", range(5))
    def test_total_payout_never_exceeds_pool(self, seed):
        """Boundedness over irregular claim sizes"""
        rng = np.random.default_rng(seed)
        claims = [
            make_claim(Decimal(int(rng.integers(1, 10 ** 9))).scaleb(-6))
            for _ in range(int(rng.integers(1, 40)))
        ]
        config = make_config({"treasury.payout_percentage": "0.37"})

        result = settle(make_round("12345.6789", carried_in="0.00000007"), claims, config)

        assert result.total_paid <= result.payout_pool
        assert result.residual >= 0
        assert result.total_paid + result.residual == result.payout_pool
        for payout in result.payouts:
            assert payout.amount == payout.amount.quantize(Decimal("0.00000001"))

    def test_round_must_be_settling(self):
        with pytest.raises(InvalidRequestError):
            settle(make_round(10, status=RoundStatus.open), [make_claim(1)], make_config())
