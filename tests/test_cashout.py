"""
Unit tests for the cashout workflow

Tests cover:
- Check order (disabled, minimum, cooldown, balance)
- Diamond reservation and cooldown
- Admin rejection with refund
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import T0, make_config, make_ledger
from oilrig.domain.cashout import CashoutResult, reject_claim, request
from oilrig.domain.models import ClaimStatus
from oilrig.domain.outcomes import ErrorCode, InvalidRequestError, Rejection


class TestCashoutRequest:
    """Test suite for cashout requests"""

    def test_successful_request_reserves_diamonds(self):
        config = make_config()  # minimum 10, cooldown 7 days
        ledger = make_ledger(diamonds=25)

        result = request(ledger, Decimal("12"), config, T0, uuid4())

        assert isinstance(result, CashoutResult)
        assert result.ledger.diamond_balance == 13
        assert result.claim.diamonds == 12
        assert result.claim.status == ClaimStatus.pending
        assert result.claim.player_id == ledger.player_id
        assert result.claim.round_id is None
        assert result.ledger.cashout_cooldown_until == T0 + timedelta(days=7)

    def test_second_request_inside_cooldown_is_on_cooldown(self):
        """Cooldown is checked before the balance"""
        config = make_config()
        first = request(make_ledger(diamonds=11), Decimal("10"), config, T0, uuid4())

        # Balance is now 1, yet the answer is the cooldown
        second = request(first.ledger, Decimal("10"), config, T0 + timedelta(days=3), uuid4())

        assert isinstance(second, Rejection)
        assert second.code == ErrorCode.ON_COOLDOWN

    def test_request_after_cooldown_expires(self):
        config = make_config()
        first = request(make_ledger(diamonds=30), Decimal("10"), config, T0, uuid4())

        second = request(first.ledger, Decimal("10"), config, T0 + timedelta(days=7), uuid4())

        assert isinstance(second, CashoutResult)
        assert second.ledger.diamond_balance == 10

    def test_below_minimum(self):
        result = request(make_ledger(diamonds=100), Decimal("9.99"), make_config(), T0, uuid4())

        assert isinstance(result, Rejection)
        assert result.code == ErrorCode.BELOW_MINIMUM

    def test_insufficient_diamonds(self):
        ledger = make_ledger(diamonds=5)

        result = request(ledger, Decimal("10"), make_config(), T0, uuid4())

        assert isinstance(result, Rejection)
        assert result.code == ErrorCode.INSUFFICIENT_FUNDS
        assert ledger.cashout_cooldown_until is None

    def test_disabled_wins_over_everything(self):
        config = make_config({"cashout.enabled": False})

        result = request(make_ledger(diamonds=0), Decimal("1"), config, T0, uuid4())

        assert isinstance(result, Rejection)
        assert result.code == ErrorCode.DISABLED

    @pytest.mark.parametrize("amount", ["0", "-5", "10.000000001", "1e25", "Infinity"])
    def test_malformed_amount_is_invalid(self, amount):
        with pytest.raises(InvalidRequestError):
            request(make_ledger(diamonds=100), Decimal(amount), make_config(), T0, uuid4())


class TestClaimRejection:
    """Test suite for admin rejection"""

    def test_rejection_refunds_reserved_diamonds(self):
        config = make_config()
        created = request(make_ledger(diamonds=20), Decimal("15"), config, T0, uuid4())

        refund = reject_claim(created.claim, created.ledger, T0 + timedelta(hours=1))

        assert refund.ledger.diamond_balance == 20
        assert refund.claim.status == ClaimStatus.rejected
        assert refund.claim.resolved_at == T0 + timedelta(hours=1)

    def test_terminal_claim_cannot_be_rejected_twice(self):
        config = make_config()
        created = request(make_ledger(diamonds=20), Decimal("15"), config, T0, uuid4())
        refund = reject_claim(created.claim, created.ledger, T0)

        with pytest.raises(InvalidRequestError):
            reject_claim(refund.claim, refund.ledger, T0)
