"""
HTTP tests for the player and admin routers

Tests cover:
- Admin key guard
- Status mapping of rejections and domain errors
- A round trip through purchase, upgrade, cashout and settlement
- Slot packs and out-of-range amounts
- The daily round job
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock
from oilrig.create_sqlite_engine import create_sqlite_engine
from oilrig.main import create_app, schedule_daily_rounds
from oilrig.services.settlement_db import SettlementService

ADMIN = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(tmp_path, clock):
    app = create_app(
        engine=create_sqlite_engine(tmp_path / "api.sqlite3"),
        admin_key="test-admin-key",
        seed="1",
        clock=clock,
        start_scheduler=False,
    )
    with TestClient(app) as test_client:
        yield test_client


def fund(client, player_id, amount="1"):
    response = client.post(
        f"/admin/players/{player_id}/oil-purchases",
        json={"amount": amount, "currency": "wld"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    return response.json()


class TestAdminGuard:
    """Test suite for the X-Admin-Key header"""

    def test_missing_key(self, client):
        assert client.get("/admin/config").status_code == 401

    def test_wrong_key(self, client):
        response = client.get("/admin/config", headers={"X-Admin-Key": "nope"})
        assert response.status_code == 401

    def test_seeded_config(self, client):
        response = client.get("/admin/config", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["version"] == 1
        assert set(response.json()["machines"]) == {"mini", "light", "heavy", "mega"}


class TestPlayerRoutes:
    """Test suite for player actions over HTTP"""

    def test_purchase_and_upgrade(self, client):
        player_id = uuid4()
        assert float(fund(client, player_id)["snapshot"]["oil_balance"]) == 1000

        bought = client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})
        assert bought.status_code == 200
        machine_id = bought.json()["machine_id"]

        upgraded = client.post(f"/players/{player_id}/machines/{machine_id}/upgrade")
        assert upgraded.status_code == 200
        machine = upgraded.json()["snapshot"]["machines"][0]
        assert machine["level"] == 2

        snapshot = client.get(f"/players/{player_id}").json()
        assert float(snapshot["oil_balance"]) == 750
        assert snapshot["machines"][0]["machine_id"] == machine_id

    def test_rejection_is_conflict_with_code(self, client):
        player_id = uuid4()
        fund(client, player_id, amount="0.05")

        response = client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INSUFFICIENT_FUNDS"

    def test_unknown_machine_is_404(self, client):
        player_id = uuid4()
        fund(client, player_id)

        response = client.post(f"/players/{player_id}/machines/{uuid4()}/upgrade")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    def test_unknown_machine_type_is_rejected_by_schema(self, client):
        response = client.post(f"/players/{uuid4()}/machines", json={"machine_type": "giga"})
        assert response.status_code == 422

    def test_cashout_below_minimum(self, client):
        player_id = uuid4()
        fund(client, player_id)

        response = client.post(f"/players/{player_id}/cashout", json={"amount": "1"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "BELOW_MINIMUM"

    def test_refuel_full_tank_is_bad_request(self, client):
        player_id = uuid4()
        fund(client, player_id)
        machine_id = client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"}).json()["machine_id"]

        response = client.post(f"/players/{player_id}/machines/{machine_id}/refuel")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION"

    def test_cashout_amount_out_of_range_is_bad_request(self, client):
        player_id = uuid4()
        fund(client, player_id)

        response = client.post(f"/players/{player_id}/cashout", json={"amount": "1e25"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION"

    def test_slot_limit_is_conflict(self, client):
        player_id = uuid4()
        fund(client, player_id, amount="2")
        for _ in range(10):
            client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})

        response = client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "SLOT_LIMIT"


class TestAdminRoutes:
    """Test suite for config, rounds and claims over HTTP"""

    def test_invalid_config_update_names_field(self, client):
        response = client.patch(
            "/admin/config", json={"treasury.payout_percentage": 3}, headers=ADMIN
        )

        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "treasury.payout_percentage"
        assert client.get("/admin/config", headers=ADMIN).json()["version"] == 1

    def test_config_update_bumps_version(self, client):
        response = client.patch(
            "/admin/config", json={"cashout": {"minimum_diamonds_required": 1}}, headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert float(response.json()["cashout"]["minimum_diamonds_required"]) == 1

    def test_round_lifecycle(self, client, clock):
        client.patch(
            "/admin/config",
            json={
                "mining.action_rewards.diamond.drop_rate_per_action": 1,
                "diamond_controls.daily_cap_per_user": 100,
            },
            headers=ADMIN,
        )
        opened = client.post("/admin/rounds", headers=ADMIN)
        assert opened.status_code == 200
        round_id = opened.json()["round_id"]

        player_id = uuid4()
        fund(client, player_id)
        client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})
        clock.advance(hours=1)
        claim = client.post(f"/players/{player_id}/cashout", json={"amount": "20"})
        assert claim.status_code == 200
        assert claim.json()["claim"]["status"] == "pending"

        settled = client.post(f"/admin/rounds/{round_id}/settle", json={"revenue": "100"}, headers=ADMIN)
        assert settled.status_code == 200
        body = settled.json()
        assert body["status"] == "closed"
        assert len(body["payouts"]) == 1
        assert float(body["payouts"][0]["amount"]) == 50

        payout_id = body["payouts"][0]["payout_id"]
        paid = client.post(f"/admin/payouts/{payout_id}/paid", json={"transfer_ref": "tx-9"}, headers=ADMIN)
        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"

        again = client.post(f"/admin/rounds/{round_id}/settle", headers=ADMIN)
        assert again.status_code == 400

    def test_reject_claim_refunds(self, client, clock):
        client.patch(
            "/admin/config",
            json={
                "mining.action_rewards.diamond.drop_rate_per_action": 1,
                "diamond_controls.daily_cap_per_user": 100,
            },
            headers=ADMIN,
        )
        player_id = uuid4()
        fund(client, player_id)
        client.post(f"/players/{player_id}/machines", json={"machine_type": "mini"})
        clock.advance(hours=1)
        claim = client.post(f"/players/{player_id}/cashout", json={"amount": "20"}).json()
        balance_after_claim = float(claim["snapshot"]["diamond_balance"])

        rejected = client.post(f"/admin/claims/{claim['claim']['claim_id']}/reject", headers=ADMIN)

        assert rejected.status_code == 200
        assert rejected.json()["claim"]["status"] == "rejected"
        assert float(rejected.json()["snapshot"]["diamond_balance"]) == balance_after_claim + 20

    def test_unknown_round_is_404(self, client):
        response = client.get(f"/admin/rounds/{uuid4()}", headers=ADMIN)
        assert response.status_code == 404

    def test_oil_purchase_out_of_range_is_bad_request(self, client):
        response = client.post(
            f"/admin/players/{uuid4()}/oil-purchases",
            json={"amount": "1e25", "currency": "wld"},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION"

    def test_slot_purchase(self, client):
        player_id = uuid4()

        bought = client.post(f"/admin/players/{player_id}/slot-purchases", json={"packs": 2}, headers=ADMIN)
        refused = client.post(f"/admin/players/{player_id}/slot-purchases", json={"packs": 3}, headers=ADMIN)

        assert bought.status_code == 200
        assert bought.json()["slots_added"] == 10
        assert bought.json()["snapshot"]["machine_slots"] == 20
        assert refused.status_code == 409
        assert refused.json()["detail"]["code"] == "SLOT_LIMIT"


class TestDailyRoundJob:
    """Test suite for the scheduler that opens the daily round"""

    def test_job_runs_in_utc_now(self):
        async def build():
            return schedule_daily_rounds(SettlementService(None, None))

        scheduler = asyncio.run(build())
        job = scheduler.get_jobs()[0]

        assert str(scheduler.timezone) == "UTC"
        assert abs(job.next_run_time - datetime.now(timezone.utc)) < timedelta(minutes=1)
