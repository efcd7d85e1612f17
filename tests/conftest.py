"""Shared helpers for the oilrig test suites."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from oilrig.config_store import ConfigStore
from oilrig.create_sqlite_engine import create_sqlite_engine
from oilrig.db import create_session_factory
from oilrig.domain.economy_config import DEFAULT_ECONOMY, load, merge_updates
from oilrig.domain.models import LedgerState, MachineState
from oilrig.models.schemas import Base
from oilrig.player_locks import PlayerLockManager
from oilrig.services.ledger_db import LedgerService
from oilrig.services.settlement_db import SettlementService

T0 = datetime(2025, 1, 1, 12, 0, 0)


def make_config(updates=None):
    """Default economy with (dotted or nested) overrides applied."""
    return load(merge_updates(DEFAULT_ECONOMY, updates or {}))


def scenario_config(burn_per_hour=1):
    """mini: 2 actions/hour, `burn_per_hour` OIL/hour, 10 OIL tank, gold drops at 0.5."""
    return make_config(
        {
            "machines.mini.speed_actions_per_hour": 2,
            "machines.mini.oil_burn_per_hour": burn_per_hour,
            "machines.mini.tank_capacity": 10,
            "mining.action_rewards.minerals.gold.drop_rate": "0.5",
        }
    )


def make_machine(fuel=10, level=1, active=True, last=T0, machine_type="mini"):
    return MachineState(
        machine_id=uuid4(),
        machine_type=machine_type,
        level=level,
        fuel_oil=Decimal(str(fuel)),
        is_active=active,
        last_processed_at=last,
    )


def make_ledger(oil=0, diamonds=0, **kwargs):
    return LedgerState(
        player_id=kwargs.pop("player_id", uuid4()),
        oil_balance=Decimal(str(oil)),
        diamond_balance=Decimal(str(diamonds)),
        **kwargs,
    )


class FakeClock:
    """Controllable naive-UTC clock for the service layer."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class Services:
    def __init__(self, engine, config_store, ledger, settlement, clock):
        self.engine = engine
        self.config_store = config_store
        self.ledger = ledger
        self.settlement = settlement
        self.clock = clock


async def build_services(db_path, config=None, clock=None):
    """Create the schema in a fresh SQLite file and wire the services to it."""
    engine = create_sqlite_engine(db_path)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = create_session_factory(engine)
    clock = clock or FakeClock()
    config_store = ConfigStore(Session, config or make_config())
    ledger = LedgerService(Session, config_store, PlayerLockManager(), clock=clock)
    settlement = SettlementService(Session, config_store, clock=clock)
    return Services(engine, config_store, ledger, settlement, clock)


@pytest.fixture
def run_services(tmp_path):
    """Run `scenario(services)` against a fresh database and return its result."""

    def run(scenario, config=None, clock=None):
        async def main():
            services = await build_services(tmp_path / "oilrig.sqlite3", config, clock)
            try:
                return await scenario(services)
            finally:
                await services.engine.dispose()

        return asyncio.run(main())

    return run
