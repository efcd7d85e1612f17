import logging
from contextlib import asynccontextmanager
from typing import Optional

import numpy as np
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from oilrig.config_store import ConfigStore
from oilrig.db import create_engine, create_session_factory
from oilrig.domain.outcomes import ConfigValidationError, EconomyError
from oilrig.load_secrets import admin_access_key, rng_seed
from oilrig.models.schemas import Base
from oilrig.player_locks import PlayerLockManager
from oilrig.routers import admin, game
from oilrig.routers.game import rejection_status
from oilrig.services.ledger_db import LedgerService
from oilrig.services.settlement_db import SettlementService
from oilrig.time_utils import utc_now

logging.basicConfig(level=logging.INFO)


async def economy_error_handler(request: Request, exc: EconomyError) -> JSONResponse:
    detail = {"code": exc.code.value, "message": exc.message}
    if isinstance(exc, ConfigValidationError):
        detail["field"] = exc.field
    return JSONResponse(status_code=rejection_status(exc.code), content={"detail": detail})


def schedule_daily_rounds(settlement_service: SettlementService) -> AsyncIOScheduler:
    """Scheduler that opens the day's cashout round now and then every 24h.
    Runs in UTC like every other timestamp of the service.
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        settlement_service.open_round_for_today,
        "interval",
        hours=24,
        next_run_time=utc_now(),
    )
    return scheduler


def create_app(
    engine: Optional[AsyncEngine] = None,
    admin_key: Optional[str] = admin_access_key,
    seed: Optional[str] = rng_seed,
    clock=utc_now,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the application and its services

    Args:
        engine (Optional[AsyncEngine]): Database engine. Defaults to PostgreSQL when DB_HOST is set, SQLite otherwise.
        admin_key (Optional[str]): Expected X-Admin-Key value; admin routes are closed without one
        seed (Optional[str]): Seed of the drop generator
        clock: Returns the naive UTC time of an operation
        start_scheduler (bool): Open the daily cashout round every 24h

    Returns:
        FastAPI: The application
    """
    engine = engine or create_engine()
    Session = create_session_factory(engine)
    config_store = ConfigStore(Session)
    generator = np.random.default_rng(int(seed) if seed else None)

    ledger_service = LedgerService(
        Session,
        config_store,
        PlayerLockManager(),
        clock=clock,
        rng_factory=lambda: generator,
    )
    settlement_service = SettlementService(Session, config_store, clock=clock)

    @asynccontextmanager
    async def lifespan(app):
        """Create the tables, load (or seed) the economy config and start the daily round job.
        This function is called to start the server.
        """
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await config_store.load_or_seed()

        scheduler = None
        if start_scheduler:
            scheduler = schedule_daily_rounds(settlement_service)
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None and scheduler.running:
                scheduler.shutdown()
            await engine.dispose()
            logging.info("Stop Server")

    app = FastAPI(lifespan=lifespan)
    app.state.admin_key = admin_key
    app.state.config_store = config_store
    app.state.ledger_service = ledger_service
    app.state.settlement_service = settlement_service
    app.add_exception_handler(EconomyError, economy_error_handler)
    app.include_router(game.game_router)
    app.include_router(admin.admin_router)
    return app


app = create_app()


# if __name__ == "__main__":
#     uvicorn.run(app, host="0.0.0.0", port=8080)
