import logging
import secrets
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status

from oilrig.config_store import ConfigStore
from oilrig.models.dc_models import (
    ActionResult,
    OilPurchaseModel,
    OpenRoundModel,
    PayoutPaidModel,
    SettleRoundModel,
    SlotPurchaseModel,
)
from oilrig.models.schema_models import PayoutSchema, RoundSchema
from oilrig.routers.game import get_ledger_service, unwrap
from oilrig.services.ledger_db import LedgerService
from oilrig.services.settlement_db import SettlementService


def check_admin_key(request: Request, x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Check the X-Admin-Key header against the configured access key

    Raises:
        HTTPException: No key is configured, or the header is missing or wrong
    """
    expected: Optional[str] = request.app.state.admin_key
    if not expected or x_admin_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin key required",
        )
    if not secrets.compare_digest(x_admin_key.encode(), expected.encode()):
        logging.warning("Rejected admin request with an invalid key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )


admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(check_admin_key)])


def get_config_store(request: Request) -> ConfigStore:
    return request.app.state.config_store


def get_settlement_service(request: Request) -> SettlementService:
    return request.app.state.settlement_service


class AdminAPI:
    @staticmethod
    @admin_router.get("/config")
    async def get_config(store: ConfigStore = Depends(get_config_store)) -> Dict[str, Any]:
        return store.get_config().to_raw()

    @staticmethod
    @admin_router.patch("/config")
    async def set_config(
        updates: Dict[str, Any] = Body(...),
        store: ConfigStore = Depends(get_config_store),
    ) -> Dict[str, Any]:
        """Apply a partial config update as a new version

        Args:
            updates (Dict[str, Any]): Nested objects or dotted keys, e.g. {"treasury.payout_percentage": 0.4}
        """
        config = await store.set_config(updates)
        return config.to_raw()

    @staticmethod
    @admin_router.post("/rounds", response_model=RoundSchema)
    async def open_round(
        open_round: Optional[OpenRoundModel] = None,
        service: SettlementService = Depends(get_settlement_service),
    ):
        round_date = open_round.round_date if open_round is not None else None
        return await service.open_round(round_date)

    @staticmethod
    @admin_router.get("/rounds/{round_id}", response_model=RoundSchema)
    async def get_round(round_id: UUID, service: SettlementService = Depends(get_settlement_service)):
        return await service.get_round(round_id)

    @staticmethod
    @admin_router.post("/rounds/{round_id}/settle", response_model=RoundSchema)
    async def settle_round(
        round_id: UUID,
        settle: Optional[SettleRoundModel] = None,
        service: SettlementService = Depends(get_settlement_service),
    ):
        """Settle a round. Without revenue, the purchases no earlier round has taken are used."""
        revenue = settle.revenue if settle is not None else None
        return await service.settle_round(round_id, revenue)

    @staticmethod
    @admin_router.post("/claims/{claim_id}/reject", response_model=ActionResult)
    async def reject_claim(claim_id: UUID, service: LedgerService = Depends(get_ledger_service)):
        return unwrap(await service.reject_claim(claim_id))

    @staticmethod
    @admin_router.post("/payouts/{payout_id}/paid", response_model=PayoutSchema)
    async def mark_payout_paid(
        payout_id: UUID,
        paid: PayoutPaidModel,
        service: SettlementService = Depends(get_settlement_service),
    ):
        return await service.mark_payout_paid(payout_id, paid.transfer_ref)

    @staticmethod
    @admin_router.post("/players/{player_id}/oil-purchases", response_model=ActionResult)
    async def confirm_oil_purchase(
        player_id: UUID,
        purchase: OilPurchaseModel,
        service: LedgerService = Depends(get_ledger_service),
    ):
        return unwrap(await service.confirm_oil_purchase(player_id, purchase.amount, purchase.currency.value))

    @staticmethod
    @admin_router.post("/players/{player_id}/slot-purchases", response_model=ActionResult)
    async def confirm_slot_purchase(
        player_id: UUID,
        purchase: Optional[SlotPurchaseModel] = None,
        service: LedgerService = Depends(get_ledger_service),
    ):
        packs = purchase.packs if purchase is not None else 1
        return unwrap(await service.confirm_slot_purchase(player_id, packs))
