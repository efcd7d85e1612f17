import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from oilrig.domain.outcomes import ErrorCode, Rejection
from oilrig.models.dc_models import (
    ActionResult,
    CashoutRequestModel,
    ExchangeMineralsModel,
    LedgerSnapshot,
    PurchaseMachineModel,
    RefuelModel,
)
from oilrig.services.ledger_db import LedgerService

game_router = APIRouter(prefix="/players", tags=["players"])

REJECTION_STATUS = {
    ErrorCode.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def rejection_status(code: ErrorCode) -> int:
    """Business rejections are conflicts unless the code says otherwise."""
    return REJECTION_STATUS.get(code, status.HTTP_409_CONFLICT)


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def unwrap(result: ActionResult) -> ActionResult:
    """Raise the rejection of a failed action as an HTTPException

    Args:
        result (ActionResult): Outcome returned by the ledger service

    Raises:
        HTTPException: {"code": ..., "message": ...} with the status of the rejection code

    Returns:
        ActionResult: The successful result
    """
    if result.ok:
        return result
    error: Rejection = result.error
    logging.info(f"Rejected {error.code.value}: {error.message}")
    raise HTTPException(
        status_code=rejection_status(error.code),
        detail={"code": error.code.value, "message": error.message},
    )


class PlayerAPI:
    @staticmethod
    @game_router.get("/{player_id}", response_model=LedgerSnapshot)
    async def get_player(player_id: UUID, service: LedgerService = Depends(get_ledger_service)):
        return await service.get_snapshot(player_id)

    @staticmethod
    @game_router.post("/{player_id}/process", response_model=ActionResult)
    async def process_machines(player_id: UUID, service: LedgerService = Depends(get_ledger_service)):
        """Accrue every machine of the player up to now

        Args:
            player_id (UUID): To identify the player
        """
        return unwrap(await service.process_machines(player_id))

    @staticmethod
    @game_router.post("/{player_id}/machines", response_model=ActionResult)
    async def purchase_machine(
        player_id: UUID,
        purchase: PurchaseMachineModel,
        service: LedgerService = Depends(get_ledger_service),
    ):
        return unwrap(await service.purchase_machine(player_id, purchase.machine_type.value))

    @staticmethod
    @game_router.post("/{player_id}/machines/{machine_id}/upgrade", response_model=ActionResult)
    async def upgrade_machine(
        player_id: UUID, machine_id: UUID, service: LedgerService = Depends(get_ledger_service)
    ):
        return unwrap(await service.upgrade_machine(player_id, machine_id))

    @staticmethod
    @game_router.post("/{player_id}/machines/{machine_id}/refuel", response_model=ActionResult)
    async def refuel_machine(
        player_id: UUID,
        machine_id: UUID,
        refuel: Optional[RefuelModel] = None,
        service: LedgerService = Depends(get_ledger_service),
    ):
        """Fill the tank from the OIL balance. Without an amount the tank is filled up."""
        amount = refuel.amount if refuel is not None else None
        return unwrap(await service.refuel_machine(player_id, machine_id, amount))

    @staticmethod
    @game_router.post("/{player_id}/machines/{machine_id}/start", response_model=ActionResult)
    async def start_machine(
        player_id: UUID, machine_id: UUID, service: LedgerService = Depends(get_ledger_service)
    ):
        return unwrap(await service.start_machine(player_id, machine_id))

    @staticmethod
    @game_router.post("/{player_id}/machines/{machine_id}/stop", response_model=ActionResult)
    async def stop_machine(
        player_id: UUID, machine_id: UUID, service: LedgerService = Depends(get_ledger_service)
    ):
        return unwrap(await service.stop_machine(player_id, machine_id))

    @staticmethod
    @game_router.post("/{player_id}/minerals/exchange", response_model=ActionResult)
    async def exchange_minerals(
        player_id: UUID,
        exchange: ExchangeMineralsModel,
        service: LedgerService = Depends(get_ledger_service),
    ):
        return unwrap(await service.exchange_minerals(player_id, exchange.mineral.value, exchange.amount))

    @staticmethod
    @game_router.post("/{player_id}/cashout", response_model=ActionResult)
    async def request_cashout(
        player_id: UUID,
        cashout: CashoutRequestModel,
        service: LedgerService = Depends(get_ledger_service),
    ):
        return unwrap(await service.request_cashout(player_id, cashout.amount))
