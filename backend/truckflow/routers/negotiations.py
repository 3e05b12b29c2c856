"""API routes for reviewing and closing rate negotiations."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from truckflow.core.auth import DispatcherContext, get_dispatcher_context
from truckflow.core.deps import get_storage
from truckflow.core.errors import NotFoundError
from truckflow.core.logging import logger
from truckflow.models.fleet import AlertType
from truckflow.models.negotiation import (
    Negotiation,
    NegotiationStatus,
    NegotiationUpdateRequest,
    TERMINAL_NEGOTIATION_STATUSES,
)
from truckflow.services.storage import MemoryStorage

router = APIRouter(prefix="/api/negotiations", tags=["negotiations"])


@router.get("", response_model=List[Negotiation])
def list_negotiations(
    load_id: Optional[int] = Query(default=None),
    storage: MemoryStorage = Depends(get_storage),
) -> List[Negotiation]:
    return storage.list_negotiations(load_id=load_id)


@router.get("/{negotiation_id}", response_model=Negotiation)
def get_negotiation(negotiation_id: int, storage: MemoryStorage = Depends(get_storage)) -> Negotiation:
    try:
        return storage.get_negotiation(negotiation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.patch("/{negotiation_id}", response_model=Negotiation)
def update_negotiation(
    negotiation_id: int,
    request: NegotiationUpdateRequest,
    context: DispatcherContext = Depends(get_dispatcher_context),
    storage: MemoryStorage = Depends(get_storage),
) -> Negotiation:
    """Record a broker's answer by hand. Closed negotiations cannot be reopened."""
    try:
        current = storage.get_negotiation(negotiation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    if current.status in TERMINAL_NEGOTIATION_STATUSES and request.status != current.status:
        raise HTTPException(
            status_code=409,
            detail=f"Negotiation {negotiation_id} is already {current.status.value}",
        )
    if request.status == NegotiationStatus.ACCEPTED and request.final_rate is None:
        raise HTTPException(status_code=400, detail="final_rate is required when accepting")

    negotiation = storage.update_negotiation_status(negotiation_id, request.status, request.final_rate)
    logger.info(
        "Negotiation updated",
        negotiation_id=negotiation_id,
        status=negotiation.status.value,
        final_rate=negotiation.final_rate,
        actor=context.actor,
    )

    if request.status == NegotiationStatus.ACCEPTED:
        storage.create_alert(
            AlertType.SUCCESS,
            "Rate negotiation successful",
            f"Final rate: ${request.final_rate:,.2f}",
        )
    return negotiation
