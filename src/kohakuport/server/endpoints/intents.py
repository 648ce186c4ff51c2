"""Desired-state (intent) endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from kohakuport.models.requests import EndpointResponse, IntentResponse
from kohakuport.server.endpoints.tunnels import endpoint_table
from kohakuport.server.state import PortServices, get_services
from kohakuport.storage.exceptions import StorePersistenceError
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()

Services = Annotated[PortServices, Depends(get_services)]


@router.get("/intents", response_model=list[IntentResponse])
async def list_intents(services: Services):
    """List stored tunnel intents."""
    return [IntentResponse.from_intent(i) for i in services.store.list()]


@router.get("/intents/{container_id}", response_model=IntentResponse)
async def get_intent(container_id: str, services: Services):
    intent = services.store.get(container_id)
    if intent is None:
        raise HTTPException(status_code=404, detail=f"No intent for {container_id}")
    return IntentResponse.from_intent(intent)


@router.delete("/intents/{container_id}", response_model=dict[str, EndpointResponse])
async def cancel_intent(container_id: str, services: Services):
    """Delete an intent and close its tunnel. Returns the remaining table."""
    if services.store.get(container_id) is None:
        raise HTTPException(status_code=404, detail=f"No intent for {container_id}")

    logger.info(f"Cancelling tunnel intent for container {container_id}")
    try:
        remaining = await services.manager.cancel_intent(container_id)
    except StorePersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return endpoint_table(remaining)
