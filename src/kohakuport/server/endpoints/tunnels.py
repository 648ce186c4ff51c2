"""
Tunnel lifecycle endpoints.

Handles:
- Listing live endpoints
- Creating a tunnel intent (followed by an immediate convergence pass)
- Removing a live tunnel synchronously through the session cache
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from kohakuport.adapters.exceptions import AdapterError, TunnelError
from kohakuport.models.requests import (
    CreateTunnelRequest,
    CreateTunnelResponse,
    EndpointResponse,
    IntentResponse,
)
from kohakuport.server.state import PortServices, get_services
from kohakuport.services.exceptions import (
    ConvergeError,
    ConvergeTimeout,
    EndpointNotFoundError,
    ManagerClosedError,
)
from kohakuport.storage.exceptions import StorePersistenceError
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()

Services = Annotated[PortServices, Depends(get_services)]


def endpoint_table(endpoints: dict) -> dict[str, EndpointResponse]:
    return {
        container_id: EndpointResponse.from_endpoint(endpoint)
        for container_id, endpoint in endpoints.items()
    }


@router.get("/tunnels", response_model=list[EndpointResponse])
async def list_tunnels(services: Services):
    """List live tunnel endpoints."""
    endpoints = await services.session.list()
    return [EndpointResponse.from_endpoint(ep) for ep in endpoints]


@router.post(
    "/tunnels",
    response_model=CreateTunnelResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tunnel(body: CreateTunnelRequest, services: Services):
    """
    Record a tunnel intent and converge right away.

    The intent is stored even when the immediate pass cannot open the
    forwarder; the error is reported and later passes keep retrying.
    """
    logger.info(
        f"Creating tunnel for container {body.container_id} port {body.target_port}"
    )
    try:
        intent = services.store.set(body.to_intent())
    except StorePersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    try:
        await services.manager.converge(timeout=services.converge_timeout)
    except ManagerClosedError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except (ConvergeError, ConvergeTimeout, AdapterError) as e:
        logger.warning(f"Convergence after creating {intent.container_id} failed: {e}")

    endpoint = await services.session.get(intent.container_id)
    error = None
    if endpoint is None:
        error = services.manager.container_errors.get(
            intent.container_id, "container is not running or not yet converged"
        )

    return CreateTunnelResponse(
        intent=IntentResponse.from_intent(intent),
        endpoint=EndpointResponse.from_endpoint(endpoint) if endpoint else None,
        error=error,
    )


@router.delete("/tunnels/{container_id}", response_model=dict[str, EndpointResponse])
async def remove_tunnel(container_id: str, services: Services):
    """
    Close a container's tunnel now.

    The intent is kept; use ``DELETE /intents/{container_id}`` to stop the
    tunnel for good. Returns the remaining tunnel table.
    """
    if not container_id:
        raise HTTPException(status_code=400, detail="container is required")

    try:
        remaining = await services.manager.remove_endpoint(container_id)
    except EndpointNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except TunnelError as e:
        logger.error(f"Failed to close tunnel for {container_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e

    return endpoint_table(remaining)
