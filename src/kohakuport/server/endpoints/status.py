"""
Convergence and status endpoints.

Handles explicit convergence triggers and the service status overview
(last pass result and per-container errors).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from kohakuport.adapters.exceptions import AdapterError
from kohakuport.models.requests import ConvergeReportResponse, StatusResponse
from kohakuport.server.state import PortServices, get_services
from kohakuport.services.exceptions import (
    ConvergeError,
    ConvergeTimeout,
    ManagerClosedError,
)
from kohakuport.services.manager import ConvergeReport

router = APIRouter()

Services = Annotated[PortServices, Depends(get_services)]


def report_response(report: ConvergeReport) -> ConvergeReportResponse:
    return ConvergeReportResponse(
        outcome=report.outcome,
        started_at=report.started_at,
        finished_at=report.finished_at,
        opened=report.opened,
        closed=report.closed,
        adopted=report.adopted,
        errors=report.errors,
    )


@router.post("/converge", response_model=ConvergeReportResponse)
async def converge_now(services: Services):
    """Run a convergence pass now and return its report."""
    try:
        report = await services.manager.converge(timeout=services.converge_timeout)
    except ConvergeError as e:
        # Every item failed; the report still describes what was tried
        report = e.report
    except ConvergeTimeout as e:
        raise HTTPException(status_code=504, detail=str(e)) from e
    except (AdapterError, ManagerClosedError) as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return report_response(report)


@router.get("/status", response_model=StatusResponse)
async def get_status(services: Services):
    """Service status overview."""
    last = services.manager.last_report
    return StatusResponse(
        version=services.version,
        endpoint_count=len(await services.session.list()),
        intent_count=len(services.store),
        last_converge=report_response(last) if last else None,
        container_errors=services.manager.container_errors,
    )
