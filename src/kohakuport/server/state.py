"""
Shared service container for the API.

The composition root builds one PortServices and attaches it to the FastAPI
application; endpoint modules reach it through the ``get_services``
dependency instead of module globals.
"""

from dataclasses import dataclass

from fastapi import Request

from kohakuport.services.manager import ConvergenceManager
from kohakuport.services.session import SessionCache
from kohakuport.storage.intents import IntentStore


@dataclass
class PortServices:
    """Everything request handlers need, wired once at startup."""

    store: IntentStore
    session: SessionCache
    manager: ConvergenceManager
    version: str = "unknown"
    converge_timeout: float | None = 30.0


def get_services(request: Request) -> PortServices:
    return request.app.state.services
