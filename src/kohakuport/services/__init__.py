"""Convergence core services: the manager and the shared session cache."""

from kohakuport.services.exceptions import (
    ConvergeError,
    ConvergeTimeout,
    EndpointNotFoundError,
    ManagerClosedError,
    ManagerError,
)
from kohakuport.services.manager import ConvergenceManager, ConvergeReport
from kohakuport.services.session import SessionCache

__all__ = [
    "ConvergenceManager",
    "ConvergeReport",
    "SessionCache",
    "ManagerError",
    "ConvergeError",
    "ConvergeTimeout",
    "ManagerClosedError",
    "EndpointNotFoundError",
]
