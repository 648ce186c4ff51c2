"""
Capability interfaces for the two external systems.

The convergence core depends only on these protocols; docker-py and the
ngrok agent client live behind them, and tests substitute fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from kohakuport.models.enums import Protocol as TunnelProtocol
from kohakuport.models.tunnel import ContainerSnapshot, Forwarder, ForwarderOptions


@runtime_checkable
class ContainerAdapter(Protocol):
    """Read-only view over the container runtime."""

    async def list_running(self) -> list[ContainerSnapshot]:
        """
        Enumerate running containers.

        Raises:
            AdapterUnavailable: If the runtime cannot be reached.
        """
        ...


@runtime_checkable
class TunnelAdapter(Protocol):
    """Forwarder lifecycle operations on the tunneling service."""

    async def open(
        self,
        target: str,
        protocol: TunnelProtocol,
        options: ForwarderOptions,
    ) -> Forwarder:
        """
        Open a forwarder for a local target.

        Raises:
            QuotaExceeded, InvalidTarget, ServiceUnavailable
        """
        ...

    async def close(self, forwarder_id: str) -> None:
        """Close a forwarder. Closing an already closed forwarder succeeds."""
        ...

    async def list_open(self) -> list[Forwarder]:
        """
        List forwarders managed by this service.

        Raises:
            ServiceUnavailable: If the tunneling service cannot be reached.
        """
        ...
