"""
Docker container adapter using docker-py SDK.

This module provides DockerContainerAdapter, the ContainerAdapter
implementation used in production. docker-py is blocking, so every call is
run with asyncio.to_thread and bounded by a timeout; a hung daemon surfaces
as AdapterUnavailable instead of stalling a convergence pass.
"""

import asyncio
from typing import Iterator

import docker
from docker.errors import DockerException
from docker.models.containers import Container

from kohakuport.adapters.exceptions import AdapterUnavailable
from kohakuport.models.tunnel import ContainerSnapshot
from kohakuport.utils.logger import get_logger

log = get_logger(__name__)

# Container lifecycle events that can change the set of tunnelable containers
LIFECYCLE_EVENTS = ("start", "restart", "unpause", "die", "stop", "pause", "destroy")


def published_host_ports(container: Container) -> tuple[int, ...]:
    """
    Extract the host ports a container publishes.

    ``container.ports`` looks like
    ``{"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}], "443/tcp": None}``;
    the same host port usually appears once per address family.
    """
    ports: set[int] = set()
    for bindings in (container.ports or {}).values():
        for binding in bindings or []:
            host_port = binding.get("HostPort")
            if host_port and str(host_port).isdigit():
                ports.add(int(host_port))
    return tuple(sorted(ports))


def to_snapshot(container: Container) -> ContainerSnapshot:
    return ContainerSnapshot(
        container_id=container.id,
        name=container.name,
        published_ports=published_host_ports(container),
        labels=dict(container.labels or {}),
        running=container.status == "running",
    )


# =============================================================================
# DockerContainerAdapter Class
# =============================================================================


class DockerContainerAdapter:
    """
    Reads running containers from the Docker daemon.

    Attributes:
        client: The docker-py client instance.
        timeout: Per-call timeout in seconds.
    """

    def __init__(self, timeout: float = 10.0, client: docker.DockerClient | None = None):
        """
        Initialize Docker client.

        Args:
            timeout: Request timeout in seconds.
            client: Pre-built client, mainly for tests.

        Raises:
            AdapterUnavailable: If connection to Docker daemon fails.
        """
        self.timeout = timeout
        if client is not None:
            self.client = client
            return

        try:
            self.client = docker.from_env(timeout=int(timeout))
            self.client.ping()
            log.debug("Docker client initialized successfully")
        except (DockerException, OSError) as e:
            log.error(f"Failed to connect to Docker daemon: {e}")
            raise AdapterUnavailable(f"Failed to connect to Docker: {e}") from e

    # =========================================================================
    # ContainerAdapter
    # =========================================================================

    def _list_running_sync(self) -> list[ContainerSnapshot]:
        containers = self.client.containers.list(filters={"status": "running"})
        return [to_snapshot(c) for c in containers]

    async def list_running(self) -> list[ContainerSnapshot]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._list_running_sync), self.timeout
            )
        except asyncio.TimeoutError as e:
            raise AdapterUnavailable(
                f"Docker did not answer within {self.timeout}s"
            ) from e
        except (DockerException, OSError) as e:
            raise AdapterUnavailable(f"Failed to list containers: {e}") from e

    # =========================================================================
    # Events
    # =========================================================================

    def lifecycle_events(self) -> Iterator[dict]:
        """
        Blocking stream of container lifecycle events.

        The returned generator has a ``close()`` method that ends the stream
        from another thread.
        """
        return self.client.events(
            decode=True,
            filters={"type": "container", "event": list(LIFECYCLE_EVENTS)},
        )

    def close(self) -> None:
        try:
            self.client.close()
        except (DockerException, OSError) as e:
            log.debug(f"Error closing Docker client: {e}")
