"""Shared fixtures: in-memory adapters and a temporary intent store."""

import asyncio

import pytest

from kohakuport.adapters.exceptions import (
    AdapterUnavailable,
    ServiceUnavailable,
    TunnelError,
)
from kohakuport.models.enums import Protocol
from kohakuport.models.tunnel import ContainerSnapshot, Forwarder, ForwarderOptions
from kohakuport.services.manager import ConvergenceManager
from kohakuport.services.session import SessionCache
from kohakuport.storage.intents import IntentStore

PREFIX = "kohakuport-"


class FakeContainers:
    """ContainerAdapter over a plain list of snapshots."""

    def __init__(self):
        self.containers: list[ContainerSnapshot] = []
        self.unavailable = False

    def run(self, container_id: str, *ports: int, name: str | None = None) -> None:
        self.containers.append(
            ContainerSnapshot(
                container_id=container_id,
                name=name or container_id,
                published_ports=tuple(ports),
            )
        )

    def stop(self, container_id: str) -> None:
        self.containers = [
            c for c in self.containers if c.container_id != container_id
        ]

    async def list_running(self) -> list[ContainerSnapshot]:
        if self.unavailable:
            raise AdapterUnavailable("docker is down")
        return list(self.containers)


class FakeTunnels:
    """TunnelAdapter keeping forwarders in a dict and recording every call."""

    def __init__(self):
        self.forwarders: dict[str, Forwarder] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_open: dict[str, TunnelError] = {}
        self.fail_close: set[str] = set()
        self.unavailable = False
        self.open_delay = 0.0
        self._counter = 0

    @property
    def opened(self) -> list[str]:
        return [arg for op, arg in self.calls if op == "open"]

    @property
    def closed(self) -> list[str]:
        return [arg for op, arg in self.calls if op == "close"]

    def add_leftover(
        self, container_id: str, target: str, protocol: Protocol = Protocol.HTTP
    ) -> Forwarder:
        forwarder = Forwarder(
            id=f"{PREFIX}{container_id}",
            url=f"https://leftover-{container_id}.ngrok.app",
            target=target,
            protocol=protocol,
            container_id=container_id,
        )
        self.forwarders[forwarder.id] = forwarder
        return forwarder

    async def open(
        self, target: str, protocol: Protocol, options: ForwarderOptions
    ) -> Forwarder:
        self.calls.append(("open", options.name))
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if options.name in self.fail_open:
            raise self.fail_open[options.name]

        self._counter += 1
        if protocol == Protocol.TCP:
            url = f"tcp://0.tcp.ngrok.io:{10000 + self._counter}"
        else:
            url = options.url or f"https://t{self._counter}.ngrok.app"
        forwarder = Forwarder(
            id=options.name,
            url=url,
            target=target,
            protocol=protocol,
            container_id=options.name[len(PREFIX) :],
        )
        self.forwarders[forwarder.id] = forwarder
        return forwarder

    async def close(self, forwarder_id: str) -> None:
        self.calls.append(("close", forwarder_id))
        if forwarder_id in self.fail_close:
            raise ServiceUnavailable(f"cannot close {forwarder_id}")
        self.forwarders.pop(forwarder_id, None)

    async def list_open(self) -> list[Forwarder]:
        if self.unavailable:
            raise ServiceUnavailable("agent is down")
        return list(self.forwarders.values())


class FakeDetector:
    """Protocol detector answering from a table."""

    def __init__(self, default: Protocol = Protocol.HTTP):
        self.default = default
        self.results: dict[str, Protocol] = {}
        self.calls: list[str] = []
        self.delay = 0.0

    async def detect(self, address: str) -> Protocol:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.results.get(address, self.default)


@pytest.fixture
def store(tmp_path):
    store = IntentStore(str(tmp_path / "state.db"))
    store.open()
    yield store
    store.close()


@pytest.fixture
def containers():
    return FakeContainers()


@pytest.fixture
def tunnels():
    return FakeTunnels()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def session():
    return SessionCache()


@pytest.fixture
def manager(store, containers, tunnels, detector, session):
    return ConvergenceManager(
        store=store,
        containers=containers,
        tunnels=tunnels,
        detector=detector,
        session=session,
        target_host="localhost",
        forwarder_prefix=PREFIX,
    )
