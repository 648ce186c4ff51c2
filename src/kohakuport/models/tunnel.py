"""Data models for tunnel state tracked by the convergence core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from kohakuport.models.enums import Protocol

SHORT_ID_LENGTH = 12


@dataclass(frozen=True)
class TunnelIntent:
    """A user's durable request that a container port be tunneled."""

    container_id: str
    target_port: int
    protocol_override: Protocol | None = None
    url: str | None = None  # reserved/custom public URL, None = random
    pooling_enabled: bool = False
    description: str = ""
    metadata: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    def with_changes(self, **changes) -> TunnelIntent:
        return replace(self, **changes)


@dataclass(frozen=True)
class ForwarderOptions:
    """Per-forwarder settings passed through to the tunneling service."""

    name: str
    url: str | None = None
    pooling_enabled: bool = False
    description: str = ""
    metadata: str = ""


@dataclass(frozen=True)
class ContainerSnapshot:
    """Live view of one container, read fresh on every convergence pass."""

    container_id: str
    name: str
    published_ports: tuple[int, ...] = ()
    labels: dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    running: bool = True

    def matches(self, key: str) -> bool:
        """Check if an intent key refers to this container (id, short id or name)."""
        if not key:
            return False
        if key == self.container_id or key == self.name:
            return True
        return len(key) >= SHORT_ID_LENGTH and self.container_id.startswith(key)


@dataclass(frozen=True)
class Forwarder:
    """A forwarder open in the tunneling service."""

    id: str
    url: str
    target: str = ""
    protocol: Protocol = Protocol.UNKNOWN
    container_id: str | None = None  # decoded from the managed name


@dataclass(frozen=True)
class Endpoint:
    """Live record of an open forwarder serving a container port."""

    container_id: str
    target_port: int
    forwarder_id: str
    forwarder_url: str
    protocol: Protocol
    target: str = ""
    url_requested: str | None = None
    pooling_enabled: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    def satisfies(self, intent: TunnelIntent) -> bool:
        """Whether this endpoint still implements the given intent unchanged."""
        if intent.target_port != self.target_port:
            return False
        if intent.protocol_override and intent.protocol_override != self.protocol:
            return False
        if intent.url != self.url_requested:
            return False
        return intent.pooling_enabled == self.pooling_enabled
