"""
Pydantic models for API requests and responses.

This module defines the data transfer objects used between the CLI, the
HTTP API and any other client of the tunnel lifecycle API.

Model Categories:
    - Tunnel Requests: Intent creation
    - Tunnel Responses: Endpoint and intent views
    - Status Responses: Convergence reports and service status
"""

import datetime

from pydantic import BaseModel, Field

from kohakuport.models.enums import ConvergeOutcome, Protocol
from kohakuport.models.tunnel import Endpoint, TunnelIntent


# =============================================================================
# Tunnel Request Models
# =============================================================================


class CreateTunnelRequest(BaseModel):
    """Request body for creating (or replacing) a tunnel intent."""

    container_id: str = Field(..., min_length=1, description="Container ID or name")
    target_port: int = Field(..., ge=1, le=65535, description="Port to expose")
    protocol: Protocol | None = Field(
        default=None,
        description="Protocol override, skips detection when set",
    )
    url: str | None = Field(default=None, description="Reserved public URL")
    pooling_enabled: bool = Field(
        default=False,
        description="Load balance across endpoints sharing the same URL",
    )
    description: str = Field(default="", max_length=255)
    metadata: str = Field(default="", max_length=4096)

    def to_intent(self) -> TunnelIntent:
        return TunnelIntent(
            container_id=self.container_id,
            target_port=self.target_port,
            protocol_override=(
                self.protocol
                if self.protocol and self.protocol != Protocol.UNKNOWN
                else None
            ),
            url=self.url or None,
            pooling_enabled=self.pooling_enabled,
            description=self.description,
            metadata=self.metadata,
        )


# =============================================================================
# Tunnel Response Models
# =============================================================================


class EndpointResponse(BaseModel):
    """Public view of a live endpoint."""

    id: str
    url: str
    container_id: str
    target_port: int
    protocol: Protocol
    created_at: datetime.datetime | None = None

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> "EndpointResponse":
        return cls(
            id=endpoint.forwarder_id,
            url=endpoint.forwarder_url,
            container_id=endpoint.container_id,
            target_port=endpoint.target_port,
            protocol=endpoint.protocol,
            created_at=endpoint.created_at,
        )


class IntentResponse(BaseModel):
    """Public view of a stored tunnel intent."""

    container_id: str
    target_port: int
    protocol_override: Protocol | None = None
    url: str | None = None
    pooling_enabled: bool = False
    description: str = ""
    metadata: str = ""
    created_at: datetime.datetime | None = None

    @classmethod
    def from_intent(cls, intent: TunnelIntent) -> "IntentResponse":
        return cls(
            container_id=intent.container_id,
            target_port=intent.target_port,
            protocol_override=intent.protocol_override,
            url=intent.url,
            pooling_enabled=intent.pooling_enabled,
            description=intent.description,
            metadata=intent.metadata,
            created_at=intent.created_at,
        )


class CreateTunnelResponse(BaseModel):
    """Result of a tunnel creation request."""

    intent: IntentResponse
    endpoint: EndpointResponse | None = None
    error: str | None = Field(
        default=None,
        description="Last error for this container; retried automatically",
    )


# =============================================================================
# Status Response Models
# =============================================================================


class ConvergeReportResponse(BaseModel):
    """Summary of one convergence pass."""

    outcome: ConvergeOutcome
    started_at: datetime.datetime
    finished_at: datetime.datetime | None = None
    opened: list[str] = Field(default_factory=list)
    closed: list[str] = Field(default_factory=list)
    adopted: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


class StatusResponse(BaseModel):
    """Service status overview."""

    version: str
    endpoint_count: int
    intent_count: int
    last_converge: ConvergeReportResponse | None = None
    container_errors: dict[str, str] = Field(default_factory=dict)
