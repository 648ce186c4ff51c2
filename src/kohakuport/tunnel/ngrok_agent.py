"""
ngrok tunnel adapter.

Talks to the local ngrok agent API (``/api/tunnels``) with httpx. Only
tunnels whose name carries the managed prefix are reported by
``list_open``; the container id is encoded after the prefix, which lets a
restarted process recognise forwarders left behind by a previous run.

Agent API summary:
    GET    /api/tunnels          -> {"tunnels": [...]}
    POST   /api/tunnels          -> 201, tunnel object
    GET    /api/tunnels/{name}   -> tunnel object
    DELETE /api/tunnels/{name}   -> 204
"""

import httpx

from kohakuport.adapters.exceptions import (
    ForwarderNotFound,
    InvalidTarget,
    QuotaExceeded,
    ServiceUnavailable,
)
from kohakuport.models.enums import Protocol
from kohakuport.models.tunnel import Forwarder, ForwarderOptions
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)

# Error markers the agent relays from the ngrok service when a limit is hit
QUOTA_MARKERS = ("ERR_NGROK_108", "ERR_NGROK_324", "limited to", "simultaneous")

# Legacy agents register one tunnel per scheme with these suffixes
_NAME_SUFFIXES = (" (http)", " (https)")


# =============================================================================
# Helpers
# =============================================================================


def agent_proto(protocol: Protocol) -> str:
    """Map a detected protocol onto the agent's tunnel proto."""
    match protocol:
        case Protocol.HTTP | Protocol.HTTPS:
            return "http"
        case Protocol.TLS:
            return "tls"
        case _:
            return "tcp"


def agent_addr(target: str, protocol: Protocol) -> str:
    """HTTPS upstreams need the scheme so the agent speaks TLS to them."""
    if protocol == Protocol.HTTPS and not target.startswith("https://"):
        return f"https://{target}"
    return target


def _strip_scheme(url: str) -> str:
    return url.split("://", 1)[-1].rstrip("/")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    details = body.get("details") or {}
    message = body.get("msg") or ""
    err = details.get("err") if isinstance(details, dict) else ""
    return f"{message}: {err}" if err else message or response.text


# =============================================================================
# NgrokAgentAdapter Class
# =============================================================================


class NgrokAgentAdapter:
    """
    TunnelAdapter implementation backed by the ngrok agent API.

    Attributes:
        prefix: Name prefix marking forwarders owned by this service.
    """

    def __init__(
        self,
        agent_url: str = "http://127.0.0.1:4040",
        prefix: str = "kohakuport-",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.prefix = prefix
        self.client = httpx.AsyncClient(
            base_url=agent_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    def forwarder_name(self, container_id: str) -> str:
        return f"{self.prefix}{container_id}"

    def container_from_name(self, name: str) -> str | None:
        for suffix in _NAME_SUFFIXES:
            if name.endswith(suffix):
                name = name[: -len(suffix)]
        if not name.startswith(self.prefix):
            return None
        return name[len(self.prefix) :] or None

    def _to_forwarder(self, data: dict) -> Forwarder:
        name = data.get("name", "")
        addr = (data.get("config") or {}).get("addr", "")
        proto = data.get("proto", "")
        match proto:
            case "http" | "https":
                protocol = Protocol.HTTPS if addr.startswith("https://") else Protocol.HTTP
            case "tls":
                protocol = Protocol.TLS
            case "tcp":
                protocol = Protocol.TCP
            case _:
                protocol = Protocol.UNKNOWN
        return Forwarder(
            id=name,
            url=data.get("public_url", ""),
            target=_strip_scheme(addr) if addr else "",
            protocol=protocol,
            container_id=self.container_from_name(name),
        )

    def _build_body(
        self, target: str, protocol: Protocol, options: ForwarderOptions
    ) -> dict:
        body: dict = {
            "name": options.name,
            "proto": agent_proto(protocol),
            "addr": agent_addr(target, protocol),
        }
        if options.url:
            if protocol == Protocol.TCP:
                body["remote_addr"] = _strip_scheme(options.url)
            else:
                body["domain"] = _strip_scheme(options.url)
        if options.pooling_enabled:
            body["pooling_enabled"] = True
        metadata = options.metadata or options.description
        if metadata:
            body["metadata"] = metadata
        return body

    # =========================================================================
    # TunnelAdapter
    # =========================================================================

    async def open(
        self, target: str, protocol: Protocol, options: ForwarderOptions
    ) -> Forwarder:
        if not protocol.is_known:
            raise InvalidTarget(target, "cannot open a forwarder with unknown protocol")

        body = self._build_body(target, protocol, options)
        logger.debug(f"[ngrok] Opening {body['proto']} forwarder {options.name} -> {target}")

        try:
            response = await self.client.post("/api/tunnels", json=body)
        except httpx.RequestError as e:
            raise ServiceUnavailable(f"ngrok agent unreachable: {e}") from e

        if response.status_code in (200, 201):
            return self._to_forwarder(response.json())

        message = _error_message(response)
        if any(marker in message for marker in QUOTA_MARKERS):
            raise QuotaExceeded(message)
        if "already exists" in message:
            # Deduplicate: the agent already runs a forwarder with this name
            existing = await self.get(options.name)
            if existing.target != _strip_scheme(target):
                raise InvalidTarget(
                    target, f"{options.name} already forwards to {existing.target}"
                )
            logger.debug(f"[ngrok] Forwarder {options.name} exists, reusing it")
            return existing
        if 400 <= response.status_code < 500:
            raise InvalidTarget(target, message)
        raise ServiceUnavailable(f"ngrok agent error {response.status_code}: {message}")

    async def get(self, forwarder_id: str) -> Forwarder:
        try:
            response = await self.client.get(f"/api/tunnels/{forwarder_id}")
        except httpx.RequestError as e:
            raise ServiceUnavailable(f"ngrok agent unreachable: {e}") from e
        if response.status_code == 404:
            raise ForwarderNotFound(forwarder_id)
        if response.status_code >= 400:
            raise ServiceUnavailable(
                f"ngrok agent error {response.status_code}: {_error_message(response)}"
            )
        return self._to_forwarder(response.json())

    async def close(self, forwarder_id: str) -> None:
        try:
            response = await self.client.delete(f"/api/tunnels/{forwarder_id}")
        except httpx.RequestError as e:
            raise ServiceUnavailable(f"ngrok agent unreachable: {e}") from e

        if response.status_code in (200, 204, 404):
            logger.debug(f"[ngrok] Closed forwarder {forwarder_id}")
            return
        raise ServiceUnavailable(
            f"Failed to close {forwarder_id}: "
            f"{response.status_code} {_error_message(response)}"
        )

    async def list_open(self) -> list[Forwarder]:
        try:
            response = await self.client.get("/api/tunnels")
            response.raise_for_status()
        except httpx.RequestError as e:
            raise ServiceUnavailable(f"ngrok agent unreachable: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ServiceUnavailable(
                f"ngrok agent error {e.response.status_code}: "
                f"{_error_message(e.response)}"
            ) from e

        forwarders = [self._to_forwarder(t) for t in response.json().get("tunnels", [])]
        return [f for f in forwarders if f.container_id is not None]

    async def aclose(self) -> None:
        await self.client.aclose()
