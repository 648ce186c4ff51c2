"""
API client for CLI commands.

Provides functions to interact with the KohakuPort API.
Returns structured data instead of printing.
"""

import httpx

from kohakuport.cli import config as cli_config
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)


class APIError(Exception):
    """API request error with status code and detail."""

    def __init__(
        self, message: str, status_code: int | None = None, detail: str | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _make_client() -> httpx.Client:
    """Build a client for either the TCP or the unix socket endpoint."""
    if cli_config.SOCKET_PATH:
        return httpx.Client(
            base_url="http://kohakuport/api",
            transport=httpx.HTTPTransport(uds=cli_config.SOCKET_PATH),
            timeout=60.0,
        )
    return httpx.Client(
        base_url=f"http://{cli_config.HOST_ADDRESS}:{cli_config.HOST_PORT}/api",
        timeout=60.0,
    )


def _handle_http_error(e: httpx.HTTPStatusError, context: str = "request") -> None:
    """Handle HTTP errors with consistent logging."""
    status = e.response.status_code
    try:
        detail = e.response.json()
        detail_str = detail.get("detail", str(detail))
    except ValueError:
        detail_str = e.response.text

    logger.debug(f"HTTP {status} on {context}: {detail_str}")
    raise APIError(
        f"HTTP {status}: {detail_str}", status_code=status, detail=detail_str
    )


def _request(method: str, path: str, context: str, **kwargs):
    try:
        with _make_client() as http:
            response = http.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        _handle_http_error(e, context)
    except httpx.RequestError as e:
        logger.debug(f"Request error: {e}")
        raise APIError(f"Network error: {e}") from e


# =============================================================================
# Tunnel Operations
# =============================================================================


def list_tunnels() -> list[dict]:
    """Get all live tunnel endpoints."""
    return _request("GET", "/tunnels", "list tunnels") or []


def create_tunnel(
    container_id: str,
    target_port: int,
    protocol: str | None = None,
    url: str | None = None,
    pooling_enabled: bool = False,
    description: str = "",
    metadata: str = "",
) -> dict:
    """Create a tunnel intent; the response includes the endpoint if opened."""
    payload = {
        "container_id": container_id,
        "target_port": target_port,
        "protocol": protocol,
        "url": url,
        "pooling_enabled": pooling_enabled,
        "description": description,
        "metadata": metadata,
    }
    return _request("POST", "/tunnels", "create tunnel", json=payload)


def remove_tunnel(container_id: str) -> dict:
    """Close a live tunnel, keeping its intent."""
    return _request("DELETE", f"/tunnels/{container_id}", "remove tunnel")


def cancel_tunnel(container_id: str) -> dict:
    """Delete an intent and close its tunnel."""
    return _request("DELETE", f"/intents/{container_id}", "cancel tunnel")


def list_intents() -> list[dict]:
    """Get all stored intents."""
    return _request("GET", "/intents", "list intents") or []


# =============================================================================
# Status Operations
# =============================================================================


def converge() -> dict:
    """Trigger a convergence pass."""
    return _request("POST", "/converge", "converge")


def get_status() -> dict:
    """Get the service status overview."""
    return _request("GET", "/status", "get status")
