"""
Application-layer protocol detection.

Probes a ``host:port`` address to decide which kind of forwarder it needs:

1. Plain connect. Refused, unresolvable or timed out -> UNKNOWN.
2. Send an HTTP ``HEAD`` request. An ``HTTP/`` status line -> HTTP.
3. Attempt a TLS handshake (no verification). Success plus an ``HTTP/``
   answer inside the session -> HTTPS, success without one -> TLS.
4. Anything else that accepted the connection -> TCP.

Detection never raises. Every step is bounded by the detector timeout and
the whole probe by its deadline, which gives UNKNOWN when exceeded. There
are no retries. The convergence manager re-detects on its next pass.
"""

import asyncio
import contextlib
import ssl

from kohakuport.models.enums import Protocol
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)

HTTP_SIGNATURE = b"HTTP/"
PROBE_READ_BYTES = 64


def split_address(address: str) -> tuple[str, int]:
    """
    Split ``host:port`` (or ``[v6]:port``) into its parts.

    Raises:
        ValueError: If the address has no valid port.
    """
    address = address.split("://", 1)[-1]
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Address has no port: {address!r}")
    return host.strip("[]") or "localhost", int(port)


def _http_probe(host: str, port: int) -> bytes:
    return (
        f"HEAD / HTTP/1.1\r\n"
        f"Host: {host}:{port}\r\n"
        f"User-Agent: kohakuport-detect\r\n"
        f"Connection: close\r\n\r\n"
    ).encode()


def _insecure_tls_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    ctx.set_alpn_protocols(["http/1.1"])
    return ctx


# =============================================================================
# ProtocolDetector Class
# =============================================================================


class ProtocolDetector:
    """
    Classifies what a TCP endpoint speaks.

    Attributes:
        timeout: Bound for each connect, handshake and read step, in seconds.
        deadline: Bound for the whole detection, in seconds.
    """

    def __init__(self, timeout: float = 2.0, deadline: float = 3.0):
        self.timeout = timeout
        self.deadline = deadline

    async def detect(self, address: str) -> Protocol:
        """Detect the protocol at ``address``; returns UNKNOWN instead of raising."""
        try:
            host, port = split_address(address)
        except ValueError as e:
            logger.warning(f"[detect] {e}")
            return Protocol.UNKNOWN

        try:
            protocol = await asyncio.wait_for(self._detect(host, port), self.deadline)
        except asyncio.TimeoutError:
            logger.debug(f"[detect] Probe of {address} exceeded {self.deadline}s")
            protocol = Protocol.UNKNOWN
        except Exception as e:
            logger.debug(f"[detect] Probe of {address} failed unexpectedly: {e}")
            protocol = Protocol.UNKNOWN

        logger.debug(f"[detect] {address} -> {protocol.value}")
        return protocol

    async def _detect(self, host: str, port: int) -> Protocol:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"[detect] {host}:{port} not reachable: {e}")
            return Protocol.UNKNOWN

        try:
            if await self._speaks_http(reader, writer, host, port):
                return Protocol.HTTP
        finally:
            await self._close(writer)

        tls = await self._probe_tls(host, port)
        return tls if tls is not None else Protocol.TCP

    async def _speaks_http(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
    ) -> bool:
        try:
            writer.write(_http_probe(host, port))
            await asyncio.wait_for(writer.drain(), self.timeout)
            head = await asyncio.wait_for(reader.read(PROBE_READ_BYTES), self.timeout)
        except (OSError, asyncio.TimeoutError):
            return False
        return head.startswith(HTTP_SIGNATURE)

    async def _probe_tls(self, host: str, port: int) -> Protocol | None:
        """Returns HTTPS/TLS if a handshake succeeds, None otherwise."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=_insecure_tls_context()),
                self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"[detect] {host}:{port} no TLS handshake: {e}")
            return None

        try:
            if await self._speaks_http(reader, writer, host, port):
                return Protocol.HTTPS
            return Protocol.TLS
        finally:
            await self._close(writer)

    async def _close(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        with contextlib.suppress(OSError, asyncio.TimeoutError):
            await asyncio.wait_for(writer.wait_closed(), self.timeout)
