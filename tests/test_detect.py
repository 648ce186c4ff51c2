"""Protocol detection against loopback servers."""

import asyncio
import socket
import ssl
from pathlib import Path

import pytest

from kohakuport.detect.protocol import ProtocolDetector, split_address
from kohakuport.models.enums import Protocol


@pytest.mark.parametrize(
    "address, expected",
    [
        ("localhost:8080", ("localhost", 8080)),
        ("127.0.0.1:80", ("127.0.0.1", 80)),
        ("[::1]:443", ("::1", 443)),
        ("http://example.com:8000", ("example.com", 8000)),
        (":9000", ("localhost", 9000)),
    ],
)
def test_split_address(address, expected):
    assert split_address(address) == expected


@pytest.mark.parametrize("address", ["localhost", "localhost:http", ""])
def test_split_address_requires_port(address):
    with pytest.raises(ValueError):
        split_address(address)


async def _http_handler(reader, writer):
    await reader.readuntil(b"\r\n\r\n")
    writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\n\r\n")
    await writer.drain()
    writer.close()


async def _banner_handler(reader, writer):
    writer.write(b"SSH-2.0-OpenSSH_9.6\r\n")
    await writer.drain()
    await reader.read(1024)
    writer.close()


async def _serve(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, f"127.0.0.1:{port}"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_detects_http():
    server, address = await _serve(_http_handler)
    try:
        assert await ProtocolDetector(timeout=1.0).detect(address) == Protocol.HTTP
    finally:
        server.close()


@pytest.mark.asyncio
async def test_non_http_non_tls_is_tcp():
    server, address = await _serve(_banner_handler)
    try:
        assert await ProtocolDetector(timeout=1.0).detect(address) == Protocol.TCP
    finally:
        server.close()


@pytest.mark.asyncio
async def test_refused_port_is_unknown():
    address = f"127.0.0.1:{_free_port()}"
    assert await ProtocolDetector(timeout=0.5).detect(address) == Protocol.UNKNOWN


@pytest.mark.asyncio
async def test_malformed_address_is_unknown():
    assert await ProtocolDetector().detect("no-port-here") == Protocol.UNKNOWN


CERTS = Path(__file__).parent / "certs"


def _server_tls_context() -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(CERTS / "localhost.pem", CERTS / "localhost.key")
    return ctx


async def _silent_handler(reader, writer):
    while await reader.read(1024):
        pass
    writer.close()


async def _serve_tls(handler):
    server = await asyncio.start_server(
        handler, "127.0.0.1", 0, ssl=_server_tls_context()
    )
    port = server.sockets[0].getsockname()[1]
    return server, f"127.0.0.1:{port}"


@pytest.mark.asyncio
async def test_detects_https():
    server, address = await _serve_tls(_http_handler)
    try:
        assert await ProtocolDetector(timeout=1.0).detect(address) == Protocol.HTTPS
    finally:
        server.close()


@pytest.mark.asyncio
async def test_tls_without_http_is_tls():
    server, address = await _serve_tls(_silent_handler)
    try:
        assert await ProtocolDetector(timeout=0.5).detect(address) == Protocol.TLS
    finally:
        server.close()


@pytest.mark.asyncio
async def test_silent_peer_is_bounded_by_deadline():
    server, address = await _serve(_silent_handler)
    detector = ProtocolDetector(timeout=1.0, deadline=0.3)
    loop = asyncio.get_running_loop()
    try:
        started = loop.time()
        assert await detector.detect(address) == Protocol.UNKNOWN
        assert loop.time() - started < 0.9
    finally:
        server.close()
