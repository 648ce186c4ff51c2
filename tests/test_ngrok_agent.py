"""ngrok agent adapter against a mocked agent API."""

import json

import httpx
import pytest
import pytest_asyncio

from kohakuport.adapters.exceptions import (
    ForwarderNotFound,
    InvalidTarget,
    QuotaExceeded,
    ServiceUnavailable,
)
from kohakuport.models.enums import Protocol
from kohakuport.models.tunnel import ForwarderOptions
from kohakuport.tunnel.ngrok_agent import NgrokAgentAdapter, agent_addr, agent_proto


def tunnel_json(name: str, proto: str, addr: str, public_url: str) -> dict:
    return {
        "name": name,
        "proto": proto,
        "public_url": public_url,
        "config": {"addr": addr},
    }


class FakeAgent:
    """Minimal in-memory stand-in for the agent's /api/tunnels resource."""

    def __init__(self):
        self.tunnels: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.post_error: tuple[int, dict] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path == "/api/tunnels":
            return httpx.Response(200, json={"tunnels": list(self.tunnels.values())})

        if request.method == "POST" and path == "/api/tunnels":
            if self.post_error is not None:
                status, body = self.post_error
                return httpx.Response(status, json=body)
            body = json.loads(request.content)
            if body["name"] in self.tunnels:
                return httpx.Response(
                    400,
                    json={"msg": "failed to start tunnel", "details": {"err": "tunnel already exists"}},
                )
            scheme = "https" if body["proto"] == "http" else body["proto"]
            public = f"{scheme}://{body.get('domain', 'random.ngrok.app')}"
            data = tunnel_json(body["name"], body["proto"], body["addr"], public)
            self.tunnels[body["name"]] = data
            return httpx.Response(201, json=data)

        name = path.removeprefix("/api/tunnels/")
        if request.method == "GET":
            if name not in self.tunnels:
                return httpx.Response(404, json={"msg": "not found"})
            return httpx.Response(200, json=self.tunnels[name])
        if request.method == "DELETE":
            if self.tunnels.pop(name, None) is None:
                return httpx.Response(404, json={"msg": "not found"})
            return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def agent():
    return FakeAgent()


@pytest_asyncio.fixture
async def adapter(agent):
    adapter = NgrokAgentAdapter(
        agent_url="http://agent:4040", transport=httpx.MockTransport(agent.handler)
    )
    yield adapter
    await adapter.aclose()


def options(container_id: str, **kwargs) -> ForwarderOptions:
    return ForwarderOptions(name=f"kohakuport-{container_id}", **kwargs)


def test_agent_proto_mapping():
    assert agent_proto(Protocol.HTTP) == "http"
    assert agent_proto(Protocol.HTTPS) == "http"
    assert agent_proto(Protocol.TLS) == "tls"
    assert agent_proto(Protocol.TCP) == "tcp"
    assert agent_addr("localhost:8443", Protocol.HTTPS) == "https://localhost:8443"
    assert agent_addr("localhost:8080", Protocol.HTTP) == "localhost:8080"


def test_container_from_name():
    adapter = NgrokAgentAdapter()
    assert adapter.container_from_name("kohakuport-abc") == "abc"
    assert adapter.container_from_name("kohakuport-abc (https)") == "abc"
    assert adapter.container_from_name("command_line") is None
    assert adapter.container_from_name("kohakuport-") is None


@pytest.mark.asyncio
async def test_open_http_forwarder(adapter, agent):
    forwarder = await adapter.open(
        "localhost:8080",
        Protocol.HTTP,
        options("abc", url="https://demo.ngrok.app", pooling_enabled=True, metadata="m"),
    )

    body = json.loads(agent.requests[-1].content)
    assert body == {
        "name": "kohakuport-abc",
        "proto": "http",
        "addr": "localhost:8080",
        "domain": "demo.ngrok.app",
        "pooling_enabled": True,
        "metadata": "m",
    }
    assert forwarder.id == "kohakuport-abc"
    assert forwarder.url == "https://demo.ngrok.app"
    assert forwarder.protocol == Protocol.HTTP
    assert forwarder.container_id == "abc"
    assert forwarder.target == "localhost:8080"


@pytest.mark.asyncio
async def test_open_tcp_with_reserved_address(adapter, agent):
    await adapter.open(
        "localhost:5432", Protocol.TCP, options("db", url="tcp://1.tcp.ngrok.io:20000")
    )

    body = json.loads(agent.requests[-1].content)
    assert body["proto"] == "tcp"
    assert body["remote_addr"] == "1.tcp.ngrok.io:20000"
    assert "domain" not in body


@pytest.mark.asyncio
async def test_open_https_upstream_keeps_protocol(adapter):
    forwarder = await adapter.open("localhost:8443", Protocol.HTTPS, options("abc"))

    assert forwarder.protocol == Protocol.HTTPS
    assert forwarder.target == "localhost:8443"


@pytest.mark.asyncio
async def test_open_unknown_protocol_is_rejected(adapter, agent):
    with pytest.raises(InvalidTarget):
        await adapter.open("localhost:8080", Protocol.UNKNOWN, options("abc"))
    assert agent.requests == []


@pytest.mark.asyncio
async def test_open_quota_exceeded(adapter, agent):
    agent.post_error = (
        502,
        {"msg": "failed to start tunnel", "details": {"err": "ERR_NGROK_108: limited to 1 simultaneous session"}},
    )

    with pytest.raises(QuotaExceeded):
        await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))


@pytest.mark.asyncio
async def test_open_server_error(adapter, agent):
    agent.post_error = (500, {"msg": "internal error"})

    with pytest.raises(ServiceUnavailable):
        await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))


@pytest.mark.asyncio
async def test_open_existing_name_with_same_target_is_reused(adapter, agent):
    first = await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))
    second = await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))

    assert second == first
    assert len(agent.tunnels) == 1


@pytest.mark.asyncio
async def test_open_existing_name_with_other_target_is_rejected(adapter):
    await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))

    with pytest.raises(InvalidTarget):
        await adapter.open("localhost:9090", Protocol.HTTP, options("abc"))


@pytest.mark.asyncio
async def test_list_open_only_reports_managed_forwarders(adapter, agent):
    agent.tunnels["command_line"] = tunnel_json(
        "command_line", "http", "http://localhost:3000", "https://x.ngrok.app"
    )
    await adapter.open("localhost:5432", Protocol.TCP, options("db"))

    forwarders = await adapter.list_open()

    assert [f.id for f in forwarders] == ["kohakuport-db"]
    assert forwarders[0].protocol == Protocol.TCP


@pytest.mark.asyncio
async def test_close_is_idempotent(adapter, agent):
    await adapter.open("localhost:8080", Protocol.HTTP, options("abc"))

    await adapter.close("kohakuport-abc")
    await adapter.close("kohakuport-abc")

    assert agent.tunnels == {}


@pytest.mark.asyncio
async def test_get_missing_forwarder(adapter):
    with pytest.raises(ForwarderNotFound):
        await adapter.get("kohakuport-nope")


@pytest.mark.asyncio
async def test_unreachable_agent():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = NgrokAgentAdapter(transport=httpx.MockTransport(refuse))
    try:
        with pytest.raises(ServiceUnavailable):
            await adapter.list_open()
        with pytest.raises(ServiceUnavailable):
            await adapter.close("kohakuport-abc")
    finally:
        await adapter.aclose()
