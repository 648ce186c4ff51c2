"""Domain models and request conversion."""

import pytest
from pydantic import ValidationError

from kohakuport.models.enums import Protocol
from kohakuport.models.requests import CreateTunnelRequest
from kohakuport.models.tunnel import Endpoint, TunnelIntent


def make_endpoint(**kwargs) -> Endpoint:
    defaults = dict(
        container_id="abc",
        target_port=8080,
        forwarder_id="kohakuport-abc",
        forwarder_url="https://x.ngrok.app",
        protocol=Protocol.HTTP,
    )
    defaults.update(kwargs)
    return Endpoint(**defaults)


def test_endpoint_satisfies_unchanged_intent():
    assert make_endpoint().satisfies(TunnelIntent("abc", 8080))


@pytest.mark.parametrize(
    "intent",
    [
        TunnelIntent("abc", 9090),
        TunnelIntent("abc", 8080, protocol_override=Protocol.TCP),
        TunnelIntent("abc", 8080, url="https://demo.ngrok.app"),
        TunnelIntent("abc", 8080, pooling_enabled=True),
    ],
)
def test_endpoint_does_not_satisfy_changed_intent(intent):
    assert not make_endpoint().satisfies(intent)


def test_detected_protocol_satisfies_intent_without_override():
    assert make_endpoint(protocol=Protocol.TLS).satisfies(TunnelIntent("abc", 8080))


def test_request_to_intent():
    intent = CreateTunnelRequest(
        container_id="abc", target_port=8080, protocol="unknown", url=""
    ).to_intent()

    assert intent.protocol_override is None
    assert intent.url is None

    intent = CreateTunnelRequest(
        container_id="abc", target_port=8443, protocol="https"
    ).to_intent()
    assert intent.protocol_override == Protocol.HTTPS


def test_request_rejects_bad_port():
    with pytest.raises(ValidationError):
        CreateTunnelRequest(container_id="abc", target_port=0)
