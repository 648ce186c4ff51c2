"""HTTP API with in-memory adapters."""

import pytest
from fastapi.testclient import TestClient

from kohakuport.models.tunnel import TunnelIntent
from kohakuport.server.app import create_app
from kohakuport.server.state import PortServices


@pytest.fixture
def client(store, session, manager):
    services = PortServices(
        store=store,
        session=session,
        manager=manager,
        version="1.2.3",
        converge_timeout=5.0,
    )
    with TestClient(create_app(services)) as client:
        yield client


def test_create_tunnel_for_running_container(client, containers, tunnels):
    containers.run("abc", 8080)

    response = client.post(
        "/api/tunnels", json={"container_id": "abc", "target_port": 8080}
    )

    assert response.status_code == 201
    data = response.json()
    assert data["error"] is None
    assert data["intent"]["target_port"] == 8080
    assert data["endpoint"]["container_id"] == "abc"
    assert data["endpoint"]["protocol"] == "http"
    assert data["endpoint"]["url"].startswith("https://")
    assert tunnels.opened == ["kohakuport-abc"]


def test_create_tunnel_for_stopped_container_keeps_intent(client, store, tunnels):
    response = client.post(
        "/api/tunnels", json={"container_id": "abc", "target_port": 8080}
    )

    assert response.status_code == 201
    data = response.json()
    assert data["endpoint"] is None
    assert "not running" in data["error"]
    assert store.get("abc") is not None
    assert tunnels.calls == []


def test_create_tunnel_reports_open_failure(client, containers, tunnels, store):
    from kohakuport.adapters.exceptions import QuotaExceeded

    containers.run("abc", 8080)
    tunnels.fail_open["kohakuport-abc"] = QuotaExceeded("limited to 1 endpoint")

    response = client.post(
        "/api/tunnels", json={"container_id": "abc", "target_port": 8080}
    )

    assert response.status_code == 201
    assert "limited to 1 endpoint" in response.json()["error"]
    assert store.get("abc") is not None


def test_create_tunnel_with_protocol_override(client, containers, detector):
    containers.run("db", 5432)

    response = client.post(
        "/api/tunnels",
        json={"container_id": "db", "target_port": 5432, "protocol": "tcp"},
    )

    assert response.json()["endpoint"]["protocol"] == "tcp"
    assert detector.calls == []


@pytest.mark.parametrize(
    "body",
    [
        {"container_id": "", "target_port": 8080},
        {"container_id": "abc", "target_port": 0},
        {"container_id": "abc", "target_port": 70000},
        {"container_id": "abc", "target_port": 8080, "protocol": "gopher"},
    ],
)
def test_create_tunnel_validation(client, body):
    assert client.post("/api/tunnels", json=body).status_code == 422


def test_list_tunnels(client, containers, store):
    containers.run("abc", 8080)
    client.post("/api/tunnels", json={"container_id": "abc", "target_port": 8080})

    response = client.get("/api/tunnels")

    assert response.status_code == 200
    assert [ep["container_id"] for ep in response.json()] == ["abc"]


def test_remove_tunnel_keeps_intent(client, containers, tunnels):
    containers.run("abc", 8080)
    containers.run("def", 8081)
    client.post("/api/tunnels", json={"container_id": "abc", "target_port": 8080})
    client.post("/api/tunnels", json={"container_id": "def", "target_port": 8081})

    response = client.delete("/api/tunnels/abc")

    assert response.status_code == 200
    assert list(response.json()) == ["def"]
    assert "kohakuport-abc" not in tunnels.forwarders
    intents = client.get("/api/intents").json()
    assert {i["container_id"] for i in intents} == {"abc", "def"}


def test_remove_unknown_tunnel(client):
    assert client.delete("/api/tunnels/nope").status_code == 404


def test_remove_tunnel_close_failure(client, containers, tunnels):
    containers.run("abc", 8080)
    client.post("/api/tunnels", json={"container_id": "abc", "target_port": 8080})
    tunnels.fail_close.add("kohakuport-abc")

    response = client.delete("/api/tunnels/abc")

    assert response.status_code == 502
    assert [ep["container_id"] for ep in client.get("/api/tunnels").json()] == ["abc"]


def test_cancel_intent(client, containers, store, tunnels):
    containers.run("abc", 8080)
    client.post("/api/tunnels", json={"container_id": "abc", "target_port": 8080})

    response = client.delete("/api/intents/abc")

    assert response.status_code == 200
    assert response.json() == {}
    assert store.get("abc") is None
    assert tunnels.forwarders == {}


def test_cancel_unknown_intent(client):
    assert client.delete("/api/intents/nope").status_code == 404


def test_get_intent(client, store):
    store.set(TunnelIntent("abc", 8080, url="https://demo.ngrok.app"))

    assert client.get("/api/intents/abc").json()["url"] == "https://demo.ngrok.app"
    assert client.get("/api/intents/nope").status_code == 404


def test_converge_endpoint(client, containers, store):
    containers.run("abc", 8080)
    store.set(TunnelIntent("abc", 8080))

    response = client.post("/api/converge")

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "ok"
    assert data["opened"] == ["abc"]


def test_converge_with_runtime_down(client, containers):
    containers.unavailable = True

    assert client.post("/api/converge").status_code == 503


def test_status(client, containers, store):
    containers.run("abc", 8080)
    store.set(TunnelIntent("abc", 8080))
    store.set(TunnelIntent("def", 8081))
    client.post("/api/converge")

    data = client.get("/api/status").json()

    assert data["version"] == "1.2.3"
    assert data["endpoint_count"] == 1
    assert data["intent_count"] == 2
    assert data["last_converge"]["outcome"] == "ok"
