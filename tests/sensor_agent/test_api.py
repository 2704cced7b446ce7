import inspect
import time
from datetime import datetime

import pytest
import serial
from fastapi.testclient import TestClient

from sensor_agent.api import create_app
from sensor_agent.transport import PortInfo, SerialReader, SerialTransportSession


def _parse_iso_z(ts: str) -> datetime:
    """
    Parse ISO-8601 timestamps that may end with 'Z' (UTC).
    Python's datetime.fromisoformat() doesn't accept trailing 'Z' on older versions, so convert to +00:00.
    """
    if not isinstance(ts, str):
        raise TypeError(f"timestamp must be str, got {type(ts)}")
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


@pytest.fixture
def client(cfg, pipeline):
    app = create_app(cfg, pipeline)
    return TestClient(app)


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    _parse_iso_z(data["time_utc"])


def test_heartbeat_endpoint(client, pipeline):
    data = client.get("/heartbeat").json()
    assert data["gateway_id"] == "gateway-001"
    assert data["site_name"] == "North Fence"
    assert data["status"] == "booting"
    assert data["boot_state"] == "booting"
    assert data["transport_error"] is None
    assert isinstance(data["uptime_seconds"], int)
    assert data["uptime_seconds"] >= 0

    pipeline.feed_bytes(b"node1:1\nnode1:7\n")
    data = client.get("/heartbeat").json()
    assert data["status"] == "online"
    assert data["lines_decoded"] == 1
    assert data["decode_failures"] == 1


def test_nodes_and_network_status(client, pipeline):
    pipeline.feed_bytes(b"[node1:1 node2:0]\n")

    nodes = client.get("/nodes").json()
    assert [n["id"] for n in nodes] == ["node1", "node2"]
    assert nodes[0]["alerts"]["motion"] is True

    assert client.get("/nodes/node2").json()["sector"] == "Sector 2"
    assert client.get("/nodes/node9").status_code == 404

    status = client.get("/network-status").json()
    assert status == {"active_nodes": 2, "total_nodes": 2, "network_health": 100}
    assert client.get("/connections").json() == []


def test_alert_feed_and_acknowledge(client, pipeline):
    alert = pipeline.feed_bytes(b"node1:1\n")[0]

    alerts = client.get("/alerts").json()["alerts"]
    assert [a["id"] for a in alerts] == [alert.id]
    assert alerts[0]["severity"] == "info"
    assert alerts[0]["description"] == "Motion Detected"

    response = client.post(f"/alerts/{alert.id}/ack")
    assert response.status_code == 200
    assert response.json()["acknowledged"] is True
    assert client.post("/alerts/missing/ack").status_code == 404


def test_notification_cycle(client, pipeline):
    assert client.get("/notification").json() == {"severity": "info", "should_notify": False, "sound": "alert-info"}

    pipeline.feed_bytes(b"node1:1\n")
    assert client.get("/notification").json()["should_notify"] is True

    data = client.post("/notification/ack").json()
    assert data["should_notify"] is False
    assert data["severity"] == "info"


NEW_NODE = {"id": "Node12", "name": "East Gate", "sector": "Sector E", "location": {"lat": 21.004, "lng": 79.006}}


def test_add_node_links_nearest_and_rejects_duplicates(client, pipeline):
    pipeline.feed_bytes(b"[node1:0 node2:0 node3:0]\n")

    response = client.post("/nodes", json=NEW_NODE)
    assert response.status_code == 201
    data = response.json()
    assert data["node"]["id"] == "node12"
    assert data["node"]["status"] == "online"
    assert data["node"]["alerts"]["motion"] is False
    assert len(data["connections"]) == 2
    assert all(80 <= c["strength"] <= 94 for c in data["connections"])

    assert client.get("/nodes/node12").json()["name"] == "East Gate"
    assert len(client.get("/connections").json()) == 2

    assert client.post("/nodes", json=NEW_NODE).status_code == 409
    assert client.post("/nodes", json={**NEW_NODE, "id": ""}).status_code == 422


def test_operator_node_then_reports_over_serial(client, pipeline):
    client.post("/nodes", json=NEW_NODE)
    pipeline.feed_bytes(b"node12:1\n")

    node = client.get("/nodes/node12").json()
    assert node["name"] == "East Gate"
    assert node["alerts"]["motion"] is True


def test_serial_connect_and_reconnect(cfg, pipeline, scripted_session):
    session = scripted_session(
        [b"node1:1\n", serial.SerialException("device disconnected")],
        [b"rst:0x1\r\nnode2:1\r\n"],
    )
    app = create_app(cfg, pipeline, reader=SerialReader(pipeline, session))

    with TestClient(app) as client:
        assert client.get("/serial").json() == {"connected": False, "port": None, "transport_error": None}

        assert client.post("/serial/connect", json={"port": "/dev/ttyUSB0"}).status_code == 200
        wait_for(client, lambda: pipeline.transport_error)
        assert "device disconnected" in client.get("/heartbeat").json()["transport_error"]

        assert client.post("/serial/connect", json={"port": "/dev/ttyUSB0", "baud_rate": 115200}).status_code == 200
        wait_for(client, lambda: pipeline.registry.get("node2"))

        assert client.get("/heartbeat").json()["transport_error"] is None
        assert session.opened[1]["baudrate"] == 115200

        assert client.post("/serial/disconnect").json()["connected"] is False

    assert [n.id for n in pipeline.nodes] == ["node1", "node2"]


def test_serial_connect_failure_returns_503(cfg, pipeline):
    def factory(**kwargs):
        raise serial.SerialException("could not open port")

    reader = SerialReader(pipeline, SerialTransportSession(serial_factory=factory))
    app = create_app(cfg, pipeline, reader=reader)

    with TestClient(app) as client:
        response = client.post("/serial/connect", json={"port": "/dev/ttyUSB9"})
        assert response.status_code == 503
        assert client.get("/serial").json()["transport_error"].startswith("Failed to open /dev/ttyUSB9")


def test_startup_connect_failure_keeps_serving(cfg, pipeline):
    def factory(**kwargs):
        raise serial.SerialException("could not open port")

    cfg = cfg.model_copy(update={"serial_port": "/dev/ttyUSB7"})
    reader = SerialReader(pipeline, SerialTransportSession(serial_factory=factory))
    app = create_app(cfg, pipeline, reader=reader)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        data = client.get("/heartbeat").json()

    assert "Failed to open /dev/ttyUSB7" in data["transport_error"]


def test_serial_ports(client, monkeypatch):
    monkeypatch.setattr(
        SerialTransportSession,
        "list_ports",
        staticmethod(lambda: [PortInfo(device="/dev/ttyUSB0", description="CP2102")]),
    )
    assert client.get("/serial/ports").json() == [
        {"device": "/dev/ttyUSB0", "description": "CP2102", "vendor_id": None, "product_id": None}
    ]


def wait_for(client, condition, attempts=200):
    # The reader runs on the app's event loop; requests give it time to progress
    for _ in range(attempts):
        if condition():
            return
        client.get("/health")
        time.sleep(0.005)
    raise AssertionError("condition not reached")


def test_mutating_routes_run_on_the_event_loop(cfg, pipeline):
    # Sync routes would run in the threadpool, concurrently with feed_bytes
    app = create_app(cfg, pipeline)
    post_routes = [r for r in app.routes if "POST" in getattr(r, "methods", ())]

    assert {r.path for r in post_routes} >= {"/nodes", "/alerts/{alert_id}/ack", "/notification/ack", "/serial/connect"}
    assert all(inspect.iscoroutinefunction(r.endpoint) for r in post_routes)
