from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from .boot_filter import BootState
from .config import AgentSettings
from .models import AlertEvent, Location, NetworkConnection, NetworkStatus, NodeClass, NotificationState, SensorNode
from .pipeline import SensorPipeline
from .transport import PortInfo, SerialReader, SerialTransportSession, TransportError

logger = logging.getLogger(__name__)


class HealthOut(BaseModel):
    status: str
    time_utc: datetime

    model_config = {"json_schema_extra": {"examples": [{"status": "ok", "time_utc": "2026-02-18T12:00:00Z"}]}}


class HeartbeatOut(BaseModel):
    gateway_id: str
    site_name: str
    status: str
    boot_state: BootState
    time_utc: datetime
    uptime_seconds: int
    lines_decoded: int
    decode_failures: int
    transport_error: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "gateway_id": "gateway-001",
                    "site_name": "North Fence",
                    "status": "online",
                    "boot_state": "ready",
                    "time_utc": "2026-02-18T12:00:00Z",
                    "uptime_seconds": 42,
                    "lines_decoded": 120,
                    "decode_failures": 3,
                }
            ]
        }
    }


class AlertsOut(BaseModel):
    alerts: list[AlertEvent]


class NodeIn(BaseModel):
    """Operator-placed node, as entered on the dashboard's add-node form."""
    id: str = Field(..., min_length=1)
    name: str
    sector: str
    location: Location
    node_class: NodeClass = NodeClass.STANDARD

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "node12",
                    "name": "East Gate",
                    "sector": "Sector E",
                    "location": {"lat": 21.004, "lng": 79.006},
                    "node_class": "advanced",
                }
            ]
        }
    }


class NodeCreatedOut(BaseModel):
    node: SensorNode
    connections: list[NetworkConnection]


class SerialConnectIn(BaseModel):
    # Omit port to open the first serial device found
    port: Optional[str] = None
    baud_rate: Optional[int] = None


class SerialStatusOut(BaseModel):
    connected: bool
    port: Optional[str] = None
    transport_error: Optional[str] = None


def create_app(
    cfg: AgentSettings,
    pipeline: Optional[SensorPipeline] = None,
    reader: Optional[SerialReader] = None,
) -> FastAPI:
    """
    Create the sensor agent HTTP API app.

    If cfg.serial_port is set the reader connects to it on startup. A failed
    or dropped connection can be reopened through POST /serial/connect.
    """
    pipeline = pipeline or SensorPipeline(cfg)
    reader = reader or SerialReader(
        pipeline,
        SerialTransportSession(read_chunk_bytes=cfg.read_chunk_bytes),
        baud_rate=cfg.baud_rate,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if cfg.serial_port:
            try:
                await reader.connect(cfg.serial_port)
            except TransportError as e:
                # Keep serving; the dashboard sees the error and can reconnect
                logger.error("Serial transport error: %s", e)
        try:
            yield
        finally:
            await reader.disconnect()
            pipeline.scheduler.cancel_all()

    def serial_status() -> SerialStatusOut:
        return SerialStatusOut(
            connected=reader.connected,
            port=reader.session.port if reader.connected else None,
            transport_error=pipeline.transport_error,
        )

    app = FastAPI(
        title="Perimeter Sensor Agent API",
        version="0.1.0",
        description="Node state, alert feed and notification state for the perimeter dashboard.",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.reader = reader

    @app.get("/")
    def root():
        return {"status": "sensor agent running"}

    # Store start time for uptime calculation
    started_monotonic = time.monotonic()

    @app.get("/health", response_model=HealthOut, tags=["health"])
    def health() -> HealthOut:
        """Liveness check: returns OK if the agent process is running."""
        return HealthOut(status="ok", time_utc=datetime.now(timezone.utc))

    @app.get("/heartbeat", response_model=HeartbeatOut, tags=["health"])
    def heartbeat() -> HeartbeatOut:
        """Returns gateway identity + stream status snapshot + uptime."""
        uptime = int(time.monotonic() - started_monotonic)
        boot_state = pipeline.boot_filter.state
        return HeartbeatOut(
            gateway_id=cfg.gateway_id,
            site_name=cfg.site_name,
            status="online" if boot_state is BootState.READY else "booting",
            boot_state=boot_state,
            time_utc=datetime.now(timezone.utc),
            uptime_seconds=uptime,
            lines_decoded=pipeline.lines_decoded,
            decode_failures=pipeline.decode_failures,
            transport_error=pipeline.transport_error,
        )

    @app.get("/nodes", response_model=list[SensorNode], tags=["nodes"])
    def list_nodes() -> list[SensorNode]:
        return pipeline.nodes

    @app.get("/nodes/{node_id}", response_model=SensorNode, tags=["nodes"])
    def get_node(node_id: str) -> SensorNode:
        node = pipeline.registry.get(node_id)
        if node is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown node {node_id}")
        return node

    # Mutating routes are async so they run on the event loop, between serial reads
    @app.post("/nodes", response_model=NodeCreatedOut, status_code=status.HTTP_201_CREATED, tags=["nodes"])
    async def add_node(body: NodeIn) -> NodeCreatedOut:
        node = SensorNode(
            id=body.id.strip().lower(),
            name=body.name,
            sector=body.sector,
            location=body.location,
            node_class=body.node_class,
            last_activity=datetime.now(timezone.utc),
        )
        try:
            links = pipeline.add_node(node)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
        return NodeCreatedOut(node=node, connections=links)

    @app.get("/connections", response_model=list[NetworkConnection], tags=["nodes"])
    def list_connections() -> list[NetworkConnection]:
        return pipeline.connections

    @app.get("/network-status", response_model=NetworkStatus, tags=["nodes"])
    def network_status() -> NetworkStatus:
        return pipeline.network_status()

    @app.get("/alerts", response_model=AlertsOut, tags=["alerts"])
    def list_alerts() -> AlertsOut:
        """Newest-first alert feed, one entry per node and alert type."""
        return AlertsOut(alerts=pipeline.alerts)

    @app.post("/alerts/{alert_id}/ack", response_model=AlertEvent, tags=["alerts"])
    async def acknowledge_alert(alert_id: str) -> AlertEvent:
        alert = pipeline.store.acknowledge(alert_id)
        if alert is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown alert {alert_id}")
        return alert

    @app.get("/notification", response_model=NotificationState, tags=["alerts"])
    def notification() -> NotificationState:
        return pipeline.notification

    @app.post("/notification/ack", response_model=NotificationState, tags=["alerts"])
    async def acknowledge_notification() -> NotificationState:
        """Called by the dashboard once it has played the alert sound."""
        return pipeline.acknowledge_notification()

    @app.get("/serial/ports", response_model=list[PortInfo], tags=["serial"])
    def serial_ports() -> list[PortInfo]:
        return SerialTransportSession.list_ports()

    @app.get("/serial", response_model=SerialStatusOut, tags=["serial"])
    def serial_state() -> SerialStatusOut:
        return serial_status()

    @app.post("/serial/connect", response_model=SerialStatusOut, tags=["serial"])
    async def serial_connect(body: SerialConnectIn) -> SerialStatusOut:
        """Open (or reopen) the gateway port; the new connection starts in the booting state."""
        try:
            await reader.connect(body.port, body.baud_rate)
        except TransportError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
        return serial_status()

    @app.post("/serial/disconnect", response_model=SerialStatusOut, tags=["serial"])
    async def serial_disconnect() -> SerialStatusOut:
        await reader.disconnect()
        return serial_status()

    return app
