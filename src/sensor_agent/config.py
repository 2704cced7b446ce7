from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .sensor_parser import WireProtocol


class AgentSettings(BaseSettings):
    """
    Configuration for the sensor agent.
    """

    # Tell pydantic-settings to load environment variables from .env if present.
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # ignore unknown env vars
    )

    # --- Identity ---
    site_name: str = "Perimeter Site"
    gateway_id: str = "gateway_demo"

    # --- Serial input (field gateway -> agent) ---
    # Leave serial_port unset to run without a serial reader (e.g. realtime store only).
    serial_port: Optional[str] = None
    baud_rate: int = 9600
    read_chunk_bytes: int = 256
    max_line_buffer_bytes: int = 65536

    # Which wire protocol the gateway firmware speaks. Selected per deployment,
    # never inferred from the shape of a line.
    wire_protocol: WireProtocol = WireProtocol.MOTION

    # --- Alerting ---
    alert_dwell_sec: float = 15.0  # how long an alert flag stays raised without a fresh event
    alert_history_limit: int = 100  # newest-first alert feed size

    # Origin used to place nodes that report before anyone positioned them.
    default_lat: float = 21.0
    default_lng: float = 79.0

    # --- Logging ---
    log_level: str = "INFO"
    debug: bool = False

    # --- HTTP status API (dashboard -> agent) ---
    http_host: str = "127.0.0.1"
    http_port: int = 8128

