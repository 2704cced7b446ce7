from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from .config import AgentSettings
from .logging import configure_logging
from .pipeline import SensorPipeline
from .transport import SerialTransportSession, TransportError, consume

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Perimeter Sensor Agent")
    parser.add_argument("--print-config", action="store_true", help="Print resolved configuration and exit.")
    parser.add_argument("--list-ports", action="store_true", help="List serial ports and exit.")
    parser.add_argument("--serial", action="store_true", help="Read the configured serial port until it closes.")
    parser.add_argument("--http-serve", action="store_true", help="Start the HTTP API (connects to the serial port too if one is set).")
    return parser


async def read_serial(
    cfg: AgentSettings,
    pipeline: SensorPipeline,
    session: Optional[SerialTransportSession] = None,
) -> int:
    """
    Open the configured port, feed it through the pipeline until it closes.

    Returns the number of alerts produced. Raises TransportError.
    """
    if not cfg.serial_port:
        raise TransportError("No serial port configured (set SERIAL_PORT)")

    session = session or SerialTransportSession(read_chunk_bytes=cfg.read_chunk_bytes)
    session.open(cfg.serial_port, cfg.baud_rate)
    try:
        return await consume(session, pipeline)
    finally:
        session.close()


def run(argv: list[str] | None = None, cfg: AgentSettings | None = None) -> int:
    """
    Sensor agent entrypoint.
    """
    try:
        args = build_parser().parse_args(argv)

        # Load settings from environment / .env
        cfg = cfg or AgentSettings()

        # Setup logging using configured level
        configure_logging(cfg.log_level, gateway_id=cfg.gateway_id)

        logger.info("Sensor agent starting")
        logger.info(
            "Resolved config: gateway=%s serial=%s@%s protocol=%s",
            cfg.gateway_id, cfg.serial_port, cfg.baud_rate, cfg.wire_protocol.value
        )

        if args.print_config:
            print(cfg.model_dump())
            return 0

        if args.list_ports:
            for port in SerialTransportSession.list_ports():
                print(f"{port.device}\t{port.description or ''}")
            return 0

        if args.http_serve:
            import uvicorn
            from .api import create_app

            app = create_app(cfg)

            logger.info("Starting HTTP API at http://%s:%s", cfg.http_host, cfg.http_port)
            uvicorn.run(
                app,
                host=cfg.http_host,
                port=cfg.http_port,
                log_level=cfg.log_level.lower(),
            )
            return 0

        if args.serial:
            pipeline = SensorPipeline(cfg)
            try:
                alerts = asyncio.run(read_serial(cfg, pipeline))
            except TransportError as e:
                logger.error("Serial transport error: %s", e)
                return 1
            logger.info("Serial stream ended after %d alert(s)", alerts)
            return 0

        logger.info("Nothing to do. Use --print-config, --list-ports, --serial or --http-serve.")
        return 0

    except Exception:
        # Log unexpected exceptions so the agent is diagnosable.
        logger.exception("Sensor agent crashed due to an unexpected error")
        if cfg is not None and (cfg.debug or cfg.log_level.upper() == "DEBUG"):
            raise
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
