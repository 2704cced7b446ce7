from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, Optional

import serial
import serial.tools.list_ports
from pydantic import BaseModel

from .pipeline import SensorPipeline

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Port unavailable, open failure or read failure."""


class PortInfo(BaseModel):
    device: str
    description: Optional[str] = None
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None


class SerialTransportSession:
    """
    Explicitly owned serial connection to the field gateway.

    One session object per process; open() and close() bound each connection.
    read_chunks() is a per-connection async iterator of raw bytes, so the
    consumer pulls data instead of registering a callback.
    """

    def __init__(
        self,
        serial_factory: Callable[..., serial.Serial] = serial.Serial,
        read_chunk_bytes: int = 256,
        read_timeout: float = 0.5,
    ) -> None:
        self._serial_factory = serial_factory
        self.read_chunk_bytes = read_chunk_bytes
        self.read_timeout = read_timeout
        self._serial: Optional[serial.Serial] = None
        self.port: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @staticmethod
    def list_ports() -> list[PortInfo]:
        return [
            PortInfo(device=p.device, description=p.description, vendor_id=p.vid, product_id=p.pid)
            for p in serial.tools.list_ports.comports()
        ]

    def request_port(self, preferred: Optional[str] = None) -> PortInfo:
        """
        Pick a port to open: the preferred device if present, else the first one found.
        """
        ports = self.list_ports()
        if preferred is not None:
            for p in ports:
                if p.device == preferred:
                    return p
            raise TransportError(f"Serial port {preferred} not found")
        if not ports:
            raise TransportError("No serial ports available")
        return ports[0]

    def open(self, port: str, baud_rate: int = 9600) -> None:
        if self.is_open:
            self.close()
        try:
            self._serial = self._serial_factory(port=port, baudrate=baud_rate, timeout=self.read_timeout)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Failed to open {port} at {baud_rate} baud: {e}") from e
        self.port = port
        logger.info("Serial port opened: %s @ %d", port, baud_rate)

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port %s: %s", self.port, e)
        finally:
            self._serial = None
            logger.info("Serial port closed: %s", self.port)

    def _read(self) -> bytes:
        ser = self._serial
        if ser is None:
            return b""
        # Block for the first byte (up to timeout), then take whatever is already waiting
        size = max(1, min(ser.in_waiting, self.read_chunk_bytes))
        return ser.read(size)

    async def read_chunks(self) -> AsyncIterator[bytes]:
        if not self.is_open:
            raise TransportError("Serial port is not open")

        while self.is_open:
            try:
                data = await asyncio.to_thread(self._read)
            except (serial.SerialException, OSError) as e:
                if not self.is_open:
                    # close() raced with a blocking read
                    return
                raise TransportError(f"Read failed on {self.port}: {e}") from e

            if data:
                yield data


async def consume(session: SerialTransportSession, pipeline: SensorPipeline) -> int:
    """
    Feed every chunk from an open session into the pipeline until the port closes.

    Starts a new connection on the pipeline (boot filter and partial line reset).
    Returns the number of alerts produced. TransportError propagates after
    everything already read has been processed.
    """
    pipeline.reset_connection()
    produced = 0
    async for chunk in session.read_chunks():
        produced += len(pipeline.feed_bytes(chunk))
    return produced


class SerialReader:
    """
    Owns the serial session and the background task that feeds the pipeline.

    A connection that fails or ends stays down until the next connect(); a
    read failure is recorded on pipeline.transport_error for the dashboard.
    """

    def __init__(
        self,
        pipeline: SensorPipeline,
        session: Optional[SerialTransportSession] = None,
        baud_rate: int = 9600,
    ) -> None:
        self.pipeline = pipeline
        self.session = session or SerialTransportSession()
        self.baud_rate = baud_rate
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connected(self) -> bool:
        return self.running and self.session.is_open

    async def connect(self, port: Optional[str] = None, baud_rate: Optional[int] = None) -> str:
        """
        (Re)open a port and start reading it. Without a port, the first one found is used.

        Returns the opened device. Raises TransportError.
        """
        await self.disconnect()
        baud_rate = baud_rate or self.baud_rate
        try:
            device = port or self.session.request_port().device
            self.session.open(device, baud_rate)
        except TransportError as e:
            self.pipeline.transport_error = str(e)
            raise

        self._task = asyncio.create_task(self._read())
        return device

    async def disconnect(self) -> None:
        task, self._task = self._task, None
        self.session.close()
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def wait(self) -> None:
        """Wait until the current connection ends."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _read(self) -> None:
        try:
            alerts = await consume(self.session, self.pipeline)
            logger.info("Serial stream ended after %d alert(s)", alerts)
        except TransportError as e:
            self.pipeline.transport_error = str(e)
            logger.error("Serial transport error: %s", e)
        finally:
            self.session.close()
