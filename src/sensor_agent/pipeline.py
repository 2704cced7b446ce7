from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from .alert_store import AlertMergeStore
from .boot_filter import BootNoiseFilter
from .config import AgentSettings
from .dwell import CallLater, FlagClearScheduler
from .framing import LineFramer
from .models import (
    AlertEvent,
    AlertType,
    Location,
    NetworkConnection,
    NetworkStatus,
    NotificationState,
    SensorNode,
)
from .notification import NotificationGate
from .registry import NodeRegistry
from .sensor_parser import DecodeError, parse_sensor_line
from .synthesizer import AlertSynthesizer, utc_now

logger = logging.getLogger(__name__)


def _loop_call_later(delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback, *args)


class SensorPipeline:
    """
    bytes -> lines -> boot filter -> decoder -> node registry -> alerts.

    One instance per process. Connection-scoped state (partial line, boot
    state) is reset on reconnect; nodes, alerts and pending flag clears
    survive it. Every call runs to completion before the next one, so the
    alert merge never interleaves.
    """

    def __init__(
        self,
        cfg: Optional[AgentSettings] = None,
        *,
        call_later: Optional[CallLater] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        on_flag_cleared: Optional[Callable[[str, AlertType], Any]] = None,
    ) -> None:
        self.cfg = cfg or AgentSettings()
        self._clock = clock or utc_now

        self.framer = LineFramer(max_buffer_bytes=self.cfg.max_line_buffer_bytes)
        self.boot_filter = BootNoiseFilter()
        self.registry = NodeRegistry(
            protocol=self.cfg.wire_protocol,
            origin=Location(lat=self.cfg.default_lat, lng=self.cfg.default_lng),
            rng=rng,
        )
        self.gate = NotificationGate()
        self.scheduler = FlagClearScheduler(
            call_later=call_later or _loop_call_later,
            clear_flag=self.registry.clear_flag,
            dwell_sec=self.cfg.alert_dwell_sec,
            on_cleared=on_flag_cleared,
        )
        self.synthesizer = AlertSynthesizer(self.gate, self.scheduler, clock=self._clock)
        self.store = AlertMergeStore(limit=self.cfg.alert_history_limit)

        self.lines_decoded = 0
        self.decode_failures = 0
        # Last transport failure, shown to the dashboard until the next connection
        self.transport_error: Optional[str] = None

    # --- Input ---

    def feed_bytes(self, chunk: bytes) -> list[AlertEvent]:
        """Process one raw transport read. Returns the alerts it produced."""
        produced: list[AlertEvent] = []
        for line in self.framer.feed(chunk):
            if self.boot_filter.accept(line):
                produced.extend(self._decode_and_apply(line))
        if produced:
            self.store.merge(produced)
        return produced

    def feed_line(self, line: str) -> list[AlertEvent]:
        """Process one already-framed line (boot filter still applies)."""
        line = line.strip()
        if not line or not self.boot_filter.accept(line):
            return []
        produced = self._decode_and_apply(line)
        if produced:
            self.store.merge(produced)
        return produced

    def ingest_snapshot(self, nodes: Iterable[SensorNode]) -> list[AlertEvent]:
        """Apply node records from the realtime store subscription."""
        produced: list[AlertEvent] = []
        for node in nodes:
            for alert_type, stamp in self.registry.apply_snapshot(node):
                produced.append(self.synthesizer.synthesize(node.id, alert_type, stamp))
        if produced:
            self.store.merge(produced)
        return produced

    def add_node(self, node: SensorNode) -> list[NetworkConnection]:
        """Register an operator-placed node. Raises ValueError if the id is taken."""
        return self.registry.register_node(node)

    def reset_connection(self) -> None:
        """Forget the partial line and boot state of the previous connection."""
        self.framer.reset()
        self.boot_filter.reset()
        self.transport_error = None

    def _decode_and_apply(self, line: str) -> list[AlertEvent]:
        try:
            readings = parse_sensor_line(line, self.cfg.wire_protocol)
        except DecodeError as e:
            # Don't stop the stream on bad lines
            self.decode_failures += 1
            logger.debug("Dropping undecodable line %r: %s", line, e)
            return []

        self.lines_decoded += 1
        now = self._clock()
        produced: list[AlertEvent] = []
        for reading in readings:
            update = self.registry.apply(reading, now)
            if update.armed:
                produced.append(self.synthesizer.synthesize(update.node.id, update.alert_type, update.stamp))
        return produced

    # --- Published outputs ---

    @property
    def nodes(self) -> list[SensorNode]:
        return self.registry.nodes

    @property
    def alerts(self) -> list[AlertEvent]:
        return self.store.alerts

    @property
    def connections(self) -> list[NetworkConnection]:
        return self.registry.connections

    @property
    def notification(self) -> NotificationState:
        return self.gate.state

    def network_status(self) -> NetworkStatus:
        return self.registry.network_status()

    def acknowledge_notification(self) -> NotificationState:
        self.gate.acknowledge()
        return self.gate.state
