from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .dwell import FlagClearScheduler
from .models import AlertEvent, AlertType, Severity
from .notification import NotificationGate

logger = logging.getLogger(__name__)

ALERT_DESCRIPTIONS = {
    AlertType.GUN: "Gunshots Detected",
    AlertType.FOOTSTEPS: "Footsteps Detected",
    AlertType.MOTION: "Motion Detected",
    AlertType.WHISPER: "Whispers Detected",
    AlertType.SUSPICIOUS_ACTIVITY: "Suspicious Activity",
    AlertType.DRONE: "Drone Detected",
    AlertType.HELP: "Help Call Detected",
}

ALERT_SEVERITIES = {
    AlertType.GUN: Severity.CRITICAL,
    AlertType.SUSPICIOUS_ACTIVITY: Severity.CRITICAL,
    AlertType.HELP: Severity.CRITICAL,
    AlertType.FOOTSTEPS: Severity.WARNING,
    AlertType.WHISPER: Severity.WARNING,
    AlertType.DRONE: Severity.WARNING,
    AlertType.MOTION: Severity.INFO,
}


def alert_severity(alert_type: AlertType) -> Severity:
    return ALERT_SEVERITIES.get(alert_type, Severity.INFO)


def alert_description(alert_type: AlertType) -> str:
    return ALERT_DESCRIPTIONS.get(alert_type, alert_type.value.replace("_", " "))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertSynthesizer:
    """
    Turns a freshly raised alert flag into an AlertEvent.

    Side effects: offers the alert's severity to the notification gate and
    arms the dwell-time clear for the flag.
    """

    def __init__(
        self,
        gate: NotificationGate,
        scheduler: FlagClearScheduler,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.gate = gate
        self.scheduler = scheduler
        self._clock = clock or utc_now

    def synthesize(self, node_id: str, alert_type: AlertType, stamp: int) -> AlertEvent:
        now = self._clock()
        severity = alert_severity(alert_type)

        alert = AlertEvent(
            id=f"{node_id}-{alert_type.value}-{int(now.timestamp() * 1000)}",
            type=alert_type,
            node_id=node_id,
            timestamp=now,
            description=alert_description(alert_type),
            severity=severity,
        )

        if self.gate.offer(severity):
            logger.info("Notify: %s alert on %s (%s)", severity.value, node_id, alert.description)

        self.scheduler.arm(node_id, alert_type, stamp)
        return alert
