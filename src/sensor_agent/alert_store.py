from __future__ import annotations

import logging
from typing import Iterable

from .models import AlertEvent

logger = logging.getLogger(__name__)

DEFAULT_ALERT_LIMIT = 100


class AlertMergeStore:
    """
    Newest-first alert feed holding one alert per (node, alert type).

    An incoming alert replaces the stored one for its key only when it is
    strictly newer. Past the limit the oldest entries are evicted.
    """

    def __init__(self, limit: int = DEFAULT_ALERT_LIMIT) -> None:
        self.limit = limit
        self._by_key: dict[str, AlertEvent] = {}
        self._published: list[AlertEvent] = []

    @property
    def alerts(self) -> list[AlertEvent]:
        return list(self._published)

    def __len__(self) -> int:
        return len(self._published)

    def get(self, alert_id: str) -> AlertEvent | None:
        return next((a for a in self._published if a.id == alert_id), None)

    def merge(self, incoming: Iterable[AlertEvent]) -> list[AlertEvent]:
        changed = False
        for alert in incoming:
            existing = self._by_key.get(alert.key)
            if existing is None or alert.timestamp > existing.timestamp:
                self._by_key[alert.key] = alert
                changed = True

        if not changed:
            return self.alerts

        ordered = sorted(self._by_key.values(), key=lambda a: a.timestamp, reverse=True)
        if len(ordered) > self.limit:
            evicted = ordered[self.limit:]
            logger.debug("Alert feed over %d entries; evicting %d oldest", self.limit, len(evicted))
            for alert in evicted:
                del self._by_key[alert.key]
            ordered = ordered[: self.limit]

        self._published = ordered
        return self.alerts

    def acknowledge(self, alert_id: str) -> AlertEvent | None:
        alert = self.get(alert_id)
        if alert is not None:
            alert.acknowledged = True
        return alert
