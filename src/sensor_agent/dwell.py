from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from .models import AlertType

logger = logging.getLogger(__name__)

DEFAULT_DWELL_SEC = 15.0


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


# Same shape as asyncio.AbstractEventLoop.call_later
CallLater = Callable[..., TimerHandle]

# Receives (node_id, alert_type, stamp); returns True if the flag was actually lowered.
ClearFlag = Callable[[str, AlertType, int], bool]


class FlagClearScheduler:
    """
    Lowers raised alert flags after a fixed dwell time.

    One pending timer per (node, alert type); arming again replaces it. The
    fired callback carries the stamp it was armed with and the clear itself is
    compare-and-clear, so a timer that outlives its arming is a no-op.
    """

    def __init__(
        self,
        call_later: CallLater,
        clear_flag: ClearFlag,
        dwell_sec: float = DEFAULT_DWELL_SEC,
        on_cleared: Callable[[str, AlertType], Any] | None = None,
    ) -> None:
        self._call_later = call_later
        self._clear_flag = clear_flag
        self._listeners: list[Callable[[str, AlertType], Any]] = [on_cleared] if on_cleared else []
        self.dwell_sec = dwell_sec
        self._pending: dict[tuple[str, AlertType], tuple[int, TimerHandle]] = {}

    def add_listener(self, listener: Callable[[str, AlertType], Any]) -> None:
        """Call listener(node_id, alert_type) whenever a flag is actually cleared."""
        self._listeners.append(listener)

    @property
    def pending(self) -> dict[tuple[str, AlertType], int]:
        """(node, alert type) -> stamp of the arming each pending timer belongs to."""
        return {key: stamp for key, (stamp, _) in self._pending.items()}

    def arm(self, node_id: str, alert_type: AlertType, stamp: int) -> None:
        key = (node_id, alert_type)
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous[1].cancel()

        handle = self._call_later(self.dwell_sec, self._fire, node_id, alert_type, stamp)
        self._pending[key] = (stamp, handle)

    def _fire(self, node_id: str, alert_type: AlertType, stamp: int) -> None:
        key = (node_id, alert_type)
        entry = self._pending.get(key)
        if entry is not None and entry[0] == stamp:
            del self._pending[key]

        if not self._clear_flag(node_id, alert_type, stamp):
            logger.debug("Stale clear for %s/%s (stamp %d); flag has moved on", node_id, alert_type.value, stamp)
            return

        logger.info("Alert flag %s/%s auto-cleared after %.0fs", node_id, alert_type.value, self.dwell_sec)
        for listener in self._listeners:
            listener(node_id, alert_type)

    def cancel_all(self) -> None:
        """Cancel every pending timer (process shutdown only)."""
        for _, handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
