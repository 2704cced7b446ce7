from __future__ import annotations

from .models import NotificationState, Severity

SOUND_CUES = {
    Severity.CRITICAL: "alert-critical",
    Severity.WARNING: "alert-warning",
    Severity.INFO: "alert-info",
}


class NotificationGate:
    """
    Tracks the most severe alert level shown and when the UI should play a sound.

    A new alert notifies unless it would downgrade the level currently shown.
    should_notify only clears through acknowledge(); current_severity never
    moves down within a session.
    """

    def __init__(self) -> None:
        self.current_severity = Severity.INFO
        self.should_notify = False

    def offer(self, severity: Severity) -> bool:
        if severity.rank < self.current_severity.rank:
            return False
        self.current_severity = severity
        self.should_notify = True
        return True

    def acknowledge(self) -> None:
        self.should_notify = False

    @property
    def state(self) -> NotificationState:
        return NotificationState(
            severity=self.current_severity,
            should_notify=self.should_notify,
            sound=SOUND_CUES[self.current_severity],
        )
