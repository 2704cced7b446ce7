from datetime import datetime, timedelta, timezone

import pytest

from sensor_agent.config import AgentSettings
from sensor_agent.pipeline import SensorPipeline
from sensor_agent.transport import SerialTransportSession


class FakeTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """
    Stand-in for both the wall clock and loop.call_later.
    advance() moves time forward and fires every timer that is due.
    """

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0
        self.timers = []

    def __call__(self):
        return self.now

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.elapsed + delay, callback, args)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        target = self.elapsed + seconds
        while True:
            due = sorted(
                (t for t in self.timers if not t.cancelled and t.when <= target),
                key=lambda t: t.when,
            )
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self._move_to(timer.when)
            timer.callback(*timer.args)
        self._move_to(target)

    def _move_to(self, elapsed):
        self.now += timedelta(seconds=elapsed - self.elapsed)
        self.elapsed = elapsed

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cfg():
    return AgentSettings(gateway_id="gateway-001", site_name="North Fence", serial_port=None)


@pytest.fixture
def pipeline(cfg, clock):
    return SensorPipeline(cfg, call_later=clock.call_later, clock=clock)


class FakeSerial:
    """Replays scripted reads; raises an item that is an exception. Closes itself when the script runs out."""

    def __init__(self, reads, **kwargs):
        self.kwargs = kwargs
        self._reads = list(reads)
        self.is_open = True

    @property
    def in_waiting(self):
        return len(self._reads[0]) if self._reads and isinstance(self._reads[0], bytes) else 0

    def read(self, size=1):
        if not self._reads:
            self.is_open = False
            return b""
        item = self._reads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.is_open = False


@pytest.fixture
def scripted_session():
    """
    Build a SerialTransportSession over FakeSerial. Each open() replays the
    next script; session.opened records the open() arguments.
    """

    def make(*scripts):
        remaining = list(scripts)
        opened = []

        def factory(**kwargs):
            opened.append(kwargs)
            return FakeSerial(remaining.pop(0) if remaining else [], **kwargs)

        session = SerialTransportSession(serial_factory=factory)
        session.opened = opened
        return session

    return make
