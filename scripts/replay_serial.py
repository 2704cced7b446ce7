#!/usr/bin/env python3
"""
Replay a captured gateway serial log through the sensor pipeline.

Usage:
    python scripts/replay_serial.py capture.txt [chunk_size]

Each read of chunk_size bytes is fed as one transport chunk, so captures can
be replayed with arbitrary chunk boundaries. Flag auto-clears are not
simulated (there is no event loop running the dwell timers).
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sensor_agent.config import AgentSettings
from sensor_agent.pipeline import SensorPipeline


class _NoTimer:
    def cancel(self) -> None:
        pass


def replay(path: str, chunk_size: int = 64) -> None:
    """Feed a capture file through the pipeline and print what comes out."""
    pipeline = SensorPipeline(AgentSettings(), call_later=lambda *args: _NoTimer())

    data = Path(path).read_bytes()
    print(f"Replaying {len(data)} bytes from {path} in {chunk_size}-byte chunks")
    print()

    for start in range(0, len(data), chunk_size):
        for alert in pipeline.feed_bytes(data[start:start + chunk_size]):
            print(f"  [{alert.severity.value:8}] {alert.node_id:10} {alert.description}")

    status = pipeline.network_status()
    print()
    print(f"Boot state:      {pipeline.boot_filter.state.value}")
    print(f"Lines decoded:   {pipeline.lines_decoded}")
    print(f"Decode failures: {pipeline.decode_failures}")
    print(f"Nodes:           {status.active_nodes}/{status.total_nodes} online ({status.network_health}%)")
    print(f"Alert feed:      {len(pipeline.alerts)} entries")
    print(f"Notify:          {pipeline.notification.should_notify} ({pipeline.notification.severity.value})")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    chunk = int(sys.argv[2]) if len(sys.argv) > 2 else 64
    replay(sys.argv[1], chunk_size=chunk)
