"""
Perimeter sensor agent package.

This package contains the gateway-side service that:
- reads the sensor gateway's serial stream (or realtime store snapshots)
- frames lines and drops firmware boot noise
- decodes per-node sensor readings and keeps node state
- turns active alert flags into a de-duplicated, severity-ranked alert feed
- exposes nodes, alerts and notification state over a small HTTP API

The CLI only wires the serial path. sensor_agent.realtime is a library seam:
an embedding application that owns a realtime database client wraps it in a
RealtimeStore and starts a RealtimeBridge over the same SensorPipeline.
"""
