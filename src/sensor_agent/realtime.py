"""
Realtime key-value store seam.

The dashboard's cloud database is an external collaborator; this module only
defines the subscribe/set/push contract the agent needs, an in-memory store
for development and tests, and the bridge that feeds node snapshots into the
pipeline and writes auto-cleared flags back.
"""

from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from .models import AlertType, SensorNode, normalize_alert_type
from .pipeline import SensorPipeline

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class RealtimeStore(Protocol):
    """Realtime database contract (paths are '/'-separated keys)."""

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Unsubscribe: ...

    def set(self, path: str, value: Any) -> None: ...

    def push(self, path: str, value: Any) -> str: ...


def _split(path: str) -> list[str]:
    return [p for p in path.split("/") if p]


class InMemoryRealtimeStore:
    """
    Dict-backed RealtimeStore. Subscribers of a path are called with the
    path's current value on subscribe and after every write at or below it.
    """

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._subscribers: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self._ids = itertools.count(1)

    def get(self, path: str) -> Any:
        node: Any = self._root
        for part in _split(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Unsubscribe:
        key = "/".join(_split(path))
        self._subscribers[key].append(callback)
        callback(self.get(key))

        def unsubscribe() -> None:
            if callback in self._subscribers[key]:
                self._subscribers[key].remove(callback)

        return unsubscribe

    def set(self, path: str, value: Any) -> None:
        parts = _split(path)
        if not parts:
            raise ValueError("Cannot set the store root")

        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = value
        self._notify(parts)

    def push(self, path: str, value: Any) -> str:
        key = f"k{next(self._ids):06d}"
        self.set(f"{path}/{key}", value)
        return key

    def _notify(self, parts: list[str]) -> None:
        # Every ancestor of the written path sees the change
        for depth in range(len(parts), -1, -1):
            key = "/".join(parts[:depth])
            for callback in list(self._subscribers.get(key, ())):
                callback(self.get(key))


class RealtimeBridge:
    """
    Connects a RealtimeStore to the pipeline.

    Node snapshots under `nodes` go to SensorPipeline.ingest_snapshot; flags
    the pipeline auto-clears are written back to nodes/<id>/alerts/<type>.
    """

    def __init__(self, store: RealtimeStore, pipeline: SensorPipeline, nodes_path: str = "nodes") -> None:
        self.store = store
        self.pipeline = pipeline
        self.nodes_path = nodes_path
        self._unsubscribe: Unsubscribe | None = None

    def start(self) -> None:
        self.pipeline.scheduler.add_listener(self.write_cleared_flag)
        self._unsubscribe = self.store.subscribe(self.nodes_path, self._on_nodes)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_nodes(self, data: Any) -> None:
        if not data:
            return

        nodes: list[SensorNode] = []
        for node_id, record in dict(data).items():
            try:
                nodes.append(_node_from_record(node_id, record))
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed node record %s: %s", node_id, e)

        self.pipeline.ingest_snapshot(nodes)

    def write_cleared_flag(self, node_id: str, alert_type: AlertType) -> None:
        self.store.set(f"{self.nodes_path}/{node_id}/alerts/{alert_type.value}", False)


def _node_from_record(node_id: str, record: Any) -> SensorNode:
    """
    Build a SensorNode from a store record, dropping alert keys outside the
    closed AlertType set and normalising legacy names.
    """
    if not isinstance(record, dict):
        raise TypeError(f"Expected a mapping, got {type(record).__name__}")

    alerts: dict[AlertType, bool] = {}
    for name, active in (record.get("alerts") or {}).items():
        try:
            alerts[normalize_alert_type(name)] = bool(active)
        except ValueError:
            logger.debug("Dropping unknown alert key %r on node %s", name, node_id)

    data = {k: v for k, v in record.items() if k != "alerts"}
    data.setdefault("id", node_id)
    if "signalStrength" in data:
        data.setdefault("signal_strength", data.pop("signalStrength"))
    if "lastActivity" in data:
        data.setdefault("last_activity", data.pop("lastActivity"))
    if "type" in data:
        data.setdefault("node_class", data.pop("type"))
    data["alerts"] = alerts
    return SensorNode.model_validate(data)
