from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .models import (
    AlertType,
    Location,
    NetworkConnection,
    NetworkStatus,
    NodeStatus,
    SensorNode,
    SensorReading,
    empty_alert_flags,
)
from .sensor_parser import WireProtocol

logger = logging.getLogger(__name__)

LOCATION_JITTER_DEG = 0.01
NEARBY_LINKS = 2


@dataclass
class NodeUpdate:
    """
    Result of applying one reading to the registry.

    armed is set when the reading raised its flag; stamp identifies that
    arming so a later deferred clear can tell whether it is still current.
    """
    node: SensorNode
    alert_type: AlertType
    created: bool
    armed: bool
    stamp: int
    cleared: list[AlertType] = field(default_factory=list)


def _node_suffix(node_id: str) -> str:
    return node_id[4:] if node_id.startswith("node") else node_id


class NodeRegistry:
    """
    In-memory node state for one session.

    Nodes are created on first sight and only ever mutated afterwards. Every
    write to a (node, alert type) flag bumps an arming stamp used for
    compare-and-clear.
    """

    def __init__(
        self,
        protocol: WireProtocol = WireProtocol.MOTION,
        origin: Optional[Location] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.protocol = protocol
        self.origin = origin or Location(lat=21.0, lng=79.0)
        self._rng = rng or random.Random()
        self._nodes: dict[str, SensorNode] = {}
        self._stamps: dict[tuple[str, AlertType], int] = {}
        self._next_stamp = 0
        self._connections: list[NetworkConnection] = []

    # --- Published views ---

    @property
    def nodes(self) -> list[SensorNode]:
        return list(self._nodes.values())

    @property
    def connections(self) -> list[NetworkConnection]:
        return list(self._connections)

    def get(self, node_id: str) -> SensorNode | None:
        return self._nodes.get(node_id)

    def network_status(self) -> NetworkStatus:
        total = len(self._nodes)
        active = sum(1 for n in self._nodes.values() if n.status is NodeStatus.ONLINE)
        # Half-way ratios round up (1 of 8 online is 13)
        health = int(100 * active / total + 0.5) if total else 0
        return NetworkStatus(active_nodes=active, total_nodes=total, network_health=health)

    # --- Mutations ---

    def _bump(self, node_id: str, alert_type: AlertType) -> int:
        self._next_stamp += 1
        self._stamps[(node_id, alert_type)] = self._next_stamp
        return self._next_stamp

    def _new_node(self, node_id: str, now: datetime) -> SensorNode:
        suffix = _node_suffix(node_id)
        return SensorNode(
            id=node_id,
            name=f"Node #{suffix}",
            sector=f"Sector {suffix.upper()}",
            last_activity=now,
            location=Location(
                lat=self.origin.lat + self._rng.random() * LOCATION_JITTER_DEG,
                lng=self.origin.lng + self._rng.random() * LOCATION_JITTER_DEG,
            ),
        )

    def apply(self, reading: SensorReading, now: datetime) -> NodeUpdate:
        """
        Create or update the node named by a decoded reading.

        Motion protocol: raising the motion flag clears every other flag on the
        node (one exclusive flag per update). Typed protocol: only the named
        flag changes.
        """
        alert_type = reading.effective_type
        node = self._nodes.get(reading.node_id)
        created = node is None
        if node is None:
            node = self._new_node(reading.node_id, now)
            self._nodes[node.id] = node
            logger.info("New node registered: %s", node.id)

        node.status = NodeStatus.ONLINE
        node.last_activity = now

        cleared: list[AlertType] = []
        if self.protocol is WireProtocol.MOTION:
            for other, active in node.alerts.items():
                if other is not alert_type and active:
                    node.alerts[other] = False
                    self._bump(node.id, other)
                    cleared.append(other)

        node.alerts[alert_type] = reading.flag
        stamp = self._bump(node.id, alert_type)

        return NodeUpdate(
            node=node,
            alert_type=alert_type,
            created=created,
            armed=reading.flag,
            stamp=stamp,
            cleared=cleared,
        )

    def apply_snapshot(self, snapshot: SensorNode) -> list[tuple[AlertType, int]]:
        """
        Merge a full node record delivered by the realtime store.

        Returns (alert type, stamp) for every flag that went from false to true.
        Flags that stay raised across snapshots are not re-armed.
        """
        current = self._nodes.get(snapshot.id)
        previous = current.alerts if current is not None else empty_alert_flags()

        flags = empty_alert_flags()
        flags.update(snapshot.alerts)
        node = snapshot.model_copy(update={"alerts": flags})
        self._nodes[node.id] = node

        raised: list[tuple[AlertType, int]] = []
        for alert_type, active in flags.items():
            if active == previous.get(alert_type, False):
                continue
            stamp = self._bump(node.id, alert_type)
            if active:
                raised.append((alert_type, stamp))
        return raised

    def clear_flag(self, node_id: str, alert_type: AlertType, stamp: int) -> bool:
        """
        Compare-and-clear: lower the flag only if it is still the arming identified by stamp.

        Returns False (and changes nothing) when the flag was re-armed,
        already lowered, or the node is unknown.
        """
        node = self._nodes.get(node_id)
        if node is None or self._stamps.get((node_id, alert_type)) != stamp:
            return False
        if not node.alerts.get(alert_type, False):
            return False

        node.alerts[alert_type] = False
        self._bump(node_id, alert_type)
        return True

    def register_node(self, node: SensorNode, strength: Callable[[], int] | None = None) -> list[NetworkConnection]:
        """
        Add an operator-created node and link it to its nearest existing nodes.
        """
        if node.id in self._nodes:
            raise ValueError(f"Node {node.id!r} already exists")

        def distance(other: SensorNode) -> float:
            return math.hypot(
                other.location.lat - node.location.lat,
                other.location.lng - node.location.lng,
            )

        nearest = sorted(self._nodes.values(), key=distance)[:NEARBY_LINKS]
        strength = strength or (lambda: 80 + self._rng.randrange(15))

        links = [NetworkConnection(source=node.id, target=other.id, strength=strength()) for other in nearest]
        self._nodes[node.id] = node
        self._connections.extend(links)
        logger.info("Node %s added with %d link(s)", node.id, len(links))
        return links
