from __future__ import annotations

import re
from enum import Enum

from .models import SensorReading, normalize_alert_type


class WireProtocol(str, Enum):
    # "node3:1" / "[node1:1 node2:0]" - a single motion flag per node
    MOTION = "motion"
    # "node3:gun:1" / "[node1:gun:1 node2:drone:0]" - one flag per alert type
    TYPED = "typed"


class DecodeError(ValueError):
    """A sensor line (or every token in it) could not be decoded."""


FLAG_VALUES = {"0": False, "1": True}

_TOKEN = r"[^\s:\[\]]+"
_PAIR_RE = re.compile(rf"^{_TOKEN}:[01]$")
_TRIPLE_RE = re.compile(rf"^{_TOKEN}:[A-Za-z_]+:[01]$")
_BRACKETED_RE = re.compile(r"^\[(?P<body>[^\[\]]*)\]$")
_NODE_ID_RE = re.compile(rf"^{_TOKEN}$")


def _parse_flag(value: str) -> bool:
    if value not in FLAG_VALUES:
        raise DecodeError(f"Flag value must be 0 or 1, got {value!r}")
    return FLAG_VALUES[value]


def _parse_node_id(raw: str) -> str:
    node_id = raw.strip().lower()
    if not node_id:
        raise DecodeError("Empty node id")
    if not _NODE_ID_RE.match(node_id):
        raise DecodeError(f"Invalid node id {raw!r}")
    return node_id


def parse_token(token: str, protocol: WireProtocol) -> SensorReading:
    """
    Parse one "nodeId:value" (motion) or "nodeId:alertType:value" (typed) token.

    Raises DecodeError on malformed input or an unknown alert type.
    """
    parts = token.split(":")

    if protocol is WireProtocol.MOTION:
        if len(parts) != 2:
            raise DecodeError(f"Expected nodeId:value, got {token!r}")
        node_raw, value = parts
        return SensorReading(node_id=_parse_node_id(node_raw), flag=_parse_flag(value))

    if len(parts) != 3:
        raise DecodeError(f"Expected nodeId:alertType:value, got {token!r}")
    node_raw, type_raw, value = parts
    try:
        alert_type = normalize_alert_type(type_raw)
    except ValueError as e:
        raise DecodeError(f"Unknown alert type {type_raw!r}") from e

    return SensorReading(
        node_id=_parse_node_id(node_raw),
        flag=_parse_flag(value),
        alert_type=alert_type,
    )


def parse_sensor_line(line: str, protocol: WireProtocol = WireProtocol.MOTION) -> list[SensorReading]:
    """
    Parse one framed, post-boot line into node readings.

    This function is PURE (no I/O, no logging) so it's easy to unit test.
    A bracketed line keeps its valid tokens and skips the rest; it fails only
    when no token survives. Raises DecodeError on malformed input.
    """
    line = line.strip()
    if not line:
        raise DecodeError("Empty line")

    bracketed = _BRACKETED_RE.match(line)
    if bracketed is None:
        if len(line.split()) != 1:
            raise DecodeError(f"Unbracketed line must hold one reading, got {line!r}")
        return [parse_token(line, protocol)]

    readings: list[SensorReading] = []
    for token in bracketed.group("body").split():
        try:
            readings.append(parse_token(token, protocol))
        except DecodeError:
            continue

    if not readings:
        raise DecodeError(f"No valid readings in {line!r}")
    return readings


def looks_like_sensor_line(line: str) -> bool:
    """
    True if the line has the shape of any accepted sensor wire format.

    Shape only: alert type names and the deployment's protocol are not checked.
    """
    line = line.strip()
    bracketed = _BRACKETED_RE.match(line)
    tokens = bracketed.group("body").split() if bracketed else [line]
    return any(_PAIR_RE.match(t) or _TRIPLE_RE.match(t) for t in tokens)
