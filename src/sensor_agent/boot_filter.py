from __future__ import annotations

import logging
import re
from enum import Enum

from .sensor_parser import looks_like_sensor_line

logger = logging.getLogger(__name__)


class BootState(str, Enum):
    BOOTING = "booting"
    READY = "ready"


# ESP32 ROM/bootloader chatter printed on every power-up or reset.
BOOT_NOISE_PREFIXES = ("ets ", "rst:", "configsip:", "clk_drv:", "mode:", "load:")
BOOT_NOISE_PATTERNS = (
    re.compile(r"ho \d+ tail"),
    re.compile(r"Brownout detector"),
    re.compile(r"SPIWP:"),
)

# Lines that mean the firmware is up and sensor data follows.
BOOT_COMPLETE_PATTERNS = (
    re.compile(r"entry 0x[0-9a-fA-F]+"),
    re.compile(r"CPU startup complete"),
    re.compile(r"Application startup complete"),
    re.compile(r"Ready to receive data"),
)


def is_boot_noise(line: str) -> bool:
    return line.startswith(BOOT_NOISE_PREFIXES) or any(p.search(line) for p in BOOT_NOISE_PATTERNS)


def is_boot_complete(line: str) -> bool:
    return any(p.search(line) for p in BOOT_COMPLETE_PATTERNS)


class BootNoiseFilter:
    """
    Drops gateway boot output until the firmware is ready.

    BOOTING -> READY on a boot-complete line (dropped) or on the first line
    shaped like sensor data (forwarded). READY forwards everything. The
    transition is one-way until reset() is called for a new connection.
    """

    def __init__(self) -> None:
        self.state = BootState.BOOTING
        self.discarded = 0

    @property
    def ready(self) -> bool:
        return self.state is BootState.READY

    def accept(self, line: str) -> bool:
        """Return True if the line should go on to the decoder."""
        if self.state is BootState.READY:
            return True

        if is_boot_noise(line):
            logger.debug("Discarding boot line: %s", line)
            self.discarded += 1
            return False

        if is_boot_complete(line):
            logger.info("Gateway boot complete: %s", line)
            self.state = BootState.READY
            self.discarded += 1
            return False

        if looks_like_sensor_line(line):
            logger.info("Sensor data seen before boot banner; treating gateway as ready")
            self.state = BootState.READY
            return True

        logger.debug("Discarding pre-ready line: %s", line)
        self.discarded += 1
        return False

    def reset(self) -> None:
        self.state = BootState.BOOTING
