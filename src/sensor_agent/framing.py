from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

LINE_END = b"\n"


def extract_lines(buffer: bytearray) -> list[str]:
    """
    Extract as many complete newline-terminated lines as possible from buffer.

    Why this exists:
    - A serial port is a byte stream, not message-based.
    - One read can contain half a line (partial)
    - OR several lines back-to-back (coalesced)

    The trailing fragment without a terminator stays in buffer for the next read.
    Lines are split on bytes before decoding, so a UTF-8 character cut across
    two reads still decodes correctly. Blank lines are dropped.
    """
    lines: list[str] = []

    while True:
        end = buffer.find(LINE_END)
        if end == -1:
            # Not complete yet; keep buffering
            return lines

        line_bytes = buffer[:end]
        del buffer[: end + len(LINE_END)]

        # Strips "\r" from CRLF gateways as well as stray padding
        text = line_bytes.decode("utf-8", errors="replace").strip()
        if text:
            lines.append(text)


class LineFramer:
    """
    Per-connection line reassembly over a raw byte stream.
    """

    def __init__(self, max_buffer_bytes: int = 65536) -> None:
        self.max_buffer_bytes = max_buffer_bytes
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes received after the last complete line."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer.extend(chunk)
        lines = extract_lines(self._buffer)

        # Safety: prevent unbounded memory usage if a line never terminates
        if len(self._buffer) > self.max_buffer_bytes:
            logger.warning(
                "Partial line exceeded %d bytes; clearing buffer to recover",
                self.max_buffer_bytes,
            )
            self._buffer.clear()

        return lines

    def reset(self) -> None:
        """Drop any buffered partial line (used on reconnect)."""
        self._buffer.clear()
