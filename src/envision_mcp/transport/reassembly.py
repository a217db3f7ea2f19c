"""Bounded accumulator turning notification fragments into frames."""

from __future__ import annotations

import logging

from ..protocol.framing import MAX_FRAME_SIZE, SYNC, Frame, ParseStatus, parse_frame

logger = logging.getLogger(__name__)


class ReassemblyBuffer:
    """Collects notification bytes and yields every complete, valid frame.

    Garbage and frames failing the checksum are dropped from the front.
    The buffer never holds more than ``limit`` bytes: on overflow it
    resynchronizes to the next sync marker past the head, or clears.
    """

    def __init__(self, limit: int = 4 * MAX_FRAME_SIZE) -> None:
        self._limit = limit
        self._data = bytearray()

    def __len__(self) -> int:
        return len(self._data)

    @property
    def limit(self) -> int:
        return self._limit

    def clear(self) -> None:
        self._data.clear()

    def feed(self, fragment: bytes) -> list[Frame]:
        """Append ``fragment`` and return the frames it completed, in order."""
        self._data += fragment
        frames: list[Frame] = []
        while self._data:
            result = parse_frame(self._data)
            if result.consumed:
                del self._data[: result.consumed]
            if result.status is ParseStatus.OK:
                frames.append(result.frame)
                continue
            if result.status is ParseStatus.CHECKSUM_INVALID:
                logger.warning("Dropped %d bytes failing checksum", result.consumed)
            if len(self._data) > self._limit:
                self._resync()
                continue
            break
        return frames

    def _resync(self) -> None:
        size = len(self._data)
        index = self._data.find(SYNC, 1)
        if index < 0 or size - index > self._limit:
            self._data.clear()
        else:
            del self._data[:index]
        logger.warning(
            "Reassembly buffer overflow (%d > %d bytes), %d bytes kept",
            size,
            self._limit,
            len(self._data),
        )
