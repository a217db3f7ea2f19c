"""TLV frame builder and parser for the Envision BLE link.

Frame layout::

    +----------+---------+---------+-------------------+-------+
    |   Sync   | Command | Length  |      Payload      | CRC8  |
    | 2 bytes  | 2 bytes | 2 bytes | 0-512 bytes       | 1 byte|
    +----------+---------+---------+-------------------+-------+

- Sync: 0xAA 0x55
- Command: little-endian 16-bit message ID
- Length: little-endian payload length
- CRC8: two's-complement negation of the byte sum of command, length
  and payload, masked to 8 bits (not a polynomial CRC)

Inbound data is a notification stream, so :func:`parse_frame` scans for
the sync marker, tolerates leading garbage and resynchronizes past frames
that fail the checksum.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

SYNC = b"\xAA\x55"
HEADER_SIZE = 6  # sync(2) + command(2) + length(2)
OVERHEAD = HEADER_SIZE + 1
MAX_PAYLOAD_SIZE = 512
MAX_FRAME_SIZE = OVERHEAD + MAX_PAYLOAD_SIZE


@dataclass(frozen=True)
class Frame:
    """A parsed protocol frame."""

    command: int
    payload: bytes = b""

    def __repr__(self) -> str:
        return (
            f"Frame(command={self.command}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


class ParseStatus(enum.Enum):
    OK = "ok"
    INCOMPLETE = "incomplete"
    CHECKSUM_INVALID = "checksum_invalid"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of scanning a buffer for one frame.

    ``consumed`` is the number of leading bytes the caller may drop: any
    garbage before the frame plus, on success, the frame itself.
    """

    status: ParseStatus
    frame: Frame | None = None
    consumed: int = 0

    @property
    def ok(self) -> bool:
        return self.status is ParseStatus.OK


def compute_checksum(command: int, length: int, payload: bytes) -> int:
    """Negated byte sum of command, length and payload, masked to 8 bits."""
    total = (command & 0xFF) + ((command >> 8) & 0xFF)
    total += (length & 0xFF) + ((length >> 8) & 0xFF)
    total += sum(b & 0xFF for b in payload)
    return -total & 0xFF


def build_frame(command: int, payload: bytes = b"") -> bytes:
    """Build a single TLV frame.

    Args:
        command: 16-bit message ID.
        payload: Command-specific payload bytes (at most 512).

    Returns:
        ``7 + len(payload)`` bytes ready to write to the TX characteristic.
    """
    if not 0 <= command <= 0xFFFF:
        raise ValueError(f"Command must be 0-65535, got {command}")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload must be at most {MAX_PAYLOAD_SIZE} bytes, got {len(payload)}"
        )
    payload = bytes(payload)
    length = len(payload)
    checksum = compute_checksum(command, length, payload)
    return (
        SYNC
        + command.to_bytes(2, "little")
        + length.to_bytes(2, "little")
        + payload
        + bytes([checksum])
    )


def parse_frame(data: bytes | bytearray) -> ParseResult:
    """Locate and validate the first complete frame in ``data``.

    Returns:
        ``OK`` with the frame and the bytes consumed through its CRC byte;
        ``INCOMPLETE`` when no sync marker is present or the frame at the
        first candidate offset needs more bytes (``consumed`` then covers
        only the garbage in front of it); ``CHECKSUM_INVALID`` when every
        candidate frame in the buffer was rejected.
    """
    rejected = False
    start = data.find(SYNC)
    while start >= 0:
        if len(data) - start < OVERHEAD:
            return ParseResult(ParseStatus.INCOMPLETE, consumed=start)

        command = int.from_bytes(data[start + 2 : start + 4], "little")
        length = int.from_bytes(data[start + 4 : start + 6], "little")

        # Oversized length can only come from a false sync match
        if length <= MAX_PAYLOAD_SIZE:
            end = start + HEADER_SIZE + length
            if len(data) <= end:
                return ParseResult(ParseStatus.INCOMPLETE, consumed=start)

            payload = bytes(data[start + HEADER_SIZE : end])
            if compute_checksum(command, length, payload) == data[end]:
                return ParseResult(
                    ParseStatus.OK,
                    frame=Frame(command=command, payload=payload),
                    consumed=end + 1,
                )

        rejected = True
        start = data.find(SYNC, start + 1)

    # Keep a trailing 0xAA, it may be the first half of the next sync
    consumed = len(data) - 1 if data[-1:] == SYNC[:1] else len(data)
    status = ParseStatus.CHECKSUM_INVALID if rejected else ParseStatus.INCOMPLETE
    return ParseResult(status, consumed=consumed)
