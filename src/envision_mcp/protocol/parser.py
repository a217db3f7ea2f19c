"""Response payload decoders.

Each ``parse_*`` function takes the payload of a correlated response
frame and returns a decoded value, or ``None`` when the payload is too
short or reports a failure status.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from ..exceptions import ShortResponseError
from ..models.device import (
    CalibrationData,
    FileEntry,
    FileInfo,
    MagneticField,
    UserConfig,
)

logger = logging.getLogger(__name__)

STATUS_OK = 0
_ENTRY_HEADER = struct.Struct("<IBB")


@dataclass
class FileChunk:
    """Parsed file read response."""

    status: int
    data: bytes

    def __repr__(self) -> str:
        return f"FileChunk(status={self.status}, data_len={len(self.data)})"


def parse_brightness(payload: bytes) -> int | None:
    """Brightness is a single little-endian u16."""
    if len(payload) < 2:
        logger.warning("Brightness response too short: %d bytes", len(payload))
        return None
    return int.from_bytes(payload[:2], "little")


def _decode_record(record_cls, payload: bytes):
    try:
        return record_cls.from_bytes(payload)
    except ShortResponseError as e:
        logger.warning("%s", e)
        return None


def parse_calibration(payload: bytes) -> CalibrationData | None:
    return _decode_record(CalibrationData, payload)


def parse_user_config(payload: bytes) -> UserConfig | None:
    return _decode_record(UserConfig, payload)


def parse_magnetic_field(payload: bytes) -> MagneticField | None:
    return _decode_record(MagneticField, payload)


def parse_status(payload: bytes) -> int | None:
    """Leading status byte of write/delete responses."""
    if not payload:
        return None
    return payload[0]


def parse_file_list(payload: bytes) -> list[FileEntry] | None:
    """Parse a directory listing.

    Layout: status u8, entry count u16, then per entry size u32, attr u8,
    name length u8 and the name bytes. A listing cut short returns the
    entries decoded so far.
    """
    if len(payload) < 3 or payload[0] != STATUS_OK:
        return None

    count = int.from_bytes(payload[1:3], "little")
    entries: list[FileEntry] = []
    offset = 3
    for _ in range(count):
        if offset + _ENTRY_HEADER.size > len(payload):
            break
        size, attr, name_len = _ENTRY_HEADER.unpack_from(payload, offset)
        offset += _ENTRY_HEADER.size
        if offset + name_len > len(payload):
            break
        name = payload[offset : offset + name_len].decode("utf-8", errors="replace")
        offset += name_len
        entries.append(FileEntry(size=size, attr=attr, name=name))

    if len(entries) < count:
        logger.debug("File list truncated: %d of %d entries", len(entries), count)
    return entries


def parse_file_info(payload: bytes) -> FileInfo | None:
    """Status byte, then size u32 and attr u8 when at least 6 bytes long."""
    if not payload:
        return None
    status = payload[0]
    if len(payload) < 6:
        return FileInfo(status=status)
    size = int.from_bytes(payload[1:5], "little")
    return FileInfo(status=status, size=size, attr=payload[5])


def parse_file_read(payload: bytes) -> FileChunk | None:
    """Status byte, actual length u16, then that many data bytes."""
    if len(payload) < 3:
        return None
    length = int.from_bytes(payload[1:3], "little")
    return FileChunk(status=payload[0], data=bytes(payload[3 : 3 + length]))
