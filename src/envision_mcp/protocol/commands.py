"""Message ID constants and payload/frame builders.

Each device-bound command has its own 16-bit message ID; commands that
produce a reply are answered under a separate host-bound ID (usually
the request ID + 1).
"""

from __future__ import annotations

import struct
import time
from enum import Enum, IntEnum
from typing import Iterator

from ..models.geometry import LineSegment, PointOfInterest
from .framing import MAX_PAYLOAD_SIZE, build_frame


class Command(IntEnum):
    """Message identifiers."""

    LINE_DESCRIPTOR = 32
    LINE_COORDINATES = 33
    POINT_OF_INTEREST = 34
    TIME_SYNC = 35
    FLUSH = 36
    TARGET = 37
    START_STAGE_THREE = 41
    STOP_STAGE_THREE = 42
    GPS_POSITION = 53
    START_STAGE_ONE = 60
    STOP_STAGE_ONE = 61
    START_STAGE_FOUR = 80
    STOP_STAGE_FOUR = 81
    GET_BRIGHTNESS = 85
    BRIGHTNESS_RESPONSE = 86
    START_STAGE_FIVE = 110
    STOP_STAGE_FIVE = 111
    GET_CALIBRATION = 119
    CALIBRATION_RESPONSE = 120
    GET_USER_CONFIG = 121
    USER_CONFIG_RESPONSE = 122
    GET_MAGNETIC_FIELD = 123
    MAGNETIC_FIELD_RESPONSE = 124
    START_STAGE_SIX = 130
    STOP_STAGE_SIX = 131
    STAGE_SIX_ACK = 132
    FORMAT_PARTITION = 133
    FILE_LIST_REQUEST = 140
    FILE_LIST_RESPONSE = 141
    FILE_READ_REQUEST = 142
    FILE_READ_RESPONSE = 143
    FILE_WRITE_REQUEST = 144
    FILE_WRITE_RESPONSE = 145
    FILE_DELETE_REQUEST = 146
    FILE_DELETE_RESPONSE = 147
    FILE_INFO_REQUEST = 148
    FILE_INFO_RESPONSE = 149


class Stage(Enum):
    """Device processing stages, each with a (start, stop) command pair."""

    ONE = (Command.START_STAGE_ONE, Command.STOP_STAGE_ONE)
    THREE = (Command.START_STAGE_THREE, Command.STOP_STAGE_THREE)
    FOUR = (Command.START_STAGE_FOUR, Command.STOP_STAGE_FOUR)
    FIVE = (Command.START_STAGE_FIVE, Command.STOP_STAGE_FIVE)
    SIX = (Command.START_STAGE_SIX, Command.STOP_STAGE_SIX)

    @property
    def start_command(self) -> Command:
        return self.value[0]

    @property
    def stop_command(self) -> Command:
        return self.value[1]


# Query request -> response ID
RESPONSE_FOR: dict[Command, Command] = {
    Command.GET_BRIGHTNESS: Command.BRIGHTNESS_RESPONSE,
    Command.GET_CALIBRATION: Command.CALIBRATION_RESPONSE,
    Command.GET_USER_CONFIG: Command.USER_CONFIG_RESPONSE,
    Command.GET_MAGNETIC_FIELD: Command.MAGNETIC_FIELD_RESPONSE,
    Command.FILE_LIST_REQUEST: Command.FILE_LIST_RESPONSE,
    Command.FILE_READ_REQUEST: Command.FILE_READ_RESPONSE,
    Command.FILE_WRITE_REQUEST: Command.FILE_WRITE_RESPONSE,
    Command.FILE_DELETE_REQUEST: Command.FILE_DELETE_RESPONSE,
    Command.FILE_INFO_REQUEST: Command.FILE_INFO_RESPONSE,
}

FLUSH_START = 0x00
FLUSH_END = 0x01

COORDINATE_WIDTH = 4  # bytes per coordinate value (float32)
MAX_POINTS_PER_CHUNK = 60  # 480 bytes of points per coordinate frame
FILE_READ_CHUNK = 480
FILE_WRITE_CHUNK = 256

_LINE_DESCRIPTOR = struct.Struct("<HHBffI")
_COORDINATE_HEADER = struct.Struct("<HH")
_POINT = struct.Struct("<ff")
_POI_HEADER = struct.Struct("<Bfffff")
_FILE_READ_HEADER = struct.Struct("<IH")
_FILE_WRITE_HEADER = struct.Struct("<IB")


def build_command(command: Command, payload: bytes = b"") -> bytes:
    """Build a single frame for a command."""
    return build_frame(command.value, payload)


# ─── SIMPLE COMMANDS ──────────────────────────────────────────────────

def build_flush_start() -> bytes:
    return build_command(Command.FLUSH, bytes([FLUSH_START]))


def build_flush_end() -> bytes:
    return build_command(Command.FLUSH, bytes([FLUSH_END]))


def build_time_sync(epoch: int | None = None) -> bytes:
    """Build a time sync command.

    Args:
        epoch: Unix time in seconds; defaults to now.
    """
    if epoch is None:
        epoch = int(time.time())
    if not 0 <= epoch <= 0xFFFFFFFF:
        raise ValueError(f"Epoch must fit in 32 bits, got {epoch}")
    return build_command(Command.TIME_SYNC, struct.pack("<I", epoch))


def build_gps_position(latitude: float, longitude: float) -> bytes:
    """Build a GPS position command (two float32: latitude, longitude)."""
    return build_command(Command.GPS_POSITION, struct.pack("<ff", latitude, longitude))


def build_target(azimuth: float, altitude: float) -> bytes:
    """Build a target command: reserved byte, then azimuth/altitude float32."""
    return build_command(Command.TARGET, struct.pack("<Bff", 0, azimuth, altitude))


def build_stage(stage: Stage, start: bool) -> bytes:
    command = stage.start_command if start else stage.stop_command
    return build_command(command)


def build_format_partition() -> bytes:
    return build_command(Command.FORMAT_PARTITION)


def build_query(command: Command) -> bytes:
    """Build an empty-payload query for one of the ``RESPONSE_FOR`` keys."""
    if command not in RESPONSE_FOR:
        raise ValueError(f"{command.name} is not a query command")
    return build_command(command)


# ─── LINE GEOMETRY ────────────────────────────────────────────────────

def build_line_descriptor(line: LineSegment) -> bytes:
    """Build the descriptor frame announcing a line's coordinate stream.

    Payload: reserved u16 (0), line index u16, coordinate width u8 (4),
    min/max azimuth float32, total point count u32.
    """
    payload = _LINE_DESCRIPTOR.pack(
        0,
        line.index,
        COORDINATE_WIDTH,
        line.azimuth_min,
        line.azimuth_max,
        len(line.points),
    )
    return build_command(Command.LINE_DESCRIPTOR, payload)


def chunk_line_points(
    line: LineSegment, max_points: int = MAX_POINTS_PER_CHUNK
) -> Iterator[bytes]:
    """Yield coordinate-chunk payloads for a line, in point order.

    Each payload is the line index (u16), the number of points in that
    chunk (u16), then azimuth/altitude float32 pairs.
    """
    if max_points < 1:
        raise ValueError(f"max_points must be positive, got {max_points}")
    points = line.points
    for offset in range(0, len(points), max_points):
        chunk = points[offset : offset + max_points]
        body = b"".join(_POINT.pack(p.azimuth, p.altitude) for p in chunk)
        yield _COORDINATE_HEADER.pack(line.index, len(chunk)) + body


def build_line_frames(line: LineSegment) -> list[bytes]:
    """Descriptor frame followed by every coordinate frame for one line."""
    frames = [build_line_descriptor(line)]
    frames.extend(
        build_command(Command.LINE_COORDINATES, payload)
        for payload in chunk_line_points(line)
    )
    return frames


# ─── POINTS OF INTEREST ───────────────────────────────────────────────

def build_point_of_interest(point: PointOfInterest) -> bytes:
    """Build a single POI frame: sector, five float32 fields, NUL-terminated name."""
    header = _POI_HEADER.pack(
        point.sector,
        point.azimuth,
        point.altitude,
        point.importance,
        point.elevation,
        point.distance,
    )
    return build_command(
        Command.POINT_OF_INTEREST, header + point.name.encode("utf-8") + b"\x00"
    )


# ─── FILE SYSTEM ──────────────────────────────────────────────────────

def _c_path(path: str) -> bytes:
    return path.encode("utf-8") + b"\x00"


def build_file_list(path: str) -> bytes:
    return build_command(Command.FILE_LIST_REQUEST, _c_path(path))


def build_file_info(path: str) -> bytes:
    return build_command(Command.FILE_INFO_REQUEST, _c_path(path))


def build_file_delete(path: str) -> bytes:
    return build_command(Command.FILE_DELETE_REQUEST, _c_path(path))


def build_file_read(path: str, offset: int, length: int = FILE_READ_CHUNK) -> bytes:
    """Build a read request for ``length`` bytes at ``offset``."""
    if not 0 < length <= FILE_READ_CHUNK:
        raise ValueError(f"Read length must be 1-{FILE_READ_CHUNK}, got {length}")
    header = _FILE_READ_HEADER.pack(offset, length)
    return build_command(Command.FILE_READ_REQUEST, header + _c_path(path))


def build_file_write(path: str, offset: int, chunk: bytes) -> bytes:
    """Build a write request carrying ``chunk`` at ``offset``.

    Payload: offset u32, path length u8, path bytes (no terminator), data.
    """
    path_bytes = path.encode("utf-8")
    if len(path_bytes) > 0xFF:
        raise ValueError(f"Path must be at most 255 bytes, got {len(path_bytes)}")
    if len(chunk) > FILE_WRITE_CHUNK:
        raise ValueError(
            f"Write chunk must be at most {FILE_WRITE_CHUNK} bytes, got {len(chunk)}"
        )
    payload = _FILE_WRITE_HEADER.pack(offset, len(path_bytes)) + path_bytes + chunk
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"Path too long for a write frame: {path!r}")
    return build_command(Command.FILE_WRITE_REQUEST, payload)
