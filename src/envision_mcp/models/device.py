"""Fixed-layout records decoded from device responses.

All multi-byte fields are little-endian. ``from_bytes`` raises
:class:`~envision_mcp.exceptions.ShortResponseError` when the payload is
smaller than the layout requires; trailing bytes are ignored.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import ClassVar

from ..exceptions import ShortResponseError

DIRECTORY_ATTR = 0x10


def _require(data: bytes, size: int, record: str) -> None:
    if len(data) < size:
        raise ShortResponseError(
            f"{record} needs {size} bytes, got {len(data)}"
        )


@dataclass(frozen=True)
class CalibrationData:
    """Sensor calibration blob (98 bytes).

    Holds calibration flags, three-axis offsets and scales, the two
    calibration angles and the display offsets. Kept raw: the host only
    displays and round-trips it.
    """

    SIZE: ClassVar[int] = 98
    raw: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> CalibrationData:
        _require(data, cls.SIZE, "Calibration record")
        return cls(raw=bytes(data[: cls.SIZE]))

    def to_dict(self) -> dict:
        return {"raw_hex": self.raw.hex(" "), "raw_length": len(self.raw)}


@dataclass(frozen=True)
class UserConfig:
    """User configuration blob (68 bytes) with the device name at offset 36."""

    SIZE: ClassVar[int] = 68
    NAME_OFFSET: ClassVar[int] = 36
    NAME_SIZE: ClassVar[int] = 32

    raw: bytes
    device_name: str

    @classmethod
    def from_bytes(cls, data: bytes) -> UserConfig:
        _require(data, cls.SIZE, "User config record")
        raw = bytes(data[: cls.SIZE])
        name_field = raw[cls.NAME_OFFSET : cls.NAME_OFFSET + cls.NAME_SIZE]
        name = name_field.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
        return cls(raw=raw, device_name=name)

    def to_dict(self) -> dict:
        return {"device_name": self.device_name, "raw_hex": self.raw.hex(" ")}


@dataclass(frozen=True)
class MagneticField:
    """World Magnetic Model field vector at the device position.

    Components are in nanotesla; the derived angles are in degrees.
    """

    SIZE: ClassVar[int] = 17
    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<?ffff")

    success: bool
    north: float
    east: float
    down: float
    magnitude: float

    @classmethod
    def from_bytes(cls, data: bytes) -> MagneticField:
        _require(data, cls.SIZE, "Magnetic field record")
        success, north, east, down, magnitude = cls._LAYOUT.unpack_from(data)
        return cls(success, north, east, down, magnitude)

    @property
    def horizontal_intensity(self) -> float:
        return math.hypot(self.north, self.east)

    @property
    def inclination(self) -> float:
        return math.degrees(math.atan2(-self.down, self.horizontal_intensity))

    @property
    def declination(self) -> float:
        return math.degrees(math.atan2(self.east, self.north))

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "north": self.north,
            "east": self.east,
            "down": self.down,
            "magnitude": self.magnitude,
            "horizontal_intensity": self.horizontal_intensity,
            "inclination": self.inclination,
            "declination": self.declination,
        }


@dataclass(frozen=True)
class FileEntry:
    """One directory listing entry."""

    size: int
    attr: int
    name: str

    @property
    def is_directory(self) -> bool:
        return bool(self.attr & DIRECTORY_ATTR)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "attr": self.attr,
            "directory": self.is_directory,
        }


@dataclass(frozen=True)
class FileInfo:
    """Status, size and attribute of a remote path."""

    status: int
    size: int = 0
    attr: int = 0

    @property
    def exists(self) -> bool:
        return self.status == 0

    @property
    def is_directory(self) -> bool:
        return bool(self.attr & DIRECTORY_ATTR)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "size": self.size,
            "attr": self.attr,
            "directory": self.is_directory,
        }
