"""Data models for uploaded entities and decoded device records."""

from .geometry import LinePoint, LineSegment, PointOfInterest, sector_for_azimuth
from .device import (
    CalibrationData,
    FileEntry,
    FileInfo,
    MagneticField,
    UserConfig,
)
