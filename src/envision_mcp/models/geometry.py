"""Entities uploaded to the device: line geometry and points of interest.

Both are produced by an external parser (landscape / POI JSON, or
third-party geometry exports) and consumed read-only by the protocol
layer, so they are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

SECTOR_COUNT = 32
SECTOR_WIDTH = 360.0 / SECTOR_COUNT  # 11.25 degrees


def sector_for_azimuth(azimuth: float) -> int:
    """Return the 11.25-degree azimuth bin (0-31) containing ``azimuth``."""
    return int((azimuth % 360.0) // SECTOR_WIDTH) % SECTOR_COUNT


@dataclass(frozen=True)
class LinePoint:
    """One silhouette sample, in degrees."""

    azimuth: float
    altitude: float


@dataclass(frozen=True)
class LineSegment:
    """An ordered silhouette line with its azimuth extent."""

    index: int
    azimuth_min: float
    azimuth_max: float
    points: tuple[LinePoint, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 0xFFFF:
            raise ValueError(f"Line index must be 0-65535, got {self.index}")
        # Accept any iterable of points or (az, alt) pairs
        points = tuple(
            p if isinstance(p, LinePoint) else LinePoint(float(p[0]), float(p[1]))
            for p in self.points
        )
        object.__setattr__(self, "points", points)

    @classmethod
    def from_points(
        cls, index: int, points: Iterable[LinePoint | tuple[float, float]]
    ) -> LineSegment:
        """Build a line whose azimuth extent is taken from its points."""
        line = cls(index=index, azimuth_min=0.0, azimuth_max=0.0, points=tuple(points))
        if not line.points:
            return line
        azimuths = [p.azimuth for p in line.points]
        return cls(index, min(azimuths), max(azimuths), line.points)

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_index: int = 0) -> LineSegment:
        """Map a ``{lineIndex?, azMin?, azMax?, points: [{azimuth, altitude}]}`` record."""
        points = tuple(
            LinePoint(float(p["azimuth"]), float(p["altitude"])) for p in data["points"]
        )
        index = int(data.get("lineIndex", default_index))
        line = cls.from_points(index, points)
        return cls(
            index=index,
            azimuth_min=float(data.get("azMin", line.azimuth_min)),
            azimuth_max=float(data.get("azMax", line.azimuth_max)),
            points=points,
        )


@dataclass(frozen=True)
class PointOfInterest:
    """A named landmark placed in one of the 32 azimuth sectors."""

    sector: int
    azimuth: float
    altitude: float
    importance: float
    elevation: float
    distance: float
    name: str = field(default="")

    def __post_init__(self) -> None:
        if not 0 <= self.sector < SECTOR_COUNT:
            raise ValueError(f"Sector must be 0-{SECTOR_COUNT - 1}, got {self.sector}")
        if not 0.0 <= self.importance <= 1.0:
            raise ValueError(f"Importance must be 0-1, got {self.importance}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PointOfInterest:
        """Map a ``{sectorIndex, azimut, altitude, importance, elevation, distance, name}`` record.

        A missing ``sectorIndex`` is derived from the azimuth.
        """
        azimuth = float(data["azimut"])
        if "sectorIndex" in data:
            sector = int(data["sectorIndex"])
        else:
            sector = sector_for_azimuth(azimuth)
        return cls(
            sector=sector,
            azimuth=azimuth,
            altitude=float(data["altitude"]),
            importance=float(data["importance"]),
            elevation=float(data["elevation"]),
            distance=float(data["distance"]),
            name=str(data.get("name", "")),
        )
