"""MCP server entry point for Envision devices.

Exposes the link commands as tools and resources via the Model Context
Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import EnvisionClient
from .config import LinkSettings
from .exceptions import LinkLostError
from .models.geometry import LineSegment, PointOfInterest
from .protocol.commands import Command, Stage
from .transport.ble_connection import BleakTransport
from .transport.session import TransportSession

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "envision",
    instructions="MCP server for Envision optical devices over Bluetooth LE",
)

# Global connection state
_client: EnvisionClient | None = None
_settings: LinkSettings | None = None


def _get_client() -> EnvisionClient:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.session.ready:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _client


def _get_settings() -> LinkSettings:
    """Link settings from the environment, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = LinkSettings.from_env()
    return _settings


def _sent(ok: bool, what: str) -> dict[str, Any]:
    if ok:
        return {"sent": True, "command": what}
    return {"sent": False, "command": what, "error": "Write not acknowledged"}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(address: str) -> dict[str, Any]:
    """Open a BLE link to an Envision device.

    Negotiates the MTU and enables notifications on the RX characteristic.

    Args:
        address: Device BLE address (or platform UUID on macOS).
    """
    global _client
    if _client is not None and _client.session.ready:
        return {"connected": True, "message": "Already connected"}

    try:
        settings = _get_settings()
    except ValueError as e:
        return {"connected": False, "error": str(e)}
    transport = BleakTransport(address, timeout=settings.connect_timeout)
    session = TransportSession(transport, settings)
    try:
        await session.open()
    except LinkLostError as e:
        return {"connected": False, "error": str(e)}

    _client = EnvisionClient(session)
    return {"connected": True, "address": address, "mtu": session.mtu}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the BLE link."""
    global _client
    if _client is None:
        return {"disconnected": True}
    await _client.session.close()
    _client = None
    return {"disconnected": True}


# ─── SIMPLE COMMANDS ─────────────────────────────────────────────────

@mcp.tool()
async def sync_time(epoch: int | None = None) -> dict[str, Any]:
    """Set the device clock.

    Args:
        epoch: Unix time in seconds (defaults to the host clock).
    """
    client = _get_client()
    return _sent(await client.sync_time(epoch), "time_sync")


@mcp.tool()
async def send_position(latitude: float, longitude: float) -> dict[str, Any]:
    """Send the observer's GPS position in decimal degrees."""
    client = _get_client()
    return _sent(await client.send_position(latitude, longitude), "gps_position")


@mcp.tool()
async def send_target(azimuth: float, altitude: float) -> dict[str, Any]:
    """Point the device at a target direction in degrees."""
    client = _get_client()
    return _sent(await client.send_target(azimuth, altitude), "target")


@mcp.tool()
async def flush() -> dict[str, Any]:
    """Clear uploaded line and POI data (flush start + flush end)."""
    client = _get_client()
    return _sent(await client.flush(), "flush")


@mcp.tool()
async def stage_command(stage: str, start: bool = True) -> dict[str, Any]:
    """Start or stop a device processing stage.

    Args:
        stage: One of ONE, THREE, FOUR, FIVE, SIX.
        start: True to start the stage, False to stop it.
    """
    try:
        selected = Stage[stage.upper()]
    except KeyError:
        return {"error": f"Unknown stage '{stage}'. Valid: {[s.name for s in Stage]}"}
    client = _get_client()
    if start:
        ok = await client.start_stage(selected)
    else:
        ok = await client.stop_stage(selected)
    return _sent(ok, f"{'start' if start else 'stop'}_stage_{selected.name.lower()}")


@mcp.tool()
async def format_partition() -> dict[str, Any]:
    """Format the device data partition. The device sends no reply."""
    client = _get_client()
    return _sent(await client.format_partition(), "format_partition")


# ─── QUERIES ─────────────────────────────────────────────────────────

@mcp.tool()
async def get_brightness() -> dict[str, Any]:
    """Read the display brightness."""
    brightness = await _get_client().get_brightness()
    if brightness is None:
        return {"error": "No brightness response from device"}
    return {"brightness": brightness}


@mcp.tool()
async def get_calibration() -> dict[str, Any]:
    """Read the 98-byte sensor calibration record."""
    calibration = await _get_client().get_calibration()
    if calibration is None:
        return {"error": "No calibration response from device"}
    return calibration.to_dict()


@mcp.tool()
async def get_user_config() -> dict[str, Any]:
    """Read the user configuration, including the device name."""
    config = await _get_client().get_user_config()
    if config is None:
        return {"error": "No user config response from device"}
    return config.to_dict()


@mcp.tool()
async def get_magnetic_field() -> dict[str, Any]:
    """Read the World Magnetic Model field at the device position.

    Includes horizontal intensity, inclination and declination derived
    from the north/east/down components.
    """
    field = await _get_client().get_magnetic_field()
    if field is None:
        return {"error": "No magnetic field response from device"}
    return field.to_dict()


# ─── FILE SYSTEM ─────────────────────────────────────────────────────

@mcp.tool()
async def list_files(path: str = "/") -> dict[str, Any]:
    """List a directory on the device.

    Args:
        path: Remote directory path.
    """
    entries = await _get_client().list_files(path)
    if entries is None:
        return {"error": f"File list failed for {path}"}
    return {"path": path, "entries": [e.to_dict() for e in entries]}


@mcp.tool()
async def file_info(path: str) -> dict[str, Any]:
    """Get status, size and attributes of a remote path."""
    info = await _get_client().file_info(path)
    if info is None:
        return {"error": f"No info response for {path}"}
    result = info.to_dict()
    result["path"] = path
    return result


@mcp.tool()
async def download_file(remote_path: str, output_path: str) -> dict[str, Any]:
    """Copy a file from the device to the local filesystem.

    Args:
        remote_path: Path on the device.
        output_path: Local destination file.
    """
    data = await _get_client().download_file(remote_path)
    if data is None:
        return {"error": f"Download failed for {remote_path}"}
    path = Path(output_path)
    path.write_bytes(data)
    return {"path": str(path), "size": len(data)}


@mcp.tool()
async def upload_file(input_path: str, remote_path: str) -> dict[str, Any]:
    """Copy a local file to the device.

    Args:
        input_path: Local source file.
        remote_path: Destination path on the device.
    """
    path = Path(input_path)
    if not path.exists():
        return {"error": f"File not found: {input_path}"}
    data = path.read_bytes()
    ok = await _get_client().upload_file(remote_path, data)
    if not ok:
        return {"uploaded": False, "error": f"Upload failed for {remote_path}"}
    return {"uploaded": True, "path": remote_path, "size": len(data)}


@mcp.tool()
async def delete_file(path: str) -> dict[str, Any]:
    """Delete a file on the device."""
    ok = await _get_client().delete_file(path)
    return {"deleted": ok, "path": path}


# ─── BULK UPLOADS ────────────────────────────────────────────────────

def _lines_from_args(lines: list[dict[str, Any]]) -> list[LineSegment]:
    return [LineSegment.from_dict(d, default_index=i) for i, d in enumerate(lines)]


def _points_from_args(points: list[dict[str, Any]]) -> list[PointOfInterest]:
    return [PointOfInterest.from_dict(d) for d in points]


@mcp.tool()
async def upload_lines(lines: list[dict[str, Any]]) -> dict[str, Any]:
    """Upload silhouette line geometry.

    Args:
        lines: Records of the form
               {"lineIndex": 0, "azMin": 10.0, "azMax": 20.0,
                "points": [{"azimuth": 10.0, "altitude": 1.5}, ...]}.
               lineIndex, azMin and azMax are optional.
    """
    try:
        segments = _lines_from_args(lines)
    except (KeyError, TypeError, ValueError) as e:
        return {"error": f"Invalid line data: {e}"}
    ok = await _get_client().upload_lines(segments)
    return {"uploaded": ok, "lines": len(segments)}


@mcp.tool()
async def upload_points(points: list[dict[str, Any]]) -> dict[str, Any]:
    """Upload points of interest.

    Args:
        points: Records with sectorIndex, azimut, altitude, importance,
                elevation, distance and name.
    """
    try:
        entries = _points_from_args(points)
    except (KeyError, TypeError, ValueError) as e:
        return {"error": f"Invalid POI data: {e}"}
    ok = await _get_client().upload_points(entries)
    return {"uploaded": ok, "points": len(entries)}


@mcp.tool()
async def run_initialization(
    latitude: float,
    longitude: float,
    lines: list[dict[str, Any]] | None = None,
    points: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Run the standard setup: flush, time sync, position, lines, POIs.

    Every step runs even if an earlier one fails; the result reports
    each step's outcome.
    """
    try:
        segments = _lines_from_args(lines) if lines is not None else None
        entries = _points_from_args(points) if points is not None else None
    except (KeyError, TypeError, ValueError) as e:
        return {"error": f"Invalid upload data: {e}"}
    report = await _get_client().run_initialization(
        latitude, longitude, lines=segments, points=entries
    )
    return report.to_dict()


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("envision://device/status")
def resource_device_status() -> str:
    """Connection state and negotiated MTU."""
    if _client is None:
        return json.dumps({"connected": False, "state": "disconnected"})
    session = _client.session
    return json.dumps({
        "connected": session.ready,
        "state": session.state.value,
        "mtu": session.mtu,
    })


@mcp.resource("envision://catalog/commands")
def resource_command_catalog() -> str:
    """All message identifiers known to the link."""
    commands = [{"id": c.value, "name": c.name} for c in Command]
    return json.dumps({"commands": commands, "count": len(commands)})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    try:
        settings = _get_settings()
    except ValueError as e:
        raise SystemExit(f"envision-mcp: {e}") from e
    logging.basicConfig(level=settings.log_level.upper())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
