"""Typed device commands and multi-frame transfers over a session.

Every method returns a plain value: decoded records or ``None`` for
queries, ``True``/``False`` for commands without a decoded reply.
Timeouts, short responses and link loss are logged and reported as
``None``/``False``; nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Sequence

from .exceptions import LinkLostError
from .models.device import CalibrationData, FileEntry, FileInfo, MagneticField, UserConfig
from .models.geometry import LineSegment, PointOfInterest
from .protocol.commands import (
    FILE_READ_CHUNK,
    FILE_WRITE_CHUNK,
    RESPONSE_FOR,
    Command,
    Stage,
    build_file_delete,
    build_file_info,
    build_file_list,
    build_file_read,
    build_file_write,
    build_flush_end,
    build_flush_start,
    build_format_partition,
    build_gps_position,
    build_line_frames,
    build_point_of_interest,
    build_query,
    build_stage,
    build_target,
    build_time_sync,
)
from .protocol.parser import (
    STATUS_OK,
    parse_brightness,
    parse_calibration,
    parse_file_info,
    parse_file_list,
    parse_file_read,
    parse_magnetic_field,
    parse_status,
    parse_user_config,
)
from .transport.session import TransportSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _no_progress(done: int, total: int) -> None:
    pass


@dataclass
class InitializationReport:
    """Outcome of each step of :meth:`EnvisionClient.run_initialization`.

    Upload steps that were not requested stay ``None``.
    """

    flush_start: bool = False
    flush_end: bool = False
    time_sync: bool = False
    position: bool = False
    lines: bool | None = None
    points: bool | None = None

    @property
    def ok(self) -> bool:
        return all(v is not False for v in asdict(self).values())

    def to_dict(self) -> dict:
        d = asdict(self)
        d["ok"] = self.ok
        return d


class EnvisionClient:
    """Command protocol for one :class:`TransportSession`.

    Usage::

        async with TransportSession(BleakTransport(address)) as session:
            client = EnvisionClient(session)
            await client.sync_time()
            field = await client.get_magnetic_field()
    """

    def __init__(self, session: TransportSession) -> None:
        self._session = session

    @property
    def session(self) -> TransportSession:
        return self._session

    async def _send(self, frame: bytes, label: str) -> bool:
        try:
            ok = await self._session.send(frame)
        except LinkLostError as e:
            logger.warning("%s failed: %s", label, e)
            return False
        if not ok:
            logger.warning("%s not acknowledged", label)
        return ok

    async def _request(self, frame: bytes, expected: Command, label: str) -> bytes | None:
        try:
            payload = await self._session.request(frame, expected)
        except LinkLostError as e:
            logger.warning("%s failed: %s", label, e)
            return None
        if payload is None:
            logger.warning("%s: no response", label)
        return payload

    async def _query(self, command: Command, label: str) -> bytes | None:
        return await self._request(build_query(command), RESPONSE_FOR[command], label)

    # ─── SIMPLE COMMANDS ──────────────────────────────────────────────

    async def flush_start(self) -> bool:
        return await self._send(build_flush_start(), "Flush start")

    async def flush_end(self) -> bool:
        return await self._send(build_flush_end(), "Flush end")

    async def flush(self) -> bool:
        """Flush start followed by flush end, clearing uploaded device data."""
        started = await self.flush_start()
        ended = await self.flush_end()
        return started and ended

    async def sync_time(self, epoch: int | None = None) -> bool:
        """Set the device clock (Unix seconds, default now)."""
        return await self._send(build_time_sync(epoch), "Time sync")

    async def send_position(self, latitude: float, longitude: float) -> bool:
        return await self._send(build_gps_position(latitude, longitude), "GPS position")

    async def send_target(self, azimuth: float, altitude: float) -> bool:
        return await self._send(build_target(azimuth, altitude), "Target")

    async def start_stage(self, stage: Stage) -> bool:
        return await self._send(build_stage(stage, start=True), f"Start stage {stage.name}")

    async def stop_stage(self, stage: Stage) -> bool:
        return await self._send(build_stage(stage, start=False), f"Stop stage {stage.name}")

    async def format_partition(self) -> bool:
        """Format the data partition. The device never replies to this."""
        return await self._send(build_format_partition(), "Format partition")

    # ─── QUERIES ──────────────────────────────────────────────────────

    async def get_brightness(self) -> int | None:
        payload = await self._query(Command.GET_BRIGHTNESS, "Brightness")
        return None if payload is None else parse_brightness(payload)

    async def get_calibration(self) -> CalibrationData | None:
        payload = await self._query(Command.GET_CALIBRATION, "Calibration")
        return None if payload is None else parse_calibration(payload)

    async def get_user_config(self) -> UserConfig | None:
        payload = await self._query(Command.GET_USER_CONFIG, "User config")
        return None if payload is None else parse_user_config(payload)

    async def get_magnetic_field(self) -> MagneticField | None:
        payload = await self._query(Command.GET_MAGNETIC_FIELD, "Magnetic field")
        return None if payload is None else parse_magnetic_field(payload)

    # ─── BULK UPLOADS ─────────────────────────────────────────────────

    async def upload_lines(
        self,
        lines: Sequence[LineSegment],
        on_progress: ProgressCallback = _no_progress,
    ) -> bool:
        """Upload line geometry: per line a descriptor, then its coordinate chunks.

        The command lock is held for the whole upload so no other command
        interleaves with a line's frames. Progress is reported once per
        completed line. Stops at the first unacknowledged frame.
        """
        total = len(lines)
        try:
            async with self._session.transaction() as tx:
                for done, line in enumerate(lines, start=1):
                    for frame in build_line_frames(line):
                        if not await tx.send(frame):
                            logger.warning(
                                "Line upload stopped at line %d (%d/%d)",
                                line.index, done - 1, total,
                            )
                            return False
                    on_progress(done, total)
        except LinkLostError as e:
            logger.warning("Line upload failed: %s", e)
            return False
        logger.info("Uploaded %d lines", total)
        return True

    async def upload_points(
        self,
        points: Sequence[PointOfInterest],
        on_progress: ProgressCallback = _no_progress,
    ) -> bool:
        """Upload points of interest, one frame each, reporting progress per frame."""
        total = len(points)
        try:
            async with self._session.transaction() as tx:
                for done, point in enumerate(points, start=1):
                    if not await tx.send(build_point_of_interest(point)):
                        logger.warning(
                            "POI upload stopped at %r (%d/%d)", point.name, done - 1, total
                        )
                        return False
                    on_progress(done, total)
        except LinkLostError as e:
            logger.warning("POI upload failed: %s", e)
            return False
        logger.info("Uploaded %d points of interest", total)
        return True

    # ─── FILE SYSTEM ──────────────────────────────────────────────────

    async def list_files(self, path: str = "/") -> list[FileEntry] | None:
        payload = await self._request(
            build_file_list(path), Command.FILE_LIST_RESPONSE, f"List {path}"
        )
        return None if payload is None else parse_file_list(payload)

    async def file_info(self, path: str) -> FileInfo | None:
        payload = await self._request(
            build_file_info(path), Command.FILE_INFO_RESPONSE, f"Info {path}"
        )
        return None if payload is None else parse_file_info(payload)

    async def delete_file(self, path: str) -> bool:
        payload = await self._request(
            build_file_delete(path), Command.FILE_DELETE_RESPONSE, f"Delete {path}"
        )
        return payload is not None and parse_status(payload) == STATUS_OK

    async def download_file(
        self,
        path: str,
        on_progress: ProgressCallback = _no_progress,
    ) -> bytes | None:
        """Read a whole remote file in 480-byte pieces.

        Returns the file contents, or ``None`` if the file is missing or
        any read fails. A zero-length read ends the download early.
        """
        info = await self.file_info(path)
        if info is None or not info.exists:
            logger.warning("Download %s: file not available", path)
            return None

        total = info.size
        data = bytearray(total)
        offset = 0
        try:
            async with self._session.transaction() as tx:
                while offset < total:
                    length = min(FILE_READ_CHUNK, total - offset)
                    payload = await tx.request(
                        build_file_read(path, offset, length), Command.FILE_READ_RESPONSE
                    )
                    chunk = None if payload is None else parse_file_read(payload)
                    if chunk is None or chunk.status != STATUS_OK:
                        logger.warning("Download %s failed at offset %d", path, offset)
                        return None
                    if not chunk.data:
                        break
                    piece = chunk.data[: total - offset]
                    data[offset : offset + len(piece)] = piece
                    offset += len(piece)
                    on_progress(offset, total)
        except LinkLostError as e:
            logger.warning("Download %s failed: %s", path, e)
            return None
        logger.info("Downloaded %s (%d/%d bytes)", path, offset, total)
        return bytes(data)

    async def upload_file(
        self,
        path: str,
        data: bytes,
        on_progress: ProgressCallback = _no_progress,
    ) -> bool:
        """Write ``data`` to a remote file in 256-byte chunks.

        Each chunk must be answered with a zero status; anything else
        aborts the upload.
        """
        total = len(data)
        try:
            async with self._session.transaction() as tx:
                for offset in range(0, total, FILE_WRITE_CHUNK):
                    chunk = data[offset : offset + FILE_WRITE_CHUNK]
                    payload = await tx.request(
                        build_file_write(path, offset, chunk), Command.FILE_WRITE_RESPONSE
                    )
                    status = None if payload is None else parse_status(payload)
                    if status != STATUS_OK:
                        logger.warning(
                            "Upload %s aborted at offset %d (status %s)", path, offset, status
                        )
                        return False
                    on_progress(offset + len(chunk), total)
        except LinkLostError as e:
            logger.warning("Upload %s failed: %s", path, e)
            return False
        logger.info("Uploaded %s (%d bytes)", path, total)
        return True

    # ─── ORCHESTRATION ────────────────────────────────────────────────

    async def run_initialization(
        self,
        latitude: float,
        longitude: float,
        lines: Sequence[LineSegment] | None = None,
        points: Sequence[PointOfInterest] | None = None,
        on_line_progress: ProgressCallback = _no_progress,
        on_point_progress: ProgressCallback = _no_progress,
        epoch: int | None = None,
    ) -> InitializationReport:
        """Flush, sync time, send position, then upload lines and points.

        Each step runs even if an earlier one failed; the report records
        which ones succeeded.
        """
        report = InitializationReport()
        report.flush_start = await self.flush_start()
        report.flush_end = await self.flush_end()
        report.time_sync = await self.sync_time(epoch)
        report.position = await self.send_position(latitude, longitude)
        if lines is not None:
            report.lines = await self.upload_lines(lines, on_line_progress)
        if points is not None:
            report.points = await self.upload_points(points, on_point_progress)
        logger.info("Initialization finished: %s", report)
        return report
