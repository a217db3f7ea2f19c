"""Link session: connection state machine, write serialization and
request/response correlation over a :class:`Transport`.

The wire carries no request IDs, so a response is matched to its request
only by message ID. Two locks keep that sound:

* the command lock serializes whole commands (and multi-frame
  transfers), so at most one response wait is ever outstanding;
* the write lock keeps at most one transport write in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator

from ..config import LinkSettings
from ..exceptions import LinkLostError, ProtocolViolationError, SessionStateError
from ..protocol.framing import Frame
from .base import Transport
from .reassembly import ReassemblyBuffer

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING, SessionState.CLOSED}),
    SessionState.CONNECTING: frozenset({SessionState.READY, SessionState.CLOSED}),
    SessionState.READY: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset({SessionState.CONNECTING}),
}


@dataclass
class PendingRequest:
    """The single outstanding response wait."""

    expected_command: int
    deadline: float
    future: asyncio.Future


class TransportSession:
    """Owns one link: its state, reassembly buffer and pending-request slot.

    Usage::

        async with TransportSession(BleakTransport(address)) as session:
            payload = await session.request(
                build_query(Command.GET_BRIGHTNESS), Command.BRIGHTNESS_RESPONSE
            )
    """

    def __init__(
        self,
        transport: Transport,
        settings: LinkSettings | None = None,
    ) -> None:
        self._transport = transport
        self._settings = settings or LinkSettings()
        self._state = SessionState.DISCONNECTED
        self._buffer = ReassemblyBuffer(self._settings.buffer_limit)
        self._pending: PendingRequest | None = None
        self._command_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._mtu: int | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def mtu(self) -> int | None:
        return self._mtu

    @property
    def settings(self) -> LinkSettings:
        return self._settings

    async def __aenter__(self) -> TransportSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ─── LIFECYCLE ────────────────────────────────────────────────────

    async def open(self) -> None:
        """Connect, negotiate the MTU and subscribe to notifications.

        Raises:
            SessionStateError: If the session is already connecting or ready.
            LinkLostError: If the link fails or drops before becoming ready.
        """
        if self._state in (SessionState.CONNECTING, SessionState.READY):
            raise SessionStateError(f"Session is already {self._state.value}")

        self._transition(SessionState.CONNECTING)
        self._buffer.clear()
        try:
            await asyncio.wait_for(
                self._transport.connect(self._on_link_lost),
                self._settings.connect_timeout,
            )
            self._on_connected()
            self._on_mtu(await self._transport.request_mtu(self._settings.mtu))
            await self._transport.subscribe(self._on_notification)
            self._on_subscribed()
        except (LinkLostError, asyncio.CancelledError):
            await self._abort_open()
            raise
        except Exception as e:
            await self._abort_open()
            raise LinkLostError(f"Could not open link: {e}") from e

    async def close(self) -> None:
        """Close the link and fail any outstanding request."""
        if self._state is not SessionState.CLOSED:
            self._on_link_lost()
        await self._transport.disconnect()

    async def _abort_open(self) -> None:
        if self._state is not SessionState.CLOSED:
            self._transition(SessionState.CLOSED)
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning("Error disconnecting after failed open: %s", e)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise SessionStateError(
                f"Invalid transition {self._state.value} -> {new_state.value}"
            )
        logger.debug("Session %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    # ─── TRANSPORT EVENTS ─────────────────────────────────────────────

    def _require_connecting(self, event: str) -> None:
        if self._state is not SessionState.CONNECTING:
            raise LinkLostError(f"Link lost before {event}")

    def _on_connected(self) -> None:
        self._require_connecting("MTU negotiation")
        logger.info("Link connected, requesting MTU %d", self._settings.mtu)

    def _on_mtu(self, mtu: int) -> None:
        self._require_connecting("notification subscription")
        self._mtu = mtu
        if mtu < self._settings.mtu:
            logger.warning("Negotiated MTU %d is below requested %d", mtu, self._settings.mtu)

    def _on_subscribed(self) -> None:
        self._require_connecting("ready")
        self._transition(SessionState.READY)
        logger.info("Session ready (MTU %s)", self._mtu)

    def _on_link_lost(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        self._buffer.clear()
        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(LinkLostError("Link lost while awaiting response"))
        logger.info("Session closed")

    def _on_notification(self, fragment: bytes) -> None:
        for frame in self._buffer.feed(fragment):
            self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> None:
        pending = self._pending
        if (
            pending is not None
            and not pending.future.done()
            and frame.command == pending.expected_command
        ):
            pending.future.set_result(frame.payload)
            return
        logger.debug("Discarding unsolicited %r", frame)

    # ─── COMMANDS ─────────────────────────────────────────────────────

    def _ensure_ready(self) -> None:
        if self._state is not SessionState.READY:
            raise LinkLostError(f"Session is {self._state.value}, not ready")

    async def send(self, frame: bytes) -> bool:
        """Write one frame; ``True`` once acknowledged, ``False`` on ack
        timeout or a failed write while the link stays up.

        Raises:
            LinkLostError: If the session is not ready or the link drops.
        """
        async with self._command_lock:
            return await self._send(frame)

    async def request(
        self,
        frame: bytes,
        expected_command: int,
        timeout: float | None = None,
    ) -> bytes | None:
        """Write ``frame`` and wait for the response carrying ``expected_command``.

        Returns:
            The response payload, or ``None`` if none arrived in time.

        Raises:
            LinkLostError: If the session is not ready or the link drops.
        """
        async with self._command_lock:
            return await self._request(frame, expected_command, timeout)

    async def await_response(
        self, expected_command: int, timeout: float | None = None
    ) -> bytes | None:
        """Wait for the next frame carrying ``expected_command``.

        Raises:
            ProtocolViolationError: If another wait is already outstanding.
            LinkLostError: If the session is not ready or the link drops.
        """
        self._ensure_ready()
        return await self._wait(self._register(expected_command, timeout))

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Hold the command lock across a multi-frame exchange."""
        async with self._command_lock:
            self._ensure_ready()
            tx = Transaction(self)
            try:
                yield tx
            finally:
                tx.close()

    async def _send(self, frame: bytes) -> bool:
        self._ensure_ready()
        async with self._write_lock:
            self._ensure_ready()
            try:
                await asyncio.wait_for(
                    self._transport.write(frame), self._settings.write_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Write not acknowledged within %.1fs (%d bytes)",
                    self._settings.write_timeout,
                    len(frame),
                )
                return False
            except Exception as e:
                if self._state is not SessionState.READY:
                    raise LinkLostError(f"Link lost during write: {e}") from e
                logger.warning("Write failed (%d bytes): %s", len(frame), e)
                return False
        logger.debug("Wrote %d bytes", len(frame))
        return True

    async def _request(
        self, frame: bytes, expected_command: int, timeout: float | None
    ) -> bytes | None:
        self._ensure_ready()
        # Registered before writing so a fast reply is not missed
        pending = self._register(expected_command, timeout)
        try:
            await self._send(frame)
        except BaseException:
            self._release(pending)
            raise
        return await self._wait(pending)

    def _register(self, expected_command: int, timeout: float | None) -> PendingRequest:
        if self._pending is not None:
            raise ProtocolViolationError(
                f"Response {self._pending.expected_command} is already awaited"
            )
        if timeout is None:
            timeout = self._settings.response_timeout
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            expected_command=int(expected_command),
            deadline=loop.time() + timeout,
            future=loop.create_future(),
        )
        self._pending = pending
        return pending

    def _release(self, pending: PendingRequest) -> None:
        if self._pending is pending:
            self._pending = None
        if not pending.future.done():
            pending.future.cancel()

    async def _wait(self, pending: PendingRequest) -> bytes | None:
        try:
            remaining = pending.deadline - asyncio.get_running_loop().time()
            if remaining <= 0 and not pending.future.done():
                raise asyncio.TimeoutError
            return await asyncio.wait_for(pending.future, max(remaining, 0))
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for response %d", pending.expected_command)
            return None
        finally:
            self._release(pending)


class Transaction:
    """Command-lock holder handed out by :meth:`TransportSession.transaction`.

    Only valid inside its ``async with`` block.
    """

    def __init__(self, session: TransportSession) -> None:
        self._session = session
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise SessionStateError("Transaction used after its block exited")

    async def send(self, frame: bytes) -> bool:
        self._check_open()
        return await self._session._send(frame)

    async def request(
        self,
        frame: bytes,
        expected_command: int,
        timeout: float | None = None,
    ) -> bytes | None:
        self._check_open()
        return await self._session._request(frame, expected_command, timeout)
