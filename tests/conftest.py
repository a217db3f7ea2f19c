"""
Test Configuration
==================

Pytest fixtures and an in-memory transport for exercising sessions and
the client without a radio.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from envision_mcp.config import LinkSettings
from envision_mcp.protocol.framing import build_frame, parse_frame
from envision_mcp.transport.base import Transport

Handler = Callable[[bytes], "bytes | None"]


class FakeTransport(Transport):
    """Scriptable stand-in for a BLE link.

    ``reply(request, response, handler)`` makes every written frame with
    command ``request`` answered by a ``response`` frame whose payload is
    ``handler(request_payload)`` (or a fixed ``bytes`` value). Replies
    are delivered on the next loop iteration, optionally split into
    ``fragment_size`` pieces.
    """

    def __init__(self, mtu: int = 512, fragment_size: int | None = None) -> None:
        self.mtu = mtu
        self.fragment_size = fragment_size
        self.written: list[bytes] = []
        self.ack = True
        self.fail_connect = False
        self.connected = False
        self.disconnect_calls = 0
        self._handlers: dict[int, tuple[int, Handler]] = {}
        self._on_notify = None
        self._on_disconnect = None

    async def connect(self, on_disconnect) -> None:
        if self.fail_connect:
            raise OSError("device not found")
        self.connected = True
        self._on_disconnect = on_disconnect

    async def request_mtu(self, size: int) -> int:
        return min(size, self.mtu)

    async def subscribe(self, on_notify) -> None:
        self._on_notify = on_notify

    async def write(self, data: bytes) -> None:
        if not self.ack:
            await asyncio.sleep(3600)
        self.written.append(bytes(data))
        result = parse_frame(data)
        if not result.ok or result.frame.command not in self._handlers:
            return
        response, handler = self._handlers[result.frame.command]
        payload = handler(result.frame.payload) if callable(handler) else handler
        if payload is not None:
            asyncio.get_running_loop().call_soon(
                self.notify, build_frame(int(response), payload)
            )

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.connected:
            self.drop_link()

    def reply(self, request: int, response: int, handler: Handler | bytes) -> None:
        self._handlers[int(request)] = (int(response), handler)

    def notify(self, data: bytes) -> None:
        """Push raw bytes to the subscriber, fragmented if configured."""
        if self._on_notify is None:
            return
        step = self.fragment_size or len(data) or 1
        for i in range(0, len(data), step):
            self._on_notify(data[i : i + step])

    def drop_link(self) -> None:
        self.connected = False
        if self._on_disconnect is not None:
            self._on_disconnect()

    def written_commands(self) -> list[int]:
        return [parse_frame(f).frame.command for f in self.written]

    def written_frames(self):
        return [parse_frame(f).frame for f in self.written]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for transports with a custom MTU or fragment size."""
    return FakeTransport


@pytest.fixture
def settings() -> LinkSettings:
    """Short timeouts so failure paths finish quickly."""
    return LinkSettings(write_timeout=0.05, response_timeout=0.2, connect_timeout=0.5)
