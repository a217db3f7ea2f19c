"""Contract the session requires from the underlying radio link."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

NotifyHandler = Callable[[bytes], None]
DisconnectHandler = Callable[[], None]


class Transport(ABC):
    """A single-characteristic write / notify link.

    Lifecycle::

        await transport.connect(on_disconnect)
        mtu = await transport.request_mtu(512)
        await transport.subscribe(on_notify)
        await transport.write(frame)   # returns once acknowledged
        await transport.disconnect()

    Callbacks are invoked on the event loop that drives the session.
    The link rejects overlapping writes; the session guarantees at most
    one :meth:`write` is in flight.
    """

    @abstractmethod
    async def connect(self, on_disconnect: DisconnectHandler) -> None:
        """Bring the link up; ``on_disconnect`` fires on any later loss."""

    @abstractmethod
    async def request_mtu(self, size: int) -> int:
        """Ask for a transfer unit of ``size`` bytes; return the negotiated one."""

    @abstractmethod
    async def subscribe(self, on_notify: NotifyHandler) -> None:
        """Enable notifications, delivering each fragment to ``on_notify``."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write one frame and return when the peer acknowledged it."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear the link down. Safe to call more than once."""
