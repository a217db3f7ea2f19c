"""BLE link to an Envision device via ``bleak``.

The device exposes one write characteristic (TX, host to device) and one
notify characteristic (RX, device to host). Writes use the
write-with-response procedure so that completion of
:meth:`BleakTransport.write` is the link-layer acknowledgement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic

from .base import DisconnectHandler, NotifyHandler, Transport

logger = logging.getLogger(__name__)

UUID_TX = "75568951-b1a7-47d5-af5c-4d7ed8188f74"
UUID_RX = "1afcc197-0425-4b24-807d-0a3516c86e36"
UUID_BOOT = "def01d15-4baa-465d-99a6-69a4054e9c91"
DEVICE_NAME_PREFIX = "ENVISION"
CONNECT_TIMEOUT = 10.0


@dataclass
class DeviceInfo:
    """Basic link information for a connected device."""

    address: str = ""
    name: str = ""
    mtu: int = 0

    @property
    def is_envision(self) -> bool:
        return self.name.upper().startswith(DEVICE_NAME_PREFIX)


class BleakTransport(Transport):
    """:class:`Transport` over a ``bleak`` GATT client.

    Usage::

        transport = BleakTransport("AA:BB:CC:DD:EE:FF")
        async with TransportSession(transport) as session:
            ...
    """

    def __init__(
        self,
        address: str,
        tx_uuid: str = UUID_TX,
        rx_uuid: str = UUID_RX,
        timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._address = address
        self._tx_uuid = tx_uuid
        self._rx_uuid = rx_uuid
        self._timeout = timeout
        self._client: BleakClient | None = None
        self._device_info = DeviceInfo(address=address)

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    async def connect(self, on_disconnect: DisconnectHandler) -> None:
        def _disconnected(_client: BleakClient) -> None:
            logger.info("Device %s disconnected", self._address)
            on_disconnect()

        client = BleakClient(
            self._address,
            disconnected_callback=_disconnected,
            timeout=self._timeout,
        )
        await client.connect()
        self._client = client
        self._device_info = DeviceInfo(
            address=self._address,
            name=getattr(client, "name", "") or "",
        )
        if self._device_info.name and not self._device_info.is_envision:
            logger.warning(
                "Device %s advertises as %r, expected an %s device",
                self._address, self._device_info.name, DEVICE_NAME_PREFIX,
            )
        if self.in_bootloader:
            logger.warning(
                "Device %s exposes the bootloader characteristic; link commands may be ignored",
                self._address,
            )
        logger.info("Connected via bleak: %s", self._address)

    @property
    def in_bootloader(self) -> bool:
        """True if the connected device advertises the bootloader characteristic."""
        if self._client is None:
            return False
        return self._client.services.get_characteristic(UUID_BOOT) is not None

    async def request_mtu(self, size: int) -> int:
        client = self._require_client()
        # BlueZ only exchanges the MTU on demand; other backends negotiate on connect
        backend = getattr(client, "_backend", None)
        acquire = getattr(backend, "_acquire_mtu", None)
        if acquire is not None:
            await acquire()
        mtu = client.mtu_size
        self._device_info.mtu = mtu
        logger.debug("MTU %d (requested %d)", mtu, size)
        return mtu

    async def subscribe(self, on_notify: NotifyHandler) -> None:
        client = self._require_client()

        def _notified(_char: BleakGATTCharacteristic, data: bytearray) -> None:
            on_notify(bytes(data))

        await client.start_notify(self._rx_uuid, _notified)
        logger.debug("Subscribed to RX notifications")

    async def write(self, data: bytes) -> None:
        client = self._require_client()
        await client.write_gatt_char(self._tx_uuid, data, response=True)

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning("Error closing device: %s", e)
        finally:
            self._client = None
            logger.info("Disconnected")

    def _require_client(self) -> BleakClient:
        if self._client is None:
            raise ConnectionError("Not connected to device")
        return self._client
