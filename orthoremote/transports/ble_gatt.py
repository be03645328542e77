"""BLE radio and GATT link implementation backed by bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError

from orthoremote.core.model import PERIPHERAL_NAME
from orthoremote.transports.base import DataCallback, Link, RadioState

LOGGER = logging.getLogger(__name__)

# Keeps fire-and-forget tasks referenced until they finish.
_BACKGROUND_TASKS: set[asyncio.Task[Any]] = set()


def _spawn(coro: Coroutine[Any, Any, Any], *, description: str) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _BACKGROUND_TASKS.add(task)

    def _done(finished: asyncio.Task[Any]) -> None:
        _BACKGROUND_TASKS.discard(finished)
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is not None:
            LOGGER.warning("%s failed: %s", description, exc)

    task.add_done_callback(_done)


class BLEGATTCharacteristic:
    def __init__(self, link: BLEGATTLink, characteristic: BleakGATTCharacteristic) -> None:
        self._link = link
        self._characteristic = characteristic

    @property
    def uuid(self) -> str:
        return self._characteristic.uuid

    def on_data(self, callback: DataCallback) -> None:
        self._link._data_listeners.setdefault(self.uuid, []).append(callback)

    async def read(self) -> bytes:
        data = await self._link.client.read_gatt_char(self._characteristic)
        return bytes(data)

    async def write(self, data: bytes, *, without_response: bool = False) -> None:
        await self._link.client.write_gatt_char(self._characteristic, data, response=not without_response)

    async def subscribe(self) -> None:
        await self._link.client.start_notify(self._characteristic, self._on_notify)

    def _on_notify(self, _sender: BleakGATTCharacteristic, data: bytearray) -> None:
        for callback in list(self._link._data_listeners.get(self.uuid, [])):
            callback(bytes(data), True)


class BLEGATTService:
    def __init__(self, link: BLEGATTLink, service: BleakGATTService) -> None:
        self._link = link
        self._service = service
        self._characteristics: list[BLEGATTCharacteristic] = []

    @property
    def uuid(self) -> str:
        return self._service.uuid

    @property
    def characteristics(self) -> Sequence[BLEGATTCharacteristic]:
        return self._characteristics

    async def discover_characteristics(self) -> Sequence[BLEGATTCharacteristic]:
        # bleak resolves characteristics together with services on connect.
        self._characteristics = [
            BLEGATTCharacteristic(self._link, characteristic) for characteristic in self._service.characteristics
        ]
        return self._characteristics


class BLEGATTLink:
    """One advertising peripheral; a BleakClient is created per connection."""

    def __init__(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        self._device = device
        self._name = advertisement.local_name or device.name
        self._rssi: int | None = advertisement.rssi
        self._client: BleakClient | None = None
        self._disconnect_callbacks: list[Callable[[], None]] = []
        self._rssi_callbacks: list[Callable[[int | None], None]] = []
        self._data_listeners: dict[str, list[DataCallback]] = {}

    @property
    def id(self) -> str:
        return self._device.address

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def rssi(self) -> int | None:
        return self._rssi

    @property
    def connectable(self) -> bool:
        return True

    @property
    def client(self) -> BleakClient:
        if self._client is None:
            raise BleakError(f"Link {self.id} is not connected")
        return self._client

    def update(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        self._device = device
        self._name = advertisement.local_name or device.name or self._name
        if advertisement.rssi != self._rssi:
            self._rssi = advertisement.rssi
            for callback in list(self._rssi_callbacks):
                callback(self._rssi)

    async def connect(self) -> None:
        self._client = BleakClient(self._device, disconnected_callback=self._on_client_disconnected)
        await self._client.connect()

    def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        _spawn(client.disconnect(), description=f"Disconnect from {self.id}")

    async def discover_services(self) -> Sequence[BLEGATTService]:
        return [BLEGATTService(self, service) for service in self.client.services]

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks.append(callback)

    def on_rssi_update(self, callback: Callable[[int | None], None]) -> None:
        self._rssi_callbacks.append(callback)

    def remove_all_listeners(self) -> None:
        self._disconnect_callbacks.clear()
        self._rssi_callbacks.clear()
        self._data_listeners.clear()

    def _on_client_disconnected(self, client: BleakClient) -> None:
        if client is not self._client and self._client is not None:
            return
        for callback in list(self._disconnect_callbacks):
            callback()


class BLEGATTRadio:
    """Scanner-driven radio.

    bleak does not report adapter power state; the radio is assumed powered on
    until a scan fails to start, which is reported as powered off. A later
    successful scan start or `refresh_state()` check reports it powered on again.

    Only ortho remote links are cached per address; other advertisers get a
    fresh link for every sighting.
    """

    def __init__(self) -> None:
        self._state = RadioState.POWERED_ON
        self._scanner: BleakScanner | None = None
        self._checking = False
        self._links: dict[str, BLEGATTLink] = {}
        self._discover_callbacks: list[Callable[[Link], None]] = []
        self._state_callbacks: list[Callable[[RadioState], None]] = []

    @property
    def state(self) -> RadioState:
        return self._state

    def on_discover(self, callback: Callable[[Link], None]) -> None:
        self._discover_callbacks.append(callback)

    def on_state_change(self, callback: Callable[[RadioState], None]) -> None:
        self._state_callbacks.append(callback)

    def start_scanning(self) -> None:
        if self._scanner is not None:
            return
        self._scanner = BleakScanner(detection_callback=self._on_detection)
        _spawn(self._start(self._scanner), description="BLE scan start")

    def stop_scanning(self) -> None:
        scanner = self._scanner
        if scanner is None:
            return
        self._scanner = None
        _spawn(scanner.stop(), description="BLE scan stop")

    def refresh_state(self) -> None:
        if self._state is RadioState.POWERED_ON or self._checking:
            return
        self._checking = True
        _spawn(self._check_adapter(), description="BLE adapter check")

    async def _start(self, scanner: BleakScanner) -> None:
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            LOGGER.error("BLE scan error: %s", exc)
            if self._scanner is scanner:
                self._scanner = None
            self._set_state(RadioState.POWERED_OFF)
            return
        self._set_state(RadioState.POWERED_ON)

    async def _check_adapter(self) -> None:
        scanner = BleakScanner()
        try:
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.debug("BLE adapter still unavailable: %s", exc)
        else:
            self._set_state(RadioState.POWERED_ON)
        finally:
            self._checking = False

    def _set_state(self, state: RadioState) -> None:
        if state is self._state:
            return
        self._state = state
        for callback in list(self._state_callbacks):
            callback(state)

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        link = self._links.get(device.address)
        if link is not None:
            link.update(device, advertisement)
        else:
            link = BLEGATTLink(device, advertisement)
            if link.name == PERIPHERAL_NAME:
                self._links[device.address] = link
        for callback in list(self._discover_callbacks):
            callback(link)


async def drain_background_tasks() -> None:
    """Wait for pending disconnect and scan calls before the loop closes.

    Tasks spawned while draining, such as a scan start after the adapter comes
    back, are waited for too.
    """
    while True:
        pending = [task for task in _BACKGROUND_TASKS if not task.done()]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
