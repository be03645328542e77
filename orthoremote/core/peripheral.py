"""Connection engine for a single ortho remote peripheral."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from orthoremote.core.errors import CommunicationError, CommunicationErrorCode, ControlValueError
from orthoremote.core.events import EventEmitter, PeripheralEvent
from orthoremote.core.midi import MidiEvent, MidiMessage, decode_packet, encode_packet
from orthoremote.core.model import (
    BATTERY_LEVEL_CHAR_UUID,
    BATTERY_SERVICE_UUID,
    BLE_MIDI_SERVICE_UUID,
    BUTTON_KEY,
    DEFAULT_BATTERY_LEVEL,
    DEVICE_CONNECT_TIMEOUT_S,
    MIDI_DATA_IO_CHAR_UUID,
    MODULATION_WHEEL_CONTROL,
    MODULATION_WHEEL_STEPS,
    PERIPHERAL_NAME,
    ConnectionState,
    normalize_uuid,
)
from orthoremote.transports.base import GattCharacteristic, GattService, Link

LOGGER = logging.getLogger(__name__)


def is_ortho_remote(link: Link) -> bool:
    return link.name == PERIPHERAL_NAME


def check_control_value(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MODULATION_WHEEL_STEPS:
        raise ControlValueError(
            f"write_control_value(value) should be between 0-{MODULATION_WHEEL_STEPS}, got {value!r}"
        )


class _ConnectionAttempt:
    """One in-flight connection bound to the link handle it started with.

    The attempt is stale once the owner's link has been swapped, or once it
    has been cancelled by `disconnect()`/`set_link()`. Cancelling fails the
    shared result with `Disconnected` and cancels the task driving the link.
    """

    def __init__(self, owner: OrthoRemotePeripheral, link: Link, result: asyncio.Future[bool]) -> None:
        self.owner = owner
        self.link = link
        self.result = result
        self.cancelled = False
        self.timed_out = False
        self.timer: asyncio.TimerHandle | None = None
        self.task: asyncio.Task[None] | None = None

    @property
    def stale(self) -> bool:
        return self.cancelled or self.link is not self.owner.link

    def check(self) -> None:
        if self.stale:
            raise CommunicationError(CommunicationErrorCode.DISCONNECTED, self.owner.id)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def fail(self, error: CommunicationError) -> None:
        self.cancel_timer()
        if not self.result.done():
            self.result.set_exception(error)


class OrthoRemotePeripheral(EventEmitter[PeripheralEvent]):
    """Turns a raw BLE link into a fully subscribed ortho remote connection."""

    advertisement_name = PERIPHERAL_NAME
    modulation_steps = MODULATION_WHEEL_STEPS

    def __init__(self, link: Link, *, connect_timeout_s: float = DEVICE_CONNECT_TIMEOUT_S) -> None:
        super().__init__(PeripheralEvent)
        if not is_ortho_remote(link):
            raise TypeError("OrthoRemotePeripheral(link) does not represent an ortho remote device")
        self._link: Link | None = link
        self._id = link.id
        self._state = ConnectionState.DISCONNECTED
        self._battery_level = DEFAULT_BATTERY_LEVEL
        self._connect_timeout_s = connect_timeout_s
        self._attempt: _ConnectionAttempt | None = None
        self._characteristics: dict[str, GattCharacteristic] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def link(self) -> Link | None:
        return self._link

    @property
    def connected_state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def battery_level(self) -> int | None:
        if self.is_connected:
            return self._battery_level
        return None

    @property
    def rssi(self) -> int | None:
        if self.is_connected and self._link is not None:
            return self._link.rssi
        return None

    def set_link(self, link: Link | None) -> None:
        """Replace the physical link backing this device.

        A different link tears down the current one; if a connection was
        established a `DISCONNECT` event is emitted. Any in-flight connection
        attempt on the previous link fails with `Disconnected`.
        """
        if link is not None and not is_ortho_remote(link):
            raise TypeError("set_link(link) does not represent an ortho remote device")
        if link is self._link:
            return

        was_connected = self.is_connected
        old_link = self._link
        self._cancel_attempt()
        if old_link is not None:
            old_link.remove_all_listeners()
            old_link.disconnect()
        self._state = ConnectionState.DISCONNECTED
        self._characteristics.clear()
        self._link = link
        LOGGER.debug("Device %s link replaced", self.id)
        if was_connected:
            self.emit(PeripheralEvent.DISCONNECT)

    def disconnect(self) -> None:
        self._cancel_attempt()
        if self._link is not None:
            self._link.remove_all_listeners()
            self._link.disconnect()
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        self._characteristics.clear()
        LOGGER.debug("Disconnected from device %s", self.id)
        self.emit(PeripheralEvent.DISCONNECT)

    async def connect(self) -> bool:
        """Connect to the device if not already connected.

        Concurrent callers share the outcome of a single attempt.
        """
        if self._link is None:
            raise CommunicationError(CommunicationErrorCode.NOT_AVAILABLE, self.id)

        if self._state is not ConnectionState.DISCONNECTED and self._attempt is not None:
            return await asyncio.shield(self._attempt.result)

        link = self._link
        if not link.connectable:
            raise CommunicationError(CommunicationErrorCode.NOT_CONNECTABLE, self.id)

        LOGGER.debug("Connecting to device %s", self.id)
        loop = asyncio.get_running_loop()
        attempt = _ConnectionAttempt(self, link, loop.create_future())
        self._attempt = attempt
        self._state = ConnectionState.CONNECTING
        attempt.timer = loop.call_later(self._connect_timeout_s, self._on_connect_timeout, attempt)
        attempt.task = loop.create_task(self._run_attempt(attempt))
        return await asyncio.shield(attempt.result)

    async def write_control_value(self, value: int) -> bool:
        """Set the modulation wheel value (0-127) on the device.

        Returns `False` when the MIDI characteristic is not present.
        """
        check_control_value(value)
        self._require_connected()

        characteristic = self._characteristics.get(MIDI_DATA_IO_CHAR_UUID)
        if characteristic is None:
            LOGGER.debug("Device %s has no MIDI data characteristic", self.id)
            return False

        packet = encode_packet(
            MidiEvent(
                timestamp=int(time.time() * 1000),
                message=MidiMessage.CONTROL_CHANGE,
                channel=0,
                data=(MODULATION_WHEEL_CONTROL, value),
            )
        )
        try:
            await characteristic.write(packet, without_response=True)
        except Exception as exc:
            error = CommunicationError(CommunicationErrorCode.BLUETOOTH, self.id, cause=exc)
            self.emit(PeripheralEvent.ERROR, error)
            raise error from exc
        return True

    # Connection sequence

    async def _run_attempt(self, attempt: _ConnectionAttempt) -> None:
        try:
            completed = await self._establish(attempt)
        except CommunicationError as exc:
            self._fail_attempt(attempt, exc)
        except Exception as exc:
            self._fail_attempt(
                attempt,
                CommunicationError(CommunicationErrorCode.BLUETOOTH, self.id, cause=exc),
            )
        else:
            if not completed or attempt.result.done():
                return
            attempt.cancel_timer()
            self._state = ConnectionState.CONNECTED
            attempt.result.set_result(True)
            LOGGER.debug("Device %s connected", self.id)
            self.emit(PeripheralEvent.CONNECT)

    async def _establish(self, attempt: _ConnectionAttempt) -> bool:
        link = attempt.link
        try:
            await link.connect()
        except Exception as exc:
            attempt.cancel_timer()
            if attempt.timed_out:
                return False
            raise CommunicationError(CommunicationErrorCode.BLUETOOTH, self.id, cause=exc) from exc

        attempt.cancel_timer()
        if attempt.timed_out:
            return False
        attempt.check()

        link.on_disconnect(lambda: self._on_link_disconnect(link))
        link.on_rssi_update(self._on_rssi_update)

        services = await link.discover_services()
        LOGGER.debug("Discovered %d services on device %s", len(services), self.id)
        attempt.check()

        await asyncio.gather(*(service.discover_characteristics() for service in services))
        attempt.check()

        bindings: list[Awaitable[None]] = []
        for service in services:
            service_uuid = normalize_uuid(service.uuid)
            if service_uuid == BATTERY_SERVICE_UUID:
                bindings.extend(self._bind_battery_service(attempt, service.characteristics))
            elif service_uuid == BLE_MIDI_SERVICE_UUID:
                bindings.extend(self._bind_midi_service(attempt, service.characteristics))
            else:
                LOGGER.debug("Unknown service %s on device %s", service.uuid, self.id)
        await asyncio.gather(*bindings)
        attempt.check()
        return True

    def _fail_attempt(self, attempt: _ConnectionAttempt, error: CommunicationError) -> None:
        if attempt.stale:
            attempt.fail(CommunicationError(CommunicationErrorCode.DISCONNECTED, self.id))
            return
        LOGGER.debug("Connection to device %s failed: %s", self.id, error)
        attempt.fail(error)
        self.disconnect()

    def _on_connect_timeout(self, attempt: _ConnectionAttempt) -> None:
        attempt.timed_out = True
        attempt.timer = None
        if attempt.result.done():
            return
        if attempt.stale:
            attempt.fail(CommunicationError(CommunicationErrorCode.DISCONNECTED, self.id))
            return
        LOGGER.debug("Connection to device %s timed out", self.id)
        attempt.fail(CommunicationError(CommunicationErrorCode.CONNECTION_TIMEOUT, self.id))
        self.disconnect()

    def _cancel_attempt(self) -> None:
        attempt, self._attempt = self._attempt, None
        if attempt is None:
            return
        attempt.cancelled = True
        attempt.fail(CommunicationError(CommunicationErrorCode.DISCONNECTED, self.id))
        if attempt.task is not None:
            attempt.task.cancel()

    def _require_connected(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return
        if self._state is ConnectionState.CONNECTING:
            raise CommunicationError(CommunicationErrorCode.NOT_CONNECTED, self.id)
        raise CommunicationError(CommunicationErrorCode.DISCONNECTED, self.id)

    # Characteristic binding

    def _bind_battery_service(
        self,
        attempt: _ConnectionAttempt,
        characteristics: Sequence[GattCharacteristic],
    ) -> list[Awaitable[None]]:
        bindings: list[Awaitable[None]] = []
        for characteristic in characteristics:
            uuid = normalize_uuid(characteristic.uuid)
            if uuid == BATTERY_LEVEL_CHAR_UUID:
                self._characteristics[uuid] = characteristic
                bindings.append(self._subscribe(attempt, characteristic, self._on_battery_level_notify))
                bindings.append(self._read_battery_level(attempt, characteristic))
            else:
                LOGGER.debug("Unknown characteristic %s on device %s", characteristic.uuid, self.id)
        return bindings

    def _bind_midi_service(
        self,
        attempt: _ConnectionAttempt,
        characteristics: Sequence[GattCharacteristic],
    ) -> list[Awaitable[None]]:
        bindings: list[Awaitable[None]] = []
        for characteristic in characteristics:
            uuid = normalize_uuid(characteristic.uuid)
            if uuid == MIDI_DATA_IO_CHAR_UUID:
                self._characteristics[uuid] = characteristic
                bindings.append(self._subscribe(attempt, characteristic, self._on_midi_data_notify))
            else:
                LOGGER.debug("Unknown characteristic %s on device %s", characteristic.uuid, self.id)
        return bindings

    async def _subscribe(
        self,
        attempt: _ConnectionAttempt,
        characteristic: GattCharacteristic,
        handler: Callable[[bytes], None],
    ) -> None:
        LOGGER.debug("Subscribing to characteristic %s", characteristic.uuid)

        def on_data(data: bytes, is_notification: bool) -> None:
            if is_notification:
                handler(data)

        characteristic.on_data(on_data)
        try:
            await characteristic.subscribe()
        except Exception as exc:
            LOGGER.debug("Device %s error: %s", self.id, exc)
            attempt.check()
            error = CommunicationError(CommunicationErrorCode.BLUETOOTH, self.id, cause=exc)
            self.emit(PeripheralEvent.ERROR, error)
            raise error from exc
        attempt.check()

    async def _read_battery_level(self, attempt: _ConnectionAttempt, characteristic: GattCharacteristic) -> None:
        try:
            data = await characteristic.read()
        except Exception as exc:
            # Battery telemetry is not critical to the connection.
            LOGGER.debug("Device %s error: %s", self.id, exc)
            if not attempt.stale:
                self.emit(
                    PeripheralEvent.ERROR,
                    CommunicationError(CommunicationErrorCode.BLUETOOTH, self.id, cause=exc),
                )
            return
        attempt.check()
        self._on_battery_level_notify(data)

    # Notification handlers

    def _on_link_disconnect(self, link: Link) -> None:
        if link is self._link:
            LOGGER.debug("Link to device %s dropped", self.id)
            self.disconnect()

    def _on_rssi_update(self, rssi: int | None) -> None:
        self.emit(PeripheralEvent.RSSI, self.rssi)

    def _on_battery_level_notify(self, data: bytes) -> None:
        if not data:
            return
        self._battery_level = data[0]
        self.emit(PeripheralEvent.BATTERY_LEVEL, data[0])

    def _on_midi_data_notify(self, data: bytes) -> None:
        midi = decode_packet(data)
        if midi is None:
            return

        LOGGER.debug(
            "MIDI message=%s channel=%d data=%02x %02x",
            midi.message.name,
            midi.channel,
            midi.data[0],
            midi.data[1],
        )
        self.emit(PeripheralEvent.MIDI, midi, bytes(data))

        if midi.message in (MidiMessage.NOTE_ON, MidiMessage.NOTE_OFF):
            key = midi.data[0] & 0x7F
            if key == BUTTON_KEY:
                pressed = midi.message is MidiMessage.NOTE_ON
                self.emit(PeripheralEvent.BUTTON_DOWN if pressed else PeripheralEvent.BUTTON_UP)
        elif midi.message is MidiMessage.CONTROL_CHANGE:
            controller = midi.data[0] & 0x7F
            if controller == MODULATION_WHEEL_CONTROL:
                value = midi.data[1] & 0x7F
                self.emit(PeripheralEvent.ROTATE, value, value / MODULATION_WHEEL_STEPS)
