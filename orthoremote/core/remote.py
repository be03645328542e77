"""High-level ortho remote device with button and rotation gestures."""

from __future__ import annotations

import time
from collections.abc import Callable

from orthoremote.core.errors import CommunicationError
from orthoremote.core.events import EventEmitter, PeripheralEvent, RemoteEvent
from orthoremote.core.midi import MidiEvent
from orthoremote.core.model import DEFAULT_ROTATION, LONG_CLICK_INTERVAL_S, MODULATION_WHEEL_STEPS
from orthoremote.core.peripheral import OrthoRemotePeripheral


class OrthoRemote(EventEmitter[RemoteEvent]):
    """An ortho remote from Teenage Engineering.

    Rotation is reported normalized (0.0-1.0) unless `normalize_rotation` is
    disabled, in which case the raw 0-127 value is used.
    """

    def __init__(
        self,
        peripheral: OrthoRemotePeripheral,
        *,
        normalize_rotation: bool = True,
        long_click_s: float = LONG_CLICK_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(RemoteEvent)
        self.peripheral = peripheral
        self.normalize_rotation = normalize_rotation
        self._long_click_s = long_click_s
        self._clock = clock
        self._rotation = DEFAULT_ROTATION
        self._pressed_at: float | None = None
        self._bind_to_peripheral(peripheral)

    @property
    def id(self) -> str:
        return self.peripheral.id

    @property
    def is_connected(self) -> bool:
        return self.peripheral.is_connected

    @property
    def battery_level(self) -> int | None:
        return self.peripheral.battery_level

    @property
    def rssi(self) -> int | None:
        return self.peripheral.rssi

    @property
    def rotation(self) -> float | int:
        if self.normalize_rotation:
            return self._rotation / MODULATION_WHEEL_STEPS
        return self._rotation

    @property
    def button_pressed(self) -> bool:
        return self._pressed_at is not None

    async def connect(self, *, normalize_rotation: bool | None = None) -> bool:
        if normalize_rotation is not None:
            self.normalize_rotation = normalize_rotation
        return await self.peripheral.connect()

    def disconnect(self) -> None:
        self.peripheral.disconnect()

    async def set_rotation(self, value: int) -> bool:
        """Write a raw 0-127 rotation value to the device."""
        return await self.peripheral.write_control_value(value)

    def _bind_to_peripheral(self, peripheral: OrthoRemotePeripheral) -> None:
        peripheral.on(PeripheralEvent.CONNECT, lambda: self.emit(RemoteEvent.CONNECT))
        peripheral.on(PeripheralEvent.DISCONNECT, self._on_disconnect)
        peripheral.on(PeripheralEvent.BATTERY_LEVEL, lambda level: self.emit(RemoteEvent.BATTERY_LEVEL, level))
        peripheral.on(PeripheralEvent.RSSI, lambda rssi: self.emit(RemoteEvent.RSSI, rssi))
        peripheral.on(PeripheralEvent.MIDI, self._on_midi)
        peripheral.on(PeripheralEvent.BUTTON_DOWN, self._on_button_pressed)
        peripheral.on(PeripheralEvent.BUTTON_UP, self._on_button_released)
        peripheral.on(PeripheralEvent.ROTATE, self._on_rotate)
        peripheral.on(PeripheralEvent.ERROR, self._on_error)

    def _on_midi(self, midi: MidiEvent, raw: bytes) -> None:
        self.emit(RemoteEvent.MIDI, midi, raw)

    def _on_button_pressed(self) -> None:
        self._pressed_at = self._clock()
        self.emit(RemoteEvent.BUTTON_PRESSED)

    def _on_button_released(self) -> None:
        pressed_at = self._pressed_at
        self.emit(RemoteEvent.BUTTON_RELEASED)
        if pressed_at is None:
            return
        self._pressed_at = None
        long_click = (self._clock() - pressed_at) >= self._long_click_s
        self.emit(RemoteEvent.LONG_CLICK if long_click else RemoteEvent.CLICK)

    def _on_rotate(self, raw: int, _normalized: float) -> None:
        self._rotation = raw
        self.emit(RemoteEvent.ROTATE, self.rotation, self.button_pressed)

    def _on_disconnect(self) -> None:
        self._rotation = DEFAULT_ROTATION
        self._pressed_at = None
        self.emit(RemoteEvent.DISCONNECT)

    def _on_error(self, error: CommunicationError) -> None:
        self.emit(RemoteEvent.ERROR, error)
