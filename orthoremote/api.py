"""Stable public API for building tooling on top of orthoremote.

This module is the supported integration surface for third-party callers.
Synchronous callers use `Client`; asyncio applications can drive
`DeviceDiscoveryManager` and the `OrthoRemote` devices it yields directly.
"""

from __future__ import annotations

from orthoremote.core.config import LoadedConfig, load_config
from orthoremote.core.discovery import DeviceDiscoveryManager
from orthoremote.core.errors import (
    CommunicationError,
    CommunicationErrorCode,
    ConfigLoadError,
    ConfigValidationError,
    ControlValueError,
    DeviceSelectionError,
    DiscoveryStoppedError,
    DiscoveryTimeoutError,
    OrthoRemoteError,
)
from orthoremote.core.events import DiscoveryEvent, PeripheralEvent, RemoteEvent, SessionEvent
from orthoremote.core.midi import MidiEvent, MidiMessage, decode_packet, encode_packet
from orthoremote.core.model import (
    ConnectionState,
    DetectedRemote,
    DiscoveryOptions,
    DiscoveryState,
    RemoteConfig,
    RotationResult,
)
from orthoremote.core.peripheral import OrthoRemotePeripheral
from orthoremote.core.remote import OrthoRemote
from orthoremote.core.service import EventCallback, RemoteService
from orthoremote.core.session import DeviceDiscoverySession
from orthoremote.transports.base import Radio
from orthoremote.transports.ble_gatt import BLEGATTRadio

__all__ = [
    "OrthoRemoteError",
    "CommunicationError",
    "CommunicationErrorCode",
    "ConfigLoadError",
    "ConfigValidationError",
    "ControlValueError",
    "DeviceSelectionError",
    "DiscoveryStoppedError",
    "DiscoveryTimeoutError",
    "DiscoveryEvent",
    "PeripheralEvent",
    "RemoteEvent",
    "SessionEvent",
    "MidiEvent",
    "MidiMessage",
    "decode_packet",
    "encode_packet",
    "ConnectionState",
    "DetectedRemote",
    "DiscoveryOptions",
    "DiscoveryState",
    "RemoteConfig",
    "RotationResult",
    "LoadedConfig",
    "load_config",
    "DeviceDiscoveryManager",
    "DeviceDiscoverySession",
    "OrthoRemote",
    "OrthoRemotePeripheral",
    "BLEGATTRadio",
    "Client",
]


class Client:
    """Public client for interacting with ortho remote devices.

    A `Client` wraps configuration loading, discovery and the connection
    engine behind blocking calls intended for scripts and other frontends.
    Each call runs its own event loop and disconnects before returning.
    """

    def __init__(
        self,
        *,
        radio: Radio | None = None,
        config: RemoteConfig | None = None,
    ) -> None:
        self._service = RemoteService(radio=radio, config=config)

    @property
    def config(self) -> RemoteConfig:
        return self._service.config

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def scan(self, *, timeout_s: float | None = None) -> list[DetectedRemote]:
        return self._service.scan(timeout_s)

    def set_rotation(self, value: int, *, device_id: str | None = None) -> RotationResult:
        return self._service.set_rotation(value, device_id=device_id)

    def watch(
        self,
        on_event: EventCallback,
        *,
        device_id: str | None = None,
        duration_s: float | None = None,
    ) -> DetectedRemote:
        return self._service.watch(device_id=device_id, duration_s=duration_s, on_event=on_event)
