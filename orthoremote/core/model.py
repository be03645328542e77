"""Core data models and device constants shared across the driver."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

DEVICE_DISCOVERY_TIMEOUT_S = 60.0
DEVICE_CONNECT_TIMEOUT_S = 10.0
LONG_CLICK_INTERVAL_S = 0.4

PERIPHERAL_NAME = "ortho remote"
BUTTON_KEY = 0x3C
MODULATION_WHEEL_CONTROL = 0x01
MODULATION_WHEEL_STEPS = 0x7F
DEFAULT_ROTATION = MODULATION_WHEEL_STEPS // 2
DEFAULT_BATTERY_LEVEL = 100

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_CHAR_UUID = "00002a19-0000-1000-8000-00805f9b34fb"
BLE_MIDI_SERVICE_UUID = "03b80e5a-ede8-4b33-a751-6ce34ec4c700"
MIDI_DATA_IO_CHAR_UUID = "7772e5db-3868-4112-a1a9-f2669d106bf3"

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(value: str) -> str:
    """Return the dashed, lowercase 128-bit form of a 16/32/128-bit UUID."""
    normalized = value.strip().lower()
    if len(normalized) == 4:
        return f"0000{normalized}{_BASE_UUID_SUFFIX}"
    if len(normalized) == 8:
        return f"{normalized}{_BASE_UUID_SUFFIX}"
    if len(normalized) == 32:
        return "-".join(
            (
                normalized[0:8],
                normalized[8:12],
                normalized[12:16],
                normalized[16:20],
                normalized[20:32],
            )
        )
    return normalized


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DiscoveryState(IntEnum):
    INITIAL = 0
    BLUETOOTH_UNAVAILABLE = 1
    READY = 16
    DISCOVERING = 17


@dataclass(frozen=True)
class DiscoveryOptions:
    timeout_ms: int | None = None
    device_ids: frozenset[str] | None = None


@dataclass(frozen=True)
class RemoteConfig:
    connect_timeout_s: float = DEVICE_CONNECT_TIMEOUT_S
    discovery_timeout_s: float = DEVICE_DISCOVERY_TIMEOUT_S
    long_click_s: float = LONG_CLICK_INTERVAL_S
    normalize_rotation: bool = True
    device_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DetectedRemote:
    id: str
    name: str
    rssi: int | None


@dataclass(frozen=True)
class RotationResult:
    target: DetectedRemote
    value: int
    written: bool
