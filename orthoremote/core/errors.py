"""Domain-specific errors for orthoremote."""

from __future__ import annotations

from enum import Enum


class OrthoRemoteError(Exception):
    """Base error for orthoremote."""


class CommunicationErrorCode(str, Enum):
    UNKNOWN = "unknown"
    NOT_AVAILABLE = "notAvailable"
    NOT_CONNECTABLE = "notConnectable"
    NOT_CONNECTED = "notConnected"
    CONNECTION_TIMEOUT = "timeout"
    DISCONNECTED = "disconnected"
    BLUETOOTH = "bluetooth"


class CommunicationError(OrthoRemoteError):
    """Raised when communication with a known device fails.

    Carries the failing device id and, for transport failures, the underlying
    exception as `cause`.
    """

    def __init__(
        self,
        code: CommunicationErrorCode,
        device_id: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(_communication_error_message(code, device_id, cause))
        self.code = code
        self.device_id = device_id
        self.cause = cause


class ControlValueError(OrthoRemoteError, ValueError):
    """Raised when a control value is outside the accepted range."""


class DiscoveryTimeoutError(OrthoRemoteError, TimeoutError):
    """Raised when a discovery session times out before finding a device."""


class DiscoveryStoppedError(OrthoRemoteError):
    """Raised when a discovery session is stopped before finding a device."""


class DeviceSelectionError(OrthoRemoteError):
    """Raised when no discovered device can be selected as target."""


class ConfigLoadError(OrthoRemoteError):
    """Raised when the configuration file cannot be read."""


class ConfigValidationError(OrthoRemoteError):
    """Raised when the configuration file does not conform to schema."""


def _communication_error_message(
    code: CommunicationErrorCode,
    device_id: str,
    cause: BaseException | None,
) -> str:
    if code is CommunicationErrorCode.BLUETOOTH:
        if cause is not None:
            return f"Bluetooth error on device {device_id}: {cause}"
        return f"Unknown bluetooth error on device {device_id}"
    if code is CommunicationErrorCode.CONNECTION_TIMEOUT:
        return f"Connection timeout on device {device_id}"
    if code is CommunicationErrorCode.DISCONNECTED:
        return f"Device {device_id} disconnected"
    if code is CommunicationErrorCode.NOT_AVAILABLE:
        return f"Device {device_id} is not available"
    if code is CommunicationErrorCode.NOT_CONNECTABLE:
        return f"Device {device_id} cannot be connected to"
    if code is CommunicationErrorCode.NOT_CONNECTED:
        return f"Communication with device {device_id} is not yet ready, needs to be connected to"
    return f"Unknown error on device {device_id}"
