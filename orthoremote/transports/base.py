"""Radio and GATT interfaces consumed by the driver core."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol

DataCallback = Callable[[bytes, bool], None]


class RadioState(str, Enum):
    UNKNOWN = "unknown"
    POWERED_OFF = "poweredOff"
    POWERED_ON = "poweredOn"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"


class GattCharacteristic(Protocol):
    @property
    def uuid(self) -> str: ...

    def on_data(self, callback: DataCallback) -> None:
        """Register a callback receiving `(payload, is_notification)`."""

    async def read(self) -> bytes: ...

    async def write(self, data: bytes, *, without_response: bool = False) -> None: ...

    async def subscribe(self) -> None: ...


class GattService(Protocol):
    @property
    def uuid(self) -> str: ...

    @property
    def characteristics(self) -> Sequence[GattCharacteristic]: ...

    async def discover_characteristics(self) -> Sequence[GattCharacteristic]: ...


class Link(Protocol):
    """A physical handle to one advertising peripheral."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str | None: ...

    @property
    def rssi(self) -> int | None: ...

    @property
    def connectable(self) -> bool: ...

    async def connect(self) -> None: ...

    def disconnect(self) -> None:
        """Request disconnection; completion is not awaited."""

    async def discover_services(self) -> Sequence[GattService]: ...

    def on_disconnect(self, callback: Callable[[], None]) -> None: ...

    def on_rssi_update(self, callback: Callable[[int | None], None]) -> None: ...

    def remove_all_listeners(self) -> None:
        """Detach link callbacks and every characteristic data callback."""


class Radio(Protocol):
    @property
    def state(self) -> RadioState: ...

    def on_discover(self, callback: Callable[[Link], None]) -> None: ...

    def on_state_change(self, callback: Callable[[RadioState], None]) -> None: ...

    def start_scanning(self) -> None: ...

    def stop_scanning(self) -> None: ...

    def refresh_state(self) -> None:
        """Re-check adapter availability; changes arrive through `on_state_change`."""
