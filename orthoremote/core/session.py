"""A single caller's view of ongoing ortho remote discovery."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from orthoremote.core.errors import DiscoveryStoppedError, DiscoveryTimeoutError
from orthoremote.core.events import EventEmitter, SessionEvent
from orthoremote.core.model import DiscoveryOptions, DiscoveryState
from orthoremote.core.remote import OrthoRemote

if TYPE_CHECKING:
    from orthoremote.core.discovery import DeviceDiscoveryManager

LOGGER = logging.getLogger(__name__)


def _stopped_error(timed_out: bool) -> Exception:
    if timed_out:
        return DiscoveryTimeoutError("Timed out waiting for an ortho remote device")
    return DiscoveryStoppedError("Discovery stopped before an ortho remote device was found")


class DeviceDiscoverySession(EventEmitter[SessionEvent]):
    """Observe discovery of ortho remote devices.

    Sessions are created by `DeviceDiscoveryManager.start_discovery_session`
    and should not be constructed directly.
    """

    def __init__(self, manager: DeviceDiscoveryManager, options: DiscoveryOptions | None = None) -> None:
        super().__init__(SessionEvent)
        self._manager = manager
        self._options = options or DiscoveryOptions()
        self._state = manager.discovery_state
        self._devices: dict[str, OrthoRemote] = {}
        self._stopped = False
        self._timed_out = False
        self._waiter: asyncio.Future[OrthoRemote] | None = None
        self._timer: asyncio.TimerHandle | None = None

        timeout_ms = self._options.timeout_ms
        if timeout_ms is not None and timeout_ms > 0:
            self._timer = asyncio.get_running_loop().call_later(timeout_ms / 1000, self._on_session_timeout)

    @property
    def discovery_state(self) -> DiscoveryState:
        manager_state = self._manager.discovery_state
        if manager_state is DiscoveryState.DISCOVERING:
            return self._state
        return manager_state

    @property
    def discovered_devices(self) -> list[OrthoRemote]:
        return [device for device in self._devices.values() if self._is_allowed(device.id)]

    def stop(self) -> None:
        self.stop_discovery(timed_out=False)

    async def wait_for_first_device(self, auto_stop: bool = True) -> OrthoRemote:
        """Wait for the first device, or until the session times out.

        Raises `DiscoveryTimeoutError` when the session timeout fires first
        and `DiscoveryStoppedError` when the session is stopped for any other
        reason, such as the radio powering off.
        """
        if self._waiter is None:
            self._waiter = self._create_waiter(auto_stop)
        return await asyncio.shield(self._waiter)

    def _create_waiter(self, auto_stop: bool) -> asyncio.Future[OrthoRemote]:
        waiter: asyncio.Future[OrthoRemote] = asyncio.get_running_loop().create_future()

        devices = self.discovered_devices
        if devices:
            waiter.set_result(devices[0])
            if auto_stop:
                self.stop()
            return waiter
        if self._stopped:
            waiter.set_exception(_stopped_error(self._timed_out))
            return waiter

        def on_device(device: OrthoRemote, _is_new: bool) -> None:
            self.off(SessionEvent.TIMEOUT, on_timeout)
            if waiter.done():
                return
            waiter.set_result(device)
            if auto_stop:
                self.stop()

        def on_timeout() -> None:
            self.off(SessionEvent.DEVICE, on_device)
            if not waiter.done():
                waiter.set_exception(_stopped_error(timed_out=True))

        self.once(SessionEvent.DEVICE, on_device)
        self.once(SessionEvent.TIMEOUT, on_timeout)
        return waiter

    def _fail_waiter(self, timed_out: bool) -> None:
        waiter = self._waiter
        if waiter is None or waiter.done():
            return
        waiter.set_exception(_stopped_error(timed_out))

    def start_discovery(self) -> None:
        """Called by the manager when radio scanning begins."""
        if self._stopped or self._manager.discovery_state is not DiscoveryState.DISCOVERING:
            return
        self._state = DiscoveryState.DISCOVERING

    def stop_discovery(self, *, timed_out: bool) -> None:
        """Stop this session and detach it from the manager."""
        if self._stopped:
            return
        self._stopped = True
        self._timed_out = timed_out
        self._state = DiscoveryState.READY
        self._manager.stop_discovery_session(self)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._fail_waiter(timed_out)
        self.emit(SessionEvent.DONE, timed_out)

    def on_device_discovered(self, device: OrthoRemote, is_new: bool) -> None:
        """Called by the manager for every qualifying sighting."""
        # A stop may land between the sighting and its delivery.
        if self.discovery_state is not DiscoveryState.DISCOVERING:
            return
        if device.id in self._devices:
            return

        self._devices[device.id] = device
        if self._is_allowed(device.id):
            self.emit(SessionEvent.DEVICE, device, is_new)

    def _is_allowed(self, device_id: str) -> bool:
        allowed = self._options.device_ids
        return allowed is None or device_id in allowed

    def _on_session_timeout(self) -> None:
        LOGGER.debug("Discovery session timed out")
        self._timer = None
        self.emit(SessionEvent.TIMEOUT)
        self.stop_discovery(timed_out=True)
