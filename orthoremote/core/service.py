"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable

from orthoremote.core.config import load_config
from orthoremote.core.discovery import DeviceDiscoveryManager
from orthoremote.core.errors import DeviceSelectionError, DiscoveryStoppedError, DiscoveryTimeoutError
from orthoremote.core.events import RemoteEvent, SessionEvent
from orthoremote.core.model import (
    PERIPHERAL_NAME,
    DetectedRemote,
    DiscoveryOptions,
    RemoteConfig,
    RotationResult,
)
from orthoremote.core.peripheral import check_control_value
from orthoremote.core.remote import OrthoRemote
from orthoremote.transports.base import Radio
from orthoremote.transports.ble_gatt import BLEGATTRadio, drain_background_tasks

LOGGER = logging.getLogger(__name__)

EventCallback = Callable[..., None]


class RemoteService:
    def __init__(
        self,
        *,
        radio: Radio | None = None,
        config: RemoteConfig | None = None,
    ) -> None:
        if config is None:
            loaded = load_config()
            config = loaded.config
            self.load_warnings = loaded.warnings
        else:
            self.load_warnings = ()
        self.config = config
        self.radio = radio or BLEGATTRadio()
        self.manager = DeviceDiscoveryManager(self.radio, config=config)

    def scan(self, timeout_s: float | None = None) -> list[DetectedRemote]:
        return asyncio.run(self._scan(timeout_s))

    def set_rotation(self, value: int, device_id: str | None = None) -> RotationResult:
        check_control_value(value)
        return asyncio.run(self._set_rotation(value, device_id))

    def watch(
        self,
        device_id: str | None = None,
        duration_s: float | None = None,
        *,
        on_event: EventCallback,
    ) -> DetectedRemote:
        """Connect and report every device event until `duration_s` elapses or the device disconnects."""
        return asyncio.run(self._watch(on_event, device_id, duration_s))

    async def resolve_remote(self, device_id: str | None = None) -> OrthoRemote:
        session = self.manager.start_discovery_session(
            DiscoveryOptions(
                timeout_ms=int(self.config.discovery_timeout_s * 1000),
                device_ids=self._allowed_ids(device_id),
            )
        )
        try:
            return await session.wait_for_first_device()
        except DiscoveryTimeoutError:
            if device_id:
                raise DeviceSelectionError(f"No ortho remote found matching '{device_id}'") from None
            raise DeviceSelectionError(
                "No ortho remote found. Make sure it is powered on and not connected elsewhere."
            ) from None
        except DiscoveryStoppedError:
            raise DeviceSelectionError(
                "No ortho remote found. Bluetooth discovery stopped before a device was seen."
            ) from None

    def _allowed_ids(self, device_id: str | None) -> frozenset[str] | None:
        if device_id:
            return frozenset({device_id})
        if self.config.device_ids:
            return frozenset(self.config.device_ids)
        return None

    async def _scan(self, timeout_s: float | None) -> list[DetectedRemote]:
        timeout_s = timeout_s if timeout_s is not None else self.config.discovery_timeout_s
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def on_done(_timed_out: bool) -> None:
            if not done.done():
                done.set_result(None)

        session = self.manager.start_discovery_session(
            DiscoveryOptions(timeout_ms=int(timeout_s * 1000), device_ids=self._allowed_ids(None))
        )
        session.once(SessionEvent.DONE, on_done)
        try:
            await done
            return [_describe(device) for device in session.discovered_devices]
        finally:
            await self._shutdown()

    async def _set_rotation(self, value: int, device_id: str | None) -> RotationResult:
        remote: OrthoRemote | None = None
        try:
            remote = await self.resolve_remote(device_id)
            await remote.connect()
            written = await remote.set_rotation(value)
            LOGGER.debug("Rotation %d %s on %s", value, "written" if written else "not written", remote.id)
            return RotationResult(target=_describe(remote), value=value, written=written)
        finally:
            await self._shutdown(remote)

    async def _watch(
        self,
        on_event: EventCallback,
        device_id: str | None,
        duration_s: float | None,
    ) -> DetectedRemote:
        remote: OrthoRemote | None = None
        try:
            remote = await self.resolve_remote(device_id)
            disconnected: asyncio.Future[None] = asyncio.get_running_loop().create_future()

            def on_disconnect() -> None:
                if not disconnected.done():
                    disconnected.set_result(None)

            for event in RemoteEvent:
                remote.on(event, functools.partial(on_event, event))
            remote.on(RemoteEvent.DISCONNECT, on_disconnect)
            await remote.connect()

            try:
                await asyncio.wait_for(asyncio.shield(disconnected), duration_s)
            except asyncio.TimeoutError:
                pass
            return _describe(remote)
        finally:
            if remote is not None:
                remote.remove_all_listeners()
            await self._shutdown(remote)

    async def _shutdown(self, remote: OrthoRemote | None = None) -> None:
        if remote is not None:
            remote.disconnect()
        self.manager.stop_discovery()
        await drain_background_tasks()


def _describe(device: OrthoRemote) -> DetectedRemote:
    link = device.peripheral.link
    return DetectedRemote(
        id=device.id,
        name=(link.name if link is not None else None) or PERIPHERAL_NAME,
        rssi=link.rssi if link is not None else None,
    )
