"""Process-wide discovery of ortho remote devices."""

from __future__ import annotations

import logging
import weakref

from orthoremote.core.events import DiscoveryEvent, EventEmitter
from orthoremote.core.model import DiscoveryOptions, DiscoveryState, RemoteConfig
from orthoremote.core.peripheral import OrthoRemotePeripheral, is_ortho_remote
from orthoremote.core.remote import OrthoRemote
from orthoremote.core.session import DeviceDiscoverySession
from orthoremote.transports.base import Link, Radio, RadioState

LOGGER = logging.getLogger(__name__)


class DeviceDiscoveryManager(EventEmitter[DiscoveryEvent]):
    """Drives radio scanning and fans sightings out to discovery sessions.

    One manager per process is the normal setup; it is constructed explicitly
    with the radio it drives. Discovered devices are cached weakly by id, so
    the cache never keeps a device alive once callers have dropped it.
    """

    def __init__(self, radio: Radio, *, config: RemoteConfig | None = None) -> None:
        super().__init__(DiscoveryEvent)
        self._radio = radio
        self._config = config or RemoteConfig()
        self._state = DiscoveryState.INITIAL
        self._sessions: list[DeviceDiscoverySession] = []
        self._devices: weakref.WeakValueDictionary[str, OrthoRemote] = weakref.WeakValueDictionary()
        self._discover_when_powered_on = False
        self._radio_handlers_installed = False

    @property
    def discovery_state(self) -> DiscoveryState:
        return self._state

    @property
    def discovered_devices(self) -> list[OrthoRemote]:
        return list(self._devices.values())

    @property
    def active_sessions(self) -> tuple[DeviceDiscoverySession, ...]:
        return tuple(self._sessions)

    def start_discovery_session(self, options: DiscoveryOptions | None = None) -> DeviceDiscoverySession:
        """Start a new session observing discovery of ortho remote devices."""
        if self._state is DiscoveryState.INITIAL:
            self._initialize_radio()

        session = DeviceDiscoverySession(self, options)
        self._sessions.append(session)

        if self._state <= DiscoveryState.BLUETOOTH_UNAVAILABLE:
            LOGGER.debug("Bluetooth unavailable, discovery deferred until powered on")
            self._discover_when_powered_on = True
            self._radio.refresh_state()
            return session

        self._discover_devices()
        return session

    def stop_discovery_session(self, session: DeviceDiscoverySession) -> None:
        """Remove a session; discovery stops once no sessions remain.

        Prefer `DeviceDiscoverySession.stop`.
        """
        if session not in self._sessions:
            return
        self._sessions.remove(session)
        if not self._sessions and self._state is not DiscoveryState.READY:
            self.stop_discovery()

    def stop_discovery(self) -> None:
        """Stop every discovery session in progress."""
        if self._state is DiscoveryState.READY:
            return

        self._radio.stop_scanning()
        self._discover_when_powered_on = False
        if self._state >= DiscoveryState.DISCOVERING:
            self._state = DiscoveryState.READY

        sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.stop_discovery(timed_out=False)
        self.emit(DiscoveryEvent.STOPPED)

    def _initialize_radio(self) -> None:
        if self._radio_handlers_installed:
            return
        self._radio_handlers_installed = True
        LOGGER.debug("Waiting for poweredOn state")
        self._state = DiscoveryState.BLUETOOTH_UNAVAILABLE
        self._radio.on_discover(self._on_discover)
        self._radio.on_state_change(self._on_power_state_change)
        if self._radio.state is RadioState.POWERED_ON:
            self._on_power_state_change(self._radio.state)

    def _discover_devices(self) -> None:
        if self._state is not DiscoveryState.READY:
            return
        LOGGER.debug("Beginning device discovery")
        self._state = DiscoveryState.DISCOVERING
        for session in list(self._sessions):
            session.start_discovery()
        self._radio.start_scanning()
        self.emit(DiscoveryEvent.STARTED)

    def _on_power_state_change(self, state: RadioState) -> None:
        LOGGER.debug("Bluetooth state: %s", state.value)
        if state is RadioState.POWERED_ON:
            if self._state > DiscoveryState.BLUETOOTH_UNAVAILABLE:
                return
            LOGGER.debug("Bluetooth powered on")
            self._state = DiscoveryState.READY
            if self._discover_when_powered_on:
                self._discover_devices()
            return

        if self._state <= DiscoveryState.BLUETOOTH_UNAVAILABLE:
            return
        LOGGER.debug("Bluetooth powered off")
        was_discovering = self._state is DiscoveryState.DISCOVERING
        self.stop_discovery()
        self._state = DiscoveryState.BLUETOOTH_UNAVAILABLE
        if was_discovering:
            LOGGER.debug("Discovery will resume once Bluetooth is powered on")
            self._discover_when_powered_on = True

        for device in self.discovered_devices:
            device.disconnect()

    def _on_discover(self, link: Link) -> None:
        if not is_ortho_remote(link):
            LOGGER.debug("Other device found %r: %s", link.name, link.id)
            return

        LOGGER.debug("Ortho remote found %s", link.id)
        existing = self._devices.get(link.id)
        if existing is not None:
            device = existing
            device.peripheral.set_link(link)
        else:
            device = OrthoRemote(
                OrthoRemotePeripheral(link, connect_timeout_s=self._config.connect_timeout_s),
                normalize_rotation=self._config.normalize_rotation,
                long_click_s=self._config.long_click_s,
            )
            self._devices[link.id] = device

        is_new = existing is None
        self.emit(DiscoveryEvent.DEVICE, device, is_new)
        for session in list(self._sessions):
            session.on_device_discovered(device, is_new)
