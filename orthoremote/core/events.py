"""Typed publish/subscribe events for the driver components.

Each component declares its events as an Enum and emits only members of that
Enum, so listeners subscribe to a closed set of names instead of free-form
strings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)
Listener = Callable[..., Any]


class PeripheralEvent(Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    BATTERY_LEVEL = "battery_level"  # (level)
    RSSI = "rssi"  # (rssi)
    MIDI = "midi"  # (MidiEvent, raw bytes)
    BUTTON_DOWN = "button_down"
    BUTTON_UP = "button_up"
    ROTATE = "rotate"  # (raw, normalized)
    ERROR = "error"  # (CommunicationError)


class DiscoveryEvent(Enum):
    DEVICE = "device"  # (OrthoRemote, is_new)
    STARTED = "started"
    STOPPED = "stopped"


class SessionEvent(Enum):
    DEVICE = "device"  # (OrthoRemote, is_new)
    TIMEOUT = "timeout"
    DONE = "done"  # (timed_out)


class RemoteEvent(Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    BATTERY_LEVEL = "battery_level"
    RSSI = "rssi"
    MIDI = "midi"
    BUTTON_PRESSED = "button_pressed"
    BUTTON_RELEASED = "button_released"
    CLICK = "click"
    LONG_CLICK = "long_click"
    ROTATE = "rotate"  # (rotation, button_pressed)
    ERROR = "error"


class EventEmitter(Generic[E]):
    """Listener registry bound to one event Enum.

    Exceptions raised by listeners are logged and do not stop delivery to the
    remaining listeners.
    """

    def __init__(self, event_type: type[E]) -> None:
        self._event_type = event_type
        self._listeners: dict[E, list[tuple[Listener, bool]]] = {}

    def on(self, event: E, listener: Listener) -> None:
        self._check_event(event)
        self._listeners.setdefault(event, []).append((listener, False))

    def once(self, event: E, listener: Listener) -> None:
        self._check_event(event)
        self._listeners.setdefault(event, []).append((listener, True))

    def off(self, event: E, listener: Listener) -> None:
        entries = self._listeners.get(event, [])
        for index, (registered, _) in enumerate(entries):
            if registered == listener:
                del entries[index]
                return

    def remove_all_listeners(self, event: E | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: E) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: E, *args: Any) -> None:
        self._check_event(event)
        entries = self._listeners.get(event)
        if not entries:
            return

        snapshot = list(entries)
        entries[:] = [entry for entry in entries if not entry[1]]
        for listener, _ in snapshot:
            try:
                listener(*args)
            except Exception:
                LOGGER.exception("Listener %r failed handling %s", listener, event)

    def _check_event(self, event: E) -> None:
        if not isinstance(event, self._event_type):
            raise TypeError(f"{event!r} is not a {self._event_type.__name__}")
