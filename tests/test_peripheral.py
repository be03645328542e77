from __future__ import annotations

import asyncio

import pytest
from fakes import FakeCharacteristic, FakeLink

from orthoremote.core.errors import CommunicationError, CommunicationErrorCode, ControlValueError
from orthoremote.core.events import PeripheralEvent
from orthoremote.core.midi import MidiMessage
from orthoremote.core.model import MIDI_DATA_IO_CHAR_UUID, ConnectionState
from orthoremote.core.peripheral import OrthoRemotePeripheral


def _record(peripheral: OrthoRemotePeripheral) -> list[tuple]:
    events: list[tuple] = []
    for event in PeripheralEvent:
        peripheral.on(event, lambda *args, event=event: events.append((event, *args)))
    return events


def test_rejects_links_that_are_not_ortho_remotes() -> None:
    with pytest.raises(TypeError):
        OrthoRemotePeripheral(FakeLink(name="Some Speaker"))

    peripheral = OrthoRemotePeripheral(FakeLink())
    with pytest.raises(TypeError):
        peripheral.set_link(FakeLink(name=None))


def test_connect_binds_battery_and_midi() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    events = _record(peripheral)

    assert asyncio.run(peripheral.connect()) is True

    assert peripheral.connected_state is ConnectionState.CONNECTED
    assert peripheral.battery_level == 0x50
    assert peripheral.rssi == -50
    assert link.battery.subscribed
    assert link.midi.subscribed
    assert (PeripheralEvent.BATTERY_LEVEL, 0x50) in events
    assert events[-1] == (PeripheralEvent.CONNECT,)


def test_properties_are_empty_while_disconnected() -> None:
    peripheral = OrthoRemotePeripheral(FakeLink())
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert peripheral.battery_level is None
    assert peripheral.rssi is None


def test_midi_notifications_dispatch_button_and_rotation() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    link.midi.notify(bytes([0x80, 0x80, 0x90, 0x3C, 0x7F]))
    link.midi.notify(bytes([0x80, 0x80, 0x80, 0x3C, 0x00]))
    link.midi.notify(bytes([0x80, 0x80, 0xB0, 0x01, 0x40]))

    names = [event[0] for event in events]
    assert names == [
        PeripheralEvent.MIDI,
        PeripheralEvent.BUTTON_DOWN,
        PeripheralEvent.MIDI,
        PeripheralEvent.BUTTON_UP,
        PeripheralEvent.MIDI,
        PeripheralEvent.ROTATE,
    ]
    midi, raw = events[4][1:]
    assert midi.message is MidiMessage.CONTROL_CHANGE
    assert raw == bytes([0x80, 0x80, 0xB0, 0x01, 0x40])
    assert events[5] == (PeripheralEvent.ROTATE, 64, 64 / 127)


def test_other_notes_controllers_and_garbage_are_not_gestures() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    link.midi.notify(bytes([0x80, 0x80, 0x90, 0x3D, 0x7F]))
    link.midi.notify(bytes([0x80, 0x80, 0xB0, 0x07, 0x40]))
    link.midi.notify(bytes([0x80, 0x80]))

    assert [event[0] for event in events] == [PeripheralEvent.MIDI, PeripheralEvent.MIDI]


def test_battery_and_rssi_notifications() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    link.battery.notify(b"\x2a")
    link.set_rssi(-71)

    assert peripheral.battery_level == 42
    assert events == [(PeripheralEvent.BATTERY_LEVEL, 42), (PeripheralEvent.RSSI, -71)]


def test_write_rejects_out_of_range_values_before_writing() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())

    for value in (200, -1, True, 1.5):
        with pytest.raises(ControlValueError):
            asyncio.run(peripheral.write_control_value(value))
    assert link.midi.writes == []


def test_write_sends_control_change_without_response() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)

    async def scenario() -> bool:
        await peripheral.connect()
        return await peripheral.write_control_value(100)

    assert asyncio.run(scenario()) is True
    [(packet, without_response)] = link.midi.writes
    assert without_response is True
    assert packet[0] & 0x80 and packet[1] & 0x80
    assert packet[2:] == bytes([0xB0, 0x01, 100])


def test_write_requires_connection() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        link = FakeLink(connect_gate=gate)
        peripheral = OrthoRemotePeripheral(link)

        with pytest.raises(CommunicationError) as disconnected:
            await peripheral.write_control_value(10)
        assert disconnected.value.code is CommunicationErrorCode.DISCONNECTED

        task = asyncio.create_task(peripheral.connect())
        await asyncio.sleep(0)
        with pytest.raises(CommunicationError) as connecting:
            await peripheral.write_control_value(10)
        assert connecting.value.code is CommunicationErrorCode.NOT_CONNECTED

        gate.set()
        assert await task is True

    asyncio.run(scenario())


def test_write_without_midi_characteristic_returns_false() -> None:
    link = FakeLink()
    link.services = [service for service in link.services if service.characteristics[0] is not link.midi]
    peripheral = OrthoRemotePeripheral(link)

    async def scenario() -> bool:
        await peripheral.connect()
        return await peripheral.write_control_value(10)

    assert asyncio.run(scenario()) is False


def test_write_failure_is_reported() -> None:
    link = FakeLink(midi=FakeCharacteristic(MIDI_DATA_IO_CHAR_UUID, write_error=OSError("gatt busy")))
    peripheral = OrthoRemotePeripheral(link)
    errors: list[CommunicationError] = []
    peripheral.on(PeripheralEvent.ERROR, errors.append)

    async def scenario() -> None:
        await peripheral.connect()
        await peripheral.write_control_value(10)

    with pytest.raises(CommunicationError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.code is CommunicationErrorCode.BLUETOOTH
    assert errors == [exc_info.value]


def test_concurrent_connects_share_one_attempt() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    connects: list[tuple] = []
    peripheral.on(PeripheralEvent.CONNECT, lambda: connects.append(()))

    async def scenario() -> list[bool]:
        results = await asyncio.gather(peripheral.connect(), peripheral.connect())
        results.append(await peripheral.connect())
        return results

    assert asyncio.run(scenario()) == [True, True, True]
    assert link.connect_calls == 1
    assert len(connects) == 1


def test_connect_without_link_or_connectable_flag_fails() -> None:
    peripheral = OrthoRemotePeripheral(FakeLink(connectable=False))
    with pytest.raises(CommunicationError) as not_connectable:
        asyncio.run(peripheral.connect())
    assert not_connectable.value.code is CommunicationErrorCode.NOT_CONNECTABLE

    peripheral.set_link(None)
    with pytest.raises(CommunicationError) as not_available:
        asyncio.run(peripheral.connect())
    assert not_available.value.code is CommunicationErrorCode.NOT_AVAILABLE


def test_link_swap_during_connect_fails_attempt_as_disconnected() -> None:
    async def scenario() -> tuple[OrthoRemotePeripheral, FakeLink, FakeLink, list[tuple]]:
        gate = asyncio.Event()
        old_link = FakeLink(connect_gate=gate)
        new_link = FakeLink()
        peripheral = OrthoRemotePeripheral(old_link)
        events = _record(peripheral)

        task = asyncio.create_task(peripheral.connect())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert old_link.connect_calls == 1

        peripheral.set_link(new_link)
        gate.set()
        with pytest.raises(CommunicationError) as exc_info:
            await task
        assert exc_info.value.code is CommunicationErrorCode.DISCONNECTED
        return peripheral, old_link, new_link, events

    peripheral, old_link, new_link, events = asyncio.run(scenario())
    assert peripheral.link is new_link
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert old_link.disconnect_calls == 1
    assert old_link.disconnect_callbacks == []
    assert new_link.connect_calls == 0
    assert events == []


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _gate_services(link: FakeLink, gate: asyncio.Event) -> None:
    link.services_gate = gate


def _gate_characteristics(link: FakeLink, gate: asyncio.Event) -> None:
    link.services[1].discover_gate = gate


def _gate_midi_subscribe(link: FakeLink, gate: asyncio.Event) -> None:
    link.midi.subscribe_gate = gate


@pytest.mark.parametrize(
    "gate_stage",
    [_gate_services, _gate_characteristics, _gate_midi_subscribe],
    ids=["services", "characteristics", "subscribe"],
)
def test_link_swap_mid_setup_fails_attempt_as_disconnected(gate_stage) -> None:
    async def scenario() -> tuple[OrthoRemotePeripheral, FakeLink, FakeLink, list[tuple]]:
        gate = asyncio.Event()
        old_link = FakeLink()
        gate_stage(old_link, gate)
        new_link = FakeLink()
        peripheral = OrthoRemotePeripheral(old_link)
        events = _record(peripheral)

        task = asyncio.create_task(peripheral.connect())
        await _settle()
        assert peripheral.connected_state is ConnectionState.CONNECTING

        peripheral.set_link(new_link)
        gate.set()
        with pytest.raises(CommunicationError) as exc_info:
            await asyncio.wait_for(task, 0.5)
        assert exc_info.value.code is CommunicationErrorCode.DISCONNECTED
        await _settle()
        return peripheral, old_link, new_link, events

    peripheral, old_link, new_link, events = asyncio.run(scenario())
    assert peripheral.link is new_link
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert old_link.disconnect_calls == 1
    assert not old_link.midi.subscribed
    assert new_link.connect_calls == 0
    names = [event[0] for event in events]
    assert PeripheralEvent.CONNECT not in names
    assert PeripheralEvent.DISCONNECT not in names
    assert PeripheralEvent.ERROR not in names


def test_timeout_after_link_swap_reports_disconnected() -> None:
    async def scenario() -> tuple[OrthoRemotePeripheral, FakeLink, list[tuple]]:
        gate = asyncio.Event()
        old_link = FakeLink(connect_gate=gate)
        new_link = FakeLink()
        peripheral = OrthoRemotePeripheral(old_link, connect_timeout_s=0.01)
        events = _record(peripheral)

        task = asyncio.create_task(peripheral.connect())
        await _settle()
        peripheral.set_link(new_link)
        await asyncio.sleep(0.05)
        gate.set()
        await _settle()

        with pytest.raises(CommunicationError) as exc_info:
            await task
        assert exc_info.value.code is CommunicationErrorCode.DISCONNECTED
        return peripheral, new_link, events

    peripheral, new_link, events = asyncio.run(scenario())
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert new_link.connect_calls == 0
    assert new_link.disconnect_calls == 0
    assert events == []


def test_disconnect_while_connecting_releases_callers() -> None:
    async def scenario() -> tuple[OrthoRemotePeripheral, FakeLink, list[tuple]]:
        gate = asyncio.Event()
        link = FakeLink(connect_gate=gate)
        peripheral = OrthoRemotePeripheral(link, connect_timeout_s=5)
        events = _record(peripheral)

        first = asyncio.create_task(peripheral.connect())
        second = asyncio.create_task(peripheral.connect())
        await _settle()
        assert link.connect_calls == 1

        peripheral.disconnect()
        for task in (first, second):
            with pytest.raises(CommunicationError) as exc_info:
                await asyncio.wait_for(task, 0.5)
            assert exc_info.value.code is CommunicationErrorCode.DISCONNECTED

        gate.set()
        await _settle()
        return peripheral, link, events

    peripheral, link, events = asyncio.run(scenario())
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert not link.midi.subscribed
    assert link.disconnect_callbacks == []
    assert events == [(PeripheralEvent.DISCONNECT,)]

    async def reconnect() -> bool:
        link.connect_gate = None
        return await peripheral.connect()

    assert asyncio.run(reconnect()) is True
    assert link.connect_calls == 2


def test_connect_timeout_fails_and_late_completion_is_ignored() -> None:
    async def scenario() -> tuple[OrthoRemotePeripheral, FakeLink, list[tuple]]:
        gate = asyncio.Event()
        link = FakeLink(connect_gate=gate)
        peripheral = OrthoRemotePeripheral(link, connect_timeout_s=0.01)
        events = _record(peripheral)

        with pytest.raises(CommunicationError) as exc_info:
            await peripheral.connect()
        assert exc_info.value.code is CommunicationErrorCode.CONNECTION_TIMEOUT

        gate.set()
        await asyncio.sleep(0.02)
        return peripheral, link, events

    peripheral, link, events = asyncio.run(scenario())
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert link.disconnect_calls >= 1
    assert PeripheralEvent.CONNECT not in [event[0] for event in events]
    assert not link.midi.subscribed


def test_completed_connection_is_not_timed_out_later() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link, connect_timeout_s=0.02)
    errors: list[CommunicationError] = []
    peripheral.on(PeripheralEvent.ERROR, errors.append)

    async def scenario() -> None:
        await peripheral.connect()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert peripheral.is_connected
    assert link.disconnect_calls == 0
    assert errors == []


def test_disconnect_is_idempotent() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    peripheral.disconnect()
    peripheral.disconnect()

    assert events == [(PeripheralEvent.DISCONNECT,)]
    assert peripheral.battery_level is None
    assert link.midi.callbacks == []


def test_link_drop_disconnects_device() -> None:
    link = FakeLink()
    peripheral = OrthoRemotePeripheral(link)
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    link.drop()

    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert events == [(PeripheralEvent.DISCONNECT,)]


def test_set_link_while_connected_emits_disconnect() -> None:
    peripheral = OrthoRemotePeripheral(FakeLink())
    asyncio.run(peripheral.connect())
    events = _record(peripheral)

    replacement = FakeLink()
    peripheral.set_link(replacement)
    peripheral.set_link(replacement)

    assert peripheral.link is replacement
    assert events == [(PeripheralEvent.DISCONNECT,)]


def test_battery_read_failure_does_not_fail_connection() -> None:
    link = FakeLink(battery=FakeCharacteristic("2a19", read_error=OSError("read failed")))
    peripheral = OrthoRemotePeripheral(link)
    errors: list[CommunicationError] = []
    peripheral.on(PeripheralEvent.ERROR, errors.append)

    assert asyncio.run(peripheral.connect()) is True
    assert peripheral.battery_level == 100
    assert [error.code for error in errors] == [CommunicationErrorCode.BLUETOOTH]


def test_subscribe_failure_fails_connection_and_allows_retry() -> None:
    midi = FakeCharacteristic(MIDI_DATA_IO_CHAR_UUID, subscribe_error=OSError("notify refused"))
    link = FakeLink(midi=midi)
    peripheral = OrthoRemotePeripheral(link)
    errors: list[CommunicationError] = []
    peripheral.on(PeripheralEvent.ERROR, errors.append)

    with pytest.raises(CommunicationError) as exc_info:
        asyncio.run(peripheral.connect())
    assert exc_info.value.code is CommunicationErrorCode.BLUETOOTH
    assert isinstance(exc_info.value.cause, OSError)
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
    assert errors and errors[0].code is CommunicationErrorCode.BLUETOOTH

    midi.subscribe_error = None
    assert asyncio.run(peripheral.connect()) is True
    assert link.connect_calls == 2


def test_link_connect_error_is_wrapped() -> None:
    peripheral = OrthoRemotePeripheral(FakeLink(connect_error=OSError("le-connection-abort")))
    with pytest.raises(CommunicationError) as exc_info:
        asyncio.run(peripheral.connect())
    assert exc_info.value.code is CommunicationErrorCode.BLUETOOTH
    assert peripheral.connected_state is ConnectionState.DISCONNECTED
