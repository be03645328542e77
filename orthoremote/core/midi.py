"""Fixed-size BLE-MIDI frame codec.

The ortho remote only ever sends single-message frames of five bytes:

    byte 0  1 0 t12 t11 t10 t9 t8 t7   timestamp high (framing bit set)
    byte 1  1 t6 t5 t4 t3 t2 t1 t0     timestamp low (framing bit set)
    byte 2  status: message type (high nibble) | channel (low nibble)
    byte 3  data 1 (7 bit)
    byte 4  data 2 (7 bit)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

FRAME_LENGTH = 5
MIDI_MESSAGE_MASK = 0xF0
TIMESTAMP_MODULUS = 1 << 13

_FRAMING_BIT = 0x80


class MidiMessage(IntEnum):
    NOTE_OFF = 0x80
    NOTE_ON = 0x90
    POLY_KEY_PRESSURE = 0xA0
    CONTROL_CHANGE = 0xB0
    PROGRAM_CHANGE = 0xC0
    CHANNEL_PRESSURE = 0xD0
    PITCH_BEND = 0xE0
    SYSEX = 0xF0


@dataclass(frozen=True)
class MidiEvent:
    timestamp: int
    message: MidiMessage
    channel: int
    data: tuple[int, int]


def decode_packet(packet: bytes | bytearray) -> MidiEvent | None:
    """Decode one BLE-MIDI frame, returning None for short or malformed frames."""
    if not packet or len(packet) < FRAME_LENGTH:
        return None

    timestamp_high, timestamp_low, status = packet[0], packet[1], packet[2]
    if not (timestamp_high & _FRAMING_BIT and timestamp_low & _FRAMING_BIT and status & _FRAMING_BIT):
        return None

    timestamp = (timestamp_low & 0x7F) | ((timestamp_high & 0x3F) << 7)
    return MidiEvent(
        timestamp=timestamp,
        message=MidiMessage(status & MIDI_MESSAGE_MASK),
        channel=status & 0x0F,
        data=(packet[3], packet[4]),
    )


def encode_packet(event: MidiEvent) -> bytes:
    timestamp = event.timestamp % TIMESTAMP_MODULUS
    return bytes(
        (
            ((timestamp >> 7) & 0x3F) | _FRAMING_BIT,
            (timestamp & 0x7F) | _FRAMING_BIT,
            int(event.message) | (event.channel & 0x0F),
            event.data[0] & 0x7F,
            event.data[1] & 0x7F,
        )
    )
