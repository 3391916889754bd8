"""Event stream model shared by the song parsers and the MIDI writer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum


class MidiError(Exception):
    """Base class for errors raised while reading or converting songs."""


class CorruptError(MidiError):
    """The data is damaged or truncated."""


class InvalidError(MidiError):
    """The data is well formed but uses something that is not supported."""


class NotFormatError(MidiError):
    """The data is not in the expected file format."""


class EventType(IntEnum):
    NULL = -1
    MIDI_DIVISIONS = 0
    NOTE_OFF = 1
    NOTE_ON = 2
    AFTERTOUCH = 3
    CONTROL_BANK_SELECT = 4
    CONTROL_DATA_ENTRY_COURSE = 5
    CONTROL_CHANNEL_VOLUME = 6
    CONTROL_CHANNEL_BALANCE = 7
    CONTROL_CHANNEL_PAN = 8
    CONTROL_CHANNEL_EXPRESSION = 9
    CONTROL_DATA_ENTRY_FINE = 10
    CONTROL_CHANNEL_HOLD = 11
    CONTROL_DATA_INCREMENT = 12
    CONTROL_DATA_DECREMENT = 13
    CONTROL_NON_REGISTERED_PARAM_FINE = 14
    CONTROL_NON_REGISTERED_PARAM_COURSE = 15
    CONTROL_REGISTERED_PARAM_FINE = 16
    CONTROL_REGISTERED_PARAM_COURSE = 17
    CONTROL_CHANNEL_SOUND_OFF = 18
    CONTROL_CHANNEL_CONTROLLERS_OFF = 19
    CONTROL_CHANNEL_NOTES_OFF = 20
    CONTROL_DUMMY = 21
    PATCH = 22
    CHANNEL_PRESSURE = 23
    PITCH = 24
    SYSEX_ROLAND_DRUM_TRACK = 25
    SYSEX_GM_RESET = 26
    SYSEX_ROLAND_RESET = 27
    SYSEX_YAMAHA_RESET = 28
    META_ENDOFTRACK = 29
    META_TEMPO = 30
    META_TIMESIGNATURE = 31
    META_KEYSIGNATURE = 32
    META_SEQUENCENO = 33
    META_CHANNELPREFIX = 34
    META_PORTPREFIX = 35
    META_SMPTEOFFSET = 36
    META_TEXT = 37
    META_COPYRIGHT = 38
    META_TRACKNAME = 39
    META_INSTRUMENTNAME = 40
    META_LYRIC = 41
    META_MARKER = 42
    META_CUEPOINT = 43


_CONTROLLERS = {
    0: EventType.CONTROL_BANK_SELECT,
    6: EventType.CONTROL_DATA_ENTRY_COURSE,
    7: EventType.CONTROL_CHANNEL_VOLUME,
    8: EventType.CONTROL_CHANNEL_BALANCE,
    10: EventType.CONTROL_CHANNEL_PAN,
    11: EventType.CONTROL_CHANNEL_EXPRESSION,
    38: EventType.CONTROL_DATA_ENTRY_FINE,
    64: EventType.CONTROL_CHANNEL_HOLD,
    96: EventType.CONTROL_DATA_INCREMENT,
    97: EventType.CONTROL_DATA_DECREMENT,
    98: EventType.CONTROL_NON_REGISTERED_PARAM_FINE,
    99: EventType.CONTROL_NON_REGISTERED_PARAM_COURSE,
    100: EventType.CONTROL_REGISTERED_PARAM_FINE,
    101: EventType.CONTROL_REGISTERED_PARAM_COURSE,
    120: EventType.CONTROL_CHANNEL_SOUND_OFF,
    121: EventType.CONTROL_CHANNEL_CONTROLLERS_OFF,
    123: EventType.CONTROL_CHANNEL_NOTES_OFF,
}

_TEXT_EVENTS = {
    0x01: EventType.META_TEXT,
    0x02: EventType.META_COPYRIGHT,
    0x03: EventType.META_TRACKNAME,
    0x04: EventType.META_INSTRUMENTNAME,
    0x05: EventType.META_LYRIC,
    0x06: EventType.META_MARKER,
    0x07: EventType.META_CUEPOINT,
}


@dataclass
class Event:
    """One decoded event and the number of samples until the next one."""

    evtype: EventType
    channel: int = 0
    value: int | str = 0
    samples_to_next: int = 0


@dataclass
class Options:
    """Settings that affect how songs are parsed and written."""

    sample_rate: int = 44100
    round_tempo: bool = False
    save_as_type0: bool = False
    mus_frequency: int = 0


def samples_per_tick(divisions, tempo, sample_rate):
    """Return how many output samples one tick lasts."""
    if divisions == 0:
        return math.inf
    microseconds_per_tick = tempo / divisions
    return sample_rate * (microseconds_per_tick / 1000000.0)


def _read_varlen(data, pos):
    """Read a variable length quantity; return (value, next position)."""
    value = 0
    while True:
        if pos >= len(data):
            raise CorruptError("(too short)")
        byte = data[pos]
        pos += 1
        value = (value << 7) + (byte & 0x7F)
        if byte <= 0x7F:
            return value, pos


def _need(data, count):
    if len(data) < count:
        raise CorruptError("(too short)")


@dataclass
class _SongState:
    approx_total_samples: int = 0
    current_sample: int = 0


class Song:
    """A decoded song: a flat list of timed events."""

    def __init__(self, options=None):
        self.options = options if options is not None else Options()
        self.events: list[Event] = []
        self.approx_total_samples = 0
        self.current_sample = 0
        self.is_type2 = False
        self._state = _SongState()

    def _add(self, evtype, channel=0, value=0):
        self.events.append(Event(EventType(evtype), channel, value, 0))

    def add_samples(self, count):
        """Add samples to the wait after the last event and to the song total."""
        if self.events:
            self.events[-1].samples_to_next += count
        self.approx_total_samples += count

    def setup_divisions(self, divisions):
        self._add(EventType.MIDI_DIVISIONS, 0, divisions)

    def setup_tempo(self, tempo):
        self._add(EventType.META_TEMPO, 0, tempo)

    def setup_note_off(self, channel, note, velocity):
        self._add(EventType.NOTE_OFF, channel, (note << 8) | velocity)

    def setup_end_of_track(self):
        self._add(EventType.META_ENDOFTRACK, 0, 0)

    def _setup_control(self, channel, controller, setting):
        evtype = _CONTROLLERS.get(controller)
        if evtype is None:
            self._add(EventType.CONTROL_DUMMY, channel, (controller << 8) | setting)
            return
        if evtype in (
            EventType.CONTROL_NON_REGISTERED_PARAM_COURSE,
            EventType.CONTROL_REGISTERED_PARAM_COURSE,
        ):
            setting <<= 7
        self._add(evtype, channel, setting)

    def _setup_sysex(self, payload):
        if payload[:4] == b"\x41\x10\x42\x12":
            try:
                end = payload.index(0xF7, 4)
            except ValueError:
                return
            if end < 5:
                return
            checksum = 0
            for byte in payload[4 : end - 1]:
                checksum += byte
                if checksum > 0x7F:
                    checksum -= 0x80
            checksum = 128 - checksum
            if checksum != payload[end - 1] or len(payload) < 8:
                return
            if payload[4] == 0x40 and (payload[5] & 0xF0) == 0x10 and payload[6] == 0x15:
                channel = payload[5] & 0x0F
                if channel == 0:
                    channel = 9
                elif channel <= 9:
                    channel -= 1
                self._add(EventType.SYSEX_ROLAND_DRUM_TRACK, channel, payload[7])
            elif payload[4] == 0x40 and payload[5] == 0x00 and payload[6] == 0x7F:
                self._add(EventType.SYSEX_ROLAND_RESET)
        elif payload[:6] == b"\x43\x10\x4c\x00\x00\x7e":
            self._add(EventType.SYSEX_YAMAHA_RESET)
        elif payload[:4] == b"\x7e\x7f\x09\x01":
            self._add(EventType.SYSEX_GM_RESET)

    def _setup_meta(self, data):
        """Decode a meta event whose type byte is data[0]; return bytes used."""
        _need(data, 2)
        kind, length = data[0], data[1]
        if kind == 0x00 and length == 0x02:
            _need(data, 4)
            self._add(EventType.META_SEQUENCENO, 0, (data[2] << 8) + data[3])
            return 4
        if kind in _TEXT_EVENTS:
            text_len, pos = _read_varlen(data, 1)
            _need(data, pos + text_len)
            text = bytes(data[pos : pos + text_len]).decode("latin-1")
            self._add(_TEXT_EVENTS[kind], 0, text)
            return pos + text_len
        if kind == 0x20 and length == 0x01:
            _need(data, 3)
            self._add(EventType.META_CHANNELPREFIX, 0, data[2])
            return 3
        if kind == 0x21 and length == 0x01:
            _need(data, 3)
            self._add(EventType.META_PORTPREFIX, 0, data[2])
            return 3
        if kind == 0x2F and length == 0x00:
            self.setup_end_of_track()
            return 2
        if kind == 0x51 and length == 0x03:
            _need(data, 5)
            self.setup_tempo((data[2] << 16) + (data[3] << 8) + data[4])
            return 5
        if kind == 0x54 and length == 0x05:
            _need(data, 7)
            value = (data[3] << 24) + (data[4] << 16) + (data[5] << 8) + data[6]
            self._add(EventType.META_SMPTEOFFSET, data[2], value)
            return 7
        if kind == 0x58 and length == 0x04:
            _need(data, 6)
            value = (data[2] << 24) + (data[3] << 16) + (data[4] << 8) + data[5]
            self._add(EventType.META_TIMESIGNATURE, 0, value)
            return 6
        if kind == 0x59 and length == 0x02:
            _need(data, 4)
            self._add(EventType.META_KEYSIGNATURE, 0, (data[2] << 8) + data[3])
            return 4
        skip, pos = _read_varlen(data, 1)
        return pos + skip

    def setup_midi_event(self, data, running_event=0):
        """Decode one event from the start of data and return the bytes it used.

        A data byte first means the event reuses running_event as its status.
        """
        data = memoryview(bytes(data)) if not isinstance(data, memoryview) else data
        if not len(data):
            raise CorruptError("(too short)")
        used = 0
        if data[0] >= 0x80:
            status = data[0]
            data = data[1:]
            used = 1
            if not len(data):
                raise CorruptError("(too short)")
        else:
            status = running_event
        command, channel = status & 0xF0, status & 0x0F

        if command in (0x80, 0x90):
            _need(data, 2)
            note, velocity = data[0], data[1]
            if command == 0x90 and velocity != 0:
                self._add(EventType.NOTE_ON, channel, (note << 8) | velocity)
            else:
                self.setup_note_off(channel, note, velocity)
            return used + 2
        if command == 0xA0:
            _need(data, 2)
            self._add(EventType.AFTERTOUCH, channel, (data[0] << 8) | data[1])
            return used + 2
        if command == 0xB0:
            _need(data, 2)
            self._setup_control(channel, data[0], data[1])
            return used + 2
        if command == 0xC0:
            self._add(EventType.PATCH, channel, data[0])
            return used + 1
        if command == 0xD0:
            self._add(EventType.CHANNEL_PRESSURE, channel, data[0])
            return used + 1
        if command == 0xE0:
            _need(data, 2)
            self._add(EventType.PITCH, channel, (data[1] << 7) | (data[0] & 0x7F))
            return used + 2
        if command == 0xF0:
            if channel == 0x0F:
                return used + self._setup_meta(data)
            if channel in (0x00, 0x07):
                length, pos = _read_varlen(data, 0)
                _need(data, pos + length)
                self._setup_sysex(bytes(data[pos : pos + length]))
                return used + pos + length
        raise CorruptError("(unrecognized event)")