"""Writing a decoded Song back out as a Standard MIDI File."""

from __future__ import annotations

from midiwave.events import EventType, MidiError, Options, Song, samples_per_tick

_DEFAULT_DIVISIONS = 96
_DEFAULT_TEMPO = 500000
_END_OF_TRACK = b"\xff\x2f\x00"


def _pair(value):
    return bytes(((value >> 8) & 0xFF, value & 0xFF))


def _controller(number, shift=0, mask=0xFF):
    return lambda value: bytes((number, (value >> shift) & mask))


# Channel events: status nibble and the data bytes that follow the status.
_CHANNEL_EVENTS = {
    EventType.NOTE_OFF: (0x80, _pair),
    EventType.NOTE_ON: (0x90, _pair),
    EventType.AFTERTOUCH: (0xA0, _pair),
    EventType.CONTROL_BANK_SELECT: (0xB0, _controller(0)),
    EventType.CONTROL_DATA_ENTRY_COURSE: (0xB0, _controller(6)),
    EventType.CONTROL_CHANNEL_VOLUME: (0xB0, _controller(7)),
    EventType.CONTROL_CHANNEL_BALANCE: (0xB0, _controller(8)),
    EventType.CONTROL_CHANNEL_PAN: (0xB0, _controller(10)),
    EventType.CONTROL_CHANNEL_EXPRESSION: (0xB0, _controller(11)),
    EventType.CONTROL_DATA_ENTRY_FINE: (0xB0, _controller(38)),
    EventType.CONTROL_CHANNEL_HOLD: (0xB0, _controller(64)),
    EventType.CONTROL_DATA_INCREMENT: (0xB0, _controller(96)),
    EventType.CONTROL_DATA_DECREMENT: (0xB0, _controller(97)),
    EventType.CONTROL_NON_REGISTERED_PARAM_FINE: (0xB0, _controller(98, 0, 0x7F)),
    EventType.CONTROL_NON_REGISTERED_PARAM_COURSE: (0xB0, _controller(99, 7, 0x7F)),
    EventType.CONTROL_REGISTERED_PARAM_FINE: (0xB0, _controller(100, 0, 0x7F)),
    EventType.CONTROL_REGISTERED_PARAM_COURSE: (0xB0, _controller(101, 7, 0x7F)),
    EventType.CONTROL_CHANNEL_SOUND_OFF: (0xB0, _controller(120)),
    EventType.CONTROL_CHANNEL_CONTROLLERS_OFF: (0xB0, _controller(121)),
    EventType.CONTROL_CHANNEL_NOTES_OFF: (0xB0, _controller(123)),
    EventType.CONTROL_DUMMY: (0xB0, _pair),
    EventType.PATCH: (0xC0, lambda value: bytes((value & 0xFF,))),
    EventType.CHANNEL_PRESSURE: (0xD0, lambda value: bytes((value & 0xFF,))),
    EventType.PITCH: (0xE0, lambda value: bytes((value & 0x7F, (value >> 7) & 0x7F))),
}

_SYSEX_GM_RESET = bytes((0xF0, 0x05, 0x7E, 0x7F, 0x09, 0x01, 0xF7))
_SYSEX_ROLAND_RESET = bytes(
    (0xF0, 0x0A, 0x41, 0x10, 0x42, 0x12, 0x40, 0x00, 0x7F, 0x00, 0x41, 0xF7)
)
_SYSEX_YAMAHA_RESET = bytes((0xF0, 0x08, 0x43, 0x10, 0x4C, 0x00, 0x00, 0x7E, 0x00, 0xF7))

_TEXT_KINDS = {
    EventType.META_TEXT: 0x01,
    EventType.META_COPYRIGHT: 0x02,
    EventType.META_TRACKNAME: 0x03,
    EventType.META_INSTRUMENTNAME: 0x04,
    EventType.META_LYRIC: 0x05,
    EventType.META_MARKER: 0x06,
    EventType.META_CUEPOINT: 0x07,
}


def _varlen(value):
    value &= 0xFFFFFFFF
    out = bytearray()
    if value > 0x0FFFFFFF:
        out.append(((value >> 28) & 0x7F) | 0x80)
    if value > 0x1FFFFF:
        out.append(((value >> 21) & 0x7F) | 0x80)
    if value > 0x3FFF:
        out.append(((value >> 14) & 0x7F) | 0x80)
    if value > 0x7F:
        out.append(((value >> 7) & 0x7F) | 0x80)
    out.append(value & 0x7F)
    return bytes(out)


def _roland_drum_track(channel, value):
    if channel == 9:
        channel = 0
    elif channel < 9:
        channel += 1
    return bytes(
        (0xF0, 0x09, 0x41, 0x10, 0x42, 0x12, 0x40, (0x10 | channel) & 0xFF,
         0x15, value & 0xFF, 0xF7)
    )


def _text_bytes(value):
    raw = value.encode("latin-1") if isinstance(value, str) else bytes(value)
    return raw.split(b"\0", 1)[0]


def _meta_fixed(evtype, channel, value):
    """Bytes of a fixed-size meta event, or None if evtype is not one."""
    if evtype == EventType.META_TIMESIGNATURE:
        return b"\xff\x58\x04" + (value & 0xFFFFFFFF).to_bytes(4, "big")
    if evtype == EventType.META_KEYSIGNATURE:
        return b"\xff\x59\x02" + (value & 0xFFFF).to_bytes(2, "big")
    if evtype == EventType.META_SEQUENCENO:
        return b"\xff\x00\x02" + (value & 0xFFFF).to_bytes(2, "big")
    if evtype == EventType.META_CHANNELPREFIX:
        return bytes((0xFF, 0x20, 0x01, value & 0xFF))
    if evtype == EventType.META_PORTPREFIX:
        return bytes((0xFF, 0x21, 0x01, value & 0xFF))
    if evtype == EventType.META_SMPTEOFFSET:
        return (bytes((0xFF, 0x54, 0x05, channel & 0xFF))
                + (value & 0xFFFFFFFF).to_bytes(4, "big"))
    return None


def song_to_midi(song: Song, options: Options | None = None) -> bytes:
    """Encode the events of song as MIDI file bytes.

    The result is a type 0 file, or a type 2 file with one track per
    original track when the song was type 2 and options.save_as_type0 is off.
    Only event types the song model knows are written.
    """
    options = options if options is not None else song.options
    events = song.events
    if not events:
        raise MidiError("(No events to convert)")

    as_type2 = (not options.save_as_type0) and song.is_type2
    divisions = _DEFAULT_DIVISIONS
    tempo = _DEFAULT_TEMPO
    per_tick = samples_per_tick(divisions, tempo, options.sample_rate)

    out = bytearray(b"MThd\x00\x00\x00\x06")
    out += b"\x00\x02" if as_type2 else b"\x00\x00"
    out += b"\x00\x00\x00\x00"  # track count and divisions, filled in later
    out += b"MTrk\x00\x00\x00\x00"
    track_start = len(out)
    track_count = 1
    running = 0

    def close_track():
        out.extend(_END_OF_TRACK)
        out[track_start - 4 : track_start] = (len(out) - track_start).to_bytes(4, "big")

    for index, event in enumerate(events):
        evtype = event.evtype
        if evtype == EventType.NULL:
            break
        value = event.value
        if evtype == EventType.MIDI_DIVISIONS:
            divisions = value
            out[12:14] = bytes(((divisions >> 8) & 0xFF, divisions & 0xFF))
            per_tick = samples_per_tick(divisions, tempo, options.sample_rate)
        elif evtype in _CHANNEL_EVENTS:
            base, encode = _CHANNEL_EVENTS[evtype]
            status = (base | event.channel) & 0xFF
            if running != status:
                out.append(status)
                running = status
            out += encode(value)
        elif evtype == EventType.SYSEX_ROLAND_DRUM_TRACK:
            out += _roland_drum_track(event.channel, value)
            running = 0
        elif evtype == EventType.SYSEX_GM_RESET:
            out += _SYSEX_GM_RESET
            running = 0
        elif evtype == EventType.SYSEX_ROLAND_RESET:
            out += _SYSEX_ROLAND_RESET
            running = 0
        elif evtype == EventType.SYSEX_YAMAHA_RESET:
            out += _SYSEX_YAMAHA_RESET
            running = 0
        elif evtype == EventType.META_ENDOFTRACK:
            if as_type2:
                close_track()
                following = events[index + 1 : index + 2]
                if following and following[0].evtype != EventType.NULL:
                    out += b"MTrk\x00\x00\x00\x00"
                    track_count += 1
                    track_start = len(out)
                    out.append(0)
                    running = 0
            continue
        elif evtype == EventType.META_TEMPO:
            tempo = value & 0xFFFFFF
            per_tick = samples_per_tick(divisions, tempo, options.sample_rate)
            out += b"\xff\x51\x03" + tempo.to_bytes(3, "big")
        elif evtype in _TEXT_KINDS:
            text = _text_bytes(value)
            out += bytes((0xFF, _TEXT_KINDS[evtype]))
            out += _varlen(len(text))
            out += text
        else:
            fixed = _meta_fixed(evtype, event.channel, value)
            if fixed is None:
                continue
            out += fixed

        out += _varlen(int(event.samples_to_next / per_tick + 0.5))

    if not as_type2:
        close_track()
    out[10:12] = (track_count & 0xFFFF).to_bytes(2, "big")
    return bytes(out)