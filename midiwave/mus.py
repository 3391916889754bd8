"""Reading DMX "MUS" song files into an event stream."""

from __future__ import annotations

from typing import NamedTuple

from midiwave.events import (
    CorruptError,
    NotFormatError,
    Options,
    Song,
    samples_per_tick,
)

_MAGIC = b"MUS\x1a"
_MIN_SIZE = 18
_HEADER_SIZE = 16
_DIVISIONS = 60
_DEFAULT_FREQUENCY = 140

# MUS system events (kind 3) and the MIDI controllers they become.
_SYSTEM_CONTROLLERS = {
    10: 120,  # all sounds off
    11: 123,  # all notes off
    12: 126,  # mono
    13: 127,  # poly
    14: 121,  # reset all controllers
}

# MUS controllers (kind 4, except 0 which is a patch change).
_CONTROLLERS = {
    1: 0,  # bank select
    2: 1,  # modulation
    3: 7,  # volume
    4: 10,  # pan
    5: 11,  # expression
    6: 91,  # reverb
    7: 93,  # chorus
    8: 64,  # sustain
    9: 67,  # soft pedal
}

_KIND_END_OF_SONG = 6


class _Decoded(NamedTuple):
    size: int
    message: bytes | None


def _byte(view, pos):
    if pos >= len(view):
        raise CorruptError("file too short")
    return view[pos]


def _midi_channel(channel):
    """MUS plays drums on channel 15; MIDI on channel 9. Swap the two."""
    if channel == 0x0F:
        return 0x09
    if channel == 0x09:
        return 0x0F
    return channel


def _decode(view, pos, prev_volume):
    """Decode the MUS event at pos.

    Returns None at the end of the song, otherwise the event's size in the
    score and the MIDI message it becomes (None when it is not played).
    """
    status = _byte(view, pos)
    channel = _midi_channel(status & 0x0F)
    kind = (status >> 4) & 0x07

    if kind == _KIND_END_OF_SONG:
        return None
    if kind in (5, 7):
        return _Decoded(1, None)

    first = _byte(view, pos + 1)
    if kind == 0:
        return _Decoded(2, bytes((0x80 | channel, first, 0, 0)))
    if kind == 1:
        if first & 0x80:
            # Volumes above 127 occur in some songs; clamp them.
            velocity = min(_byte(view, pos + 2), 0x7F)
            prev_volume[channel] = velocity
            return _Decoded(3, bytes((0x90 | channel, first & 0x7F, velocity, 0)))
        return _Decoded(2, bytes((0x90 | channel, first, prev_volume[channel], 0)))
    if kind == 2:
        bend = (first << 6) & 0xFFFF
        return _Decoded(2, bytes((0xE0 | channel, bend & 0x7F, (bend >> 7) & 0x7F, 0)))
    if kind == 3:
        controller = _SYSTEM_CONTROLLERS.get(first)
        if controller is None:
            return _Decoded(2, None)
        return _Decoded(2, bytes((0xB0 | channel, controller, 0, 0)))

    # kind 4: controller change
    if first != 0 and first not in _CONTROLLERS:
        return _Decoded(3, None)
    value = _byte(view, pos + 2)
    if first == 0:
        return _Decoded(3, bytes((0xC0 | channel, value, 0, 0)))
    controller = _CONTROLLERS[first]
    if controller == 7:
        value = min(value, 0x7F)
    return _Decoded(3, bytes((0xB0 | channel, controller, value, 0)))


def _read_delay(view, pos):
    """Read a MUS delay: big-endian groups of 7 bits, bit 7 set on all but the last."""
    ticks = 0
    while True:
        byte = _byte(view, pos)
        pos += 1
        ticks = (ticks << 7) | (byte & 0x7F)
        if not byte & 0x80:
            return ticks, pos


def parse_mus(data, options=None):
    """Parse MUS file data and return the decoded Song."""
    options = options if options is not None else Options()
    view = memoryview(bytes(data))

    if len(view) < _MIN_SIZE:
        raise CorruptError("file too short")
    if bytes(view[:4]) != _MAGIC:
        raise NotFormatError("not a MUS file")

    song_length = int.from_bytes(view[4:6], "little")
    song_offset = int.from_bytes(view[6:8], "little")
    instrument_count = int.from_bytes(view[12:14], "little")
    if len(view) < _HEADER_SIZE + instrument_count * 2 + song_length:
        raise CorruptError("file too short")

    frequency = options.mus_frequency or _DEFAULT_FREQUENCY
    tempo_f = float(60000000 // frequency)
    if options.round_tempo:
        tempo_f += 0.5
    tempo = int(tempo_f)
    per_tick = samples_per_tick(_DIVISIONS, tempo, options.sample_rate)

    song = Song(options)
    song.setup_divisions(_DIVISIONS)
    song.setup_tempo(tempo)

    prev_volume = [0] * 16
    remainder = 0.0
    pos = song_offset
    while True:
        decoded = _decode(view, pos, prev_volume)
        if decoded is None:
            break
        if decoded.message is not None:
            song.setup_midi_event(decoded.message, 0)
        status = view[pos]
        pos += decoded.size
        if not status & 0x80:
            continue

        ticks, pos = _read_delay(view, pos)
        exact = ticks * per_tick + remainder
        count = int(exact)
        remainder = exact - count
        song.events[-1].samples_to_next = count
        song.approx_total_samples += count
        if pos >= len(view):
            break

    song.setup_end_of_track()
    song.current_sample = 0
    return song