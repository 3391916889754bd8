"""Reading Miles "XMI" (extended MIDI) song files into an event stream."""

from __future__ import annotations

from midiwave.events import (
    CorruptError,
    NotFormatError,
    Options,
    Song,
    samples_per_tick,
)

_DIVISIONS = 60
_TEMPO = 500000
_LIMIT = 0x7FFFFFFF
_TEMPO_PREFIX = b"\xff\x51\x03"
_TEMPO_EVENT_SIZE = 6
_INFO_CONSUMED = 13  # "XDIRINFO", four unknown bytes and the form count


def _byte(view, pos):
    if pos >= len(view):
        raise CorruptError("file too short")
    return view[pos]


def _u32be(view, pos):
    if pos + 4 > len(view):
        raise CorruptError("file too short")
    return int.from_bytes(view[pos : pos + 4], "big")


def _expect(view, pos, tag):
    if bytes(view[pos : pos + len(tag)]) != tag:
        raise NotFormatError("not an XMI file")
    return pos + len(tag)


def _read_varlen(view, pos):
    """Read a big-endian variable length quantity; return (value, next position)."""
    value = 0
    while True:
        byte = _byte(view, pos)
        pos += 1
        value = (value << 7) | (byte & 0x7F)
        if byte <= 0x7F:
            return value, pos


class _NoteTimer:
    """Tracks sounding notes and turns them off as time passes.

    XMI note-on events carry their own duration instead of a matching
    note-off, so the note-offs are generated here while advancing time.
    """

    def __init__(self, song, per_tick):
        self.song = song
        self.per_tick = per_tick
        self.remainder = 0.0
        self.lengths: dict[int, int] = {}
        self.lowest = 0

    def start(self, channel, note, length):
        index = 128 * channel + note
        if length:
            self.lengths[index] = length
        else:
            self.lengths.pop(index, None)
        if length > 0 and (self.lowest == 0 or length < self.lowest):
            self.lowest = length

    def _add_ticks(self, ticks):
        if ticks >= _LIMIT / self.per_tick:
            raise CorruptError("delta too large")
        exact = ticks * self.per_tick + self.remainder
        count = int(exact)
        self.remainder = exact - count
        self.song.add_samples(count)

    def advance(self, delta):
        while True:
            step = self.lowest if self.lowest and self.lowest <= delta else delta
            self._add_ticks(step)
            self.lowest = 0
            for index in sorted(self.lengths):
                left = self.lengths[index] - step
                if left == 0:
                    del self.lengths[index]
                    channel, note = divmod(index, 128)
                    self.song.setup_note_off(channel, note, 0)
                else:
                    self.lengths[index] = left
                    if self.lowest == 0 or self.lowest > left:
                        self.lowest = left
            delta -= step
            if not delta:
                return


def _parse_events(song, view, pos, end, timer):
    """Decode the events of one EVNT chunk; return the position after them."""
    while pos < end:
        status = _byte(view, pos)
        if status < 0x80:
            pos += 1
            timer.advance(status)
            continue
        if bytes(view[pos : pos + 3]) == _TEMPO_PREFIX:
            # Tempo changes are ignored: XMI timing is fixed.
            pos += _TEMPO_EVENT_SIZE
            continue
        used = song.setup_midi_event(view[pos:], 0)
        if (status & 0xF0) == 0x90:
            note = _byte(view, pos + 1)
            pos += used
            length, pos = _read_varlen(view, pos)
            timer.start(status & 0x0F, note, length)
        else:
            pos += used
    return pos


def _parse_form(song, view, pos, timer):
    """Parse one "FORM ... XMID" sub-form; return (next position, EVNT count)."""
    pos = _expect(view, pos, b"FORM")
    length = _u32be(view, pos)
    pos += 4
    pos = _expect(view, pos, b"XMID")
    form_end = pos + length - 4
    event_chunks = 0

    while True:
        tag = bytes(view[pos : pos + 4])
        if tag in (b"TIMB", b"RBRN"):
            size = _u32be(view, pos + 4)
            pos += 8 + size
        elif tag == b"EVNT":
            event_chunks += 1
            size = _u32be(view, pos + 4)
            pos += 8
            pos = _parse_events(song, view, pos, pos + size, timer)
        else:
            raise NotFormatError("not an XMI file")
        if pos >= form_end:
            return pos, event_chunks


def parse_xmi(data, options=None):
    """Parse XMI file data and return the decoded Song."""
    options = options if options is not None else Options()
    view = memoryview(bytes(data))

    pos = _expect(view, 0, b"FORM")
    info_length = _u32be(view, pos)
    pos += 4
    pos = _expect(view, pos, b"XDIRINFO")
    pos += 4  # unknown, normally 0x00000002
    form_count = _byte(view, pos)
    pos += 1
    if form_count == 0:
        raise NotFormatError("not an XMI file")
    if info_length < _INFO_CONSUMED:
        raise CorruptError("bad XDIR length")
    pos += info_length - _INFO_CONSUMED

    pos = _expect(view, pos, b"CAT ")
    _u32be(view, pos)  # catalogue length, unused
    pos += 4
    pos = _expect(view, pos, b"XMID")

    song = Song(options)
    song.setup_divisions(_DIVISIONS)
    song.setup_tempo(_TEMPO)
    timer = _NoteTimer(
        song, samples_per_tick(_DIVISIONS, _TEMPO, options.sample_rate)
    )

    event_chunks = 0
    for _ in range(form_count):
        pos, count = _parse_form(song, view, pos, timer)
        event_chunks += count

    song.current_sample = 0
    # More than one event chunk means the tracks play one after another.
    song.is_type2 = event_chunks > 1
    return song