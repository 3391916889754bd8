"""Reading Standard MIDI Files (optionally RIFF wrapped) into an event stream."""

from __future__ import annotations

from dataclasses import dataclass

from midiwave.events import (
    CorruptError,
    InvalidError,
    NotFormatError,
    Options,
    Song,
    samples_per_tick,
)

_RIFF_MAGIC = b"RIFF"
_RIFF_HEADER_SIZE = 20
_HEADER_MAGIC = b"MThd"
_TRACK_MAGIC = b"MTrk"
_DEFAULT_TEMPO = 500000
_LIMIT = 0x7FFFFFFF
_END_OF_TRACK = b"\xff\x2f\x00"
_TEMPO_PREFIX = b"\xff\x51\x03"


@dataclass
class _Track:
    data: memoryview
    pos: int = 0
    delta: int = 0
    ended: bool = False
    running: int = 0

    @property
    def remaining(self):
        return len(self.data) - self.pos

    def head(self, count):
        return bytes(self.data[self.pos : self.pos + count])

    def rest(self):
        return self.data[self.pos :]

    def read_delta(self):
        """Read a variable length delta; return None if the track runs out."""
        value = 0
        while self.remaining and self.data[self.pos] > 0x7F:
            value = (value << 7) + (self.data[self.pos] & 0x7F)
            self.pos += 1
        if not self.remaining:
            return None
        value = (value << 7) + (self.data[self.pos] & 0x7F)
        self.pos += 1
        return value


class _SampleClock:
    """Turns tick counts into whole samples, carrying the fraction forward."""

    def __init__(self, song, per_tick):
        self.song = song
        self.per_tick = per_tick
        self.remainder = 0.0

    def check(self, ticks):
        if ticks >= _LIMIT / self.per_tick:
            raise CorruptError("delta too large")

    def advance(self, ticks):
        exact = ticks * self.per_tick + self.remainder
        count = int(exact)
        self.remainder = exact - count
        self.song.add_samples(count)


def _u32be(view, pos):
    return int.from_bytes(view[pos : pos + 4], "big")


def _u16be(view, pos):
    return int.from_bytes(view[pos : pos + 2], "big")


def _has_end_of_track(body, midi_type):
    size = len(body)
    if bytes(body[size - 3 :]) == _END_OF_TRACK:
        return True
    if midi_type == 0:
        return True
    # Some editors add one stray byte after the end-of-track marker.
    return size >= 4 and bytes(body[size - 4 : size - 1]) == _END_OF_TRACK


def _read_tracks(view, pos, count, midi_type):
    tracks = []
    for _ in range(count):
        if len(view) - pos < 8:
            raise CorruptError("(too short)")
        if bytes(view[pos : pos + 4]) != _TRACK_MAGIC:
            raise CorruptError("(missing track header)")
        size = _u32be(view, pos + 4)
        pos += 8
        if len(view) - pos < size:
            raise CorruptError("(too short)")
        if size < 3:
            raise CorruptError("(bad track size)")
        body = view[pos : pos + size]
        if not _has_end_of_track(body, midi_type):
            raise CorruptError("(missing EOT)")
        track = _Track(body)
        delta = track.read_delta()
        if delta is None:
            raise CorruptError("(too short)")
        track.delta = delta
        tracks.append(track)
        pos += size
    return tracks


def _tempo_from(head):
    tempo = (head[3] << 16) + (head[4] << 8) + head[5]
    return tempo or _DEFAULT_TEMPO


def _play_event(song, track, clock, divisions, sample_rate):
    """Decode one event; return True if it was the end-of-track marker."""
    head = track.head(6)
    used = song.setup_midi_event(track.rest(), track.running)
    status = head[0]
    if status > 0x7F:
        if status < 0xF0:
            track.running = status
        elif status in (0xF0, 0xF7):
            track.running = 0
        elif head[:3] == _END_OF_TRACK:
            return True
        elif head[:3] == _TEMPO_PREFIX and len(head) == 6:
            clock.per_tick = samples_per_tick(
                divisions, _tempo_from(head), sample_rate
            )
    track.pos += used
    return False


def _parse_type1(song, tracks, clock, subtract, divisions, sample_rate):
    ended = 0
    while ended != len(tracks):
        smallest = 0
        for track in tracks:
            if track.ended:
                continue
            if track.delta:
                track.delta -= subtract
                if track.delta:
                    if not smallest or smallest > track.delta:
                        smallest = track.delta
                    continue
            while True:
                if _play_event(song, track, clock, divisions, sample_rate):
                    track.ended = True
                    track.pos += 3
                    ended += 1
                    break
                delta = track.read_delta()
                if delta is None:
                    raise CorruptError("(too short)")
                track.delta = delta
                if delta:
                    break
            if track.ended:
                continue
            if not smallest or smallest > track.delta:
                smallest = track.delta
        clock.check(smallest)
        subtract = smallest
        clock.advance(smallest)


def _parse_sequential(song, tracks, clock, last_delta, midi_type, divisions,
                      sample_rate):
    clock.remainder = 0.0
    for track in tracks:
        track.running = 0
        while True:
            if _play_event(song, track, clock, divisions, sample_rate):
                track.ended = True
                break
            delta = track.read_delta()
            if delta is None:
                if midi_type != 0:
                    raise CorruptError("(too short)")
                track.ended = True
                break
            track.delta = delta
            clock.check(last_delta)
            clock.advance(delta)
            last_delta = delta


def parse_midi(data, options=None):
    """Parse Standard MIDI File data (format 0, 1 or 2) and return the Song."""
    options = options if options is not None else Options()
    view = memoryview(bytes(data))

    if len(view) < 14:
        raise CorruptError("(too short)")
    if bytes(view[:4]) == _RIFF_MAGIC:
        if len(view) < 34:
            raise CorruptError("(too short)")
        view = view[_RIFF_HEADER_SIZE:]

    if bytes(view[:4]) != _HEADER_MAGIC:
        raise NotFormatError("not a MIDI file")
    if _u32be(view, 4) != 6:
        raise CorruptError("bad header size")

    midi_type = _u16be(view, 8)
    if midi_type > 2:
        raise InvalidError("unsupported MIDI format")
    track_count = _u16be(view, 10)
    if track_count < 1:
        raise CorruptError("(no tracks)")
    if midi_type == 0 and track_count > 1:
        raise InvalidError(
            "(expected 1 track for type 0 midi file, found more)"
        )
    divisions = _u16be(view, 12)
    if divisions & 0x8000:
        raise InvalidError("SMPTE time divisions are not supported")

    per_tick = samples_per_tick(divisions, _DEFAULT_TEMPO, options.sample_rate)

    song = Song(options)
    song.setup_divisions(divisions)

    tracks = _read_tracks(view, 14, track_count, midi_type)
    if midi_type == 1:
        smallest = min(track.delta for track in tracks)
    else:
        smallest = tracks[0].delta

    if smallest >= _LIMIT:
        raise CorruptError("delta too large")
    clock = _SampleClock(song, per_tick)
    clock.check(smallest)
    clock.advance(smallest)

    if midi_type == 1:
        _parse_type1(song, tracks, clock, smallest, divisions,
                     options.sample_rate)
    else:
        song.is_type2 = midi_type == 2
        _parse_sequential(song, tracks, clock, smallest, midi_type, divisions,
                          options.sample_rate)

    song.current_sample = 0
    return song