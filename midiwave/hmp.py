"""Reading HMI "HMP" song files into an event stream."""

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

_MAGIC = b"HMIMIDIP"
_HMP2_TAG = b"013195"
_MIN_SIZE = 776
_MIN_SIZE_HMP2 = 896
_DIVISIONS = 60
_LIMIT = 0x7FFFFFFF
_END_OF_TRACK = b"\xff\x2f\x00"


@dataclass
class _Chunk:
    data: memoryview
    pos: int = 0
    delta: int = 0
    ended: bool = False

    @property
    def remaining(self):
        return len(self.data) - self.pos

    def read_delta(self):
        """Read an HMP delta: low groups first, the last byte has bit 7 set."""
        value = 0
        shift = 0
        while self.remaining and self.data[self.pos] < 0x80:
            value += (self.data[self.pos] & 0x7F) << shift
            shift += 7
            self.pos += 1
        if not self.remaining:
            raise NotFormatError("file too short")
        value += (self.data[self.pos] & 0x7F) << shift
        self.pos += 1
        return value


def _u32le(data, pos):
    if pos + 4 > len(data):
        raise CorruptError("file too short")
    return int.from_bytes(data[pos : pos + 4], "little")


class _SampleClock:
    """Turns tick counts into whole samples, carrying the fraction forward."""

    def __init__(self, song, per_tick):
        self.song = song
        self.per_tick = per_tick
        self.remainder = 0.0

    def advance(self, ticks):
        if ticks >= _LIMIT / self.per_tick:
            raise CorruptError("delta too large")
        exact = ticks * self.per_tick + self.remainder
        count = int(exact)
        self.remainder = exact - count
        self.song.add_samples(count)


def _read_chunks(view, pos, count):
    chunks = []
    for _ in range(count):
        start = pos
        if start + 12 > len(view):
            raise NotFormatError("file too short")
        length = _u32le(view, start + 4)
        if length > len(view) - start:
            raise NotFormatError("file too short")
        chunk = _Chunk(view[start : start + length], pos=12)
        if chunk.remaining <= 0:
            raise CorruptError("bad chunk length")
        chunk.delta = chunk.read_delta()
        chunks.append(chunk)
        pos = start + length
    return chunks


def _is_loop_marker(head):
    return (
        len(head) == 3
        and (head[0] & 0xF0) == 0xB0
        and head[1] in (110, 111)
        and head[2] > 0x7F
    )


def _play_chunk(song, chunk):
    """Decode events until a non-zero delta or the end of the chunk."""
    while True:
        head = bytes(chunk.data[chunk.pos : chunk.pos + 3])
        if _is_loop_marker(head):
            chunk.pos += 3
        else:
            used = song.setup_midi_event(chunk.data[chunk.pos :], 0)
            if head == _END_OF_TRACK:
                chunk.ended = True
                chunk.pos += 3
                return
            chunk.pos += used
        chunk.delta = chunk.read_delta()
        if chunk.delta:
            return


def parse_hmp(data, options=None):
    """Parse HMP (or HMP2) file data and return the decoded Song."""
    options = options if options is not None else Options()
    view = memoryview(bytes(data))

    if len(view) < _MIN_SIZE:
        raise CorruptError("file too short")
    if bytes(view[:8]) != _MAGIC:
        raise NotFormatError("not an HMP file")
    pos = 8

    is_hmp2 = bytes(view[pos : pos + 6]) == _HMP2_TAG
    if is_hmp2:
        if len(view) - pos < _MIN_SIZE_HMP2:
            raise CorruptError("file too short")
        pos += 6

    zero_count = 18 if is_hmp2 else 24
    if any(view[pos : pos + zero_count]):
        raise NotFormatError("not an HMP file")
    pos += zero_count

    pos += 4  # file length, unused
    pos += 12  # normally zero
    chunk_count = _u32le(view, pos)
    pos += 4
    if not chunk_count:
        raise CorruptError("(no tracks)")
    pos += 4  # meaning unknown
    bpm = _u32le(view, pos)
    pos += 4
    if not bpm:
        raise InvalidError("(bad bpm)")
    pos += 4  # song time, unreliable
    pos += 840 if is_hmp2 else 712

    tempo_f = float(60000000 // bpm)
    if options.round_tempo:
        tempo_f += 0.5
    tempo = int(tempo_f)
    per_tick = samples_per_tick(_DIVISIONS, tempo, options.sample_rate)

    song = Song(options)
    song.setup_divisions(_DIVISIONS)
    song.setup_tempo(tempo)

    chunks = _read_chunks(view, pos, chunk_count)
    smallest = min(chunk.delta for chunk in chunks)
    if smallest >= _LIMIT:
        raise CorruptError("delta too large")

    clock = _SampleClock(song, per_tick)
    clock.advance(smallest)
    subtract = smallest

    ended = 0
    while ended < len(chunks):
        smallest = 0
        for chunk in chunks:
            if chunk.ended:
                continue
            if chunk.delta:
                chunk.delta -= subtract
                if chunk.delta:
                    if not smallest or smallest > chunk.delta:
                        smallest = chunk.delta
                    continue
            _play_chunk(song, chunk)
            if chunk.ended:
                ended += 1
                continue
            if not smallest or smallest > chunk.delta:
                smallest = chunk.delta
        clock.advance(smallest)
        subtract = smallest

    song.current_sample = 0
    return song