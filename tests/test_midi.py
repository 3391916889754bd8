import pytest

from midiwave.events import (
    CorruptError,
    EventType,
    InvalidError,
    NotFormatError,
)
from midiwave.midi import parse_midi

EOT = b"\x00\xff\x2f\x00"


def _header(fmt, ntracks, divisions=96, size=6):
    return (
        b"MThd"
        + size.to_bytes(4, "big")
        + fmt.to_bytes(2, "big")
        + ntracks.to_bytes(2, "big")
        + divisions.to_bytes(2, "big")
    )


def _track(body):
    return b"MTrk" + len(body).to_bytes(4, "big") + body


def _simple_body():
    return b"\x00\x90\x3c\x64" + b"\x60\x80\x3c\x00" + EOT


def _types(song):
    return [event.evtype for event in song.events]


def test_type0_events_in_order():
    song = parse_midi(_header(0, 1) + _track(_simple_body()))
    assert _types(song) == [
        EventType.MIDI_DIVISIONS,
        EventType.NOTE_ON,
        EventType.NOTE_OFF,
        EventType.META_ENDOFTRACK,
    ]
    assert song.events[0].value == 96
    assert song.events[1].value == (0x3C << 8) | 0x64
    assert song.is_type2 is False


def test_one_beat_at_default_tempo_is_half_a_second():
    song = parse_midi(_header(0, 1) + _track(_simple_body()))
    assert song.events[1].samples_to_next == 22050
    assert song.approx_total_samples == sum(e.samples_to_next for e in song.events)


def test_tempo_change_scales_samples():
    plain = parse_midi(_header(0, 1) + _track(_simple_body()))
    slow_body = b"\x00\xff\x51\x03\x0f\x42\x40" + _simple_body()
    slow = parse_midi(_header(0, 1) + _track(slow_body))
    tempo_events = [e for e in slow.events if e.evtype == EventType.META_TEMPO]
    assert tempo_events[0].value == 0x0F4240
    assert slow.approx_total_samples == 2 * plain.approx_total_samples


def test_running_status():
    body = b"\x00\x90\x3c\x64" + b"\x00\x40\x50" + EOT
    song = parse_midi(_header(0, 1) + _track(body))
    notes = [e for e in song.events if e.evtype == EventType.NOTE_ON]
    assert [n.value for n in notes] == [(0x3C << 8) | 0x64, (0x40 << 8) | 0x50]


def test_riff_wrapper_gives_same_events():
    plain = _header(0, 1) + _track(_simple_body())
    riff = b"RIFF" + b"\x00" * 4 + b"RMID" + b"data" + b"\x00" * 4 + plain
    a = parse_midi(plain)
    b = parse_midi(riff)
    assert a.events == b.events
    assert a.approx_total_samples == b.approx_total_samples


def test_type1_tracks_are_merged_by_time():
    track0 = b"\x00\x90\x3c\x64" + b"\x0a\x80\x3c\x00" + EOT
    track1 = b"\x05\x91\x40\x64" + b"\x0a\x81\x40\x00" + EOT
    song = parse_midi(_header(1, 2) + _track(track0) + _track(track1))
    summary = [(e.evtype, e.channel) for e in song.events]
    assert summary == [
        (EventType.MIDI_DIVISIONS, 0),
        (EventType.NOTE_ON, 0),
        (EventType.NOTE_ON, 1),
        (EventType.NOTE_OFF, 0),
        (EventType.META_ENDOFTRACK, 0),
        (EventType.NOTE_OFF, 1),
        (EventType.META_ENDOFTRACK, 0),
    ]
    assert song.approx_total_samples == sum(e.samples_to_next for e in song.events)


def test_type1_merged_total_matches_longest_track():
    track0 = b"\x00\x90\x3c\x64" + b"\x0a\x80\x3c\x00" + EOT
    track1 = b"\x05\x91\x40\x64" + b"\x0a\x81\x40\x00" + EOT
    merged = parse_midi(_header(1, 2) + _track(track0) + _track(track1))
    single = parse_midi(_header(1, 1) + _track(track1))
    assert merged.approx_total_samples == single.approx_total_samples


def test_type1_allows_extra_byte_after_eot():
    body = _simple_body() + b"\x00"
    song = parse_midi(_header(1, 1) + _track(body))
    assert _types(song)[-1] == EventType.META_ENDOFTRACK


def test_type2_sets_flag_and_plays_tracks_in_sequence():
    track0 = b"\x00\x90\x3c\x64" + b"\x10\x80\x3c\x00" + EOT
    track1 = b"\x00\x91\x40\x64" + b"\x10\x81\x40\x00" + EOT
    song = parse_midi(_header(2, 2) + _track(track0) + _track(track1))
    assert song.is_type2 is True
    channels = [e.channel for e in song.events if e.evtype == EventType.NOTE_ON]
    assert channels == [0, 1]
    assert _types(song).count(EventType.META_ENDOFTRACK) == 2


def test_type0_without_eot_is_accepted():
    song = parse_midi(_header(0, 1) + _track(b"\x00\x90\x3c\x64"))
    assert _types(song) == [EventType.MIDI_DIVISIONS, EventType.NOTE_ON]


def test_too_short():
    with pytest.raises(CorruptError):
        parse_midi(b"MThd\x00\x00")


def test_short_riff():
    with pytest.raises(CorruptError):
        parse_midi(b"RIFF" + b"\x00" * 20)


def test_not_midi():
    with pytest.raises(NotFormatError):
        parse_midi(b"XXXX" + b"\x00" * 20)


def test_bad_header_size():
    with pytest.raises(CorruptError):
        parse_midi(_header(0, 1, size=7) + _track(_simple_body()))


def test_unsupported_format():
    with pytest.raises(InvalidError):
        parse_midi(_header(3, 1) + _track(_simple_body()))


def test_no_tracks():
    with pytest.raises(CorruptError):
        parse_midi(_header(1, 0) + b"\x00" * 8)


def test_type0_with_two_tracks():
    data = _header(0, 2) + _track(_simple_body()) + _track(_simple_body())
    with pytest.raises(InvalidError):
        parse_midi(data)


def test_smpte_divisions_rejected():
    with pytest.raises(InvalidError):
        parse_midi(_header(0, 1, divisions=0xE728) + _track(_simple_body()))


def test_missing_track_header():
    body = _simple_body()
    data = _header(0, 1) + b"XTrk" + len(body).to_bytes(4, "big") + body
    with pytest.raises(CorruptError):
        parse_midi(data)


def test_track_longer_than_file():
    body = _simple_body()
    data = _header(0, 1) + b"MTrk" + (len(body) + 10).to_bytes(4, "big") + body
    with pytest.raises(CorruptError):
        parse_midi(data)


def test_missing_eot_in_type1():
    body = b"\x00\x90\x3c\x64" + b"\x60\x80\x3c\x00"
    with pytest.raises(CorruptError):
        parse_midi(_header(1, 1) + _track(body))


def test_unknown_event_is_corrupt():
    body = b"\x00\xf4\x00" + EOT
    with pytest.raises(CorruptError):
        parse_midi(_header(1, 1) + _track(body))


def test_zero_divisions_is_corrupt():
    with pytest.raises(CorruptError):
        parse_midi(_header(0, 1, divisions=0) + _track(_simple_body()))


def test_sample_rate_option_scales_samples():
    from midiwave.events import Options

    data = _header(0, 1) + _track(_simple_body())
    low = parse_midi(data, Options(sample_rate=22050))
    high = parse_midi(data, Options(sample_rate=44100))
    assert high.approx_total_samples == 2 * low.approx_total_samples