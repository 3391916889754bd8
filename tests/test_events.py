import pytest

from midiwave.events import (
    CorruptError,
    EventType,
    Options,
    Song,
    samples_per_tick,
)


@pytest.fixture
def song():
    return Song(Options())


def test_note_on(song):
    used = song.setup_midi_event(bytes([0x91, 60, 100]), 0)
    assert used == 3
    event = song.events[-1]
    assert event.evtype == EventType.NOTE_ON
    assert event.channel == 1
    assert event.value == (60 << 8) | 100


def test_note_on_zero_velocity_is_note_off(song):
    song.setup_midi_event(bytes([0x90, 60, 0]), 0)
    assert song.events[-1].evtype == EventType.NOTE_OFF


def test_running_status(song):
    used = song.setup_midi_event(bytes([64, 90]), 0x93)
    assert used == 2
    assert song.events[-1].evtype == EventType.NOTE_ON
    assert song.events[-1].channel == 3


def test_controllers(song):
    song.setup_midi_event(bytes([0xB2, 7, 100]), 0)
    assert song.events[-1].evtype == EventType.CONTROL_CHANNEL_VOLUME
    assert song.events[-1].value == 100
    song.setup_midi_event(bytes([0xB2, 99, 5]), 0)
    assert song.events[-1].evtype == EventType.CONTROL_NON_REGISTERED_PARAM_COURSE
    assert song.events[-1].value >> 7 == 5
    song.setup_midi_event(bytes([0xB2, 1, 9]), 0)
    assert song.events[-1].evtype == EventType.CONTROL_DUMMY
    assert song.events[-1].value == (1 << 8) | 9


def test_patch_and_pitch(song):
    assert song.setup_midi_event(bytes([0xC0, 42]), 0) == 2
    assert song.events[-1].value == 42
    assert song.setup_midi_event(bytes([0xE0, 0x00, 0x40]), 0) == 3
    assert song.events[-1].value == 0x2000


def test_tempo_meta(song):
    used = song.setup_midi_event(bytes([0xFF, 0x51, 0x03, 0x07, 0xA1, 0x20]), 0)
    assert used == 6
    assert song.events[-1].evtype == EventType.META_TEMPO
    assert song.events[-1].value == 500000


def test_end_of_track(song):
    assert song.setup_midi_event(bytes([0xFF, 0x2F, 0x00]), 0) == 3
    assert song.events[-1].evtype == EventType.META_ENDOFTRACK


def test_text_meta(song):
    used = song.setup_midi_event(bytes([0xFF, 0x03, 4]) + b"Song", 0)
    assert used == 7
    assert song.events[-1].evtype == EventType.META_TRACKNAME
    assert song.events[-1].value == "Song"


def test_unknown_meta_skipped(song):
    used = song.setup_midi_event(bytes([0xFF, 0x7F, 2, 1, 2]), 0)
    assert used == 5
    assert song.events == []


def test_gm_reset(song):
    data = bytes([0xF0, 0x05, 0x7E, 0x7F, 0x09, 0x01, 0xF7])
    assert song.setup_midi_event(data, 0) == 7
    assert song.events[-1].evtype == EventType.SYSEX_GM_RESET


def test_roland_reset(song):
    data = bytes([0xF0, 0x0A, 0x41, 0x10, 0x42, 0x12, 0x40, 0x00, 0x7F, 0x00, 0x41, 0xF7])
    assert song.setup_midi_event(data, 0) == len(data)
    assert song.events[-1].evtype == EventType.SYSEX_ROLAND_RESET


def test_roland_drum_track(song):
    data = bytes([0xF0, 0x0A, 0x41, 0x10, 0x42, 0x12, 0x40, 0x10, 0x15, 0x01, 0x1A, 0xF7])
    song.setup_midi_event(data, 0)
    event = song.events[-1]
    assert event.evtype == EventType.SYSEX_ROLAND_DRUM_TRACK
    assert event.channel == 9
    assert event.value == 1


def test_truncated_event(song):
    with pytest.raises(CorruptError):
        song.setup_midi_event(bytes([0x90, 60]), 0)


def test_missing_running_status(song):
    with pytest.raises(CorruptError):
        song.setup_midi_event(bytes([60, 100]), 0)


def test_add_samples(song):
    song.setup_divisions(96)
    song.add_samples(10)
    song.add_samples(5)
    assert song.events[-1].samples_to_next == 15
    assert song.approx_total_samples == 15


def test_setup_helpers(song):
    song.setup_divisions(60)
    song.setup_tempo(500000)
    song.setup_note_off(2, 61, 0)
    song.setup_end_of_track()
    assert [e.evtype for e in song.events] == [
        EventType.MIDI_DIVISIONS,
        EventType.META_TEMPO,
        EventType.NOTE_OFF,
        EventType.META_ENDOFTRACK,
    ]
    assert song.events[2].channel == 2


@pytest.mark.parametrize("divisions,tempo,rate", [(96, 500000, 44100), (60, 428571, 32072)])
def test_samples_per_tick_invariant(divisions, tempo, rate):
    result = samples_per_tick(divisions, tempo, rate)
    assert result * divisions / rate == pytest.approx(tempo / 1000000.0)


def test_samples_per_tick_zero_divisions():
    assert samples_per_tick(0, 500000, 44100) == float("inf")