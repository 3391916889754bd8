# midiwave

`midiwave` reads music data in several sequencer formats and turns each one
into a single, sample-timed stream of events. The stream can then be written
back out as a standard MIDI file.

Supported inputs:

- Standard MIDI files, types 0, 1 and 2 (a leading `RIFF` header is skipped)
- HMP and HMP2 files (`HMIMIDIP`)
- MUS files (`MUS\x1a`)
- Extended MIDI (XMI) files (`FORM`/`XDIRINFO`/`CAT `/`XMID`)

## Installation

```
pip install midiwave
```

The package has no runtime dependencies.

## Usage

Every parser takes the raw file bytes and, optionally, an `Options` object,
and returns a `Song`. Malformed input raises a subclass of `MidiError`:
`CorruptError` for truncated or damaged data, `InvalidError` for values that
are not supported (such as SMPTE time divisions or a zero BPM), and
`NotFormatError` when the data is not in the expected format at all.

```python
from pathlib import Path

from midiwave.events import MidiError, Options
from midiwave.midi import parse_midi
from midiwave.midiwrite import song_to_midi

options = Options(sample_rate=44100)
data = Path("song.mid").read_bytes()

try:
    song = parse_midi(data, options)
except MidiError as exc:
    print(f"could not read song: {exc}")
else:
    Path("copy.mid").write_bytes(song_to_midi(song, options))
```

The other formats work the same way:

```python
from midiwave.hmp import parse_hmp
from midiwave.mus import parse_mus
from midiwave.xmidi import parse_xmi

song = parse_mus(Path("track.mus").read_bytes(), options)
```

### Options

`Options` is a dataclass with these fields:

- `sample_rate` (default `44100`): the rate event times are measured in.
- `round_tempo` (default `False`): add 0.5 to the tempo derived from HMP BPM
  or MUS frequency before truncating it.
- `save_as_type0` (default `False`): make `song_to_midi` always write type 0.
- `mus_frequency` (default `0`): ticks per second for MUS files; `0` means 140.

### Songs and events

A `Song` holds `events`, a list of `Event` records (`evtype`, `channel`,
`value`, `samples_to_next`), together with `approx_total_samples` and
`is_type2`. `EventType` lists every kind of event the stream can hold.

Songs can also be built by hand: `Song.setup_midi_event(data, running_event)`
decodes one raw MIDI event and returns the number of bytes it used, and
`setup_divisions`, `setup_tempo`, `setup_note_off`, `setup_end_of_track` and
`add_samples` append events or time.

### Timing

Event times are held as sample counts at `Options.sample_rate`. The helper
`samples_per_tick(divisions, tempo, sample_rate)` in `midiwave.events` gives
the conversion factor used throughout.

### Writing MIDI

`song_to_midi(song, options)` returns the bytes of a type 0 file. A song
parsed from a type 2 MIDI file, or from an XMI file with more than one event
chunk, is written as type 2 with one track per original track, unless
`save_as_type0` is set. Only events the library understands are written; a
song with no events raises `MidiError`.

## What the package does not do

`midiwave` works on bytes only: it does not open files, expand `~` or check
file sizes, so read the data yourself before passing it in. It does not
synthesise audio or play songs, and it has no command-line program.

## Running the tests

```
pip install midiwave[test]
pytest
```