"""Parse MIDI, HMP, MUS and XMI data into sample-timed event streams and write MIDI."""

__version__ = "0.4.5"
__all__ = ["events", "hmp", "midi", "midiwrite", "mus", "xmidi"]