[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "midiwave"
version = "0.4.5"
description = "Parse MIDI, HMP, MUS and XMI music data into sample-timed event streams and write them back out as standard MIDI"
requires-python = ">=3.10"
dependencies = []
keywords = ["midi", "hmp", "mus", "xmi", "xmidi", "music", "sequencer", "parser"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: MIDI",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["midiwave"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
