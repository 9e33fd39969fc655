"""
Tuning standards and note frequency calculation.

Equal temperament relative to A4:
    steps = note_index - A_index + (octave - 4) * 12
    freq = base_frequency(tuning) * 2^(steps / 12)
"""
import math
import re
from enum import Enum
from typing import Tuple, Union

from core.constants import NOTE_NAMES


class TuningStandard(Enum):
    """Reference pitch conventions."""
    A440 = "440"
    A432 = "432"
    C256 = "256"  # Historical C4 = 256 Hz reference

    @classmethod
    def coerce(cls, value: Union["TuningStandard", str, int]) -> "TuningStandard":
        """Accept an enum member or its value ("440", 432, ...)."""
        if isinstance(value, cls):
            return value
        return cls(str(value))


class MalformedNoteNameError(ValueError):
    """Raised when a note name cannot be parsed (e.g. a corrupted note table)."""


_NOTE_PATTERN = re.compile(r"^([A-G])([#b]?)(\d+)$")

_A_INDEX = NOTE_NAMES.index("A")

# Base frequencies for A4 in each tuning standard
_BASE_FREQUENCIES = {
    TuningStandard.A440: 440.0,
    TuningStandard.A432: 432.0,
    TuningStandard.C256: 256.0 * math.pow(2.0, 0.75),
}


def base_frequency(tuning: Union[TuningStandard, str]) -> float:
    """
    Frequency of A4 in the given tuning standard.

    Example:
        >>> base_frequency("432")
        432.0
    """
    return _BASE_FREQUENCIES[TuningStandard.coerce(tuning)]


def _split(note) -> Tuple[str, str, str]:
    match = _NOTE_PATTERN.match(note) if isinstance(note, str) else None
    if not match:
        raise MalformedNoteNameError(f"Invalid note name format: {note!r}")
    return match.groups()


def _chromatic_index(note: str) -> int:
    letter, accidental, _ = _split(note)
    index = NOTE_NAMES.index(letter)
    if accidental == "#":
        index += 1
    elif accidental == "b":
        index -= 1
    return index


def parse_note_name(note: str) -> Tuple[str, int]:
    """
    Split a note name into sharp-spelled pitch class and octave.

    Enharmonic spellings that cross an octave boundary are normalised,
    so "Cb4" parses as ("B", 3).

    Args:
        note: Note name (e.g., "Bb3", "C#4", "E5")

    Returns:
        Tuple of (pitch class, octave), e.g. ("A#", 3)

    Raises:
        MalformedNoteNameError: If the note name is not {letter}{#|b}?{octave}
    """
    index = _chromatic_index(note)
    _, _, octave = _split(note)
    return NOTE_NAMES[index % 12], int(octave) + index // 12


def semitones_from_a4(note: str) -> int:
    """
    Signed semitone distance from A4.

    Flats are resolved by chromatic arithmetic, so "Cb4" lands on B3.
    """
    _, _, octave = _split(note)
    return _chromatic_index(note) - _A_INDEX + (int(octave) - 4) * 12


def note_frequency(note: str, tuning: Union[TuningStandard, str] = TuningStandard.A440) -> float:
    """
    Get the frequency for a note in a tuning standard.

    Args:
        note: Note name (e.g., "A4", "Bb3", "F#5")
        tuning: Tuning standard ("440", "432" or "256")

    Returns:
        Frequency in Hz rounded to 2 decimal places

    Raises:
        MalformedNoteNameError: If the note name cannot be parsed

    Example:
        >>> note_frequency("A4", "440")
        440.0
        >>> note_frequency("A5", "440")
        880.0
    """
    steps = semitones_from_a4(note)
    frequency = base_frequency(tuning) * math.pow(2.0, steps / 12.0)
    return round(frequency, 2)


def playback_rate(use_432hz: bool, cents: float = 0.0) -> float:
    """
    Playback-rate scalar for retuning a recorded sample.

    rate = (432/440 if use_432hz else 1) * 2^(cents / 1200)

    Example:
        >>> round(playback_rate(True, 0), 4)
        0.9818
    """
    base_ratio = 432.0 / 440.0 if use_432hz else 1.0
    return base_ratio * math.pow(2.0, cents / 1200.0)
