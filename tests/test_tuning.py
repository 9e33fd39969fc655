"""Tests for tuning standards and note frequencies."""
import math

import pytest

from core.tuning import (
    MalformedNoteNameError,
    TuningStandard,
    base_frequency,
    note_frequency,
    parse_note_name,
    playback_rate,
    semitones_from_a4,
)


class TestNoteFrequency:
    """Equal-tempered frequencies in each tuning."""

    def test_reference_pitches(self):
        """A4 sits on the reference frequency."""
        assert note_frequency("A4", "440") == 440.0
        assert note_frequency("A4", "432") == 432.0
        assert note_frequency("A5", "440") == 880.0
        assert note_frequency("A3", "440") == 220.0

    def test_default_tuning_is_440(self):
        """Without a tuning, A440 is used."""
        assert note_frequency("A4") == 440.0

    def test_known_values(self):
        """Common notes match standard tables."""
        assert note_frequency("C4", "440") == 261.63
        assert note_frequency("E5", "440") == 659.26

    def test_256_standard(self):
        """The 256 standard puts C4 at 256 Hz."""
        assert base_frequency("256") == pytest.approx(256 * 2 ** 0.75)
        assert note_frequency("C4", TuningStandard.C256) == pytest.approx(256.0, abs=0.01)

    def test_flats_equal_sharps(self):
        """Flat and sharp spellings of a pitch sound the same."""
        assert note_frequency("Bb3") == note_frequency("A#3")
        assert note_frequency("Eb4") == note_frequency("D#4")
        assert note_frequency("Cb4") == note_frequency("B3")

    def test_interval_ratio_is_tuning_invariant(self):
        """A fifth is the same ratio in every tuning."""
        ratios = [
            note_frequency("E5", t) / note_frequency("A4", t)
            for t in ("440", "432", "256")
        ]
        for ratio in ratios:
            assert ratio == pytest.approx(2 ** (7 / 12), rel=1e-4)

    @pytest.mark.parametrize("note", ["", "H4", "C", "c4", "C##4", "4C", "Cb", None, "A4 "])
    def test_malformed_note_raises(self, note):
        """Unparseable notes raise instead of guessing."""
        with pytest.raises(MalformedNoteNameError):
            note_frequency(note)


class TestParseNoteName:
    """Note name parsing."""

    def test_sharp_spelling(self):
        """Flats come back as their sharp equivalent."""
        assert parse_note_name("Bb3") == ("A#", 3)
        assert parse_note_name("C#4") == ("C#", 4)
        assert parse_note_name("E5") == ("E", 5)

    def test_octave_crossing(self):
        """Spellings across the B/C boundary adjust the octave."""
        assert parse_note_name("Cb4") == ("B", 3)
        assert parse_note_name("B#3") == ("C", 4)

    def test_semitone_distance(self):
        """Distance from A4 counts octaves and pitch class."""
        assert semitones_from_a4("A4") == 0
        assert semitones_from_a4("C4") == -9
        assert semitones_from_a4("A5") == 12


class TestPlaybackRate:
    """Tuning ratio used to retune samples."""

    def test_432_ratio(self):
        """A432 without fine tune is 432/440."""
        assert playback_rate(True, 0) == pytest.approx(0.9818, abs=1e-4)

    def test_octave_up(self):
        """1200 cents doubles the rate."""
        assert playback_rate(False, 1200) == pytest.approx(2.0)

    def test_combined(self):
        """Ratio and cents multiply."""
        assert playback_rate(True, -1200) == pytest.approx(432 / 440 / 2)
        assert playback_rate(False, 50) == pytest.approx(math.pow(2, 50 / 1200))
