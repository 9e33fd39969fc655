"""Tests for flute tables and chord resolution."""
import pytest

from core.fingering import Fingering, all_fingerings, open_states_from_fingering
from core.flutes import (
    DRONE_ROOT_NOTES,
    FLUTE_NOTES,
    Chamber,
    FluteType,
    ResolvedChord,
    flute_notes,
    note_for_holes,
    resolve_chord,
    resolve_chord_id,
    resolve_open_states,
)
from core.fingering import InvalidChordIdError
from core.tuning import note_frequency


class TestFluteTables:
    """Shape and content of the note tables."""

    def test_every_flute_has_three_chambers(self):
        """All 13 flutes define a 4-note table for each chamber."""
        assert len(FluteType) == 13
        for flute_type in FluteType:
            for chamber in Chamber:
                assert len(FLUTE_NOTES[flute_type][chamber]) == 4

    def test_tables_are_valid_notes(self):
        """Every table entry parses as a note."""
        for flute_type in FluteType:
            for chamber in Chamber:
                for note in flute_notes(flute_type, chamber):
                    assert note_frequency(note) > 0

    def test_every_flute_has_a_drone_root(self):
        """Each flute names the root its drone plays."""
        assert set(DRONE_ROOT_NOTES) == set(FluteType)
        assert DRONE_ROOT_NOTES[FluteType.C_MINOR_4] == "C4"
        assert DRONE_ROOT_NOTES[FluteType.B_FLAT_MINOR_3] == "Bb3"

    def test_coerce_from_string(self):
        """Flute types can be named by their value."""
        assert FluteType.coerce("Cm4") is FluteType.C_MINOR_4
        assert FluteType.coerce("D#m4") is FluteType.D_SHARP_MINOR_4
        assert FluteType.coerce(FluteType.E_MINOR_3) is FluteType.E_MINOR_3
        with pytest.raises(ValueError):
            FluteType.coerce("Xm9")


class TestResolveChord:
    """Fingering to note resolution."""

    def test_chord_1_is_lowest_notes(self):
        """All holes closed gives each chamber's first table note."""
        for flute_type in FluteType:
            chord = resolve_chord_id(1, flute_type)
            assert chord == tuple(FLUTE_NOTES[flute_type][c][0] for c in Chamber)

    def test_chord_64_is_highest_notes(self):
        """All holes open gives each chamber's last table note."""
        for flute_type in FluteType:
            chord = resolve_chord_id(64, flute_type)
            assert chord == tuple(FLUTE_NOTES[flute_type][c][3] for c in Chamber)

    def test_default_flute_is_c_minor_4(self):
        """Without a flute type, Cm4 tables are used."""
        assert resolve_chord(Fingering()) == ResolvedChord("G3", "C4", "G4")

    def test_front_chamber_follows_labels(self):
        """front_left is the upper hole, front_right the lower one."""
        assert resolve_chord(Fingering(front_right=True)).front == "Bb4"
        assert resolve_chord(Fingering(front_left=True)).front == "C5"

    def test_left_right_labels_are_swapped(self):
        """*_upper selects the bottom-open note, *_lower the top-open note."""
        assert resolve_chord(Fingering(left_upper=True)).left == "Bb3"
        assert resolve_chord(Fingering(left_lower=True)).left == "C4"
        assert resolve_chord(Fingering(right_upper=True)).right == "Eb4"
        assert resolve_chord(Fingering(right_lower=True)).right == "F4"

    def test_note_for_holes_indexing(self):
        """index = bottom_open + 2 * top_open."""
        table = flute_notes("Em4", "left")
        assert note_for_holes("Em4", Chamber.LEFT, False, False) == table[0]
        assert note_for_holes("Em4", Chamber.LEFT, False, True) == table[1]
        assert note_for_holes("Em4", Chamber.LEFT, True, False) == table[2]
        assert note_for_holes("Em4", Chamber.LEFT, True, True) == table[3]

    def test_resolution_is_pure(self):
        """Same inputs always give the same chord."""
        for fingering in all_fingerings():
            assert resolve_chord(fingering, "Am3") == resolve_chord(fingering, "Am3")

    def test_open_states_resolve_like_fingerings(self):
        """Ring-ordered states resolve to the same chord as the fingering."""
        for fingering in all_fingerings():
            states = open_states_from_fingering(fingering)
            assert resolve_open_states(states, "G#m3") == resolve_chord(fingering, "G#m3")

    def test_invalid_chord_id_propagates(self):
        """Unknown chord IDs surface the codec error."""
        with pytest.raises(InvalidChordIdError):
            resolve_chord_id(0)
