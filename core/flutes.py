"""
Flute types and note resolution.

Each flute type owns a 4-note table per chamber, ordered:
    [both closed, bottom open, top open, both open]

The pair of hole states in a chamber selects one note:
    index = bottom_open * 1 + top_open * 2

Left and right chambers are labelled inversely to their physical layout:
the field named *_upper is the physically lower hole and *_lower the
physically upper hole. The front chamber follows its labels (front_left is
the upper hole, front_right the lower).
"""
from enum import Enum
from typing import Dict, NamedTuple, Sequence, Tuple, Union

from core.fingering import Fingering, fingering_from_chord_id, fingering_from_open_states


class FluteType(Enum):
    """Supported flute transpositions (root + minor, octave)."""
    E_MINOR_4 = "Em4"
    D_SHARP_MINOR_4 = "D#m4"
    D_MINOR_4 = "Dm4"
    C_SHARP_MINOR_4 = "C#m4"
    C_MINOR_4 = "Cm4"
    B_MINOR_3 = "Bm3"
    B_FLAT_MINOR_3 = "Bbm3"
    A_MINOR_3 = "Am3"
    G_SHARP_MINOR_3 = "G#m3"
    G_MINOR_3 = "Gm3"
    F_SHARP_MINOR_3 = "F#m3"
    F_MINOR_3 = "Fm3"
    E_MINOR_3 = "Em3"

    @classmethod
    def coerce(cls, value: Union["FluteType", str]) -> "FluteType":
        """Accept an enum member or its value ("Cm4", ...)."""
        if isinstance(value, cls):
            return value
        return cls(value)


class Chamber(Enum):
    """Resonating chambers, each with two holes."""
    LEFT = "left"
    RIGHT = "right"
    FRONT = "front"


class ResolvedChord(NamedTuple):
    """Note names sounded by the three chambers."""
    left: str
    right: str
    front: str


DEFAULT_FLUTE_TYPE = FluteType.C_MINOR_4

_F = FluteType

# Per-chamber tables: [both closed, bottom open, top open, both open]
FLUTE_NOTES: Dict[FluteType, Dict[Chamber, Tuple[str, str, str, str]]] = {
    _F.E_MINOR_4: {
        Chamber.LEFT: ("B3", "E4", "D4", "F#4"),
        Chamber.RIGHT: ("E4", "A4", "G4", "B4"),
        Chamber.FRONT: ("B4", "D5", "E5", "F#5"),
    },
    _F.D_SHARP_MINOR_4: {
        Chamber.LEFT: ("Bb3", "Eb4", "Db4", "F4"),
        Chamber.RIGHT: ("Eb4", "Ab4", "Gb4", "Bb4"),
        Chamber.FRONT: ("Bb4", "Db5", "Eb5", "F5"),
    },
    _F.D_MINOR_4: {
        Chamber.LEFT: ("A3", "D4", "C4", "E4"),
        Chamber.RIGHT: ("D4", "G4", "F4", "A4"),
        Chamber.FRONT: ("A4", "C5", "D5", "E5"),
    },
    _F.C_SHARP_MINOR_4: {
        Chamber.LEFT: ("G#3", "C#4", "B3", "D#4"),
        Chamber.RIGHT: ("C#4", "F#4", "E4", "G#4"),
        Chamber.FRONT: ("G#4", "B4", "C#5", "D#5"),
    },
    _F.C_MINOR_4: {
        Chamber.LEFT: ("G3", "Bb3", "C4", "D4"),
        Chamber.RIGHT: ("C4", "Eb4", "F4", "G4"),
        Chamber.FRONT: ("G4", "Bb4", "C5", "D5"),
    },
    _F.B_MINOR_3: {
        Chamber.LEFT: ("F#3", "B3", "A3", "C#4"),
        Chamber.RIGHT: ("B3", "E4", "D4", "F#4"),
        Chamber.FRONT: ("F#4", "A4", "B4", "C#5"),
    },
    _F.B_FLAT_MINOR_3: {
        Chamber.LEFT: ("F3", "Bb3", "Ab3", "C4"),
        Chamber.RIGHT: ("Bb3", "Eb4", "Db4", "F4"),
        Chamber.FRONT: ("F4", "Ab4", "Bb4", "C5"),
    },
    _F.A_MINOR_3: {
        Chamber.LEFT: ("E3", "A3", "G3", "B3"),
        Chamber.RIGHT: ("A3", "D4", "C4", "E4"),
        Chamber.FRONT: ("E4", "G4", "A4", "B4"),
    },
    _F.G_SHARP_MINOR_3: {
        Chamber.LEFT: ("D#3", "G#3", "F#3", "A#3"),
        Chamber.RIGHT: ("G#3", "C#4", "B3", "D#4"),
        Chamber.FRONT: ("D#4", "F#4", "G#4", "A#4"),
    },
    _F.G_MINOR_3: {
        Chamber.LEFT: ("G3", "C4", "Bb3", "D4"),
        Chamber.RIGHT: ("C4", "F4", "Eb4", "G4"),
        Chamber.FRONT: ("G4", "Bb4", "C5", "D5"),
    },
    _F.F_SHARP_MINOR_3: {
        Chamber.LEFT: ("C#3", "F#3", "E3", "G#3"),
        Chamber.RIGHT: ("F#3", "B3", "A3", "C#4"),
        Chamber.FRONT: ("C#4", "E4", "F#4", "G#4"),
    },
    _F.F_MINOR_3: {
        Chamber.LEFT: ("C3", "F3", "Eb3", "G3"),
        Chamber.RIGHT: ("F3", "Bb3", "Ab3", "C4"),
        Chamber.FRONT: ("C4", "Eb4", "F4", "G4"),
    },
    _F.E_MINOR_3: {
        Chamber.LEFT: ("B2", "E3", "D3", "F#3"),
        Chamber.RIGHT: ("E3", "A3", "G3", "B3"),
        Chamber.FRONT: ("B3", "D4", "E4", "F#4"),
    },
}

# Root note of each flute, used to pick a drone sample
DRONE_ROOT_NOTES: Dict[FluteType, str] = {
    _F.E_MINOR_4: "E4",
    _F.D_SHARP_MINOR_4: "D#4",
    _F.D_MINOR_4: "D4",
    _F.C_SHARP_MINOR_4: "C#4",
    _F.C_MINOR_4: "C4",
    _F.B_MINOR_3: "B3",
    _F.B_FLAT_MINOR_3: "Bb3",
    _F.A_MINOR_3: "A3",
    _F.G_SHARP_MINOR_3: "G#3",
    _F.G_MINOR_3: "G3",
    _F.F_SHARP_MINOR_3: "F#3",
    _F.F_MINOR_3: "F3",
    _F.E_MINOR_3: "E3",
}


def flute_notes(flute_type: Union[FluteType, str], chamber: Union[Chamber, str]) -> Tuple[str, str, str, str]:
    """Get the 4-note table for one chamber of a flute."""
    return FLUTE_NOTES[FluteType.coerce(flute_type)][Chamber(chamber)]


def note_for_holes(flute_type: Union[FluteType, str], chamber: Union[Chamber, str],
                   upper_open: bool, lower_open: bool) -> str:
    """
    Get the note a chamber sounds for a pair of physical hole states.

    Args:
        flute_type: Flute transposition
        chamber: Chamber to look up
        upper_open: Physically upper hole is open
        lower_open: Physically lower (bottom) hole is open

    Returns:
        Note name from the chamber's table
    """
    notes = flute_notes(flute_type, chamber)
    return notes[int(bool(lower_open)) + 2 * int(bool(upper_open))]


def resolve_chord(fingering: Fingering,
                  flute_type: Union[FluteType, str] = DEFAULT_FLUTE_TYPE) -> ResolvedChord:
    """
    Calculate the three notes sounded by a fingering.

    Args:
        fingering: Hole states
        flute_type: Flute transposition (default: Cm4)

    Returns:
        ResolvedChord with left, right and front note names
    """
    flute_type = FluteType.coerce(flute_type)

    # Left/right labels are inverted: *_lower is the upper hole, *_upper the lower
    left = note_for_holes(flute_type, Chamber.LEFT,
                          upper_open=fingering.left_lower,
                          lower_open=fingering.left_upper)
    right = note_for_holes(flute_type, Chamber.RIGHT,
                           upper_open=fingering.right_lower,
                           lower_open=fingering.right_upper)
    front = note_for_holes(flute_type, Chamber.FRONT,
                           upper_open=fingering.front_left,
                           lower_open=fingering.front_right)

    return ResolvedChord(left=left, right=right, front=front)


def resolve_chord_id(chord_id: int,
                     flute_type: Union[FluteType, str] = DEFAULT_FLUTE_TYPE) -> ResolvedChord:
    """
    Calculate the three notes for a chord ID.

    Raises:
        InvalidChordIdError: If chord_id is outside 1-64
    """
    return resolve_chord(fingering_from_chord_id(chord_id), flute_type)


def resolve_open_states(open_states: Sequence[bool],
                        flute_type: Union[FluteType, str] = DEFAULT_FLUTE_TYPE) -> ResolvedChord:
    """Calculate the three notes for ring-ordered open states."""
    return resolve_chord(fingering_from_open_states(open_states), flute_type)
