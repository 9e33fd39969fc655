"""
Fingering codec for the six-hole flute.

Three equivalent views of a fingering:
- ChordID: integer 1-64 (chord 1 = all holes closed, chord 64 = all open)
- Fingering: six named hole states, two per chamber
- OpenStates: six booleans in ring (visual) order

Bit order of the 6-bit field (LSB to MSB):
    bit 0: front_right  (1)
    bit 1: front_left   (2)
    bit 2: right_lower  (4)
    bit 3: right_upper  (8)
    bit 4: left_lower   (16)
    bit 5: left_upper   (32)

Ring order of OpenStates (clockwise from 3 o'clock, 60° apart):
    [right_upper, right_lower, left_lower, left_upper, front_left, front_right]
"""
import numbers
from dataclasses import dataclass, astuple
from typing import Sequence, Tuple

from core.constants import CHORD_ID_MIN, CHORD_ID_MAX


class InvalidChordIdError(ValueError):
    """Raised when a chord ID falls outside 1-64."""

    def __init__(self, chord_id):
        self.chord_id = chord_id
        super().__init__(f"Chord ID must be {CHORD_ID_MIN}-{CHORD_ID_MAX}, got {chord_id!r}")


@dataclass(frozen=True)
class Fingering:
    """
    Open/closed state of the six tone holes.

    Attributes:
        left_upper: Left chamber hole labelled "upper"
        left_lower: Left chamber hole labelled "lower"
        right_upper: Right chamber hole labelled "upper"
        right_lower: Right chamber hole labelled "lower"
        front_left: Front chamber left hole
        front_right: Front chamber right hole

    True means the hole is open.
    """
    left_upper: bool = False
    left_lower: bool = False
    right_upper: bool = False
    right_lower: bool = False
    front_left: bool = False
    front_right: bool = False

    @property
    def open_count(self) -> int:
        """Number of open holes."""
        return sum(astuple(self))


# Field names in bit order (index == bit position)
BIT_ORDER = (
    "front_right",
    "front_left",
    "right_lower",
    "right_upper",
    "left_lower",
    "left_upper",
)

# Field names in ring order (index == OpenStates position)
RING_ORDER = (
    "right_upper",
    "right_lower",
    "left_lower",
    "left_upper",
    "front_left",
    "front_right",
)


def _decode(bitfield: int) -> Fingering:
    return Fingering(**{
        name: bool(bitfield >> bit & 1)
        for bit, name in enumerate(BIT_ORDER)
    })


# Built once: chord ID - 1 indexes the table
_FINGERINGS: Tuple[Fingering, ...] = tuple(_decode(value) for value in range(64))


def fingering_from_chord_id(chord_id: int) -> Fingering:
    """
    Get the fingering for a chord ID.

    Args:
        chord_id: Chord ID (1-64)

    Returns:
        Fingering for the chord

    Raises:
        InvalidChordIdError: If chord_id is not an integer in 1-64

    Example:
        >>> fingering_from_chord_id(1).open_count
        0
        >>> fingering_from_chord_id(64).open_count
        6
    """
    if isinstance(chord_id, bool) or not isinstance(chord_id, numbers.Integral):
        raise InvalidChordIdError(chord_id)
    if not CHORD_ID_MIN <= chord_id <= CHORD_ID_MAX:
        raise InvalidChordIdError(chord_id)
    return _FINGERINGS[int(chord_id) - 1]


def chord_id_from_fingering(fingering: Fingering) -> int:
    """
    Get the chord ID for a fingering.

    ID = 1 + (front_right*1 + front_left*2 + right_lower*4
              + right_upper*8 + left_lower*16 + left_upper*32)
    """
    bitfield = 0
    for bit, name in enumerate(BIT_ORDER):
        if getattr(fingering, name):
            bitfield |= 1 << bit
    return bitfield + 1


def open_states_from_fingering(fingering: Fingering) -> Tuple[bool, ...]:
    """Convert a fingering to ring-ordered open states."""
    return tuple(getattr(fingering, name) for name in RING_ORDER)


def fingering_from_open_states(open_states: Sequence[bool]) -> Fingering:
    """
    Convert ring-ordered open states to a fingering.

    Args:
        open_states: Six booleans in ring order

    Raises:
        ValueError: If open_states does not have exactly 6 elements
    """
    if len(open_states) != 6:
        raise ValueError(f"open_states must have exactly 6 elements, got {len(open_states)}")
    return Fingering(**{
        name: bool(state)
        for name, state in zip(RING_ORDER, open_states)
    })


def all_fingerings() -> Tuple[Fingering, ...]:
    """All 64 fingerings in chord ID order."""
    return _FINGERINGS
