"""
Musical constants and utilities.

Note names, tempo ranges, chord ID range and supported meters.
"""

# Chromatic note names from C
NOTE_NAMES = [
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"
]

# Supported time signatures (beats per measure, beat unit)
TIME_SIGNATURES = [
    (4, 4),   # Common time
    (3, 4),   # Waltz
]

DEFAULT_TIME_SIGNATURE = (4, 4)

# Standard BPM ranges
BPM_MIN = 20
BPM_MAX = 300
BPM_DEFAULT = 70

# Chord identifiers
CHORD_ID_MIN = 1
CHORD_ID_MAX = 64


def beats_per_measure(time_signature) -> int:
    """
    Get the number of beats in one measure.

    Args:
        time_signature: (numerator, denominator) tuple

    Returns:
        Beats per measure (the numerator)
    """
    numerator, _ = time_signature
    return int(numerator)
