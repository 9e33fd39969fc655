"""
Immutable data models for chord sequences.

All models are frozen dataclasses so they can be handed from the caller to
the sequencer's worker thread without copying.
"""
from dataclasses import dataclass, field, replace
from typing import Tuple, Optional, Dict, Any, List

from core.constants import (
    BPM_MIN,
    BPM_MAX,
    BPM_DEFAULT,
    DEFAULT_TIME_SIGNATURE,
    TIME_SIGNATURES,
    beats_per_measure,
)
from core.fingering import fingering_from_chord_id
from core.flutes import FluteType, DEFAULT_FLUTE_TYPE
from core.tuning import TuningStandard


@dataclass(frozen=True)
class SequenceStep:
    """
    One chord or rest in a sequence.

    Attributes:
        chord_id: Chord ID (1-64), or None for a rest
        beats: Length in beats (at least 1)
    """
    chord_id: Optional[int]
    beats: int = 1

    def __post_init__(self):
        """Validate step values."""
        if self.chord_id is not None:
            # Raises InvalidChordIdError
            fingering_from_chord_id(self.chord_id)
            object.__setattr__(self, "chord_id", int(self.chord_id))
        if self.beats < 1:
            raise ValueError(f"Beats must be at least 1, got {self.beats}")

    @property
    def is_rest(self) -> bool:
        """True if this step is a rest."""
        return self.chord_id is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "chord_id": self.chord_id,
            "beats": self.beats,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SequenceStep":
        """Create SequenceStep from dictionary."""
        return cls(
            chord_id=data.get("chord_id"),
            beats=data.get("beats", 1),
        )


@dataclass(frozen=True)
class Sequence:
    """
    Ordered chord/rest plan played by the sequencer.

    Attributes:
        steps: Tuple of SequenceStep objects
        tempo: Tempo in beats per minute
        time_signature: (beats per measure, beat unit)
        flute_type: Flute transposition used to resolve chords
        tuning: Reference pitch standard
    """
    steps: Tuple[SequenceStep, ...] = field(default_factory=tuple)
    tempo: float = BPM_DEFAULT
    time_signature: Tuple[int, int] = DEFAULT_TIME_SIGNATURE
    flute_type: FluteType = DEFAULT_FLUTE_TYPE
    tuning: TuningStandard = TuningStandard.A440

    def __post_init__(self):
        """Validate sequence and normalise enum fields."""
        # Use object.__setattr__ to modify frozen dataclass during init
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "time_signature", tuple(self.time_signature))
        object.__setattr__(self, "flute_type", FluteType.coerce(self.flute_type))
        object.__setattr__(self, "tuning", TuningStandard.coerce(self.tuning))

        if not BPM_MIN <= self.tempo <= BPM_MAX:
            raise ValueError(f"Tempo must be {BPM_MIN}-{BPM_MAX} BPM, got {self.tempo}")
        if self.time_signature not in TIME_SIGNATURES:
            raise ValueError(f"Unsupported time signature: {self.time_signature}")

        measure = self.beats_per_measure
        for index, step in enumerate(self.steps):
            if step.beats > measure:
                raise ValueError(
                    f"Step {index} has {step.beats} beats, maximum is {measure} "
                    f"in {self.time_signature[0]}/{self.time_signature[1]}"
                )

    @property
    def beats_per_measure(self) -> int:
        """Beats in one measure of the time signature."""
        return beats_per_measure(self.time_signature)

    @property
    def beat_duration(self) -> float:
        """Seconds per beat."""
        return 60.0 / self.tempo

    @property
    def total_beats(self) -> int:
        """Sum of all step lengths in beats (without ring-out)."""
        return sum(step.beats for step in self.steps)

    def step_duration(self, index: int) -> float:
        """
        Sounding duration of a step in seconds.

        The final step rings out for one extra beat.
        """
        duration = self.steps[index].beats * self.beat_duration
        if index == len(self.steps) - 1:
            duration += self.beat_duration
        return duration

    def with_time_signature(self, time_signature: Tuple[int, int]) -> "Sequence":
        """
        Copy with a new time signature, capping step beats to the new measure.
        """
        measure = beats_per_measure(time_signature)
        steps = tuple(
            replace(step, beats=min(step.beats, measure))
            for step in self.steps
        )
        return replace(self, steps=steps, time_signature=tuple(time_signature))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "steps": [s.to_dict() for s in self.steps],
            "tempo": self.tempo,
            "time_signature": list(self.time_signature),
            "flute_type": self.flute_type.value,
            "tuning": self.tuning.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sequence":
        """Create Sequence from dictionary."""
        steps = tuple(SequenceStep.from_dict(s) for s in data.get("steps", []))
        return cls(
            steps=steps,
            tempo=data.get("tempo", BPM_DEFAULT),
            time_signature=tuple(data.get("time_signature", DEFAULT_TIME_SIGNATURE)),
            flute_type=data.get("flute_type", DEFAULT_FLUTE_TYPE.value),
            tuning=data.get("tuning", TuningStandard.A440.value),
        )

    @classmethod
    def from_chord_ids(cls, chord_ids: List[Optional[int]], beats: int = 1, **kwargs) -> "Sequence":
        """
        Build a sequence where every step has the same length.

        Args:
            chord_ids: Chord IDs in order (None for rests)
            beats: Beats per step
            **kwargs: Remaining Sequence fields (tempo, time_signature, ...)
        """
        steps = tuple(SequenceStep(chord_id=c, beats=beats) for c in chord_ids)
        return cls(steps=steps, **kwargs)
