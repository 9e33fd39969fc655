"""
Chord voice engine.

Plays up to three simultaneous flute notes (one per chamber) as sine voices
with attack/sustain/release envelopes. Notes that repeat from the previous
chord can be held instead of retriggered; notes that are retriggered
crossfade with the voice they replace so there is never a click or a gap.

Architecture:
- The engine owns a bus on an AudioBackend (created on init() if none given)
- A VoiceManager on that bus owns every voice, keyed by note name
- Scheduling happens on the backend clock under the backend lock
"""
import logging
from typing import Dict, Iterable, Optional, Tuple, Union

from audio.backend import AudioBackend, Bus
from audio.voice_manager import Voice, VoiceManager
from core.flutes import DEFAULT_FLUTE_TYPE, FluteType, ResolvedChord, resolve_chord_id
from core.tuning import TuningStandard, note_frequency

logger = logging.getLogger(__name__)

# Master gain of the chord bus
VOICE_BUS_GAIN = 0.3
# Sustain level of a single voice
PEAK_GAIN = 0.2
# Fade used by stop_notes()
STOP_FADE = 0.05

MAX_ATTACK = 0.04
MAX_RELEASE = 0.08


def envelope_times(duration: float) -> Tuple[float, float]:
    """
    Attack and release lengths for a note of the given duration.

    Attack is min(40ms, 12% of duration), release min(80ms, 15%).
    """
    attack = min(MAX_ATTACK, duration * 0.12)
    release = min(MAX_RELEASE, duration * 0.15)
    return attack, release


class ChordEngine:
    """
    Sine-voice chord player.

    Typical use:
        engine = ChordEngine()
        engine.init()
        engine.play_chord("C4", "D#4", "G4", duration=1.0)
        ...
        engine.dispose()
    """

    def __init__(self, backend: Optional[AudioBackend] = None,
                 voice_gain: float = VOICE_BUS_GAIN, peak_gain: float = PEAK_GAIN,
                 sample_rate: int = 44100, buffer_size: int = 512,
                 device=None, latency="low"):
        """
        Initialize chord engine.

        Args:
            backend: Shared audio backend (None = create one on init)
            voice_gain: Gain of the chord bus
            peak_gain: Sustain level of each voice
            sample_rate: Sample rate for an engine-created backend
            buffer_size: Buffer size for an engine-created backend
            device: Output device for an engine-created backend
            latency: Latency hint for an engine-created backend
        """
        self.backend = backend
        self.voice_gain = voice_gain
        self.peak_gain = peak_gain
        self._backend_options = dict(sample_rate=sample_rate, buffer_size=buffer_size,
                                     device=device, latency=latency)
        self._owns_backend = backend is None
        self._bus: Optional[Bus] = None
        self.voices = VoiceManager()
        self._disposed = False

    @property
    def ready(self) -> bool:
        """True if the backend exists and is producing output."""
        return self._bus is not None and self.backend is not None and self.backend.running

    def init(self) -> bool:
        """
        Create the backend (if needed) and the chord bus.

        Does not start output; resume() or the first play_chord() does.
        Calling init() again is a no-op.

        Returns:
            True if the engine is initialized
        """
        if self._disposed:
            return False
        if self._bus is not None:
            return True
        if self.backend is None:
            self.backend = AudioBackend(**self._backend_options)
        self._bus = self.backend.create_bus("chords", self.voice_gain)
        self._bus.add(self.voices)
        return True

    def resume(self) -> bool:
        """
        Start output. Must follow a user interaction on platforms that
        require one.

        Returns:
            True if the backend is running
        """
        if not self.init():
            return False
        return self.backend.resume()

    def _ensure_running(self) -> bool:
        if not self.init():
            return False
        if self.backend.running:
            return True
        if self.backend.resume():
            return True
        # One more attempt before giving up on this call
        return self.backend.resume()

    def play_chord(self, left: str, right: str, front: str,
                   tuning: Union[TuningStandard, str] = TuningStandard.A440,
                   duration: float = 2.0, hold: Iterable[str] = ()):
        """
        Sound three notes together.

        Args:
            left: Left chamber note (e.g., "C4")
            right: Right chamber note
            front: Front chamber note
            tuning: Reference pitch standard
            duration: Sounding time in seconds
            hold: Note names to sustain through if already sounding

        Raises:
            MalformedNoteNameError: If a note name cannot be parsed
        """
        self.play_notes((left, right, front), tuning=tuning, duration=duration, hold=hold)

    def play_notes(self, notes: Iterable[str],
                   tuning: Union[TuningStandard, str] = TuningStandard.A440,
                   duration: float = 2.0, hold: Iterable[str] = ()):
        """Sound any set of notes; duplicate names produce one voice."""
        if duration <= 0:
            raise ValueError(f"Duration must be positive, got {duration}")

        # Resolve frequencies first so bad note names always raise
        targets: Dict[str, float] = {}
        for note in notes:
            if note not in targets:
                targets[note] = note_frequency(note, tuning)
        held = set(hold)

        if not self._ensure_running():
            logger.debug("Audio backend not running, chord skipped")
            return

        attack, release = envelope_times(duration)
        with self.backend.lock:
            now = self.backend.current_time
            for note, frequency in targets.items():
                if note in held and self.voices.hold_voice(note, now, duration, attack, release):
                    continue
                self.voices.start_voice(note, frequency, now, duration,
                                        attack, release, self.peak_gain)

    def play_fingering(self, chord_id: int,
                       flute_type: Union[FluteType, str] = DEFAULT_FLUTE_TYPE,
                       tuning: Union[TuningStandard, str] = TuningStandard.A440,
                       duration: float = 2.0, hold: Iterable[str] = ()) -> ResolvedChord:
        """
        Resolve a chord ID on a flute and play it.

        Returns:
            The resolved notes

        Raises:
            InvalidChordIdError: If chord_id is outside 1-64
        """
        chord = resolve_chord_id(chord_id, flute_type)
        self.play_chord(chord.left, chord.right, chord.front,
                        tuning=tuning, duration=duration, hold=hold)
        return chord

    def stop_all(self):
        """Silence and untrack every voice immediately."""
        if self.backend is None:
            self.voices.clear_all()
            return
        with self.backend.lock:
            self.voices.clear_all()

    def stop_notes(self, notes: Iterable[str], fade: float = STOP_FADE):
        """Fade the named voices out; other voices keep sounding."""
        if self.backend is None:
            return
        with self.backend.lock:
            self.voices.release(notes, self.backend.current_time, fade)

    def active_voices(self) -> Dict[str, Voice]:
        """Snapshot of the current voice for each sounding note."""
        if self.backend is None:
            return {}
        with self.backend.lock:
            self.voices.reap(self.backend.current_time)
            return dict(self.voices.voices)

    def voice_count(self, note: Optional[str] = None) -> int:
        """Number of tracked voices (for one note, or in total)."""
        if self.backend is None:
            return 0
        with self.backend.lock:
            self.voices.reap(self.backend.current_time)
            voices = self.voices.all_voices()
        if note is None:
            return len(voices)
        return sum(1 for v in voices if v.note == note)

    def is_sounding(self, note: str) -> bool:
        return note in self.active_voices()

    def dispose(self):
        """Stop all voices and release the bus (and the backend if owned)."""
        if self._disposed:
            return
        self._disposed = True
        self.stop_all()
        if self.backend is not None and self._bus is not None:
            self.backend.remove_bus(self._bus)
        self._bus = None
        if self._owns_backend and self.backend is not None:
            self.backend.close()
