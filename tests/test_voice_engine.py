"""Tests for voices and the chord engine."""
import numpy as np
import pytest

from audio.backend import BackendState
from audio.engine import ChordEngine, envelope_times
from audio.voice_manager import CROSSFADE_DELAY, CROSSFADE_TIME, Voice, VoiceManager, VoiceState
from core.flutes import ResolvedChord
from core.tuning import MalformedNoteNameError
from tests.conftest import ConstantSource, rms


@pytest.fixture
def engine(backend):
    engine = ChordEngine(backend)
    engine.init()
    yield engine
    engine.dispose()


class TestEnvelope:
    """Envelope timing and the voice state machine."""

    def test_envelope_times(self):
        """Attack and release are capped at 40ms and 80ms."""
        assert envelope_times(2.0) == (0.04, 0.08)
        attack, release = envelope_times(0.1)
        assert attack == pytest.approx(0.012)
        assert release == pytest.approx(0.015)

    def test_state_transitions(self):
        """A voice moves through every state on the clock."""
        voice = Voice("A4", 440.0, start_time=1.0)
        voice.schedule(1.0, 0.04, 0.08)
        assert voice.update_state(0.5) is VoiceState.IDLE
        assert voice.update_state(1.01) is VoiceState.ATTACKING
        assert voice.update_state(1.5) is VoiceState.SUSTAINING
        assert voice.update_state(1.95) is VoiceState.RELEASING
        assert voice.update_state(2.0) is VoiceState.STOPPED
        # Stopped is final
        assert voice.update_state(1.5) is VoiceState.STOPPED

    def test_envelope_shape(self):
        """Gain rises to the peak, holds, then falls to silence."""
        voice = Voice("A4", 440.0, start_time=0.0, peak_gain=0.2)
        voice.schedule(1.0, 0.04, 0.08)
        assert voice.gain.value_at(0.0) == 0.0
        assert voice.gain.value_at(0.02) == pytest.approx(0.1)
        assert voice.gain.value_at(0.5) == pytest.approx(0.2)
        assert voice.gain.value_at(0.96) == pytest.approx(0.1)
        assert voice.gain.value_at(1.0) == 0.0

    def test_no_room_for_sustain(self):
        """A note too short for attack plus release ramps up and straight down."""
        voice = Voice("A4", 440.0, start_time=0.0, peak_gain=0.2)
        voice.schedule(0.1, 0.1, 0.1)
        assert voice.attack_end == voice.release_start
        assert voice.gain.value_at(0.05) == pytest.approx(0.2)
        assert voice.gain.value_at(0.1) == 0.0

    def test_render_is_sine(self):
        """A sustained voice renders a sine at its frequency."""
        voice = Voice("A4", 441.0, start_time=0.0, peak_gain=0.2)
        voice.schedule(1.0, 0.04, 0.08)
        out = np.zeros(4410)
        voice.render(out, 0.1, 44100)
        assert np.max(np.abs(out)) == pytest.approx(0.2, abs=1e-3)
        # 441 Hz at 44100 Hz repeats every 100 samples
        assert np.allclose(out[:100], out[100:200])

    def test_decay_envelope(self):
        """Percussive voices decay exponentially and stop."""
        voice = Voice("click", 800.0, start_time=0.0, peak_gain=0.3)
        voice.schedule_decay(0.001, 0.1)
        assert voice.gain.value_at(0.001) == pytest.approx(0.3)
        assert voice.gain.value_at(0.0999) == pytest.approx(0.001, rel=0.1)
        assert voice.update_state(0.1) is VoiceState.STOPPED


class TestVoiceManager:
    """Owned voice collection."""

    def test_replacement_crossfades(self):
        """A replaced voice fades only after the new one has started."""
        manager = VoiceManager()
        old = manager.start_voice("C4", 261.63, 0.0, 1.0, 0.04, 0.08)
        new = manager.start_voice("C4", 261.63, 0.5, 1.0, 0.04, 0.08)
        assert manager.voices["C4"] is new
        assert manager.fading == [old]
        assert old.gain.value_at(new.start_time) == pytest.approx(0.2)
        assert old.stop_time == pytest.approx(0.5 + CROSSFADE_DELAY + CROSSFADE_TIME)

    def test_stopped_voices_are_untracked(self):
        """Voices leave the collection on the STOPPED transition."""
        stopped = []
        manager = VoiceManager(on_voice_stopped=stopped.append)
        voice = manager.start_voice("C4", 261.63, 0.0, 0.5, 0.04, 0.075)
        manager.reap(0.4)
        assert manager.voices == {"C4": voice}
        manager.reap(0.5)
        assert manager.voices == {}
        assert stopped == [voice]


class TestChordEngine:
    """Chord playback on an offline backend."""

    def test_ready_after_init(self, backend):
        """The engine is ready once initialized on a running backend."""
        engine = ChordEngine(backend)
        assert not engine.ready
        engine.init()
        assert engine.ready
        engine.dispose()

    def test_play_chord_starts_three_voices(self, engine, backend):
        """Each chamber note gets a voice."""
        engine.play_chord("C4", "Eb4", "G4", duration=1.0)
        assert set(engine.active_voices()) == {"C4", "Eb4", "G4"}
        assert engine.is_sounding("Eb4")

        audio = backend.render_seconds(0.2)
        assert rms(audio) > 0.01
        # Three voices at 0.2 peak through a 0.3 bus
        assert np.max(np.abs(audio)) <= 0.18 + 1e-6

    def test_duplicate_notes_share_a_voice(self, engine):
        """Repeated note names inside one chord sound once."""
        engine.play_chord("C4", "C4", "G4")
        assert engine.voice_count() == 2
        assert engine.voice_count("C4") == 1

    def test_voices_are_reaped_after_release(self, engine, backend):
        """Finished voices leave no tracking entries."""
        engine.play_chord("C4", "Eb4", "G4", duration=0.2)
        backend.render_seconds(0.3)
        assert engine.voice_count() == 0
        assert engine.active_voices() == {}

    def test_retrigger_crossfades(self, engine, backend):
        """Replaying a note overlaps two voices only for the crossfade."""
        engine.play_chord("C4", "Eb4", "G4", duration=1.0)
        backend.render_seconds(0.5)
        engine.play_chord("C4", "Eb4", "G4", duration=1.0)
        assert engine.voice_count("C4") == 2
        backend.render_seconds(0.1)
        assert engine.voice_count("C4") == 1

    def test_at_most_one_voice_per_note(self, engine, backend):
        """Outside the crossfade window each note has one audible voice."""
        chords = [("C4", "Eb4", "G4"), ("C4", "F4", "G4"), ("G3", "C4", "Bb4"), ("C4", "Eb4", "G4")]
        for chord in chords:
            engine.play_chord(*chord, duration=0.3)
            after_crossfade = backend.current_time + CROSSFADE_DELAY + CROSSFADE_TIME
            for note in {"C4", "Eb4", "F4", "G4", "G3", "Bb4"}:
                assert engine.voices.count_audible(note, after_crossfade) <= 1
            backend.render_seconds(0.1)

    def test_hold_extends_voice(self, engine, backend):
        """Held notes keep their voice; the others are replaced."""
        engine.play_chord("C4", "Eb4", "G4", duration=1.0)
        backend.render_seconds(0.5)
        held = engine.active_voices()["C4"]
        replaced = engine.active_voices()["G4"]

        engine.play_chord("C4", "F4", "G4", duration=1.0, hold=["C4"])
        voices = engine.active_voices()
        assert voices["C4"] is held
        assert held.stop_time == pytest.approx(1.5)
        assert engine.voice_count("C4") == 1
        assert voices["G4"] is not replaced
        assert "F4" in voices

    def test_hold_restores_fading_voice(self, engine, backend):
        """A held voice that began its release ramps back to the peak."""
        engine.play_chord("C4", "Eb4", "G4", duration=0.5)
        backend.render_seconds(0.45)
        voice = engine.active_voices()["C4"]
        assert voice.gain.value_at(0.45) < 0.2

        engine.play_chord("C4", "Eb4", "G4", duration=1.0, hold=["C4"])
        assert engine.active_voices()["C4"] is voice
        assert voice.gain.value_at(0.45 + 0.04) == pytest.approx(0.2)

    def test_hold_of_silent_note_starts_voice(self, engine):
        """Holding a note that is not sounding just plays it."""
        engine.play_chord("C4", "Eb4", "G4", hold=["C4"])
        assert engine.voice_count("C4") == 1

    def test_stop_all(self, engine, backend):
        """stop_all silences and untracks everything at once."""
        engine.play_chord("C4", "Eb4", "G4")
        backend.render_seconds(0.1)
        engine.stop_all()
        assert engine.voice_count() == 0
        assert rms(backend.render_seconds(0.05)) == 0.0

    def test_stop_notes_leaves_others(self, engine, backend):
        """stop_notes fades only the named notes."""
        engine.play_chord("C4", "Eb4", "G4")
        backend.render_seconds(0.1)
        engine.stop_notes(["C4", "A9"])
        backend.render_seconds(0.06)
        assert set(engine.active_voices()) == {"Eb4", "G4"}

    def test_play_fingering(self, engine):
        """Chord IDs resolve through the flute tables."""
        chord = engine.play_fingering(1, "Cm4")
        assert chord == ResolvedChord("G3", "C4", "G4")
        assert set(engine.active_voices()) == {"G3", "C4", "G4"}

    def test_invalid_duration(self, engine):
        """Durations must be positive."""
        with pytest.raises(ValueError):
            engine.play_chord("C4", "Eb4", "G4", duration=0)

    def test_engines_do_not_share_voices(self, backend):
        """Engines on one backend keep separate voices."""
        first = ChordEngine(backend)
        second = ChordEngine(backend)
        first.play_chord("C4", "Eb4", "G4")
        assert first.voice_count() == 3
        assert second.voice_count() == 0
        first.dispose()
        second.dispose()


class TestEngineFailures:
    """Backend failures and lifecycle."""

    def test_suspended_backend_is_silent_noop(self, suspended_backend):
        """Playing on an unavailable backend retries resume, then does nothing."""
        engine = ChordEngine(suspended_backend)
        engine.play_chord("C4", "Eb4", "G4")
        assert len(suspended_backend.attempts) == 2
        assert not engine.ready
        assert engine.voice_count() == 0

    def test_malformed_note_still_raises(self, suspended_backend):
        """Bad note names raise before the backend is touched."""
        engine = ChordEngine(suspended_backend)
        with pytest.raises(MalformedNoteNameError):
            engine.play_chord("C4", "H4", "G4")
        assert suspended_backend.attempts == []

    def test_dispose_keeps_shared_backend(self, backend):
        """Disposing an engine leaves the backend and other buses alone."""
        other = backend.create_bus("other")
        other.add(ConstantSource(0.1))
        engine = ChordEngine(backend)
        engine.init()
        engine.dispose()
        engine.dispose()
        assert backend.running
        assert backend.buses == [other]

    def test_dispose_closes_own_backend(self):
        """An engine that created its backend closes it."""
        engine = ChordEngine()
        engine.init()
        backend = engine.backend
        assert backend is not None
        engine.dispose()
        assert backend.state is BackendState.CLOSED
        assert not engine.ready
        assert not engine.init()
