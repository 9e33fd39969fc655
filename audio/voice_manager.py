"""
Voice management for chord playback.

A Voice is one sine oscillator with a gain envelope, tied to a note name.
Its lifecycle is an explicit state machine on the backend clock:

    IDLE -> ATTACKING -> SUSTAINING -> RELEASING -> STOPPED

The VoiceManager owns every voice. It keeps at most one current voice per
note name; a voice that is replaced moves to a short fading list for the
crossfade window. Voices are removed from both collections on the STOPPED
transition.
"""
import math
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from audio.backend import Source
from audio.params import AudioParam

# Replaced voices start fading this long after the new voice starts
CROSSFADE_DELAY = 0.005
# Linear fade-out length for a replaced voice
CROSSFADE_TIME = 0.03


class VoiceState(Enum):
    """Lifecycle of a voice."""
    IDLE = "idle"
    ATTACKING = "attacking"
    SUSTAINING = "sustaining"
    RELEASING = "releasing"
    STOPPED = "stopped"


class Voice(Source):
    """Manages state for a single sounding note."""

    def __init__(self, note: str, frequency: float, start_time: float, peak_gain: float = 0.2):
        """
        Initialize a voice.

        Args:
            note: Note name this voice sounds (e.g., "C4")
            frequency: Oscillator frequency in Hz
            start_time: Backend time the oscillator starts
            peak_gain: Sustain level of the envelope
        """
        self.note = note
        self.frequency = frequency
        self.start_time = start_time
        self.peak_gain = peak_gain
        self.gain = AudioParam(0.0)

        # Envelope phase boundaries (backend seconds)
        self.attack_end = start_time
        self.release_start = math.inf
        self.stop_time = math.inf

        self.state = VoiceState.IDLE
        self._phase = 0.0

    def __repr__(self):
        return f"Voice({self.note!r}, {self.frequency} Hz, {self.state.value})"

    @property
    def finished(self) -> bool:
        return self.state is VoiceState.STOPPED

    def schedule(self, duration: float, attack: float, release: float):
        """
        Schedule attack, sustain and release from start_time.

        If there is no room for a sustain phase the envelope ramps straight
        up and back down.
        """
        start = self.start_time
        end = start + duration
        self.gain.set_value_at_time(0.0, start)

        if duration <= attack + release:
            peak_time = start + duration * attack / (attack + release)
            self.gain.linear_ramp_to_value_at_time(self.peak_gain, peak_time)
            self.gain.linear_ramp_to_value_at_time(0.0, end)
            self.attack_end = peak_time
            self.release_start = peak_time
        else:
            self.attack_end = start + attack
            self.release_start = end - release
            self.gain.linear_ramp_to_value_at_time(self.peak_gain, self.attack_end)
            self.gain.set_value_at_time(self.peak_gain, self.release_start)
            self.gain.linear_ramp_to_value_at_time(0.0, end)

        self.stop_time = end
        self.update_state(start)

    def schedule_decay(self, attack: float, decay: float, floor: float = 0.001):
        """
        Percussive envelope: linear attack to peak, then exponential decay
        to `floor` at start_time + decay, where the voice stops.
        """
        start = self.start_time
        self.gain.set_value_at_time(0.0, start)
        self.gain.linear_ramp_to_value_at_time(self.peak_gain, start + attack)
        self.gain.exponential_ramp_to_value_at_time(floor, start + decay)
        self.attack_end = start + attack
        self.release_start = start + attack
        self.stop_time = start + decay
        self.update_state(start)

    def extend(self, now: float, duration: float, attack: float, release: float):
        """
        Keep sounding for `duration` more seconds without retriggering.

        The current level is held; if the voice had begun fading it ramps
        back to the sustain level before the new release.
        """
        self.gain.prune(now)
        level = self.gain.value_at(now)
        self.gain.cancel_and_hold_at_time(now)

        end = now + duration
        self.release_start = max(now, end - release)
        if level < self.peak_gain:
            self.attack_end = min(now + attack, self.release_start)
            self.gain.linear_ramp_to_value_at_time(self.peak_gain, self.attack_end)
        else:
            self.attack_end = now
        self.gain.set_value_at_time(self.peak_gain, self.release_start)
        self.gain.linear_ramp_to_value_at_time(0.0, end)
        self.stop_time = end
        self.update_state(now)

    def fade_out(self, at: float, fade: float):
        """Linear fade to silence starting at `at`, then stop."""
        if at >= self.stop_time:
            return
        self.gain.cancel_and_hold_at_time(at)
        self.gain.linear_ramp_to_value_at_time(0.0, at + fade)
        self.release_start = min(self.release_start, at)
        self.attack_end = min(self.attack_end, at)
        self.stop_time = at + fade

    def stop(self):
        """Hard stop: silent from now on."""
        self.stop_time = -math.inf
        self.state = VoiceState.STOPPED

    def is_audible_at(self, time: float) -> bool:
        return self.start_time <= time < self.stop_time

    def update_state(self, now: float) -> VoiceState:
        """Advance the state machine to backend time `now`."""
        if self.state is VoiceState.STOPPED:
            return self.state
        if now >= self.stop_time:
            self.state = VoiceState.STOPPED
        elif now < self.start_time:
            self.state = VoiceState.IDLE
        elif now < self.attack_end:
            self.state = VoiceState.ATTACKING
        elif now < self.release_start:
            self.state = VoiceState.SUSTAINING
        else:
            self.state = VoiceState.RELEASING
        return self.state

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        frames = len(out)
        block_end = start_time + frames / sample_rate
        if self.state is not VoiceState.STOPPED:
            times = start_time + np.arange(frames) / sample_rate
            active = (times >= self.start_time) & (times < self.stop_time)
            count = int(np.count_nonzero(active))
            if count:
                step = 2.0 * math.pi * self.frequency / sample_rate
                phase = self._phase + step * np.arange(count)
                out[active] += np.sin(phase) * self.gain.render(times[active])
                self._phase = (self._phase + step * count) % (2.0 * math.pi)
        self.update_state(block_end)


class VoiceManager(Source):
    """Owns the collection of chord voices, keyed by note name."""

    def __init__(self, on_voice_stopped: Optional[Callable[[Voice], None]] = None):
        """
        Initialize the voice manager.

        Args:
            on_voice_stopped: Called with each voice as it is untracked
        """
        # Current voice for each note name
        self.voices: Dict[str, Voice] = {}
        # Replaced voices still inside their crossfade window
        self.fading: List[Voice] = []
        self.on_voice_stopped = on_voice_stopped

    def all_voices(self) -> List[Voice]:
        return list(self.voices.values()) + list(self.fading)

    def start_voice(self, note: str, frequency: float, now: float, duration: float,
                    attack: float, release: float, peak_gain: float = 0.2) -> Voice:
        """
        Start a new voice for note, crossfading out any voice it replaces.

        The replaced voice starts fading only after the new voice has started,
        so the note never drops out between the two.
        """
        self.reap(now)
        voice = Voice(note, frequency, now, peak_gain)
        voice.schedule(duration, attack, release)

        previous = self.voices.get(note)
        if previous is not None and not previous.finished:
            previous.fade_out(voice.start_time + CROSSFADE_DELAY, CROSSFADE_TIME)
            self.fading.append(previous)

        self.voices[note] = voice
        return voice

    def hold_voice(self, note: str, now: float, duration: float,
                   attack: float, release: float) -> bool:
        """
        Extend the current voice for note instead of retriggering it.

        Returns:
            True if a sounding voice was extended
        """
        self.reap(now)
        voice = self.voices.get(note)
        if voice is None or voice.finished or not voice.is_audible_at(now):
            return False
        voice.extend(now, duration, attack, release)
        return True

    def release(self, notes: Iterable[str], now: float, fade: float) -> int:
        """
        Fade the current voices for notes to silence.

        Returns:
            Number of voices faded
        """
        count = 0
        for note in notes:
            voice = self.voices.get(note)
            if voice is not None and not voice.finished:
                voice.fade_out(now, fade)
                count += 1
        return count

    def clear_all(self):
        """Hard-stop and untrack every voice."""
        for voice in self.all_voices():
            voice.stop()
            self._notify(voice)
        self.voices.clear()
        self.fading.clear()

    def reap(self, now: float):
        """Untrack voices that have reached STOPPED."""
        for voice in self.all_voices():
            voice.update_state(now)
        stopped = [v for v in self.all_voices() if v.finished]
        if not stopped:
            return
        self.voices = {note: v for note, v in self.voices.items() if not v.finished}
        self.fading = [v for v in self.fading if not v.finished]
        for voice in stopped:
            self._notify(voice)

    def count_audible(self, note: str, time: float) -> int:
        """Number of voices for note sounding at time."""
        return sum(1 for v in self.all_voices() if v.note == note and v.is_audible_at(time))

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        for voice in self.all_voices():
            voice.render(out, start_time, sample_rate)
        self.reap(start_time + len(out) / sample_rate)

    def _notify(self, voice: Voice):
        if self.on_voice_stopped is not None:
            self.on_voice_stopped(voice)
