"""
Metronome click generator.

Ticks run on their own thread with deadline-based waits, independent of the
sequencer's step loop. Ticking happens only while the metronome is both
enabled and active (a sequence is playing). Beat 0 of each measure gets the
accent click.
"""
import logging
import threading
import time
from typing import Callable, Optional

from audio.backend import AudioBackend, Bus
from audio.voice_manager import Voice

logger = logging.getLogger(__name__)

ACCENT_FREQUENCY = 800.0
TICK_FREQUENCY = 600.0
ACCENT_GAIN = 0.3
TICK_GAIN = 0.2
CLICK_ATTACK = 0.001
CLICK_DECAY = 0.1


class Metronome:
    """Periodic click on its own backend bus."""

    def __init__(self, backend: AudioBackend, tempo: float = 70,
                 beats_per_measure: int = 4, enabled: bool = False,
                 accent_frequency: float = ACCENT_FREQUENCY,
                 tick_frequency: float = TICK_FREQUENCY,
                 on_tick: Optional[Callable[[int], None]] = None):
        """
        Initialize metronome.

        Args:
            backend: Audio backend to click on
            tempo: Beats per minute
            beats_per_measure: Beats between accents
            enabled: User toggle
            accent_frequency: Pitch of the beat-0 click (Hz)
            tick_frequency: Pitch of the other clicks (Hz)
            on_tick: Called with the beat index of every click
        """
        self.backend = backend
        self.accent_frequency = accent_frequency
        self.tick_frequency = tick_frequency
        self.on_tick = on_tick

        self._tempo = tempo
        self._beats_per_measure = beats_per_measure
        self._enabled = enabled
        self._active = False

        self._lock = threading.Lock()
        self._bus: Optional[Bus] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def tempo(self) -> float:
        return self._tempo

    @property
    def beats_per_measure(self) -> int:
        return self._beats_per_measure

    @property
    def interval(self) -> float:
        """Seconds between clicks."""
        return 60.0 / self._tempo

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        """True while the tick thread is alive."""
        with self._lock:
            return self._thread is not None

    def set_enabled(self, enabled: bool):
        """User toggle; ticking starts only if a sequence is also active."""
        with self._lock:
            self._enabled = bool(enabled)
            self._sync()

    def set_active(self, active: bool):
        """Sequencer toggle; ticking starts only if also enabled."""
        with self._lock:
            self._active = bool(active)
            self._sync()

    def configure(self, tempo: float, beats_per_measure: int):
        """
        Change tempo and meter.

        A running metronome is torn down and restarted so the new interval
        takes effect at once with a fresh accent.
        """
        if tempo <= 0:
            raise ValueError(f"Tempo must be positive, got {tempo}")
        if beats_per_measure < 1:
            raise ValueError(f"Beats per measure must be at least 1, got {beats_per_measure}")
        with self._lock:
            self._tempo = tempo
            self._beats_per_measure = beats_per_measure
            if self._thread is not None:
                self._stop_thread()
                self._start_thread()

    def click(self, accent: bool) -> Optional[Voice]:
        """
        Schedule one click now.

        Returns:
            The click voice, or None if the backend is not running
        """
        if not self.backend.running:
            return None
        frequency = self.accent_frequency if accent else self.tick_frequency
        peak = ACCENT_GAIN if accent else TICK_GAIN
        with self.backend.lock:
            if self._bus is None:
                self._bus = self.backend.create_bus("metronome")
            voice = Voice("click", frequency, self.backend.current_time, peak)
            voice.schedule_decay(CLICK_ATTACK, CLICK_DECAY)
            self._bus.add(voice)
        return voice

    def dispose(self):
        """Stop ticking and release the bus. Safe to call repeatedly."""
        with self._lock:
            self._active = False
            self._enabled = False
            self._stop_thread()
        if self._bus is not None:
            self.backend.remove_bus(self._bus)
            self._bus = None

    def _sync(self):
        should_run = self._active and self._enabled
        if should_run and self._thread is None:
            self._start_thread()
        elif not should_run and self._thread is not None:
            self._stop_thread()

    def _start_thread(self):
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event, self.interval, self._beats_per_measure),
            name="metronome",
            daemon=True,
        )
        self._thread.start()

    def _stop_thread(self):
        thread, event = self._thread, self._stop_event
        self._thread = None
        self._stop_event = None
        if event is not None:
            event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _notify_tick(self, beat: int):
        if self.on_tick is None:
            return
        try:
            self.on_tick(beat)
        except Exception:
            logger.exception("on_tick callback failed at beat %d", beat)

    def _run(self, stop_event: threading.Event, interval: float, beats_per_measure: int):
        beat = 0
        deadline = time.monotonic()
        while not stop_event.is_set():
            # First tick fires immediately
            self.click(beat == 0)
            self._notify_tick(beat)
            beat = (beat + 1) % beats_per_measure
            deadline += interval
            remaining = deadline - time.monotonic()
            if remaining > 0 and stop_event.wait(remaining):
                break
