"""
Beat-based sequencer for chord playback.

Plays a Sequence step by step on a worker thread:
- Chord steps trigger the chord engine for the step's duration
- Rest steps only wait
- Every beat is reported through on_position(step_index, beat_index)
- The final chord rings out for one extra beat before the run finishes

Waits are measured against absolute deadlines so timing does not drift,
and use a threading.Event so stop() and pause() interrupt them at once.
"""
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from audio.engine import ChordEngine
from audio.metronome import Metronome
from core.models import Sequence

logger = logging.getLogger(__name__)


class Sequencer:
    """
    Single-run sequence player.

    Only one run is active per instance; play() while playing returns False.
    """

    def __init__(self, engine: ChordEngine, metronome: Optional[Metronome] = None,
                 on_position: Optional[Callable[[int, int], None]] = None,
                 on_finished: Optional[Callable[[bool], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize sequencer.

        Args:
            engine: Chord engine that sounds the steps
            metronome: Optional metronome, active while a run plays
            on_position: Called with (step_index, beat_index) on every beat
            on_finished: Called with True when a run completes, False when stopped
            clock: Monotonic time source in seconds
        """
        self.engine = engine
        self.metronome = metronome
        self.on_position = on_position
        self.on_finished = on_finished
        self.clock = clock
        self.loop = False

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._sequence: Optional[Sequence] = None
        self._position: Optional[Tuple[int, int]] = None
        self._paused_at: Optional[Tuple[int, int]] = None

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused_at is not None

    @property
    def position(self) -> Optional[Tuple[int, int]]:
        """(step_index, beat_index) of the beat last reported, or None."""
        return self._position

    def play(self, sequence: Sequence, start_step: int = 0, loop: Optional[bool] = None) -> bool:
        """
        Start playing a sequence.

        Args:
            sequence: Steps, tempo and flute settings to play
            start_step: Index of the first step to play
            loop: Restart from the first step at the end (None = keep current)

        Returns:
            False if a run is already active
        """
        if not 0 <= start_step <= len(sequence.steps):
            raise ValueError(f"start_step {start_step} out of range for {len(sequence.steps)} steps")
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            if loop is not None:
                self.loop = loop
            self._paused_at = None
            self._sequence = sequence
            self._position = None
            self._start(sequence, start_step, 0)
        return True

    def pause(self) -> bool:
        """
        Halt the run and remember where it was.

        Sound stops at once; resume() continues at the next beat.

        Returns:
            False if nothing was playing
        """
        with self._lock:
            thread = self._thread
            if thread is None or not thread.is_alive():
                return False
            self._paused_at = self._position if self._position is not None else (0, -1)
            self._stop_event.set()
        self._join(thread)
        self.engine.stop_all()
        logger.debug("Sequencer paused at %s", self._paused_at)
        return True

    def resume(self) -> bool:
        """
        Continue a paused run from the beat after the pause.

        Returns:
            False if not paused or a run is already active
        """
        with self._lock:
            if self._paused_at is None or self._sequence is None:
                return False
            if self._thread is not None and self._thread.is_alive():
                return False
            step, beat = self._paused_at
            self._paused_at = None
            sequence = self._sequence
            beat += 1
            if step < len(sequence.steps) and beat >= sequence.steps[step].beats:
                step, beat = step + 1, 0
            self._start(sequence, step, beat)
        return True

    def stop(self):
        """
        Stop playback and silence every voice.

        Returns once the worker has exited. Safe to call when idle.
        """
        with self._lock:
            thread = self._thread
            was_paused = self._paused_at is not None
            self._paused_at = None
            if self._stop_event is not None:
                self._stop_event.set()
        if thread is not None:
            self._join(thread)
        self.engine.stop_all()
        if was_paused and self.on_finished is not None:
            self.on_finished(False)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current run ends.

        Returns:
            True if no run is active afterwards
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _start(self, sequence: Sequence, step: int, beat: int):
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(sequence, step, beat, self._stop_event),
            name="sequencer",
            daemon=True,
        )
        self._thread.start()

    def _join(self, thread: threading.Thread):
        if thread is not threading.current_thread():
            thread.join()

    def _wait_until(self, deadline: float, stop_event: threading.Event) -> bool:
        """Wait for the deadline; True if interrupted."""
        remaining = deadline - self.clock()
        if remaining <= 0:
            return stop_event.is_set()
        return stop_event.wait(remaining)

    def _run(self, sequence: Sequence, start_step: int, start_beat: int,
             stop_event: threading.Event):
        completed = False
        if self.metronome is not None:
            self.metronome.configure(sequence.tempo, sequence.beats_per_measure)
            self.metronome.set_active(True)
        try:
            completed = self._play_steps(sequence, start_step, start_beat, stop_event)
        finally:
            if self.metronome is not None:
                self.metronome.set_active(False)
            if stop_event.is_set() and not completed:
                self.engine.stop_all()

        with self._lock:
            paused = self._paused_at is not None
        if not paused:
            logger.debug("Sequence %s", "completed" if completed else "stopped")
            if self.on_finished is not None:
                self.on_finished(completed)

    def _play_steps(self, sequence: Sequence, start_step: int, start_beat: int,
                    stop_event: threading.Event) -> bool:
        beat_duration = sequence.beat_duration
        steps = sequence.steps
        if not steps:
            return True
        last = len(steps) - 1
        deadline = self.clock()

        while True:
            for index in range(start_step, len(steps)):
                if stop_event.is_set():
                    return False
                step = steps[index]
                first_beat = start_beat if index == start_step else 0

                if not step.is_rest:
                    duration = (step.beats - first_beat) * beat_duration
                    if index == last:
                        duration += beat_duration
                    self.engine.play_fingering(step.chord_id, sequence.flute_type,
                                               sequence.tuning, duration)

                for beat in range(first_beat, step.beats):
                    if stop_event.is_set():
                        return False
                    self._position = (index, beat)
                    self._notify_position(index, beat)
                    deadline += beat_duration
                    if self._wait_until(deadline, stop_event):
                        return False

            if self.loop and not stop_event.is_set():
                # Restart without the ring-out beat; the last chord overlaps the first
                start_step, start_beat = 0, 0
                continue

            # Ring-out beat for the final chord
            if self._wait_until(deadline + beat_duration, stop_event):
                return False
            return True

    def _notify_position(self, step_index: int, beat_index: int):
        if self.on_position is None:
            return
        try:
            self.on_position(step_index, beat_index)
        except Exception:
            logger.exception("on_position callback failed at step %d beat %d", step_index, beat_index)
