"""
Audio backend: output stream, render clock and buses.

Architecture:
- One sounddevice OutputStream whose callback pulls blocks from render()
- Audio clock = frames rendered / sample rate (seconds)
- Buses are independent gain subtrees; each subsystem (chord voices,
  metronome, drone) owns its own bus and never touches another's
- A single lock guards the graph; callers take it while scheduling

Offline mode (realtime=False) opens no stream: the clock only advances when
render() is called directly. Tests and file rendering use this mode.
"""
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class BackendState(Enum):
    """Lifecycle of the audio backend."""
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


class Source:
    """
    Something that renders audio into a bus.

    Subclasses implement render() and set `finished` once they will never
    produce sound again; the bus drops finished sources.
    """

    finished = False

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        """
        Mix this source into out.

        Args:
            out: Mono float64 buffer to add into, shape (frames,)
            start_time: Backend time of out[0] in seconds
            sample_rate: Sample rate in Hz
        """
        raise NotImplementedError()


class Bus:
    """Gain subtree owned by one subsystem."""

    def __init__(self, name: str, gain: float = 1.0):
        self.name = name
        self.gain = gain
        self.sources: List[Source] = []

    def add(self, source: Source):
        self.sources.append(source)

    def remove(self, source: Source):
        if source in self.sources:
            self.sources.remove(source)

    def clear(self):
        self.sources.clear()

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        """Render all sources, apply gain, mix into out, drop finished sources."""
        if not self.sources:
            return
        mix = np.zeros_like(out)
        for source in list(self.sources):
            source.render(mix, start_time, sample_rate)
        self.sources = [s for s in self.sources if not s.finished]
        out += mix * self.gain


class AudioBackend:
    """
    Output device, clock and bus graph.

    Created suspended. resume() opens and starts the output stream; on
    platforms that only allow output after user interaction (or with no
    device at all) resume() fails and the backend stays suspended, so
    callers can retry later.
    """

    def __init__(self, sample_rate: int = 44100, buffer_size: int = 512,
                 device=None, latency="low", realtime: bool = True,
                 stream_factory: Optional[Callable] = None):
        """
        Initialize audio backend.

        Args:
            sample_rate: Audio sample rate (Hz)
            buffer_size: Audio buffer size (frames)
            device: sounddevice output device (None = system default)
            latency: sounddevice latency hint
            realtime: Open an output stream on resume (False = offline)
            stream_factory: Callable returning an output stream
                (default: sounddevice.OutputStream)
        """
        self.sample_rate = sample_rate
        self.buffer_size = buffer_size
        self.device = device
        self.latency = latency
        self.realtime = realtime
        self._stream_factory = stream_factory

        self.lock = threading.RLock()
        self._open_lock = threading.Lock()
        self.state = BackendState.SUSPENDED
        self._frames_rendered = 0
        self._buses: List[Bus] = []
        self._stream = None

    @property
    def current_time(self) -> float:
        """Audio clock in seconds."""
        return self._frames_rendered / self.sample_rate

    @property
    def running(self) -> bool:
        return self.state is BackendState.RUNNING

    @property
    def buses(self) -> List[Bus]:
        with self.lock:
            return list(self._buses)

    def create_bus(self, name: str, gain: float = 1.0) -> Bus:
        """Create a new bus connected to the output."""
        bus = Bus(name, gain)
        with self.lock:
            self._buses.append(bus)
        return bus

    def remove_bus(self, bus: Bus):
        """Disconnect a bus. Removing an unknown bus is a no-op."""
        with self.lock:
            if bus in self._buses:
                self._buses.remove(bus)
            bus.clear()

    def resume(self) -> bool:
        """
        Start output if suspended.

        Returns:
            True if the backend is running afterwards
        """
        # One stream opens at a time; the callback must not be registered twice
        with self._open_lock:
            with self.lock:
                if self.state is BackendState.CLOSED:
                    return False
                if self.state is BackendState.RUNNING:
                    return True
                if not self.realtime:
                    self.state = BackendState.RUNNING
                    return True

            stream = self._open_stream()
            if stream is None:
                return False

            with self.lock:
                if self.state is not BackendState.SUSPENDED:
                    running = self.state is BackendState.RUNNING
                    self._close_stream(stream)
                    return running
                self._stream = stream
                self.state = BackendState.RUNNING
        logger.info("Audio output started (%d Hz, %d frames)", self.sample_rate, self.buffer_size)
        return True

    def suspend(self):
        """Stop output; the clock and graph are kept."""
        with self.lock:
            if self.state is not BackendState.RUNNING:
                return
            stream, self._stream = self._stream, None
            self.state = BackendState.SUSPENDED
        if stream is not None:
            self._close_stream(stream)

    def close(self):
        """Stop output and release the graph. Safe to call repeatedly."""
        with self.lock:
            if self.state is BackendState.CLOSED:
                return
            stream, self._stream = self._stream, None
            self.state = BackendState.CLOSED
            for bus in self._buses:
                bus.clear()
            self._buses.clear()
        if stream is not None:
            self._close_stream(stream)

    def render(self, frames: int) -> np.ndarray:
        """
        Render the next block and advance the clock.

        Args:
            frames: Number of frames to render

        Returns:
            Mono float32 block, clipped to [-1, 1]
        """
        out = np.zeros(frames, dtype=np.float64)
        with self.lock:
            start_time = self.current_time
            for bus in list(self._buses):
                bus.render(out, start_time, self.sample_rate)
            self._frames_rendered += frames
        np.clip(out, -1.0, 1.0, out=out)
        return out.astype(np.float32)

    def render_seconds(self, seconds: float) -> np.ndarray:
        """Render in buffer_size blocks until `seconds` of audio has passed (offline use)."""
        total = int(round(seconds * self.sample_rate))
        blocks = []
        while total > 0:
            frames = min(self.buffer_size, total)
            blocks.append(self.render(frames))
            total -= frames
        if not blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(blocks)

    def _audio_callback(self, outdata, frames, time_info, status):
        """Called by sounddevice for each audio chunk."""
        if status:
            logger.debug("Output stream status: %s", status)
        block = self.render(frames)
        outdata[:, 0] = block
        if outdata.shape[1] > 1:
            outdata[:, 1] = block

    def _open_stream(self):
        factory = self._stream_factory
        try:
            if factory is None:
                import sounddevice as sd
                factory = sd.OutputStream
            stream = factory(samplerate=self.sample_rate, channels=2,
                             blocksize=self.buffer_size, dtype='float32',
                             latency=self.latency, device=self.device,
                             callback=self._audio_callback)
            stream.start()
            return stream
        except Exception as e:
            # PortAudio missing, no device, or output not permitted yet
            logger.warning("Audio backend unavailable: %s", e)
            return None

    def _close_stream(self, stream):
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.debug("Error closing output stream: %s", e)
