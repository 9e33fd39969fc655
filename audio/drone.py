"""
Drone player: a looping tanpura or shruti box sample, retuned live.

Tuning is applied as a playback-rate multiplier:

    rate = (432/440 if use_432hz else 1) * 2 ** (cents / 1200)

Two playback strategies:
- BUFFER: the whole sample is decoded into memory, resampled to the
  backend rate and looped; rate changes are picked up on the next render
- STREAMING: used only when a full decode fails or the sample is longer
  than max_decoded_seconds. Blocks are decoded on demand and a new rate is
  only adopted when the next block is read, so a watchdog thread keeps
  re-asserting the intended rate while it plays
"""
import io
import logging
import math
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Union
from urllib.parse import urlparse
from urllib.request import urlopen

import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from audio.backend import AudioBackend, Bus, Source
from core.flutes import DRONE_ROOT_NOTES, FluteType
from core.tuning import parse_note_name, playback_rate

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "audio/drone_player"
DEFAULT_VOLUME = 75
FINE_TUNE_LIMIT = 1200.0
WATCHDOG_INTERVAL = 0.05
MAX_DECODED_SECONDS = 600.0
FETCH_TIMEOUT = 30.0

INSTRUMENT_FOLDERS = {
    "tanpura": "tanpura",
    "shruti": "shrutibox",
}


class PlaybackStrategy(Enum):
    """How a loaded sample is played."""
    BUFFER = "buffer"
    STREAMING = "streaming"


class LoadResult(NamedTuple):
    """Outcome of DroneEngine.load()."""
    ok: bool
    reason: Optional[str] = None
    strategy: Optional[PlaybackStrategy] = None


def drone_sample_url(root_note: str, instrument: str = "tanpura",
                     base_url: str = DEFAULT_BASE_URL) -> str:
    """
    Build the sample location for a root note.

    The octave is dropped and accidentals are spelled out as sharps:
    "C#4" -> "Csharp", "Bb3" -> "Asharp".

    Args:
        root_note: Note name with octave (e.g., "Bb3")
        instrument: "tanpura" or "shruti"
        base_url: Folder or URL holding the instrument folders

    Raises:
        ValueError: If the instrument is unknown
        MalformedNoteNameError: If root_note cannot be parsed
    """
    if instrument not in INSTRUMENT_FOLDERS:
        raise ValueError(f"Unknown drone instrument: {instrument!r}")
    pitch_class, _ = parse_note_name(root_note)
    file_name = pitch_class.replace("#", "sharp")
    return f"{base_url.rstrip('/')}/{INSTRUMENT_FOLDERS[instrument]}/{file_name}.mp3"


def drone_sample_url_for_flute(flute_type: Union[FluteType, str], instrument: str = "tanpura",
                               base_url: str = DEFAULT_BASE_URL) -> str:
    """Sample location for a flute's root note."""
    return drone_sample_url(DRONE_ROOT_NOTES[FluteType.coerce(flute_type)], instrument, base_url)


def fetch_sample(location: str) -> bytes:
    """
    Read encoded sample bytes from an http(s)/file URL or a local path.

    Raises:
        OSError: If the sample cannot be read
    """
    scheme = urlparse(location).scheme
    if scheme in ("http", "https", "file"):
        with urlopen(location, timeout=FETCH_TIMEOUT) as response:
            return response.read()
    return Path(location).read_bytes()


def resample(data: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Polyphase resampling between integer sample rates."""
    if source_rate == target_rate:
        return data
    divisor = math.gcd(int(source_rate), int(target_rate))
    return resample_poly(data, int(target_rate) // divisor, int(source_rate) // divisor, axis=0)


class LoopingBufferSource(Source):
    """In-memory loop with a live playback rate."""

    def __init__(self, data: np.ndarray, rate: float = 1.0):
        if len(data) == 0:
            raise ValueError("Cannot loop an empty buffer")
        self.data = np.asarray(data, dtype=np.float64)
        self.rate = rate
        self.position = 0.0

    def stop(self):
        self.finished = True

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        if self.finished:
            return
        length = len(self.data)
        rate = self.rate
        positions = (self.position + rate * np.arange(len(out))) % length
        index = positions.astype(np.int64)
        frac = positions - index
        following = (index + 1) % length
        out += self.data[index] * (1.0 - frac) + self.data[following] * frac
        self.position = (self.position + rate * len(out)) % length


class StreamingSource(Source):
    """
    Decodes the sample block by block while playing.

    The rate is read only when a block is decoded (applied_rate); changes to
    `rate` in between wait for the next refill unless request_refill() asks
    for the decoded tail to be retimed on the next render.
    """

    def __init__(self, data: bytes, sample_rate: int, rate: float = 1.0,
                 block_seconds: float = 0.5):
        """
        Open a streaming source.

        Raises:
            RuntimeError: If the data cannot be decoded
            ValueError: If the sample holds no audio
        """
        self._file = sf.SoundFile(io.BytesIO(data))
        if self._file.frames == 0:
            self._file.close()
            raise ValueError("Sample holds no audio")
        self.sample_rate = sample_rate
        self.rate = rate
        self.applied_rate = rate
        self.block_frames = max(1, int(self._file.samplerate * block_seconds))
        self.refills = 0
        self.refill_requested = False
        self._pending = np.zeros(0, dtype=np.float64)
        self._carry = 0.0

    def stop(self):
        self.finished = True
        self._file.close()

    def request_refill(self):
        """Adopt `rate` on the next render instead of the next block."""
        self.refill_requested = True

    def _read_block(self) -> np.ndarray:
        block = self._file.read(self.block_frames, dtype="float64", always_2d=True)
        if len(block) < self.block_frames:
            # Loop back to the start of the sample
            self._file.seek(0)
            rest = self._file.read(self.block_frames - len(block), dtype="float64", always_2d=True)
            block = np.concatenate([block, rest])
        return resample(block.mean(axis=1), self._file.samplerate, self.sample_rate)

    def _refill(self):
        self.applied_rate = self.rate
        rate = self.applied_rate
        block = self._read_block()
        length = len(block)
        count = int(math.ceil((length - self._carry) / rate))
        positions = self._carry + rate * np.arange(count)
        samples = np.interp(positions, np.arange(length), block)
        self._carry = self._carry + rate * count - length
        self._pending = np.concatenate([self._pending, samples])
        self.refills += 1

    def _retime(self):
        # Re-step the decoded tail at the new rate and carry the remainder
        old_rate, self.applied_rate = self.applied_rate, self.rate
        pending = self._pending
        if len(pending) == 0 or old_rate == self.applied_rate:
            return
        step = self.applied_rate / old_rate
        count = int(math.ceil(len(pending) / step))
        self._pending = np.interp(step * np.arange(count), np.arange(len(pending)), pending)
        self._carry += (step * count - len(pending)) * old_rate

    def render(self, out: np.ndarray, start_time: float, sample_rate: int):
        if self.finished:
            return
        frames = len(out)
        if self.refill_requested:
            self.refill_requested = False
            self._retime()
        while len(self._pending) < frames:
            self._refill()
        out += self._pending[:frames]
        self._pending = self._pending[frames:]


class RateWatchdog:
    """
    Re-asserts a streaming source's playback rate at a fixed interval.

    A drifted `rate` is put back, and a rate not yet applied to the decoded
    audio is pushed through with an early refill.
    """

    def __init__(self, source: StreamingSource, target: Callable[[], float],
                 interval: float = WATCHDOG_INTERVAL):
        self.source = source
        self.target = target
        self.interval = interval
        self.corrections = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="drone-rate-watchdog", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    def _run(self):
        while not self._stop_event.wait(self.interval):
            rate = self.target()
            if abs(self.source.rate - rate) > 0.001:
                logger.debug("Drone rate drifted to %.4f, restoring %.4f", self.source.rate, rate)
                self.corrections += 1
            self.source.rate = rate
            if abs(self.source.applied_rate - rate) > 0.001:
                self.source.request_refill()


class DroneEngine:
    """
    Looping drone with live tuning.

    Typical use:
        drone = DroneEngine()
        result = drone.load(drone_sample_url_for_flute("Cm4"))
        if result.ok:
            drone.play()
    """

    def __init__(self, backend: Optional[AudioBackend] = None,
                 volume: float = DEFAULT_VOLUME, use_432hz: bool = False,
                 fine_tune: float = 0.0, watchdog_interval: float = WATCHDOG_INTERVAL,
                 max_decoded_seconds: float = MAX_DECODED_SECONDS,
                 sample_rate: int = 44100, buffer_size: int = 512,
                 device=None, latency="low",
                 fetcher: Callable[[str], bytes] = fetch_sample):
        """
        Initialize drone engine.

        Args:
            backend: Shared audio backend (None = create one when needed)
            volume: Loudness 0-100
            use_432hz: Retune from A440 to A432
            fine_tune: Offset in cents (clamped to +/-1200)
            watchdog_interval: Rate re-assertion period for streaming playback
            max_decoded_seconds: Longest sample decoded fully into memory
            sample_rate: Sample rate for an engine-created backend
            buffer_size: Buffer size for an engine-created backend
            device: Output device for an engine-created backend
            latency: Latency hint for an engine-created backend
            fetcher: Reads encoded bytes for a URL or path
        """
        self.backend = backend
        self._owns_backend = backend is None
        self._backend_options = dict(sample_rate=sample_rate, buffer_size=buffer_size,
                                     device=device, latency=latency)
        self.watchdog_interval = watchdog_interval
        self.max_decoded_seconds = max_decoded_seconds
        self._fetch = fetcher

        self.use_432hz = bool(use_432hz)
        self.fine_tune = self._clamp_cents(fine_tune)
        self.volume = self._clamp_volume(volume)

        self._lock = threading.RLock()
        self._bus: Optional[Bus] = None
        self._source: Optional[Source] = None
        self._watchdog: Optional[RateWatchdog] = None

        # Loaded sample
        self.url: Optional[str] = None
        self.strategy: Optional[PlaybackStrategy] = None
        self._buffer: Optional[np.ndarray] = None
        self._encoded: Optional[bytes] = None
        self._disposed = False

    @property
    def sample_rate(self) -> int:
        if self.backend is not None:
            return self.backend.sample_rate
        return self._backend_options["sample_rate"]

    @property
    def playback_rate(self) -> float:
        """Intended playback rate for the current tuning."""
        return playback_rate(self.use_432hz, self.fine_tune)

    @property
    def is_loaded(self) -> bool:
        return self.strategy is not None

    @property
    def is_playing(self) -> bool:
        return self._source is not None

    @property
    def source(self) -> Optional[Source]:
        return self._source

    @property
    def watchdog(self) -> Optional[RateWatchdog]:
        return self._watchdog

    @staticmethod
    def _clamp_cents(cents: float) -> float:
        return max(-FINE_TUNE_LIMIT, min(FINE_TUNE_LIMIT, float(cents)))

    @staticmethod
    def _clamp_volume(volume: float) -> float:
        return max(0.0, min(100.0, float(volume)))

    def load(self, url: str) -> LoadResult:
        """
        Fetch and decode a sample. Stops any current playback.

        Returns:
            LoadResult; on failure ok is False and reason says why
        """
        if self._disposed:
            return LoadResult(False, "engine disposed")
        self.stop()
        self.url = url
        self.strategy = None
        self._buffer = None
        self._encoded = None

        try:
            data = self._fetch(url)
        except (OSError, ValueError) as e:
            logger.warning("Failed to fetch drone sample %s: %s", url, e)
            return LoadResult(False, f"fetch failed: {e}")

        try:
            info = sf.info(io.BytesIO(data))
        except (RuntimeError, ValueError) as e:
            logger.warning("Failed to decode drone sample %s: %s", url, e)
            return LoadResult(False, f"decode failed: {e}")

        if info.duration <= self.max_decoded_seconds:
            try:
                decoded, rate = sf.read(io.BytesIO(data), dtype="float64", always_2d=True)
                if len(decoded) == 0:
                    raise ValueError("sample holds no audio")
                self._buffer = resample(decoded.mean(axis=1), rate, self.sample_rate)
                self.strategy = PlaybackStrategy.BUFFER
                logger.info("Loaded drone sample %s (%.1fs, in memory)", url, info.duration)
                return LoadResult(True, None, self.strategy)
            except (RuntimeError, ValueError) as e:
                logger.warning("Full decode of %s failed, streaming instead: %s", url, e)
        else:
            logger.info("Drone sample %s is %.0fs long, streaming it", url, info.duration)

        try:
            trial = StreamingSource(data, self.sample_rate)
            trial.stop()
        except (RuntimeError, ValueError) as e:
            logger.warning("Failed to stream drone sample %s: %s", url, e)
            return LoadResult(False, f"decode failed: {e}")
        self._encoded = data
        self.strategy = PlaybackStrategy.STREAMING
        return LoadResult(True, None, self.strategy)

    def play(self) -> bool:
        """
        Start looping the loaded sample.

        Returns:
            False if nothing is loaded or the backend cannot start
        """
        with self._lock:
            if self._disposed or not self.is_loaded:
                return False
            if self._source is not None:
                return True
            if self.backend is None:
                self.backend = AudioBackend(**self._backend_options)
            if not self.backend.resume():
                logger.warning("Drone not started: audio backend unavailable")
                return False

            rate = self.playback_rate
            if self.strategy is PlaybackStrategy.BUFFER:
                source = LoopingBufferSource(self._buffer, rate)
            else:
                source = StreamingSource(self._encoded, self.sample_rate, rate)

            with self.backend.lock:
                if self._bus is None:
                    self._bus = self.backend.create_bus("drone", self.volume / 100.0)
                self._bus.add(source)
            self._source = source

            if isinstance(source, StreamingSource):
                self._watchdog = RateWatchdog(source, lambda: self.playback_rate, self.watchdog_interval)
                self._watchdog.start()
            logger.debug("Drone playing at rate %.4f", rate)
            return True

    def stop(self):
        """Halt playback and disconnect the source. Safe to call when stopped."""
        with self._lock:
            watchdog, self._watchdog = self._watchdog, None
            source, self._source = self._source, None
        if watchdog is not None:
            watchdog.stop()
        if source is None:
            return
        with self.backend.lock:
            if self._bus is not None:
                self._bus.remove(source)
            source.stop()

    def set_tuning(self, use_432hz: bool):
        """Switch between A440 and A432 without restarting."""
        self.use_432hz = bool(use_432hz)
        self._apply_rate()

    def set_fine_tune(self, cents: float):
        """Offset the tuning in cents (clamped to +/-1200) without restarting."""
        self.fine_tune = self._clamp_cents(cents)
        self._apply_rate()

    def set_volume(self, volume: float):
        """Set loudness 0-100."""
        self.volume = self._clamp_volume(volume)
        if self._bus is not None:
            with self.backend.lock:
                self._bus.gain = self.volume / 100.0

    def dispose(self):
        """Release everything (and the backend if this engine created it)."""
        if self._disposed:
            return
        self.stop()
        self._disposed = True
        self._buffer = None
        self._encoded = None
        self.strategy = None
        if self.backend is not None and self._bus is not None:
            self.backend.remove_bus(self._bus)
        self._bus = None
        if self._owns_backend and self.backend is not None:
            self.backend.close()

    def _apply_rate(self):
        source = self._source
        if source is None:
            return
        with self.backend.lock:
            source.rate = self.playback_rate
