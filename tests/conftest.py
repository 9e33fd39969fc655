"""Shared fixtures for the Innato engine tests."""
import numpy as np
import pytest

from audio.backend import AudioBackend, Source


class FakeStream:
    """Stands in for sounddevice.OutputStream."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class ConstantSource(Source):
    """Adds a constant value to every sample."""

    def __init__(self, value=0.5):
        self.value = value

    def render(self, out, start_time, sample_rate):
        out += self.value


@pytest.fixture
def backend():
    """Running offline backend; render() drives the clock."""
    backend = AudioBackend(sample_rate=44100, buffer_size=512, realtime=False)
    backend.resume()
    yield backend
    backend.close()


@pytest.fixture
def suspended_backend():
    """Realtime backend whose output stream can never be opened."""
    attempts = []

    def failing_factory(**kwargs):
        attempts.append(kwargs)
        raise RuntimeError("no output device")

    backend = AudioBackend(realtime=True, stream_factory=failing_factory)
    backend.attempts = attempts
    yield backend
    backend.close()


def rms(block: np.ndarray) -> float:
    return float(np.sqrt(np.mean(np.square(block)))) if len(block) else 0.0
