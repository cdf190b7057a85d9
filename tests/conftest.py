"""
Shared test fixtures.

Audio tests never touch PortAudio: SignalSampler accepts a `backend` with the
same InputStream/OutputStream/query_devices surface as sounddevice, and the
FakeSoundDevice below records every stream it opens. Tests push audio into
an open input stream with `stream.feed(samples)`, which invokes the sampler's
callback exactly as PortAudio would.
"""
import socket

import numpy as np
import pytest


class FakeStream:
    """Stand-in for sounddevice.InputStream / OutputStream."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs.get("callback")
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True

    @property
    def active(self) -> bool:
        return self.started and not self.stopped

    def feed(self, samples):
        """Deliver one block of mono samples to the input callback."""
        block = np.asarray(samples, dtype=np.float32).reshape(-1, 1)
        self.callback(block, len(block), None, None)

    def pull(self, frames: int) -> np.ndarray:
        """Ask the output callback for `frames` samples."""
        outdata = np.full((frames, 1), 99.0, dtype=np.float32)
        self.callback(outdata, frames, None, None)
        return outdata[:, 0]


class FakeSoundDevice:
    """Minimal sounddevice module replacement."""

    def __init__(self, fail_input: bool = False, fail_output: bool = False):
        self.fail_input = fail_input
        self.fail_output = fail_output
        self.inputs = []
        self.outputs = []
        self.devices = [
            {"name": "Built-in Microphone", "max_input_channels": 1, "default_samplerate": 44100.0},
            {"name": "Built-in Output", "max_input_channels": 0, "default_samplerate": 48000.0},
            {"name": "USB Interface", "max_input_channels": 2, "default_samplerate": 48000.0},
        ]

    def InputStream(self, **kwargs):
        if self.fail_input:
            raise OSError("Error querying device -1")
        stream = FakeStream(**kwargs)
        self.inputs.append(stream)
        return stream

    def OutputStream(self, **kwargs):
        if self.fail_output:
            raise OSError("No output device")
        stream = FakeStream(**kwargs)
        self.outputs.append(stream)
        return stream

    def query_devices(self):
        return list(self.devices)

    @property
    def open_inputs(self):
        return [s for s in self.inputs if not s.closed]

    @property
    def open_outputs(self):
        return [s for s in self.outputs if not s.closed]


@pytest.fixture
def fake_sd():
    """A working fake audio backend."""
    return FakeSoundDevice()


@pytest.fixture
def denied_sd():
    """A backend whose microphone cannot be opened."""
    return FakeSoundDevice(fail_input=True)


@pytest.fixture
def sampler(fake_sd):
    """An initialized SignalSampler on the fake backend."""
    from modules.sampler import SignalSampler

    s = SignalSampler(sample_rate=44100, backend=fake_sd)
    assert s.initialize()
    yield s
    s.cleanup()


@pytest.fixture
def store(tmp_path):
    """An empty JSON record store in a temp directory."""
    from storage import JsonRecordStore

    return JsonRecordStore(tmp_path / "records.json")


@pytest.fixture
def requires_internet():
    """Check internet connectivity (no prompt needed)."""
    try:
        socket.create_connection(("lrclib.net", 443), timeout=5).close()
    except (socket.timeout, OSError):
        pytest.skip("No internet connection")
