"""
Tests for the Signal Sampler on a fake sounddevice backend.
"""
import random

import numpy as np
import pytest

from modules.sampler import SignalSampler, list_input_devices


class TestSamplerLifecycle:
    """Test microphone acquisition and release."""

    def test_initialize_opens_input_stream(self, fake_sd):
        sampler = SignalSampler(sample_rate=44100, backend=fake_sd)
        assert sampler.initialize()

        stream = fake_sd.inputs[0]
        assert stream.started
        assert stream.kwargs["samplerate"] == 44100
        assert stream.kwargs["channels"] == 1
        assert stream.kwargs["dtype"] == "float32"
        assert sampler.is_initialized
        assert not sampler.is_monitoring
        assert sampler.monitoring_volume == 1.0
        assert len(sampler.read_window()) == 2048
        sampler.cleanup()

    def test_denied_microphone_returns_false(self, denied_sd):
        """Failure is a return value, never an exception."""
        sampler = SignalSampler(backend=denied_sd)
        assert sampler.initialize() is False
        assert not sampler.is_initialized
        assert sampler.detect_pitch() == 0.0

    def test_cleanup_is_idempotent(self, fake_sd):
        sampler = SignalSampler(backend=fake_sd)
        sampler.cleanup()  # never initialized

        sampler.initialize()
        sampler.enable_monitoring()
        sampler.cleanup()
        sampler.cleanup()

        assert fake_sd.open_inputs == []
        assert fake_sd.open_outputs == []
        assert not sampler.is_initialized
        assert not sampler.is_monitoring

    def test_acquire_release_aliases(self, fake_sd):
        sampler = SignalSampler(backend=fake_sd)
        assert sampler.acquire()
        assert sampler.is_started
        sampler.release()
        assert not sampler.is_started


class TestMonitoring:
    """Test live monitoring output."""

    def test_enable_is_idempotent(self, sampler, fake_sd):
        sampler.enable_monitoring()
        sampler.enable_monitoring()
        assert sampler.is_monitoring
        assert len(fake_sd.outputs) == 1

        sampler.disable_monitoring()
        sampler.disable_monitoring()
        assert not sampler.is_monitoring
        assert fake_sd.outputs[0].closed

    def test_noop_when_uninitialized(self, fake_sd):
        sampler = SignalSampler(backend=fake_sd)
        sampler.enable_monitoring()
        assert not sampler.is_monitoring
        assert fake_sd.outputs == []

    def test_output_failure_leaves_monitoring_off(self, fake_sd):
        fake_sd.fail_output = True
        sampler = SignalSampler(backend=fake_sd)
        sampler.initialize()
        sampler.enable_monitoring()
        assert not sampler.is_monitoring
        sampler.cleanup()

    def test_volume_is_clamped(self, sampler):
        sampler.set_monitoring_volume(1.7)
        assert sampler.monitoring_volume == 1.0
        sampler.set_monitoring_volume(-0.2)
        assert sampler.monitoring_volume == 0.0

    def test_captured_audio_routed_with_gain(self, sampler, fake_sd):
        """Volume applies whether or not monitoring was on when it was set."""
        sampler.set_monitoring_volume(0.5)
        sampler.enable_monitoring()

        fake_sd.inputs[0].feed(np.full(256, 0.8))
        out = fake_sd.outputs[0].pull(512)

        assert out[:256] == pytest.approx(np.full(256, 0.4))
        assert np.all(out[256:] == 0.0)


class TestSampling:
    """Test pitch and timing histories."""

    def test_detect_pitch_from_window(self, sampler, fake_sd):
        """Full-scale window of 0.25 amplitude reads 50."""
        fake_sd.inputs[0].feed(np.full(2048, 0.25))
        assert sampler.detect_pitch() == pytest.approx(50.0)
        assert sampler.pitch_history == [pytest.approx(50.0)]

    def test_silence_reads_zero(self, sampler):
        assert sampler.detect_pitch() == 0.0

    def test_loud_input_caps_at_100(self, sampler, fake_sd):
        fake_sd.inputs[0].feed(np.ones(4096))
        assert sampler.detect_pitch() == 100.0

    def test_window_slides(self, sampler, fake_sd):
        fake_sd.inputs[0].feed(np.ones(1024))
        window = sampler.read_window()
        assert np.all(window[:1024] == 0.0)
        assert np.all(window[1024:] == 1.0)

    def test_histories_keep_latest_100(self, sampler):
        """FIFO eviction keeps the most recent 100 values in order."""
        for i in range(250):
            sampler.record_timing(0.0, i / 100.0)

        expected = [max(0.0, 100 - (i / 100.0) * 10) for i in range(150, 250)]
        assert sampler.timing_history == pytest.approx(expected)

    def test_record_timing_bounds(self, sampler):
        assert sampler.record_timing(10.0, 10.2) == pytest.approx(98.0)
        assert sampler.record_timing(0.0, 1000.0) == 0.0

    def test_calculate_scores_with_rng(self, sampler):
        scores = sampler.calculate_scores(rng=random.Random(7))
        assert scores.pitch_score == 70
        assert scores.timing_score == 75
        assert 68 <= scores.rhythm_score <= 78

    def test_reset_keeps_streams(self, sampler):
        sampler.detect_pitch()
        sampler.record_timing(1.0, 1.0)
        sampler.reset()
        assert sampler.pitch_history == []
        assert sampler.timing_history == []
        assert sampler.is_initialized

    def test_status(self, sampler):
        sampler.detect_pitch()
        status = sampler.get_status()
        assert status["initialized"] is True
        assert status["pitch_samples"] == 1


class TestDevices:
    def test_lists_only_inputs(self, fake_sd):
        devices = list_input_devices(fake_sd)
        assert [d["index"] for d in devices] == [0, 2]
        assert devices[1]["sample_rate"] == 48000


class TestModuleContext:
    """Test the Module context-manager lifecycle."""

    def test_with_block_releases_microphone(self, fake_sd):
        with SignalSampler(backend=fake_sd) as sampler:
            assert sampler.is_initialized
            assert sampler.get_status()["module"] == "SignalSampler"
        assert fake_sd.open_inputs == []

    def test_with_block_raises_when_denied(self, denied_sd):
        with pytest.raises(RuntimeError):
            with SignalSampler(backend=denied_sd):
                pass
