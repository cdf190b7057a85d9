"""
Unit tests for settings persistence and service health.
"""
import json

from infrastructure import Config, ServiceHealth, Settings


class TestSettings:
    """Test persistent user settings."""

    def test_defaults(self, tmp_path):
        settings = Settings(tmp_path / "settings.json")
        assert settings.monitoring_volume == 1.0
        assert settings.input_device == Config.INPUT_DEVICE

    def test_volume_clamped_and_persisted(self, tmp_path):
        path = tmp_path / "settings.json"
        Settings(path).monitoring_volume = 1.5
        assert Settings(path).monitoring_volume == 1.0

        Settings(path).monitoring_volume = 0.35
        assert Settings(path).monitoring_volume == 0.35
        assert not path.with_suffix(".tmp").exists()

    def test_input_device_persisted(self, tmp_path):
        path = tmp_path / "settings.json"
        Settings(path).input_device = 2
        assert Settings(path).input_device == 2
        with open(path) as f:
            assert json.load(f)["input_device"] == 2

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("not json")
        assert Settings(path).monitoring_volume == 1.0


class TestServiceHealth:
    """Test service health tracking."""

    def test_transitions(self):
        health = ServiceHealth("LRCLIB")
        assert not health.available

        health.mark_available("reachable")
        assert health.available

        health.mark_unavailable("timeout")
        health.mark_unavailable("timeout")
        status = health.get_status()
        assert status["available"] is False
        assert status["error"] == "timeout"
        assert status["error_count"] == 2

        health.mark_available()
        assert health.get_status()["error"] == ""
