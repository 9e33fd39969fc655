"""Tests for settings persistence."""
import json

from core.settings import DEFAULTS, default_settings, load_settings, save_settings


class TestSettings:
    """Settings file handling."""

    def test_missing_file_is_created(self, tmp_path):
        """Loading a missing file writes the defaults."""
        path = tmp_path / "innato" / "settings.json"
        settings = load_settings(path)
        assert settings == DEFAULTS
        assert json.loads(path.read_text()) == DEFAULTS

    def test_values_merge_over_defaults(self, tmp_path):
        """Stored values win; missing keys come from the defaults."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"playback": {"tempo": 120}, "unknown": {"x": 1}}))
        settings = load_settings(path)
        assert settings["playback"]["tempo"] == 120
        assert settings["playback"]["flute_type"] == "Cm4"
        assert settings["drone"]["volume"] == 75

    def test_corrupt_file_falls_back(self, tmp_path):
        """A corrupt file yields the defaults without raising."""
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert load_settings(path) == DEFAULTS

    def test_non_object_file_falls_back(self, tmp_path):
        """A file that is not a JSON object is ignored."""
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]")
        assert load_settings(path) == DEFAULTS

    def test_save_then_load(self, tmp_path):
        """Saved changes are loaded back."""
        path = tmp_path / "settings.json"
        settings = default_settings()
        settings["metronome"]["enabled"] = True
        save_settings(settings, path)
        assert load_settings(path)["metronome"]["enabled"] is True

    def test_defaults_are_copied(self):
        """Changing returned settings leaves the defaults intact."""
        settings = default_settings()
        settings["audio"]["sample_rate"] = 1
        assert DEFAULTS["audio"]["sample_rate"] == 44100
