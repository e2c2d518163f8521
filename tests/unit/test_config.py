"""Unit tests for environment-driven settings."""

from pathlib import Path

import pytest

from breakdown.config import Settings


class TestSettings:
    """Test cases for Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.max_attachment_bytes == 5 * 1024 * 1024
        assert settings.max_attachment_mb == 5
        assert (settings.canvas_width, settings.canvas_height) == (1200, 800)
        assert settings.log_level == "INFO"
        assert settings.log_file is None
        assert settings.storage_dir == ".breakdown"

    def test_overrides(self):
        settings = Settings.from_env({
            "BREAKDOWN_MAX_ATTACHMENT_MB": "2",
            "BREAKDOWN_CANVAS_WIDTH": "1600",
            "BREAKDOWN_CANVAS_HEIGHT": "900",
            "BREAKDOWN_LOG_LEVEL": "debug",
            "BREAKDOWN_LOG_FILE": "/tmp/breakdown.log",
            "BREAKDOWN_STORAGE_DIR": ".plans",
        })

        assert settings.max_attachment_bytes == 2 * 1024 * 1024
        assert settings.canvas_width == 1600
        assert settings.canvas_height == 900
        assert settings.log_level == "DEBUG"
        assert settings.log_file == Path("/tmp/breakdown.log")
        assert settings.storage_dir == ".plans"

    def test_blank_values_fall_back(self):
        assert Settings.from_env({"BREAKDOWN_CANVAS_WIDTH": "  "}).canvas_width == 1200

    @pytest.mark.parametrize("raw", ["abc", "0", "-3"])
    def test_invalid_integers(self, raw):
        with pytest.raises(ValueError, match="BREAKDOWN_MAX_ATTACHMENT_MB"):
            Settings.from_env({"BREAKDOWN_MAX_ATTACHMENT_MB": raw})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("BREAKDOWN_CANVAS_HEIGHT", "640")
        assert Settings.from_env().canvas_height == 640
