"""Tests for configuration loading and saving."""

import json
import tempfile
from pathlib import Path

from suitewaste_sync.config import DEFAULT_API_URL, Config


class TestConfig:
    """Tests for Config."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "config.json"

    def test_defaults(self):
        """Test default configuration."""
        config = Config()

        assert config.sync.api_url == DEFAULT_API_URL
        assert config.sync.max_retries == 2
        assert config.background_retry.retention_minutes == 24 * 60
        assert config.compliance.default_rate_per_kg == 0.1
        assert config.compliance.currency == "ZAR"

    def test_missing_file_returns_defaults(self):
        assert Config.load(self.path) == Config()

    def test_save_and_load(self):
        """Test that a saved config loads back unchanged."""
        config = Config(device_id="scale-01", operator_id="op-7")
        config.sync.api_url = "https://yard.example/api"
        config.compliance.stream_rates = {"Metals": 0.15}
        config.connectivity.enabled = False

        config.save(self.path)
        loaded = Config.load(self.path)

        assert loaded == config

    def test_unknown_keys_are_ignored(self):
        """Test that stale or future keys do not break loading."""
        self.path.write_text(
            json.dumps(
                {
                    "device_id": "scale-01",
                    "legacy_flag": True,
                    "sync": {"api_url": "https://yard.example/api", "compress": True},
                }
            )
        )

        config = Config.load(self.path)

        assert config.device_id == "scale-01"
        assert config.sync.api_url == "https://yard.example/api"
        assert config.sync.timeout == 30

    def test_corrupt_file_returns_defaults(self):
        self.path.write_text("{not json")

        assert Config.load(self.path) == Config()
