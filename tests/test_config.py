"""
Tests for configuration persistence.

Usage:
    pytest tests/test_config.py -v
"""

import json
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pongtrack.config import Config, ConfigManager


class TestConfigManager:

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.json")
        config = manager.load()

        assert config.tracker.min_trajectory_confidence == 0.9
        assert config.tracker.max_displacement == 250.0
        assert config.tracker.frame_limit == 20
        assert config.pose.max_observations == 90
        assert config.game.max_throws == 6

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.json"
        manager = ConfigManager(path)
        manager.config.game.max_throws = 10
        manager.config.server_port = 9000
        assert manager.save()

        reloaded = ConfigManager(path).load()

        assert reloaded.game.max_throws == 10
        assert reloaded.server_port == 9000
        assert reloaded.calibration.guide_rect == (0.7, 0.3, 0.28, 0.3)

    def test_invalid_json_keeps_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")

        config = ConfigManager(path).load()

        assert config.game.max_throws == Config().game.max_throws

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "tracker": {"frame_limit": 30, "bogus": 1},
            "nonsense": {"a": 1},
        }))

        config = ConfigManager(path).load()

        assert config.tracker.frame_limit == 30
        assert not hasattr(config.tracker, "bogus")

    def test_list_values_become_tuples(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"calibration": {"guide_rect": [0.6, 0.2, 0.3, 0.4]}}))

        config = ConfigManager(path).load()

        assert config.calibration.guide_rect == (0.6, 0.2, 0.3, 0.4)
