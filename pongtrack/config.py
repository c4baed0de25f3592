"""
Configuration management for Pong Throw Tracker.
Tracking thresholds, pose handling and game rules, persisted as JSON.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Any
from dataclasses import dataclass, asdict, field, fields

logger = logging.getLogger(__name__)


@dataclass
class CameraSettings:
    """Camera and view configuration."""
    device_id: int = 0
    view_width: int = 1920    # View space the trajectory math runs in
    view_height: int = 1080


@dataclass
class TrackerSettings:
    """Trajectory accumulator configuration."""
    min_trajectory_confidence: float = 0.9
    max_displacement: float = 250.0       # View units between consecutive segments
    frame_limit: int = 20                 # Missing/rejected frames before throw completes
    # Region layout around the player and target
    throw_window_x_buffer: float = 5.0
    throw_window_y_buffer: float = 50.0
    throw_region_width: float = 200.0
    target_window_x_buffer: float = 50.0
    overlap_window_buffer: float = 50.0


@dataclass
class PoseSettings:
    """Body pose handling configuration."""
    max_observations: int = 90
    min_observation_confidence: float = 0.6
    min_joint_confidence: float = 0.1
    max_in_flight_observations: int = 10  # Pose frames stored per throw once ball is in flight
    player_box_inset: float = -20.0


@dataclass
class GameSettings:
    """Game rules."""
    max_throws: int = 6
    table_length_m: float = 1.22


@dataclass
class CalibrationSettings:
    """Target calibration configuration."""
    min_target_confidence: float = 0.6
    # Guide box the target must sit inside (normalized x, y, w, h)
    guide_rect: tuple = (0.7, 0.3, 0.28, 0.3)
    stability_history_length: int = 15
    stability_threshold: float = 10.0


@dataclass
class Config:
    """Main configuration container."""
    camera: CameraSettings = field(default_factory=CameraSettings)
    tracker: TrackerSettings = field(default_factory=TrackerSettings)
    pose: PoseSettings = field(default_factory=PoseSettings)
    game: GameSettings = field(default_factory=GameSettings)
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)

    # Server settings
    server_host: str = "0.0.0.0"
    server_port: int = 8000


class ConfigManager:
    """
    Reads and writes the JSON settings file.

    Sections missing from the file keep their defaults, and keys this
    version does not know about are skipped, so older and newer files
    both load.
    """

    DEFAULT_CONFIG_PATH = Path("config.json")

    SECTIONS = ("camera", "tracker", "pose", "game", "calibration")
    SERVER_KEYS = ("server_host", "server_port")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self.config = Config()

    def load(self) -> Config:
        """Merge the settings file over the defaults; a bad file leaves defaults in place."""
        if not self.config_path.is_file():
            logger.info(f"{self.config_path} not present, running with default settings")
            return self.config

        try:
            data = json.loads(self.config_path.read_text())
        except json.JSONDecodeError as e:
            logger.error(f"{self.config_path} is not valid JSON ({e}), keeping defaults")
            return self.config
        except OSError as e:
            logger.error(f"Could not read {self.config_path}: {e}")
            return self.config

        self._apply_dict_to_config(data)
        logger.info(f"Settings loaded from {self.config_path}")
        return self.config

    def save(self) -> bool:
        """Write every section to the settings file."""
        try:
            self.config_path.write_text(json.dumps(self._config_to_dict(), indent=2))
        except (OSError, TypeError) as e:
            logger.error(f"Could not write {self.config_path}: {e}")
            return False

        logger.info(f"Settings written to {self.config_path}")
        return True

    def _config_to_dict(self) -> dict:
        data: dict = {}
        for section in self.SECTIONS:
            data[section] = asdict(getattr(self.config, section))
        data.update({key: getattr(self.config, key) for key in self.SERVER_KEYS})
        return data

    def _apply_dict_to_config(self, data: Any):
        if not isinstance(data, dict):
            logger.error("Settings file must hold a JSON object, keeping defaults")
            return

        for section in self.SECTIONS:
            values = data.get(section)
            if isinstance(values, dict):
                self._update_dataclass(getattr(self.config, section), values)

        for key in self.SERVER_KEYS:
            if key in data:
                setattr(self.config, key, data[key])

    def _update_dataclass(self, settings: Any, values: dict):
        known = {f.name for f in fields(settings)}
        for key, value in values.items():
            if key not in known:
                logger.debug(f"Skipping unknown setting {type(settings).__name__}.{key}")
                continue
            # JSON has no tuples
            if isinstance(value, list) and isinstance(getattr(settings, key), tuple):
                value = tuple(value)
            setattr(settings, key, value)


_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Shared manager, created and loaded on first use; later paths are ignored."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
        _config_manager.load()
    return _config_manager


def get_config() -> Config:
    return get_config_manager().config
