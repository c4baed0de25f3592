"""
Session tracking for Pong Throw Tracker.
Tracks per-throw metrics and cumulative player statistics for one game.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict

from .classifier import ThrowType
from .detectors import PoseObservation
from .game_logic import Scoring
from .geometry import Point
from .pose import PoseHistoryBuffer

logger = logging.getLogger(__name__)


@dataclass
class ThrowMetrics:
    """Metrics of the most recent throw (overwritten every throw)."""
    score: Scoring = Scoring.ZERO
    speed: float = 0.0                          # view units per second
    release_speed_mph: Optional[float] = None   # needs target calibration
    throw_type: ThrowType = ThrowType.NONE
    final_location: Point = field(default_factory=lambda: Point(0.0, 0.0))

    def to_dict(self) -> dict:
        return {
            "score": int(self.score),
            "speed": round(self.speed, 2),
            "release_speed_mph": self.release_speed_mph,
            "throw_type": self.throw_type.value,
            "final_location": list(self.final_location.as_tuple()),
        }


@dataclass
class PlayerStats:
    """Cumulative statistics for one game session."""
    total_score: int = 0
    throw_count: int = 0
    type_counts: Dict[ThrowType, int] = field(default_factory=lambda: {t: 0 for t in ThrowType})
    speeds: List[float] = field(default_factory=list)            # view units per second
    release_speeds: List[float] = field(default_factory=list)    # mph, calibrated throws only
    paths: List[List[Point]] = field(default_factory=list)

    @property
    def overhand_count(self) -> int:
        return self.type_counts[ThrowType.OVERHAND]

    @property
    def trick_count(self) -> int:
        return self.type_counts[ThrowType.TRICK]

    @property
    def average_speed(self) -> float:
        if not self.speeds:
            return 0.0
        return sum(self.speeds) / len(self.speeds)

    @property
    def average_release_speed_mph(self) -> Optional[float]:
        if not self.release_speeds:
            return None
        return round(sum(self.release_speeds) / len(self.release_speeds), 2)


class PlayerStatsAccumulator:
    """
    Owns PlayerStats and the pose history feeding the throw classifier.
    Stats change only through these methods, normally on throw completion.
    """

    def __init__(self, max_throws: int = 6, max_pose_observations: int = 90):
        self.max_throws = max_throws
        self.stats = PlayerStats()
        self.pose_history = PoseHistoryBuffer(capacity=max_pose_observations)

    def adjust_metrics(
        self,
        score: Scoring,
        speed: float,
        throw_type: ThrowType,
        release_speed_mph: Optional[float] = None
    ):
        """Fold one completed throw into the totals. The mph speed is kept when calibrated."""
        self.stats.throw_count += 1
        self.stats.total_score += int(score)
        self.stats.type_counts[throw_type] += 1
        self.stats.speeds.append(speed)
        if release_speed_mph is not None:
            self.stats.release_speeds.append(release_speed_mph)

        logger.info(
            f"Throw recorded: {throw_type.value} +{int(score)}, "
            f"total={self.stats.total_score}, throws={self.stats.throw_count}/{self.max_throws}"
        )

    def store_path(self, path: List[Point]):
        self.stats.paths.append(list(path))

    def store_observation(self, observation: PoseObservation):
        self.pose_history.store(observation)

    def reset(self):
        """
        Start a new player: zero counters and drop pose history.
        Recorded speeds, release speeds and paths stay for the summary.
        """
        self.stats.total_score = 0
        self.stats.throw_count = 0
        self.stats.type_counts = {t: 0 for t in ThrowType}
        self.pose_history.reset()
        logger.info("Player stats reset")

    def reset_observations(self):
        """Drop pose history only (after each throw)."""
        self.pose_history.reset()

    @property
    def is_session_complete(self) -> bool:
        return self.stats.throw_count >= self.max_throws

    def to_dict(self) -> dict:
        """Stats for the UI surface."""
        stats = self.stats
        return {
            "total_score": stats.total_score,
            "throw_count": stats.throw_count,
            "max_throws": self.max_throws,
            "overhand_count": stats.overhand_count,
            "trick_count": stats.trick_count,
            "average_speed": round(stats.average_speed, 2),
            "speeds": [round(s, 2) for s in stats.speeds],
            "average_release_speed_mph": stats.average_release_speed_mph,
            "release_speeds_mph": list(stats.release_speeds),
            "paths": [[list(p.as_tuple()) for p in path] for path in stats.paths],
            "pose_observations": len(self.pose_history),
        }
