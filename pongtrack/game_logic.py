"""
Game logic for Pong Throw Tracker.
Handles per-throw scoring and release speed conversion.
"""

import math
import logging
from enum import IntEnum
from typing import Optional

from .classifier import ThrowType
from .geometry import Point

logger = logging.getLogger(__name__)


class Scoring(IntEnum):
    """Point values a throw can earn."""
    ZERO = 0
    ONE = 1
    TWO = 2
    FOUR = 4


# Meters per second to miles per hour (rounded, as shown to players)
MPS_TO_MPH = 2.24


class ScoreEngine:
    """
    Maps a finished throw to points.

    Policy is flat: trick shots earn four points, every other completed
    throw earns one. The landing location is accepted but not used.
    """

    TRICK_POINTS = Scoring.FOUR
    DEFAULT_POINTS = Scoring.ONE

    def score(self, final_location: Optional[Point], throw_type: ThrowType) -> Scoring:
        points = self.TRICK_POINTS if throw_type == ThrowType.TRICK else self.DEFAULT_POINTS
        logger.debug(f"Scored {throw_type.value} throw landing at {final_location}: {int(points)}")
        return points

    @classmethod
    def max_score(cls, max_throws: int) -> int:
        """Best possible session total."""
        return max_throws * int(cls.TRICK_POINTS)


def release_speed_mph(speed: float, meters_per_unit: Optional[float]) -> Optional[float]:
    """
    Convert a view-space speed to mph.

    Plain m/s to mph conversion kept to two decimals; no extra scale-down
    factor or whole-number rounding is applied.

    Returns None when the target calibration has not produced a scale.
    """
    if meters_per_unit is None or math.isnan(meters_per_unit) or meters_per_unit <= 0:
        return None
    return round(speed * meters_per_unit * MPS_TO_MPH, 2)
