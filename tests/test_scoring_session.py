"""
Tests for scoring, release speed and player stats.

Usage:
    pytest tests/test_scoring_session.py -v
"""

import sys
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pongtrack.classifier import ThrowType
from pongtrack.detectors import PoseObservation
from pongtrack.game_logic import Scoring, ScoreEngine, release_speed_mph
from pongtrack.geometry import Point
from pongtrack.session import PlayerStatsAccumulator, ThrowMetrics


class TestScoreEngine:

    @pytest.mark.parametrize("throw_type,expected", [
        (ThrowType.TRICK, Scoring.FOUR),
        (ThrowType.OVERHAND, Scoring.ONE),
        (ThrowType.NONE, Scoring.ONE),
    ])
    def test_flat_policy(self, throw_type, expected):
        assert ScoreEngine().score(Point(0.5, 0.5), throw_type) == expected

    def test_location_ignored(self):
        engine = ScoreEngine()

        assert engine.score(None, ThrowType.OVERHAND) == engine.score(Point(0.9, 0.1), ThrowType.OVERHAND)

    def test_max_score(self):
        assert ScoreEngine.max_score(6) == 24


class TestReleaseSpeed:

    def test_conversion(self):
        assert release_speed_mph(200.0, 0.01) == pytest.approx(4.48)

    def test_rounded_to_two_places(self):
        assert release_speed_mph(300.0, 0.0122) == 8.2

    def test_unscaled_with_decimals(self):
        # 1000 units/s at 1 cm per unit is 10 m/s
        assert release_speed_mph(1000.0, 0.01) == pytest.approx(22.4)
        assert release_speed_mph(1001.0, 0.01) == pytest.approx(22.42)

    @pytest.mark.parametrize("meters_per_unit", [None, 0.0, -1.0, float("nan")])
    def test_uncalibrated(self, meters_per_unit):
        assert release_speed_mph(200.0, meters_per_unit) is None


class TestPlayerStatsAccumulator:

    def test_adjust_metrics(self):
        acc = PlayerStatsAccumulator()
        acc.adjust_metrics(Scoring.FOUR, 300.0, ThrowType.TRICK)
        acc.adjust_metrics(Scoring.ONE, 100.0, ThrowType.OVERHAND)

        assert acc.stats.total_score == 5
        assert acc.stats.throw_count == 2
        assert acc.stats.trick_count == 1
        assert acc.stats.overhand_count == 1
        assert acc.stats.average_speed == pytest.approx(200.0)
        assert acc.stats.release_speeds == []
        assert acc.stats.average_release_speed_mph is None

    def test_release_speeds_kept_when_calibrated(self):
        acc = PlayerStatsAccumulator()
        acc.adjust_metrics(Scoring.FOUR, 300.0, ThrowType.TRICK, release_speed_mph=8.2)
        acc.adjust_metrics(Scoring.ONE, 100.0, ThrowType.NONE, release_speed_mph=None)
        acc.adjust_metrics(Scoring.ONE, 200.0, ThrowType.OVERHAND, release_speed_mph=5.4)

        assert acc.stats.speeds == [300.0, 100.0, 200.0]
        assert acc.stats.release_speeds == [8.2, 5.4]
        assert acc.stats.average_release_speed_mph == pytest.approx(6.8)

        acc.reset()
        data = acc.to_dict()

        assert data["release_speeds_mph"] == [8.2, 5.4]
        assert data["average_release_speed_mph"] == pytest.approx(6.8)

    def test_session_complete_after_max_throws(self):
        acc = PlayerStatsAccumulator(max_throws=6)
        for _ in range(5):
            acc.adjust_metrics(Scoring.ONE, 10.0, ThrowType.NONE)
        assert not acc.is_session_complete

        acc.adjust_metrics(Scoring.ONE, 10.0, ThrowType.NONE)
        assert acc.is_session_complete
        assert acc.stats.throw_count == 6

    def test_reset_keeps_speeds_and_paths(self):
        acc = PlayerStatsAccumulator()
        acc.adjust_metrics(Scoring.FOUR, 300.0, ThrowType.TRICK)
        acc.store_path([Point(1, 2), Point(3, 4)])
        acc.store_observation(PoseObservation(joints={}, confidence=0.9))

        acc.reset()

        assert acc.stats.total_score == 0
        assert acc.stats.throw_count == 0
        assert acc.stats.trick_count == 0
        assert len(acc.pose_history) == 0
        assert acc.stats.speeds == [300.0]
        assert len(acc.stats.paths) == 1

    def test_reset_observations_only(self):
        acc = PlayerStatsAccumulator()
        acc.adjust_metrics(Scoring.ONE, 50.0, ThrowType.OVERHAND)
        acc.store_observation(PoseObservation(joints={}, confidence=0.9))

        acc.reset_observations()

        assert len(acc.pose_history) == 0
        assert acc.stats.throw_count == 1

    def test_to_dict(self):
        acc = PlayerStatsAccumulator()
        acc.adjust_metrics(Scoring.ONE, 12.346, ThrowType.OVERHAND)
        data = acc.to_dict()

        assert data["total_score"] == 1
        assert data["max_throws"] == 6
        assert data["speeds"] == [12.35]


class TestThrowMetrics:

    def test_defaults(self):
        metrics = ThrowMetrics()

        assert metrics.score == Scoring.ZERO
        assert metrics.throw_type == ThrowType.NONE
        assert metrics.release_speed_mph is None

    def test_to_dict(self):
        metrics = ThrowMetrics(
            score=Scoring.FOUR,
            speed=300.0,
            release_speed_mph=8.2,
            throw_type=ThrowType.TRICK,
            final_location=Point(0.4, 0.7)
        )

        assert metrics.to_dict() == {
            "score": 4,
            "speed": 300.0,
            "release_speed_mph": 8.2,
            "throw_type": "Trick",
            "final_location": [0.4, 0.7],
        }
