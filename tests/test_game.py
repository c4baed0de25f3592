"""
End-to-end tests for GameSession: setup, player detection, six throws and
the summary, driven by synthetic detections on a 1000x1000 view.

Usage:
    pytest tests/test_game.py -v
"""

import sys
import threading
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pongtrack.calibration import TargetCalibrator
from pongtrack.classifier import Prediction, ThrowType
from pongtrack.config import Config
from pongtrack.detectors import (
    FrameDetections, PoseObservation, PoseJoint, TargetDetection, TrajectorySample
)
from pongtrack.game import GameSession
from pongtrack.game_logic import Scoring
from pongtrack.game_state import GameStage
from pongtrack.geometry import Point, Rect


TARGET_BOX = Rect(0.75, 0.35, 0.1, 0.1)


class FixedModel:

    def __init__(self, label):
        self.label = label

    def predict(self, poses):
        return Prediction(label=self.label, confidence=0.9)


def make_config():
    config = Config()
    config.camera.view_width = 1000
    config.camera.view_height = 1000
    return config


def frame(poses=(), trajectories=(), targets=(), translation=None):
    return FrameDetections(
        frame_id=0,
        timestamp_ns=0,
        poses=list(poses),
        trajectories=list(trajectories),
        targets=list(targets),
        translation=translation
    )


def player_pose():
    # Normalized box (0.1, 0.3, 0.1, 0.5) -> view (100, 200, 100, 500)
    return PoseObservation(
        joints={
            "right_wrist": PoseJoint(Point(0.1, 0.3), 0.9),
            "right_shoulder": PoseJoint(Point(0.2, 0.8), 0.9),
        },
        confidence=0.9
    )


def throw_sample():
    # View (250, 300) -> (400, 300), inside the throw region right of the player
    return TrajectorySample.from_locations(
        [(0.25, 0.7), (0.4, 0.7)], duration=0.5, confidence=0.95
    )


def calibrate(session):
    session.process_frame(frame(targets=[TargetDetection(TARGET_BOX, 0.8, (1.0, 0.0))]))
    for _ in range(TargetCalibrator.STABILITY_HISTORY_LENGTH + 1):
        session.process_frame(frame(translation=(0.0, 0.0)))
    session.process_frame(frame())


def ready_session(model=None):
    session = GameSession(config=make_config(), action_classifier=model)
    session.start()
    session.process_frame(frame())
    calibrate(session)
    session.process_frame(frame(poses=[player_pose()]))
    return session


def play_throw(session):
    """One accepted sample followed by silence until the throw completes."""
    results = [session.process_frame(frame(trajectories=[throw_sample()]))]
    for _ in range(21):
        results.append(session.process_frame(frame()))
    return [r for r in results if r is not None]


class TestSetup:

    def test_start_enters_camera_setup(self):
        session = GameSession(config=make_config())
        assert session.start()
        assert session.stage == GameStage.SETUP_CAMERA

    def test_first_frame_starts_target_detection(self):
        session = GameSession(config=make_config())
        session.start()
        session.process_frame(frame())

        assert session.stage == GameStage.DETECTING_TARGET

    def test_inactive_ignores_frames(self):
        session = GameSession(config=make_config())
        session.process_frame(frame(poses=[player_pose()]))

        assert session.stage == GameStage.INACTIVE

    def test_calibration_chains_to_player_detection(self):
        session = GameSession(config=make_config())
        stages = []
        session.add_observer(lambda stage, previous: stages.append(stage))
        session.start()
        session.process_frame(frame())
        calibrate(session)

        assert stages == [
            GameStage.SETUP_CAMERA,
            GameStage.DETECTING_TARGET,
            GameStage.DETECTED_TARGET,
            GameStage.DETECTING_PLAYER,
        ]
        assert session.calibration is not None
        assert session.calibration.meters_per_unit == pytest.approx(0.0122)

    def test_player_detection_starts_tracking(self):
        session = ready_session()

        assert session.stage == GameStage.TRACKING_THROWS
        assert session.regions.throw_region == Rect(
            pytest.approx(225.0), 0.0, 200.0, pytest.approx(670.0)
        )
        assert session.regions.target_region is not None
        assert session.accumulator.roi == session.regions.throw_region

    def test_low_confidence_pose_ignored(self):
        session = GameSession(config=make_config())
        session.start()
        session.process_frame(frame())
        calibrate(session)

        weak = player_pose()
        weak.confidence = 0.5
        session.process_frame(frame(poses=[weak]))

        assert session.stage == GameStage.DETECTING_PLAYER


class TestThrows:

    def test_single_throw(self):
        session = ready_session(model=FixedModel("trick"))

        completed = play_throw(session)

        assert len(completed) == 1
        metrics = completed[0]
        assert metrics.score == Scoring.FOUR
        assert metrics.throw_type == ThrowType.TRICK
        assert metrics.speed == pytest.approx(300.0)
        assert metrics.release_speed_mph == pytest.approx(8.2)
        assert session.stats.stats.throw_count == 1
        assert session.stage == GameStage.TRACKING_THROWS

    def test_stats_updated_before_observers(self):
        session = ready_session()
        seen = []

        def observer(stage, previous):
            if stage == GameStage.THROW_COMPLETED:
                seen.append(session.stats.stats.throw_count)

        session.add_observer(observer)
        play_throw(session)

        assert seen == [1]

    def test_stats_keep_calibrated_release_speed(self):
        session = ready_session()
        play_throw(session)
        play_throw(session)

        stats = session.stats.stats
        assert stats.speeds == [pytest.approx(300.0), pytest.approx(300.0)]
        assert stats.release_speeds == [pytest.approx(8.2), pytest.approx(8.2)]
        assert session.snapshot()["stats"]["average_release_speed_mph"] == pytest.approx(8.2)

    def test_default_classifier_scores_one(self):
        session = ready_session()
        metrics = play_throw(session)[0]

        assert metrics.throw_type == ThrowType.NONE
        assert metrics.score == Scoring.ONE

    def test_six_throws_reach_summary(self):
        session = ready_session(model=FixedModel("trick"))
        for _ in range(6):
            assert len(play_throw(session)) == 1

        assert session.stage == GameStage.SHOW_SUMMARY
        assert session.stats.stats.throw_count == 6
        assert session.stats.stats.total_score == 24
        assert len(session.stats.stats.paths) == 6

    def test_summary_ignores_trajectories(self):
        session = ready_session()
        session.show_summary()

        assert play_throw(session) == []
        assert session.stage == GameStage.SHOW_SUMMARY

    def test_pose_history_cleared_after_throw(self):
        session = ready_session()
        session.process_frame(frame(poses=[player_pose()]))
        assert len(session.stats.pose_history) == 1

        play_throw(session)

        assert len(session.stats.pose_history) == 0


class TestSessionControl:

    def test_show_summary_needs_tracking(self):
        session = GameSession(config=make_config())
        session.start()

        assert session.show_summary() is False
        assert session.stage == GameStage.SETUP_CAMERA

    def test_reset_returns_to_inactive(self):
        session = ready_session(model=FixedModel("overhand"))
        play_throw(session)

        session.reset()

        assert session.stage == GameStage.INACTIVE
        assert session.stats.stats.total_score == 0
        assert session.stats.stats.throw_count == 0
        assert session.calibration is None
        assert not session.accumulator.in_flight

    def test_reset_mid_flight(self):
        session = ready_session()
        session.process_frame(frame(trajectories=[throw_sample()]))
        assert session.accumulator.in_flight

        session.reset()

        assert not session.accumulator.in_flight
        assert session.stage == GameStage.INACTIVE

    def test_play_again_after_summary(self):
        session = ready_session(model=FixedModel("trick"))
        play_throw(session)
        session.show_summary()

        assert session.play_again()
        assert session.stage == GameStage.DETECTING_PLAYER

        session.process_frame(frame(poses=[player_pose()]))

        assert session.stage == GameStage.TRACKING_THROWS
        assert session.stats.stats.total_score == 0
        assert session.stats.stats.speeds == [pytest.approx(300.0)]

    def test_play_again_needs_summary(self):
        session = ready_session()

        assert session.play_again() is False
        assert session.stage == GameStage.TRACKING_THROWS

    def test_stop_drops_in_flight_throw(self):
        session = ready_session()
        session.process_frame(frame(trajectories=[throw_sample()]))

        session.stop()

        assert not session.accumulator.in_flight
        assert session.stage == GameStage.TRACKING_THROWS

    def test_snapshot(self):
        session = ready_session()
        snapshot = session.snapshot()

        assert snapshot["stage"] == "TRACKING_THROWS"
        assert snapshot["calibrated"] is True
        assert snapshot["stats"]["throw_count"] == 0
        assert snapshot["max_score"] == 24

    def test_snapshot_player(self):
        session = ready_session()
        player = session.snapshot()["player"]

        assert player["region"] == [pytest.approx(80.0), pytest.approx(180.0), pytest.approx(140.0), pytest.approx(540.0)]
        assert set(player["joints"]) == {"right_wrist", "right_shoulder"}
        # No elbow in the synthetic pose
        assert player["arm_angle"] is None

    def test_snapshot_before_player(self):
        session = GameSession(config=make_config())

        assert session.snapshot()["player"] is None


class TestConcurrency:

    def test_reset_while_worker_feeds_frames(self):
        session = ready_session()
        fed = threading.Event()
        done = threading.Event()
        errors = []

        def worker():
            try:
                while not done.is_set():
                    session.process_frame(frame(trajectories=[throw_sample()]))
                    fed.set()
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        assert fed.wait(timeout=5.0)

        session.reset()
        done.set()
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert errors == []
        assert session.stage == GameStage.INACTIVE
        assert not session.accumulator.in_flight
        assert session.accumulator.path == []
        assert session.stats.stats.throw_count == 0
        assert session.stats.stats.release_speeds == []
