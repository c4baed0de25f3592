"""
Game session coordinator for Pong Throw Tracker.

GameSession is the single owner of mutable game state: the stage machine,
the trajectory accumulator, player stats and calibration. Detection results
may arrive from any thread; every mutation happens under one lock.

Stage side effects are applied here, just before the stage is entered, so
observers always see the updated state. Follow-up stages (for example
DETECTED_PLAYER -> TRACKING_THROWS) are entered by sequential calls in
_advance rather than from inside observer callbacks.
"""

import logging
import threading
from typing import Optional, List

from .calibration import TargetCalibrator, TargetCalibration
from .classifier import ThrowClassifier, ActionClassifier, ArmRaiseClassifier
from .config import Config
from .detectors import FrameDetections, PoseObservation, TrajectorySample
from .game_logic import ScoreEngine, release_speed_mph
from .game_state import GameStage, GameStateMachine, ObserverLike
from .geometry import Rect, ZERO_POINT, angle_from_horizontal, normalized_rect_to_view, normalized_to_view
from .pose import arm_joints, bounding_box, joints_of_interest
from .session import PlayerStatsAccumulator, ThrowMetrics
from .trajectory import TrajectoryAccumulator, CompletedThrow, Regions, compute_regions

logger = logging.getLogger(__name__)


class GameSession:
    """Drives one game from camera setup to the throw summary."""

    def __init__(
        self,
        config: Optional[Config] = None,
        action_classifier: Optional[ActionClassifier] = None,
        score_engine: Optional[ScoreEngine] = None
    ):
        self.config = config or Config()
        cfg = self.config

        self.view_size = (float(cfg.camera.view_width), float(cfg.camera.view_height))

        self._lock = threading.RLock()
        self.state_machine = GameStateMachine()
        self.accumulator = TrajectoryAccumulator(
            view_size=self.view_size,
            min_confidence=cfg.tracker.min_trajectory_confidence,
            max_displacement=cfg.tracker.max_displacement,
            frame_limit=cfg.tracker.frame_limit,
            overlap_window_buffer=cfg.tracker.overlap_window_buffer
        )
        self.calibrator = TargetCalibrator(
            view_size=self.view_size,
            min_target_confidence=cfg.calibration.min_target_confidence,
            guide_rect=Rect(*cfg.calibration.guide_rect),
            stability_history_length=cfg.calibration.stability_history_length,
            stability_threshold=cfg.calibration.stability_threshold,
            table_length_m=cfg.game.table_length_m
        )
        self.throw_classifier = ThrowClassifier(
            model=action_classifier if action_classifier is not None else ArmRaiseClassifier(),
            window_length=cfg.pose.max_observations
        )
        self.score_engine = score_engine or ScoreEngine()

        self._stats = self._new_stats()
        self._calibration: Optional[TargetCalibration] = None
        self._player_region: Optional[Rect] = None
        self._player_pose: Optional[PoseObservation] = None
        self._regions = Regions()
        self._in_flight_pose_observations = 0
        self._last_metrics = ThrowMetrics()

    def _new_stats(self) -> PlayerStatsAccumulator:
        return PlayerStatsAccumulator(
            max_throws=self.config.game.max_throws,
            max_pose_observations=self.config.pose.max_observations
        )

    # Observers

    def add_observer(self, observer: ObserverLike):
        with self._lock:
            self.state_machine.add_observer(observer)

    def remove_observer(self, observer: ObserverLike) -> bool:
        with self._lock:
            return self.state_machine.remove_observer(observer)

    # Entry points

    def start(self) -> bool:
        """Begin camera setup."""
        with self._lock:
            return self._advance(GameStage.SETUP_CAMERA)

    def process_frame(self, detections: FrameDetections) -> Optional[ThrowMetrics]:
        """
        Apply one frame of detections.

        Returns:
            ThrowMetrics when this frame completed a throw, else None
        """
        with self._lock:
            stage = self.state_machine.stage

            if stage == GameStage.SETUP_CAMERA:
                # First delivered frame proves the camera is live
                self._advance(GameStage.DETECTING_TARGET)
            elif stage == GameStage.DETECTING_TARGET:
                calibration = self.calibrator.process(detections)
                if calibration is not None:
                    self._calibration = calibration
                    self._advance(GameStage.DETECTED_TARGET)
            elif stage in (GameStage.DETECTING_PLAYER, GameStage.TRACKING_THROWS):
                self._process_poses(detections.poses)
                if self.state_machine.stage == GameStage.TRACKING_THROWS:
                    return self._process_trajectories(detections.trajectories)
            return None

    def show_summary(self) -> bool:
        """Jump to the summary (player asked to stop early)."""
        with self._lock:
            return self._advance(GameStage.SHOW_SUMMARY)

    def play_again(self) -> bool:
        """From the summary, look for the next player with the same calibration."""
        with self._lock:
            return self._advance(GameStage.DETECTING_PLAYER)

    def stop(self):
        """Drop any in-progress throw; used when the camera worker stops."""
        with self._lock:
            self.accumulator.reset(self._regions.throw_region, self._regions.target_region)
            self._stats.reset_observations()
            self._in_flight_pose_observations = 0
            logger.info("In-progress tracking dropped")

    def reset(self):
        """Clear all session state and return to INACTIVE."""
        with self._lock:
            self._stats = self._new_stats()
            self.accumulator.reset()
            self.calibrator.reset()
            self._calibration = None
            self._player_region = None
            self._player_pose = None
            self._regions = Regions()
            self._in_flight_pose_observations = 0
            self._last_metrics = ThrowMetrics()
            self._advance(GameStage.INACTIVE)
            logger.info("Game session reset")

    # Frame processing

    def _process_poses(self, poses: List[PoseObservation]):
        pose_cfg = self.config.pose
        tracking = self.state_machine.stage == GameStage.TRACKING_THROWS

        # Enough arm frames for this throw; skip pose work until the ball lands
        if self.accumulator.in_flight and \
                self._in_flight_pose_observations >= pose_cfg.max_in_flight_observations:
            return
        if not poses:
            return

        observation = poses[0]
        box = bounding_box(
            observation,
            min_observation_confidence=pose_cfg.min_observation_confidence,
            min_joint_confidence=pose_cfg.min_joint_confidence
        )
        if box is None:
            return

        if tracking:
            self._stats.store_observation(observation)
            if self.accumulator.in_flight:
                self._in_flight_pose_observations += 1

        self._player_pose = observation
        inset = pose_cfg.player_box_inset
        self._player_region = normalized_rect_to_view(box, self.view_size).inset(inset, inset)
        self._regions = self._compute_regions()

        if self.state_machine.stage == GameStage.DETECTING_PLAYER:
            logger.info(f"Player detected at {self._player_region.as_list()}")
            self._advance(GameStage.DETECTED_PLAYER)
        elif tracking:
            self.accumulator.update_regions(self._regions.throw_region, self._regions.target_region)

    def _process_trajectories(self, samples: List[TrajectorySample]) -> Optional[ThrowMetrics]:
        completed = self.accumulator.process(samples)
        if completed is None:
            return None
        return self._complete_throw(completed)

    def _complete_throw(self, completed: CompletedThrow) -> ThrowMetrics:
        self._stats.store_path(completed.path)

        throw_type = self.throw_classifier.classify(self._stats.pose_history.observations())
        score = self.score_engine.score(completed.final_location, throw_type)
        meters_per_unit = self._calibration.meters_per_unit if self._calibration else None

        self._last_metrics = ThrowMetrics(
            score=score,
            speed=completed.speed,
            release_speed_mph=release_speed_mph(completed.speed, meters_per_unit),
            throw_type=throw_type,
            final_location=completed.final_location
        )
        self._advance(GameStage.THROW_COMPLETED)
        return self._last_metrics

    def _compute_regions(self) -> Regions:
        tracker_cfg = self.config.tracker
        target_box = self._calibration.target_region if self._calibration else None
        return compute_regions(
            self._player_region,
            target_box,
            throw_window_x_buffer=tracker_cfg.throw_window_x_buffer,
            throw_window_y_buffer=tracker_cfg.throw_window_y_buffer,
            throw_region_width=tracker_cfg.throw_region_width,
            target_window_x_buffer=tracker_cfg.target_window_x_buffer
        )

    # Stage transitions

    def _advance(self, stage: Optional[GameStage]) -> bool:
        """Enter stage and any chained follow-ups, one after another."""
        entered = False
        while stage is not None:
            if not self.state_machine.can_enter(stage):
                logger.debug(f"Cannot enter {stage.value} from {self.state_machine.stage.value}")
                return entered
            follow_up = self._apply_stage_effects(stage)
            self.state_machine.enter(stage)
            entered = True
            stage = follow_up
        return entered

    def _apply_stage_effects(self, stage: GameStage) -> Optional[GameStage]:
        """Mutate owned state for a stage about to be entered; return the chained stage."""
        if stage == GameStage.DETECTED_TARGET:
            return GameStage.DETECTING_PLAYER

        if stage == GameStage.DETECTING_PLAYER:
            self._in_flight_pose_observations = 0
            return None

        if stage == GameStage.DETECTED_PLAYER:
            self._stats.reset()
            return GameStage.TRACKING_THROWS

        if stage == GameStage.TRACKING_THROWS:
            self._regions = self._compute_regions()
            self.accumulator.reset(self._regions.throw_region, self._regions.target_region)
            self._in_flight_pose_observations = 0
            return None

        if stage == GameStage.THROW_COMPLETED:
            metrics = self._last_metrics
            self._stats.adjust_metrics(
                metrics.score, metrics.speed, metrics.throw_type, metrics.release_speed_mph
            )
            self._stats.reset_observations()
            self._in_flight_pose_observations = 0
            if self._stats.is_session_complete:
                return GameStage.SHOW_SUMMARY
            return GameStage.TRACKING_THROWS

        if stage == GameStage.SHOW_SUMMARY:
            self.accumulator.reset(self._regions.throw_region, self._regions.target_region)
            self._stats.reset_observations()
            return None

        return None

    # Read-only views

    @property
    def stage(self) -> GameStage:
        return self.state_machine.stage

    @property
    def stats(self) -> PlayerStatsAccumulator:
        return self._stats

    @property
    def last_metrics(self) -> ThrowMetrics:
        return self._last_metrics

    @property
    def calibration(self) -> Optional[TargetCalibration]:
        return self._calibration

    @property
    def regions(self) -> Regions:
        return self._regions

    @property
    def max_score(self) -> int:
        return self.score_engine.max_score(self.config.game.max_throws)

    def _player_snapshot(self) -> Optional[dict]:
        """Player box, throwing-arm joints (view space) and forearm angle."""
        if self._player_pose is None or self._player_region is None:
            return None

        min_confidence = self.config.pose.min_joint_confidence
        joints = {
            name: list(normalized_to_view(location, self.view_size).as_tuple())
            for name, location in joints_of_interest(self._player_pose, min_confidence).items()
        }

        arm_angle = None
        elbow, wrist = arm_joints(self._player_pose, min_confidence)
        if elbow != ZERO_POINT and wrist != ZERO_POINT:
            arm_angle = angle_from_horizontal(
                normalized_to_view(elbow, self.view_size),
                normalized_to_view(wrist, self.view_size)
            )

        return {
            "region": self._player_region.as_list(),
            "joints": joints,
            "arm_angle": arm_angle,
        }

    def snapshot(self) -> dict:
        """State for the UI surface."""
        with self._lock:
            tracker = self.accumulator.get_state()
            return {
                "player": self._player_snapshot(),
                "stage": self.state_machine.stage.value,
                "setup_stage": self.calibrator.stage.value,
                "in_flight": self.accumulator.in_flight,
                "roi": tracker.roi.as_list() if tracker.roi else None,
                "throw_region": self._regions.throw_region.as_list() if self._regions.throw_region else None,
                "target_region": self._regions.target_region.as_list() if self._regions.target_region else None,
                "calibrated": self._calibration is not None,
                "max_score": self.max_score,
                "last_throw": self._last_metrics.to_dict(),
                "stats": self._stats.to_dict(),
            }
