"""
Target calibration for Pong Throw Tracker.

Walks the setup sub-stages (find target, check placement, wait for a still
scene, measure the target edge) and produces the target region plus the
physical scale used for release speeds. Any missing input keeps the current
sub-stage so the next frame retries.
"""

import math
import logging
from typing import Optional, Tuple, List
from dataclasses import dataclass
from enum import Enum

from .detectors import FrameDetections, TargetDetection
from .geometry import Rect, normalized_rect_to_view

logger = logging.getLogger(__name__)


class SetupStage(Enum):
    """Setup sub-stages while the game is DETECTING_TARGET."""
    DETECTING_TARGET = "DETECTING_TARGET"
    DETECTING_PLACEMENT = "DETECTING_PLACEMENT"
    DETECTING_STABILITY = "DETECTING_STABILITY"
    DETECTING_CONTOURS = "DETECTING_CONTOURS"
    SETUP_COMPLETE = "SETUP_COMPLETE"


class SceneStability(Enum):
    UNKNOWN = "UNKNOWN"
    STABLE = "STABLE"
    UNSTABLE = "UNSTABLE"


@dataclass
class TargetCalibration:
    """Result of a finished setup."""
    target_region: Rect          # view space
    normalized_box: Rect
    meters_per_unit: float       # real length / view length


class TargetCalibrator:
    """
    Setup sub-stage machine.

    DETECTING_TARGET -> DETECTING_PLACEMENT once a confident target is seen,
    -> DETECTING_STABILITY once it sits inside the guide box,
    -> DETECTING_CONTOURS once the scene holds still (or back to placement
       if it moved), -> SETUP_COMPLETE once the rim edge is measured.
    """

    MIN_TARGET_CONFIDENCE = 0.6
    GUIDE_RECT = Rect(0.7, 0.3, 0.28, 0.3)
    STABILITY_HISTORY_LENGTH = 15
    STABILITY_THRESHOLD = 10.0
    TABLE_LENGTH_M = 1.22

    def __init__(
        self,
        view_size: Tuple[float, float] = (1920.0, 1080.0),
        min_target_confidence: Optional[float] = None,
        guide_rect: Optional[Rect] = None,
        stability_history_length: Optional[int] = None,
        stability_threshold: Optional[float] = None,
        table_length_m: Optional[float] = None
    ):
        self.view_size = view_size

        if min_target_confidence is not None:
            self.MIN_TARGET_CONFIDENCE = min_target_confidence
        if guide_rect is not None:
            self.GUIDE_RECT = guide_rect
        if stability_history_length is not None:
            self.STABILITY_HISTORY_LENGTH = stability_history_length
        if stability_threshold is not None:
            self.STABILITY_THRESHOLD = stability_threshold
        if table_length_m is not None:
            self.TABLE_LENGTH_M = table_length_m

        self._stage = SetupStage.DETECTING_TARGET
        self._target: Optional[TargetDetection] = None
        self._translations: List[Tuple[float, float]] = []
        self._calibration: Optional[TargetCalibration] = None

    def process(self, detections: FrameDetections) -> Optional[TargetCalibration]:
        """
        Advance setup with one frame.

        Returns:
            TargetCalibration on the frame that completes setup, else None
        """
        if self._stage == SetupStage.SETUP_COMPLETE:
            return None

        if self._stage in (SetupStage.DETECTING_TARGET, SetupStage.DETECTING_PLACEMENT):
            self._detect_target(detections)
        elif self._stage == SetupStage.DETECTING_STABILITY:
            self._check_stability(detections)
        elif self._stage == SetupStage.DETECTING_CONTOURS:
            return self._measure_target(detections)
        return None

    def _best_target(self, detections: FrameDetections) -> Optional[TargetDetection]:
        candidates = [t for t in detections.targets if t.confidence > self.MIN_TARGET_CONFIDENCE]
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.confidence)

    def _detect_target(self, detections: FrameDetections):
        target = self._best_target(detections)
        if target is None:
            if self._stage != SetupStage.DETECTING_TARGET:
                logger.info("Target lost, locating again")
            self._stage = SetupStage.DETECTING_TARGET
            return

        self._target = target
        self._stage = SetupStage.DETECTING_PLACEMENT

        target_view = normalized_rect_to_view(target.box, self.view_size)
        guide_view = normalized_rect_to_view(self.GUIDE_RECT, self.view_size)
        if guide_view.contains_rect(target_view):
            logger.info("Target placed inside guide, waiting for a still scene")
            self._translations.clear()
            self._stage = SetupStage.DETECTING_STABILITY
        else:
            logger.debug(f"Target outside guide: {target.box}")

    @property
    def scene_stability(self) -> SceneStability:
        if len(self._translations) <= self.STABILITY_HISTORY_LENGTH:
            return SceneStability.UNKNOWN
        sum_x = sum(t[0] for t in self._translations)
        sum_y = sum(t[1] for t in self._translations)
        drift = abs(sum_x) + abs(sum_y)
        return SceneStability.STABLE if drift < self.STABILITY_THRESHOLD else SceneStability.UNSTABLE

    def _check_stability(self, detections: FrameDetections):
        if detections.translation is not None:
            self._translations.append(detections.translation)

        stability = self.scene_stability
        if stability == SceneStability.UNSTABLE:
            logger.info("Scene moved during setup, checking placement again")
            self._translations.clear()
            self._stage = SetupStage.DETECTING_PLACEMENT
        elif stability == SceneStability.STABLE:
            logger.info("Scene stable, measuring target")
            self._stage = SetupStage.DETECTING_CONTOURS

    def _measure_target(self, detections: FrameDetections) -> Optional[TargetCalibration]:
        target = self._best_target(detections)
        if target is not None and target.edge_size is not None:
            self._target = target
        elif self._target is None or self._target.edge_size is None:
            logger.debug("No usable target contour this frame")
            return None

        target_view = normalized_rect_to_view(self._target.box, self.view_size)
        edge_w, edge_h = self._target.edge_size
        target_length = math.hypot(edge_w * target_view.width, edge_h * target_view.height)
        if target_length <= 0:
            logger.debug("Degenerate target edge, retrying")
            return None

        self._calibration = TargetCalibration(
            target_region=target_view,
            normalized_box=self._target.box,
            meters_per_unit=self.TABLE_LENGTH_M / target_length
        )
        self._stage = SetupStage.SETUP_COMPLETE
        logger.info(
            f"Target calibrated: region={target_view.as_list()}, "
            f"meters_per_unit={self._calibration.meters_per_unit:.5f}"
        )
        return self._calibration

    def reset(self):
        self._stage = SetupStage.DETECTING_TARGET
        self._target = None
        self._translations.clear()
        self._calibration = None
        logger.info("Calibrator reset")

    @property
    def stage(self) -> SetupStage:
        return self._stage

    @property
    def calibration(self) -> Optional[TargetCalibration]:
        return self._calibration

    @property
    def is_calibrated(self) -> bool:
        return self._calibration is not None
