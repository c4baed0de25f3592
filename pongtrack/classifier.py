"""
Throw classification for Pong Throw Tracker.

The action model itself is an external capability. This module prepares its
fixed-length pose window, maps its label onto a ThrowType, and contains all
of its failures.
"""

import logging
from typing import Optional, List, Protocol
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .detectors import PoseObservation
from .pose import KEYPOINT_SHAPE, keypoints_array

logger = logging.getLogger(__name__)


class ThrowType(Enum):
    """Closed set of throw styles."""
    OVERHAND = "Overhand"
    TRICK = "Trick"
    NONE = "None"


WINDOW_LENGTH = 90


@dataclass
class Prediction:
    """Action model output."""
    label: str
    confidence: float = 0.0


class ActionClassifier(Protocol):
    """Any model mapping a (90, 3, 18) pose window to a label."""

    def predict(self, poses: np.ndarray) -> Prediction:
        ...


def prepare_input(
    observations: List[PoseObservation],
    window_length: int = WINDOW_LENGTH
) -> np.ndarray:
    """
    Build the classifier window.

    Uses at most window_length observations in chronological order and pads
    the remainder with zero frames, so the result always has
    window_length frames.
    """
    window = np.zeros((window_length,) + KEYPOINT_SHAPE, dtype=np.float32)
    for index, observation in enumerate(observations[:window_length]):
        window[index] = keypoints_array(observation)
    return window


class ThrowClassifier:
    """Single-shot, failure-contained mapping from pose history to ThrowType."""

    def __init__(self, model: Optional[ActionClassifier] = None, window_length: int = WINDOW_LENGTH):
        self.model = model
        self.window_length = window_length

    def classify(self, observations: List[PoseObservation]) -> ThrowType:
        if self.model is None:
            return ThrowType.NONE

        try:
            poses = prepare_input(observations, self.window_length)
            prediction = self.model.predict(poses)
            throw_type = ThrowType(prediction.label.capitalize())
        except ValueError:
            logger.warning("Classifier returned an unknown throw label")
            return ThrowType.NONE
        except Exception as e:
            logger.warning(f"Throw classification failed: {e}")
            return ThrowType.NONE

        logger.info(
            f"Throw classified as {throw_type.value} "
            f"(confidence={prediction.confidence:.2f}, frames={len(observations)})"
        )
        return throw_type


class ArmRaiseClassifier:
    """
    Rule-based stand-in for the action model.

    Labels the window "overhand" when the right wrist is above the right
    shoulder (normalized y grows upward) in at least min_raised_frames
    frames where both joints are confident.
    """

    # Column indices in the keypoint frame
    RIGHT_SHOULDER = 6
    RIGHT_WRIST = 10

    def __init__(self, min_raised_frames: int = 3, min_joint_confidence: float = 0.1):
        self.min_raised_frames = min_raised_frames
        self.min_joint_confidence = min_joint_confidence

    def predict(self, poses: np.ndarray) -> Prediction:
        shoulder = poses[:, :, self.RIGHT_SHOULDER]
        wrist = poses[:, :, self.RIGHT_WRIST]

        visible = (shoulder[:, 2] > self.min_joint_confidence) & (wrist[:, 2] > self.min_joint_confidence)
        raised = visible & (wrist[:, 1] > shoulder[:, 1])

        visible_count = int(np.count_nonzero(visible))
        raised_count = int(np.count_nonzero(raised))

        if raised_count >= self.min_raised_frames:
            return Prediction(label="overhand", confidence=raised_count / max(visible_count, 1))
        return Prediction(label="none", confidence=1.0 - raised_count / max(visible_count, 1))
