"""
Body pose handling for Pong Throw Tracker.
Bounded pose history plus helpers that turn pose detections into player
boxes, arm joints and classifier keypoint frames.
"""

import logging
from typing import Optional, List, Dict, Tuple
from collections import deque

import numpy as np

from .detectors import PoseObservation
from .geometry import Point, Rect, ZERO_POINT, bounding_rect

logger = logging.getLogger(__name__)


# Keypoint order used for classifier input frames (one column per joint)
JOINT_NAMES = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
    "neck",
)

# Throwing arm joints drawn for the player
JOINTS_OF_INTEREST = ("right_wrist", "right_elbow", "right_shoulder", "right_hip")

KEYPOINT_SHAPE = (3, len(JOINT_NAMES))


class PoseHistoryBuffer:
    """FIFO of the most recent pose observations; the oldest is evicted at capacity."""

    DEFAULT_CAPACITY = 90

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._observations: deque[PoseObservation] = deque(maxlen=capacity)

    def store(self, observation: PoseObservation):
        self._observations.append(observation)

    def reset(self):
        self._observations.clear()

    def observations(self) -> List[PoseObservation]:
        """Chronological copy of the buffered observations."""
        return list(self._observations)

    def __len__(self) -> int:
        return len(self._observations)

    @property
    def is_full(self) -> bool:
        return len(self._observations) >= self.capacity


def joints_of_interest(
    observation: PoseObservation,
    min_confidence: float = 0.1
) -> Dict[str, Point]:
    """Confident throwing-arm joints keyed by name."""
    return {
        name: joint.location
        for name, joint in observation.joints.items()
        if name in JOINTS_OF_INTEREST and joint.confidence > min_confidence
    }


def arm_joints(observation: PoseObservation, min_confidence: float = 0.1) -> Tuple[Point, Point]:
    """(right elbow, right wrist); a zero point stands in for a missing joint."""
    elbow = ZERO_POINT
    wrist = ZERO_POINT
    for name, joint in observation.joints.items():
        if joint.confidence <= min_confidence:
            continue
        if name == "right_elbow":
            elbow = joint.location
        elif name == "right_wrist":
            wrist = joint.location
    return elbow, wrist


def bounding_box(
    observation: PoseObservation,
    min_observation_confidence: float = 0.6,
    min_joint_confidence: float = 0.1
) -> Optional[Rect]:
    """
    Normalized box around the confident joints.

    Returns None when the observation itself is not confident enough or has
    no usable joints.
    """
    if observation.confidence <= min_observation_confidence:
        return None
    return bounding_rect(
        joint.location
        for joint in observation.joints.values()
        if joint.confidence > min_joint_confidence
    )


def keypoints_array(observation: PoseObservation) -> np.ndarray:
    """One classifier frame: rows x, y, confidence; columns follow JOINT_NAMES."""
    frame = np.zeros(KEYPOINT_SHAPE, dtype=np.float32)
    for column, name in enumerate(JOINT_NAMES):
        joint = observation.joints.get(name)
        if joint is None:
            continue
        frame[0, column] = joint.location.x
        frame[1, column] = joint.location.y
        frame[2, column] = joint.confidence
    return frame
