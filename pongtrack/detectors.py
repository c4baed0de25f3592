"""
Frame detector boundary for Pong Throw Tracker.

Pose, trajectory and target detection are external capabilities. This module
defines the detection records they hand over per frame, the FrameDetector
protocol, and a replay source that reads recorded detections from a
JSON-lines log (one object per frame):

    {"frame_id": 12, "timestamp_ns": 100000000,
     "poses": [{"confidence": 0.9, "joints": {"right_wrist": [0.41, 0.62, 0.8]}}],
     "trajectories": [{"confidence": 0.95, "duration": 0.25,
                       "points": [[0.30, 0.55], [0.34, 0.58]]}],
     "targets": [{"box": [0.72, 0.32, 0.2, 0.2], "confidence": 0.8,
                  "edge_size": [0.9, 0.3]}],
     "translation": [0.4, -0.2]}
"""

import json
import logging
from pathlib import Path
from typing import Optional, List, Dict, Tuple, Generator, Protocol
from dataclasses import dataclass, field

from .camera import FrameData
from .geometry import Point, Rect

logger = logging.getLogger(__name__)


@dataclass
class PointObservation:
    """Single normalized trajectory point."""
    location: Point
    confidence: float = 1.0
    timestamp_ns: int = 0


@dataclass
class TrajectorySample:
    """Points produced by one trajectory detector invocation."""
    points: List[PointObservation]
    duration: float      # seconds spanned by the points
    confidence: float    # aggregate confidence [0, 1]

    @property
    def locations(self) -> List[Point]:
        return [p.location for p in self.points]

    @classmethod
    def from_locations(
        cls,
        locations: List[Tuple[float, float]],
        duration: float,
        confidence: float,
        timestamp_ns: int = 0
    ) -> 'TrajectorySample':
        points = [
            PointObservation(Point(float(x), float(y)), confidence, timestamp_ns)
            for x, y in locations
        ]
        return cls(points=points, duration=duration, confidence=confidence)


@dataclass
class PoseJoint:
    """Recognized body joint (normalized location)."""
    location: Point
    confidence: float


@dataclass
class PoseObservation:
    """One body pose detection."""
    joints: Dict[str, PoseJoint]
    confidence: float
    timestamp_ns: int = 0


@dataclass
class TargetDetection:
    """
    Target (cup) detection used for calibration.

    edge_size is the rim edge extent found by contour analysis, normalized
    to the target box. It is None when no usable contour was found.
    """
    box: Rect                   # normalized, bottom-left origin
    confidence: float
    edge_size: Optional[Tuple[float, float]] = None


@dataclass
class FrameDetections:
    """Everything the external detectors reported for one frame."""
    frame_id: int = 0
    timestamp_ns: int = 0
    poses: List[PoseObservation] = field(default_factory=list)
    trajectories: List[TrajectorySample] = field(default_factory=list)
    targets: List[TargetDetection] = field(default_factory=list)
    translation: Optional[Tuple[float, float]] = None  # Scene shift vs previous frame


class FrameDetector(Protocol):
    """External detection capability. May raise; the caller skips the frame."""

    def detect(self, frame_data: FrameData) -> FrameDetections:
        ...


def _parse_pose(data: dict, timestamp_ns: int) -> PoseObservation:
    joints = {}
    for name, values in data.get("joints", {}).items():
        x, y = values[0], values[1]
        confidence = values[2] if len(values) > 2 else 1.0
        joints[name] = PoseJoint(Point(float(x), float(y)), float(confidence))
    return PoseObservation(
        joints=joints,
        confidence=float(data.get("confidence", 1.0)),
        timestamp_ns=timestamp_ns
    )


def _parse_trajectory(data: dict, timestamp_ns: int) -> TrajectorySample:
    return TrajectorySample.from_locations(
        data["points"],
        duration=float(data.get("duration", 0.0)),
        confidence=float(data.get("confidence", 0.0)),
        timestamp_ns=timestamp_ns
    )


def _parse_target(data: dict) -> TargetDetection:
    edge = data.get("edge_size")
    return TargetDetection(
        box=Rect(*[float(v) for v in data["box"]]),
        confidence=float(data.get("confidence", 0.0)),
        edge_size=(float(edge[0]), float(edge[1])) if edge else None
    )


def parse_frame_detections(data: dict) -> FrameDetections:
    """Build FrameDetections from one decoded log record."""
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    timestamp_ns = int(data.get("timestamp_ns", 0))
    translation = data.get("translation")
    return FrameDetections(
        frame_id=int(data.get("frame_id", 0)),
        timestamp_ns=timestamp_ns,
        poses=[_parse_pose(p, timestamp_ns) for p in data.get("poses", [])],
        trajectories=[_parse_trajectory(t, timestamp_ns) for t in data.get("trajectories", [])],
        targets=[_parse_target(t) for t in data.get("targets", [])],
        translation=(float(translation[0]), float(translation[1])) if translation else None
    )


class RecordedDetections:
    """
    Replays a JSON-lines detection log.

    Acts as both the frame source (frames()) and the detector (detect()),
    so a recorded session can drive the game without any model.

    Usage:
        replay = RecordedDetections("session.jsonl")
        replay.load()
        for frame_data in replay.frames():
            detections = replay.detect(frame_data)
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._records: Dict[int, FrameDetections] = {}
        self._order: List[int] = []

    def load(self) -> bool:
        """Read the log. Malformed lines are skipped."""
        if not self.path.exists():
            logger.error(f"Detection log not found: {self.path}")
            return False

        self._records.clear()
        self._order.clear()
        skipped = 0

        with open(self.path, 'r') as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = parse_frame_detections(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError,
                        IndexError, AttributeError) as e:
                    skipped += 1
                    logger.warning(f"Skipping malformed detection record at line {line_no}: {e}")
                    continue
                if record.frame_id == 0 or record.frame_id in self._records:
                    record.frame_id = len(self._order) + 1
                    while record.frame_id in self._records:
                        record.frame_id += 1
                self._records[record.frame_id] = record
                self._order.append(record.frame_id)

        logger.info(f"Loaded {len(self._order)} detection frames from {self.path} ({skipped} skipped)")
        return True

    def frames(self) -> Generator[FrameData, None, None]:
        """Yield placeholder frames in recorded order."""
        for frame_id in self._order:
            record = self._records[frame_id]
            yield FrameData(frame=None, timestamp_ns=record.timestamp_ns, frame_id=frame_id)

    def detect(self, frame_data: FrameData) -> FrameDetections:
        record = self._records.get(frame_data.frame_id)
        if record is None:
            return FrameDetections(frame_id=frame_data.frame_id, timestamp_ns=frame_data.timestamp_ns)
        return record

    def __len__(self) -> int:
        return len(self._order)
