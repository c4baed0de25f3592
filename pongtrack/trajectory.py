"""
Online trajectory accumulator for Pong Throw Tracker.

Consumes per-frame batches of detected trajectory samples and decides when a
throw starts and ends:

IDLE: waiting for a confident, forward-moving sample that starts inside the
      region of interest (ROI)
IN_FLIGHT: appending segments to the throw path, growing the ROI toward the
      target, counting frames that miss the ROI or report nothing

A throw completes once the miss counter passes the frame limit.
"""

import logging
from typing import Optional, Tuple, List
from dataclasses import dataclass
from enum import Enum

from .detectors import TrajectorySample
from .geometry import Point, Rect, normalized_to_view, view_to_normalized

logger = logging.getLogger(__name__)


class TrajectoryState(Enum):
    """Accumulator states."""
    IDLE = "IDLE"
    IN_FLIGHT = "IN_FLIGHT"


@dataclass
class CompletedThrow:
    """Result handed out once per finished throw."""
    final_location: Point        # normalized [0, 1], bottom-left origin
    path: List[Point]            # view space
    speed: float                 # view units per second


@dataclass
class AccumulatorState:
    """Current accumulator state for external consumption."""
    state: TrajectoryState
    path_length: int
    speed: float
    out_of_region_count: int
    no_observation_count: int
    roi: Optional[Rect]
    target_region: Optional[Rect]


@dataclass
class Regions:
    """Throw and target regions derived from the player and target boxes."""
    throw_region: Optional[Rect] = None
    target_region: Optional[Rect] = None


def compute_regions(
    player_region: Optional[Rect],
    target_box: Optional[Rect],
    throw_window_x_buffer: float = 5.0,
    throw_window_y_buffer: float = 50.0,
    throw_region_width: float = 200.0,
    target_window_x_buffer: float = 50.0
) -> Regions:
    """
    Lay out the throw region just right of the player and the target
    region around the target, both anchored at the top of the view.
    """
    throw_region = None
    if player_region is not None:
        throw_region = Rect(
            player_region.max_x + throw_window_x_buffer,
            0.0,
            throw_region_width,
            player_region.max_y - throw_window_y_buffer
        )

    target_region = None
    if target_box is not None:
        target_region = Rect(
            target_box.min_x - target_window_x_buffer,
            0.0,
            target_box.width + target_window_x_buffer,
            target_box.max_y
        )

    return Regions(throw_region=throw_region, target_region=target_region)


def _contains(region: Optional[Rect], point: Point) -> bool:
    return region is not None and region.contains(point)


class TrajectoryAccumulator:
    """
    Builds one throw path at a time from noisy trajectory detections.

    Filters, per sample:
    - confidence must exceed MIN_CONFIDENCE
    - points must travel rightward (last x > first x)
    - a new throw must start inside the ROI with a plausible length
    - an in-flight segment must touch the ROI and start near the path end
    """

    MIN_CONFIDENCE = 0.9            # Strictly above this to be considered
    MAX_DISPLACEMENT = 250.0        # View units, rejects implausible jumps
    FRAME_LIMIT = 20                # Missed frames before the throw is over
    OVERLAP_WINDOW_BUFFER = 50.0    # Keeps the grown ROI short of the target

    def __init__(
        self,
        view_size: Tuple[float, float] = (1920.0, 1080.0),
        min_confidence: Optional[float] = None,
        max_displacement: Optional[float] = None,
        frame_limit: Optional[int] = None,
        overlap_window_buffer: Optional[float] = None
    ):
        self.view_size = view_size

        if min_confidence is not None:
            self.MIN_CONFIDENCE = min_confidence
        if max_displacement is not None:
            self.MAX_DISPLACEMENT = max_displacement
        if frame_limit is not None:
            self.FRAME_LIMIT = frame_limit
        if overlap_window_buffer is not None:
            self.OVERLAP_WINDOW_BUFFER = overlap_window_buffer

        self._state = TrajectoryState.IDLE
        self._path: List[Point] = []
        self._speed = 0.0
        self._out_of_region_count = 0
        self._no_observation_count = 0
        self._roi: Optional[Rect] = None
        self._target_region: Optional[Rect] = None

    def process(self, samples: List[TrajectorySample]) -> Optional[CompletedThrow]:
        """
        Feed one frame's trajectory samples.

        Returns:
            CompletedThrow when this frame finished the throw, else None
        """
        if self.in_flight and not samples:
            self._no_observation_count += 1
            if self._no_observation_count > self.FRAME_LIMIT:
                logger.info(f"No trajectory for {self._no_observation_count} frames, throw complete")
                return self._complete()
            return None

        for sample in samples:
            if sample.confidence <= self.MIN_CONFIDENCE:
                logger.debug(f"Low confidence trajectory: {sample.confidence:.2f}")
                continue

            self._accumulate(sample)

            if self._path:
                self._update_roi()
                if self.is_throw_complete:
                    logger.info(f"Trajectory left ROI for {self._out_of_region_count} samples, throw complete")
                    return self._complete()

            self._no_observation_count = 0

        return None

    def _accumulate(self, sample: TrajectorySample):
        """Try to add one confident sample to the throw path."""
        locations = sample.locations
        if len(locations) < 2:
            return

        if not locations[-1].x > locations[0].x:
            logger.debug("Trajectory not moving forward, ignored")
            return

        segment = [normalized_to_view(p, self.view_size) for p in locations]
        start = segment[0]
        end = segment[-1]

        if self.in_flight:
            displacement = start.distance_to(self._path[-1])
            accepted = (
                (_contains(self._roi, end) or _contains(self._roi, start)) and
                displacement < self.MAX_DISPLACEMENT
            )
        else:
            displacement = start.distance_to(end)
            accepted = _contains(self._roi, start) and displacement < self.MAX_DISPLACEMENT

        if not accepted:
            self._out_of_region_count += 1
            logger.debug(
                f"Trajectory rejected: start={start.as_tuple()}, displacement={displacement:.1f}, "
                f"out_of_region={self._out_of_region_count}"
            )
            return

        if not self.in_flight:
            length = end.distance_to(start)
            self._speed = length / sample.duration if sample.duration > 0 else 0.0
            self._path = list(segment)
            self._state = TrajectoryState.IN_FLIGHT
            logger.info(f"Throw started at {start.as_tuple()}, speed={self._speed:.1f} units/s")
        else:
            self._path.extend(segment)

        self._out_of_region_count = 0

    def _update_roi(self):
        """
        Grow the ROI along the throw: snap to the target region once the ball
        is inside it, otherwise slide forward after the midpoint is passed.
        """
        if self._roi is None:
            return

        location = self._path[-1]

        if _contains(self._target_region, location):
            if self._roi != self._target_region:
                logger.debug("Ball inside target region, ROI locked to target")
            self._roi = self._target_region
            return

        if location.x <= self._roi.mid_x:
            return

        half_width = self._roi.width / 2
        if self._target_region is None or \
                location.x + half_width - self.OVERLAP_WINDOW_BUFFER < self._target_region.min_x:
            self._roi = self._roi.with_origin_x(location.x - half_width)

    def _complete(self) -> CompletedThrow:
        """Package the throw and return to IDLE."""
        path = list(self._path)
        final_location = view_to_normalized(path[-1], self.view_size) if path else Point(0.0, 0.0)
        result = CompletedThrow(final_location=final_location, path=path, speed=self._speed)

        logger.info(
            f"Throw complete: {len(path)} points, final={final_location.as_tuple()}, "
            f"speed={self._speed:.1f} units/s"
        )

        self._clear()
        return result

    def _clear(self):
        self._state = TrajectoryState.IDLE
        self._path = []
        self._speed = 0.0
        self._out_of_region_count = 0
        self._no_observation_count = 0

    def reset(self, roi: Optional[Rect] = None, target_region: Optional[Rect] = None):
        """Drop any partial throw and install new regions."""
        self._clear()
        self._roi = roi
        self._target_region = target_region
        logger.debug(f"Accumulator reset, roi={roi}, target={target_region}")

    def update_regions(self, roi: Optional[Rect], target_region: Optional[Rect]) -> bool:
        """Swap regions between throws; an in-flight throw keeps its grown ROI."""
        if self.in_flight:
            return False
        self._roi = roi
        self._target_region = target_region
        return True

    def get_state(self) -> AccumulatorState:
        """Build current state for external consumption."""
        return AccumulatorState(
            state=self._state,
            path_length=len(self._path),
            speed=self._speed,
            out_of_region_count=self._out_of_region_count,
            no_observation_count=self._no_observation_count,
            roi=self._roi,
            target_region=self._target_region
        )

    @property
    def state(self) -> TrajectoryState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state == TrajectoryState.IN_FLIGHT

    @property
    def is_throw_complete(self) -> bool:
        return self.in_flight and self._out_of_region_count > self.FRAME_LIMIT

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def path(self) -> List[Point]:
        return list(self._path)

    @property
    def roi(self) -> Optional[Rect]:
        return self._roi

    @property
    def target_region(self) -> Optional[Rect]:
        return self._target_region

    @property
    def out_of_region_count(self) -> int:
        return self._out_of_region_count
