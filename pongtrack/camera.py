"""
OpenCV frame source for Pong Throw Tracker.

Frames come from a webcam or a video file and are handed, unchanged, to an
external FrameDetector on the capture worker. Video files get synthetic
timestamps derived from their frame rate so replays are repeatable.
"""

import cv2
import numpy as np
import time
import logging
from typing import Optional, Tuple, Iterator
from dataclasses import dataclass
from enum import Enum
from collections import deque

logger = logging.getLogger(__name__)


class CameraMode(Enum):
    WEBCAM = "webcam"
    REPLAY = "replay"


@dataclass
class FrameData:
    """One captured frame and when it was taken."""
    frame: Optional[np.ndarray]  # None for detection-only replays
    timestamp_ns: int
    frame_id: int


class FPSTracker:
    """Frame rate over a sliding window of frame timestamps."""

    def __init__(self, window_size: int = 30):
        self._stamps: deque[int] = deque(maxlen=window_size)
        self._fps = 0.0

    def update(self, timestamp_ns: int) -> float:
        self._stamps.append(timestamp_ns)
        span_ns = self._stamps[-1] - self._stamps[0]
        if len(self._stamps) > 1 and span_ns > 0:
            self._fps = (len(self._stamps) - 1) * 1e9 / span_ns
        return self._fps

    @property
    def current_fps(self) -> float:
        return self._fps


class Camera:
    """
    cv2.VideoCapture wrapper for live or recorded video.

    Usage:
        with Camera(CameraMode.REPLAY, replay_path="throws.mp4") as cam:
            for frame_data in cam.frames():
                detections = detector.detect(frame_data)
    """

    DEFAULT_REPLAY_FPS = 30.0

    def __init__(
        self,
        mode: CameraMode = CameraMode.WEBCAM,
        replay_path: Optional[str] = None,
        device_id: int = 0,
        requested_size: Optional[Tuple[int, int]] = None
    ):
        self.mode = mode
        self.replay_path = replay_path
        self.device_id = device_id
        self.requested_size = requested_size

        self._cap: Optional[cv2.VideoCapture] = None
        self._next_id = 1
        self._frame_interval_ns = int(1e9 / self.DEFAULT_REPLAY_FPS)

    def _open_capture(self) -> Optional[cv2.VideoCapture]:
        if self.mode == CameraMode.REPLAY:
            if not self.replay_path:
                logger.error("Video replay needs a file path")
                return None
            logger.info(f"Opening video {self.replay_path}")
            return cv2.VideoCapture(self.replay_path)

        logger.info(f"Opening webcam {self.device_id}")
        cap = cv2.VideoCapture(self.device_id)
        if self.requested_size and cap.isOpened():
            width, height = self.requested_size
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        return cap

    def start(self) -> bool:
        cap = self._open_capture()
        if cap is None:
            return False
        if not cap.isOpened():
            logger.error(f"Could not open {self.mode.value} source")
            cap.release()
            return False

        if self.mode == CameraMode.REPLAY:
            fps = cap.get(cv2.CAP_PROP_FPS) or self.DEFAULT_REPLAY_FPS
            self._frame_interval_ns = int(1e9 / fps)

        self._cap = cap
        self._next_id = 1
        logger.info(f"Capture open at {self.resolution[0]}x{self.resolution[1]}")
        return True

    def stop(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Capture released")

    def read_frame(self) -> Optional[FrameData]:
        """Next frame, or None once the source is closed or exhausted."""
        if self._cap is None:
            return None

        ok, frame = self._cap.read()
        if not ok or frame is None:
            if self.mode == CameraMode.REPLAY:
                logger.info("End of video")
                self.stop()
            return None

        frame_id = self._next_id
        self._next_id += 1
        if self.mode == CameraMode.REPLAY:
            timestamp_ns = (frame_id - 1) * self._frame_interval_ns
        else:
            timestamp_ns = time.time_ns()

        return FrameData(frame=frame, timestamp_ns=timestamp_ns, frame_id=frame_id)

    def frames(self) -> Iterator[FrameData]:
        while self._cap is not None:
            frame_data = self.read_frame()
            if frame_data is None:
                return
            yield frame_data

    def __enter__(self) -> 'Camera':
        if not self.start():
            raise RuntimeError(f"Could not open {self.mode.value} source")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    @property
    def is_running(self) -> bool:
        return self._cap is not None

    @property
    def resolution(self) -> Tuple[int, int]:
        """(width, height) reported by the open capture, (0, 0) when closed."""
        if self._cap is None:
            return (0, 0)
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        )
