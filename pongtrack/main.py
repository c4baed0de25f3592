"""
Pong Throw Tracker - Main entry point.
FastAPI server with WebSocket streaming and a capture/detection worker.
"""

import argparse
import asyncio
import importlib
import json
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Optional, Set, Iterator
from contextlib import asynccontextmanager
from enum import Enum

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
import uvicorn

from .camera import Camera, CameraMode, FrameData, FPSTracker
from .config import Config, get_config_manager, get_config
from .detectors import FrameDetector, RecordedDetections
from .game import GameSession
from .game_state import GameStage

# Root logging, configured once for the process
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class SourceMode(Enum):
    DETECTIONS = "detections"  # Recorded detection log, no model needed
    REPLAY = "replay"
    WEBCAM = "webcam"


def load_detector(path: str) -> FrameDetector:
    """
    Import a detector given as "package.module:attribute".
    A class or factory is called with no arguments.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Detector must look like 'module:attribute', got {path!r}")

    target = getattr(importlib.import_module(module_name), attr)
    if isinstance(target, type) or (callable(target) and not hasattr(target, "detect")):
        detector = target()
    else:
        detector = target
    if not hasattr(detector, "detect"):
        raise ValueError(f"{path} does not provide a detect() method")
    return detector


class PongTrackApp:
    """Main application coordinating frame source, detector and game session."""

    def __init__(
        self,
        mode: SourceMode = SourceMode.DETECTIONS,
        detections_path: Optional[str] = None,
        replay_path: Optional[str] = None,
        detector: Optional[FrameDetector] = None,
        config: Optional[Config] = None,
        realtime: bool = True
    ):
        self.mode = mode
        self.detections_path = detections_path
        self.replay_path = replay_path
        self.detector = detector
        self.config = config or get_config()
        self.realtime = realtime

        self.session = GameSession(config=self.config)
        self.session.add_observer(self._on_stage_entered)

        self.camera: Optional[Camera] = None
        self._recorded: Optional[RecordedDetections] = None

        # State
        self._running = False
        self._capturing = False
        self._capture_thread: Optional[threading.Thread] = None
        self._frame_id = 0
        self._frames_skipped = 0

        self._proc_fps = FPSTracker()

        # Stage events are produced on the capture thread, drained by the broadcast loop
        self._events: "queue.Queue[dict]" = queue.Queue()

        # Connected UI sockets
        self._ws_clients: Set[WebSocket] = set()
        self._ws_lock = asyncio.Lock()

    def _on_stage_entered(self, stage: GameStage, previous: Optional[GameStage]):
        self._events.put({
            "type": "stage",
            "stage": stage.value,
            "previous": previous.value if previous else None,
            "timestamp_ns": time.time_ns()
        })

    def _open_source(self) -> Optional[Iterator[FrameData]]:
        """Open the configured frame source; None on failure."""
        if self.mode == SourceMode.DETECTIONS:
            if not self.detections_path:
                logger.error("Detections mode requires a detection log path")
                return None
            self._recorded = RecordedDetections(self.detections_path)
            if not self._recorded.load():
                return None
            if self.detector is None:
                self.detector = self._recorded
            return self._recorded.frames()

        if self.detector is None:
            logger.error(f"{self.mode.value} mode requires a frame detector")
            return None

        camera_mode = CameraMode.REPLAY if self.mode == SourceMode.REPLAY else CameraMode.WEBCAM
        self.camera = Camera(
            mode=camera_mode,
            replay_path=self.replay_path,
            device_id=self.config.camera.device_id,
            requested_size=(self.config.camera.view_width, self.config.camera.view_height)
        )
        if not self.camera.start():
            logger.error("Frame source did not open")
            return None
        return self.camera.frames()

    def start(self) -> bool:
        """Start the game session and the capture worker."""
        if self._running:
            return True

        logger.info(f"Starting Pong Throw Tracker with source={self.mode.value}")

        source = self._open_source()
        if source is None:
            return False

        self._running = True
        self._capturing = True
        self.session.start()

        self._capture_thread = threading.Thread(target=self._capture_loop, args=(source,), daemon=True)
        self._capture_thread.start()

        logger.info("Pong Throw Tracker started")
        return True

    def stop(self):
        """Join the capture worker and drop any half-tracked throw."""
        self._running = False
        self._capturing = False

        if self.camera:
            self.camera.stop()

        if self._capture_thread:
            self._capture_thread.join(timeout=2.0)

        self.session.stop()
        logger.info("Pong Throw Tracker stopped")

    def _capture_loop(self, source: Iterator[FrameData]):
        """Capture, detect and apply (runs in separate thread)."""
        last_timestamp_ns: Optional[int] = None

        for frame_data in source:
            if not self._capturing:
                break

            if self.realtime and self.mode == SourceMode.DETECTIONS and last_timestamp_ns is not None:
                gap_s = (frame_data.timestamp_ns - last_timestamp_ns) / 1e9
                if 0 < gap_s < 1.0:
                    time.sleep(gap_s)
            last_timestamp_ns = frame_data.timestamp_ns

            self.process_frame(frame_data)

        self._capturing = False
        logger.info("Frame source finished")

    def process_frame(self, frame_data: FrameData):
        """Detect on one frame and hand the result to the session."""
        try:
            detections = self.detector.detect(frame_data)
        except Exception as e:
            self._frames_skipped += 1
            logger.debug(f"Detection failed on frame {frame_data.frame_id}, skipped: {e}")
            return

        metrics = self.session.process_frame(detections)
        if metrics is not None:
            self._events.put({"type": "throw", **metrics.to_dict()})

        self._frame_id = frame_data.frame_id
        self._proc_fps.update(frame_data.timestamp_ns)

    def get_state_message(self) -> dict:
        """Snapshot plus capture counters, as pushed to clients."""
        return {
            "type": "state",
            "frame_id": self._frame_id,
            "fps": round(self._proc_fps.current_fps, 1),
            "capturing": self._capturing,
            **self.session.snapshot()
        }

    def drain_events(self) -> list:
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    async def broadcast_state(self):
        """Broadcast pending events and current state to all WebSocket clients."""
        events = self.drain_events()
        if not self._ws_clients:
            return

        messages = [json.dumps(event) for event in events]
        messages.append(json.dumps(self.get_state_message()))

        async with self._ws_lock:
            disconnected = set()
            for ws in self._ws_clients:
                try:
                    for message in messages:
                        await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping WebSocket client: {e}")
                    disconnected.add(ws)

            self._ws_clients -= disconnected

    async def add_client(self, websocket: WebSocket):
        """Register a socket for state pushes."""
        async with self._ws_lock:
            self._ws_clients.add(websocket)
            logger.info(f"UI client joined ({len(self._ws_clients)} connected)")

    async def remove_client(self, websocket: WebSocket):
        async with self._ws_lock:
            self._ws_clients.discard(websocket)
            logger.info(f"UI client left ({len(self._ws_clients)} connected)")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frames_skipped(self) -> int:
        return self._frames_skipped


# Set by main(); tests replace it
app_instance: Optional[PongTrackApp] = None


def get_app_instance() -> PongTrackApp:
    """Service object created by main() or swapped in by tests."""
    global app_instance
    if app_instance is None:
        raise RuntimeError("App not initialized")
    return app_instance


# HTTP and WebSocket surface
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Starts capture and the broadcast task; stops both on shutdown."""
    # Startup
    global app_instance
    broadcast_task = None
    if app_instance and app_instance.start():

        # Push state at 30 Hz
        async def broadcast_loop():
            while app_instance and app_instance.is_running:
                await app_instance.broadcast_state()
                await asyncio.sleep(1/30)  # 30 Hz broadcast rate

        broadcast_task = asyncio.create_task(broadcast_loop())

    yield

    # Shutdown
    if app_instance:
        app_instance.stop()
    if broadcast_task:
        broadcast_task.cancel()


app = FastAPI(
    title="Pong Throw Tracker",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/api/status")
async def get_status():
    """Current session snapshot."""
    try:
        tracker = get_app_instance()
        return JSONResponse({
            "running": tracker.is_running,
            "source": tracker.mode.value,
            "frames_skipped": tracker.frames_skipped,
            "state": tracker.get_state_message()
        })
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.get("/api/stats")
async def get_stats():
    """Get player stats and the most recent throw."""
    try:
        session = get_app_instance().session
        return JSONResponse({
            "stage": session.stage.value,
            "max_score": session.max_score,
            "last_throw": session.last_metrics.to_dict(),
            "stats": session.stats.to_dict()
        })
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.post("/api/start")
async def start_game():
    """Start a new game from INACTIVE."""
    try:
        session = get_app_instance().session
        started = session.start()
        return JSONResponse({"success": started, "stage": session.stage.value})
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.post("/api/play-again")
async def play_again():
    """Start the next player from the summary."""
    try:
        session = get_app_instance().session
        restarted = session.play_again()
        return JSONResponse({"success": restarted, "stage": session.stage.value})
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.post("/api/reset")
async def reset_game():
    """Reset the session back to INACTIVE."""
    try:
        session = get_app_instance().session
        session.reset()
        return JSONResponse({"success": True, "stage": session.stage.value})
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.post("/api/summary")
async def show_summary():
    """End the game early and show the summary."""
    try:
        session = get_app_instance().session
        shown = session.show_summary()
        return JSONResponse({"success": shown, "stage": session.stage.value})
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Pushes state and events; accepts control commands."""
    await websocket.accept()

    tracker = None
    try:
        tracker = get_app_instance()
        await tracker.add_client(websocket)

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30)

                # Control commands
                try:
                    cmd = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON WebSocket message: {data[:50]}")
                    continue

                cmd_type = cmd.get("type") if isinstance(cmd, dict) else None
                if cmd_type == "reset":
                    tracker.session.reset()
                elif cmd_type == "start":
                    tracker.session.start()
                elif cmd_type == "summary":
                    tracker.session.show_summary()
                elif cmd_type == "play_again":
                    tracker.session.play_again()
                elif cmd_type == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))

            except asyncio.TimeoutError:
                # Idle socket, send a keepalive ping
                await websocket.send_text(json.dumps({"type": "ping"}))

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected")
    except Exception as e:
        logger.error(f"Socket closed on error: {e}")
    finally:
        if tracker is not None:
            await tracker.remove_client(websocket)


def main():
    """Parse arguments, build the service and run uvicorn."""
    parser = argparse.ArgumentParser(description="Pong Throw Tracker")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--detections", type=str, help="Replay a JSON-lines detection log")
    source.add_argument("--replay", type=str, help="Replay from video file")
    source.add_argument("--webcam", action="store_true", help="Use standard webcam")
    parser.add_argument("--detector", type=str, help="Frame detector as 'module:attribute'")
    parser.add_argument("--config", type=str, help="Path to config.json")
    parser.add_argument("--host", type=str, default=None, help="Server host")
    parser.add_argument("--port", type=int, default=None, help="Server port")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = get_config_manager(Path(args.config) if args.config else None).config

    # Determine frame source
    if args.replay:
        mode = SourceMode.REPLAY
    elif args.webcam:
        mode = SourceMode.WEBCAM
    else:
        mode = SourceMode.DETECTIONS
        if not args.detections:
            parser.error("one of --detections, --replay or --webcam is required")

    detector = None
    if args.detector:
        try:
            detector = load_detector(args.detector)
        except (ImportError, AttributeError, ValueError) as e:
            parser.error(f"Cannot load detector: {e}")
    elif mode != SourceMode.DETECTIONS:
        parser.error(f"--{mode.value} needs --detector")

    # Service object
    global app_instance
    app_instance = PongTrackApp(
        mode=mode,
        detections_path=args.detections,
        replay_path=args.replay,
        detector=detector,
        config=config
    )

    host = args.host or config.server_host
    port = args.port or config.server_port

    logger.info(f"Starting server on {host}:{port}")
    logger.info(f"Frame source: {mode.value}")

    # Run server
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info" if not args.debug else "debug"
    )


if __name__ == "__main__":
    main()
