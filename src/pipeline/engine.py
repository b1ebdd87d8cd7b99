"""
Pipeline engine for the capture monitor.

Reads frames from an ObservationSource and feeds each one to the
CaptureAdmissionController. Settings changes requested from other threads
are applied between frames: the controller is paused, reconfigured and
resumed, so no frame ever sees half of a new configuration.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from capture import CaptureAdmissionController, FrameResult, FrameStatus
from models.config import CaptureConfig, DetectionConfig
from models.frame import FrameData
from observation import ObservationSource


@dataclass
class PipelineConfig:
    """
    Loop settings for CapturePipeline.

    Attributes:
        max_consecutive_failures: Empty reads in a row that end the loop.
        stats_log_interval: Seconds between stats lines in the log.
        read_retry_delay: Seconds to wait after a failed read.
        display: Show a cv2 preview with the detections drawn in.
    """
    max_consecutive_failures: int = 10
    stats_log_interval: float = 60.0
    read_retry_delay: float = 0.5
    display: bool = False


@dataclass
class PipelineStats:
    """Counters for one run(), reset when the loop starts."""
    frames_seen: int = 0
    frames_processed: int = 0
    frames_dropped: int = 0
    hits: int = 0
    saves: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)
    consecutive_failures: int = 0

    def record(self, result: FrameResult) -> None:
        self.frames_seen += 1
        if result.status == FrameStatus.DROPPED:
            self.frames_dropped += 1
            return
        if result.status == FrameStatus.PAUSED:
            return
        if result.status == FrameStatus.ERROR:
            self.errors += 1
            return
        self.frames_processed += 1
        if result.detections:
            self.hits += 1
        if result.status == FrameStatus.SAVED:
            self.saves += 1


class CapturePipeline:
    """
    Main processing loop: source -> admission controller.

    PersistenceFailure raised by the controller is not handled here; it ends
    the loop and propagates to the caller after cleanup.

    Example:
        source = OpenCVSource(OpenCVSourceConfig(device_id=0))
        pipeline = CapturePipeline(source, controller, PipelineConfig())
        pipeline.run()
    """

    def __init__(
        self,
        source: ObservationSource,
        controller: CaptureAdmissionController,
        config: PipelineConfig,
    ):
        self.source = source
        self.controller = controller
        self.config = config
        self.stats = PipelineStats()
        self._running = False
        self._reload_lock = threading.Lock()
        self._pending_reload: Optional[Tuple[CaptureConfig, Optional[DetectionConfig]]] = None
        self._callbacks: List[Callable[[FrameData, FrameResult], None]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    def add_callback(self, callback: Callable[[FrameData, FrameResult], None]) -> None:
        """
        Register fn(frame_data, result), called after every processed frame.
        Exceptions from callbacks are logged and otherwise ignored.
        """
        self._callbacks.append(callback)

    def request_reload(
        self,
        capture_config: CaptureConfig,
        detection_config: Optional[DetectionConfig] = None,
    ) -> None:
        """
        Queue new settings. Safe to call from any thread; the latest request
        wins and is applied before the next frame is processed.
        """
        with self._reload_lock:
            self._pending_reload = (capture_config, detection_config)
        logging.info("Settings reload requested")

    def run(self) -> None:
        """
        Open the source and feed frames to the controller until stop(), the
        end of the input, or too many empty reads. The source is always closed.

        Raises:
            PersistenceFailure: If a capture could not be saved.
        """
        self._running = True
        self.stats = PipelineStats()

        try:
            self.source.open()
            logging.info(f"Pipeline started: source={self.source.source_id}")

            while self._running:
                self._apply_pending_reload()

                frame_data = self.source.read()

                if frame_data is None:
                    if not self._on_empty_read():
                        break
                    continue

                self.stats.consecutive_failures = 0
                result = self.process(frame_data)

                for callback in self._callbacks:
                    try:
                        callback(frame_data, result)
                    except Exception as e:
                        logging.warning(f"Frame callback failed: {e}")

                if self.config.display:
                    if not self._handle_display(frame_data, result):
                        break

                self._handle_periodic_tasks()

        except KeyboardInterrupt:
            logging.info("Pipeline interrupted by user")
        finally:
            self._cleanup()

    def stop(self) -> None:
        """Ask run() to return once the current frame is done."""
        self._running = False

    def process(self, frame_data: FrameData) -> FrameResult:
        """Hand one frame to the controller and account for the result."""
        result = self.controller.process_frame(frame_data.frame, frame_data.timestamp_ms)
        self.stats.record(result)
        if result.status == FrameStatus.SAVED:
            logging.debug(f"frame={frame_data.frame_index} saved {result.saved_path}")
        return result

    def _on_empty_read(self) -> bool:
        """Count an empty read; False once the limit is reached."""
        stats = self.stats
        stats.consecutive_failures += 1
        limit = self.config.max_consecutive_failures
        if stats.consecutive_failures >= limit:
            logging.error(f"No frame for {stats.consecutive_failures} reads in a row, stopping")
            return False

        logging.warning(f"Empty read {stats.consecutive_failures}/{limit}, retrying")
        time.sleep(self.config.read_retry_delay)
        return True

    def _apply_pending_reload(self) -> None:
        with self._reload_lock:
            pending = self._pending_reload
            self._pending_reload = None
        if pending is None:
            return

        capture_config, detection_config = pending
        was_paused = self.controller.is_paused
        if not was_paused:
            self.controller.pause()
        try:
            self.controller.apply_config(capture_config, detection_config)
        finally:
            if not was_paused:
                self.controller.resume()

    def _handle_display(self, frame_data: FrameData, result: FrameResult) -> bool:
        """
        Show the frame with this frame's detections.

        Returns False when q was pressed; r clears the hit cache and counters.
        """
        frame = self._draw_overlays(frame_data.frame.copy(), result)
        cv2.imshow("Capture Monitor", frame)
        key = cv2.waitKey(1) & 0xFF
        if key == ord('r'):
            self.controller.reset()
        return key != ord('q')

    def _draw_overlays(self, frame: np.ndarray, result: FrameResult) -> np.ndarray:
        """Draw normalized detection boxes scaled to the frame."""
        color = (0, 0, 255) if result.status == FrameStatus.SAVED else (0, 255, 0)
        h, w = frame.shape[:2]
        for det in result.detections:
            x1, y1 = int(det.x1 * w), int(det.y1 * h)
            x2, y2 = int(det.x2 * w), int(det.y2 * h)
            cv2.rectangle(frame, (x1, y1), (x2, y2), color, 2)
            label = f"{det.class_name} {det.confidence * 100:.0f}%"
            cv2.putText(frame, label, (x1 + 2, max(y1 - 4, 12)),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)
        return frame

    def _handle_periodic_tasks(self) -> None:
        """Emit a stats line every stats_log_interval seconds."""
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.stats_log_interval:
            logging.info(
                f"Pipeline stats: seen={self.stats.frames_seen}, "
                f"processed={self.stats.frames_processed}, "
                f"dropped={self.stats.frames_dropped}, "
                f"hits={self.stats.hits}, saves={self.stats.saves}, "
                f"errors={self.stats.errors}"
            )
            self.stats.last_stats_log_time = now

    def _cleanup(self) -> None:
        """Close the source and any preview window."""
        self._running = False

        try:
            self.source.close()
        except Exception as e:
            logging.warning(f"Source close failed: {e}")

        if self.config.display:
            cv2.destroyAllWindows()

        logging.info(
            f"Pipeline stopped: processed={self.stats.frames_processed}, "
            f"saves={self.stats.saves}"
        )
