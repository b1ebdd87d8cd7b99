"""
Capture admission controller.

Gates three rates for every incoming frame:

1. Rate gate: frames arriving sooner than 1000 / frame_rate ms after the last
   admitted frame are dropped without side effects. Nothing is queued.
2. Detection: admitted frames go through the detector; results are filtered
   to the class allow-list. A non-empty result is a hit.
3. Hit cache: every hit replaces the cached hit (latest wins).
4. Quota: once save_interval_ms has passed since the last save, the cached hit
   (if any) is persisted, the save time is written to the durable store and
   the cache is cleared. With an empty cache nothing happens and the window
   stays open until a hit arrives.

All of this runs on the caller's thread, one frame at a time; the controller
does no locking. A persistence failure halts the controller permanently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import numpy as np

from capture.state import CaptureState
from domain.errors import PersistenceFailure, TransientInferenceError
from models.config import CaptureConfig, DetectionConfig
from models.detection import Detection
from storage.database import CaptureLog, CounterStore


class FrameDetector(Protocol):
    def detect(self, frame: np.ndarray) -> List[Detection]:
        ...


class CaptureSink(Protocol):
    def save(
        self,
        image: np.ndarray,
        detections: Sequence[Detection],
        captured_at: Optional[datetime] = None,
    ) -> Optional[Path]:
        ...


class FrameStatus(str, Enum):
    """What happened to a frame handed to the controller."""
    DROPPED = "dropped"
    PAUSED = "paused"
    ERROR = "error"
    NO_HIT = "no_hit"
    HIT = "hit"
    SAVED = "saved"


@dataclass
class FrameResult:
    """
    Outcome of process_frame.

    Attributes:
        status: Frame outcome. SAVED means a capture was persisted while
            handling this frame (the saved hit is the latest cached one).
        detections: This frame's filtered detections.
        saved_path: Path returned by the sink when status is SAVED.
    """
    status: FrameStatus
    detections: List[Detection] = field(default_factory=list)
    saved_path: Optional[Path] = None


class CaptureAdmissionController:
    """
    Decides which frames are processed, which are hits and when to save.

    Example:
        controller = CaptureAdmissionController(engine, sink, store, capture_cfg)
        for frame_data in source:
            controller.process_frame(frame_data.frame, int(frame_data.timestamp * 1000))
    """

    def __init__(
        self,
        detector: FrameDetector,
        sink: CaptureSink,
        store: CounterStore,
        config: CaptureConfig,
        state: Optional[CaptureState] = None,
        capture_log: Optional[CaptureLog] = None,
    ):
        """
        Args:
            detector: Anything with detect(frame) -> List[Detection].
            sink: Persists (image, detections) pairs.
            store: Durable last-save timestamp.
            config: Rate, quota and allow-list settings.
            state: Pre-built state (tests). By default the last-save time is
                read from the store.
            capture_log: Optional log that every saved capture is recorded in.
        """
        self._detector = detector
        self._sink = sink
        self._store = store
        self._capture_log = capture_log
        self._config = config
        self._allowed = set(config.class_allow_list)
        self._paused = False
        self._halted = False

        if state is None:
            state = CaptureState(last_save_ts_ms=int(store.get_last_save_timestamp()))
        self.state = state

        logging.info(
            f"Capture controller ready: frame_rate={config.frame_rate}/s, "
            f"quota={config.max_images_per_period} per {config.period_hours}h "
            f"(one save per {config.save_interval_ms / 1000:.0f}s), "
            f"allow_list={sorted(self._allowed) or 'all'}, "
            f"last_save_ts={self.state.last_save_ts_ms}"
        )

    @property
    def config(self) -> CaptureConfig:
        return self._config

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_halted(self) -> bool:
        return self._halted

    def process_frame(self, frame: np.ndarray, timestamp_ms: int) -> FrameResult:
        """
        Run one frame through the admission state machine.

        Args:
            frame: BGR frame.
            timestamp_ms: Frame time in epoch milliseconds.

        Raises:
            PersistenceFailure: If saving a capture failed, now or earlier.
        """
        if self._halted:
            raise PersistenceFailure("Capture halted after an earlier persistence failure")
        if self._paused:
            return FrameResult(FrameStatus.PAUSED)

        last = self.state.last_processed_ts_ms
        if last is not None and timestamp_ms - last < self._config.process_interval_ms:
            return FrameResult(FrameStatus.DROPPED)
        self.state.last_processed_ts_ms = timestamp_ms

        try:
            detections = self._detector.detect(frame)
        except TransientInferenceError as e:
            logging.warning(f"Frame at {timestamp_ms} skipped: {e}")
            return FrameResult(FrameStatus.ERROR)

        hits = self._filter(detections)
        status = FrameStatus.NO_HIT
        if hits:
            self.state.cache_hit(frame, hits, timestamp_ms)
            status = FrameStatus.HIT
            logging.debug(
                f"HIT: {len(hits)} objects: "
                + ", ".join(f"{d.class_name}({d.confidence * 100:.0f}%)" for d in hits)
            )

        saved_path = self._maybe_save(timestamp_ms)
        if saved_path is not None:
            return FrameResult(FrameStatus.SAVED, hits, saved_path)
        return FrameResult(status, hits)

    def _filter(self, detections: List[Detection]) -> List[Detection]:
        if not self._allowed:
            return list(detections)
        return [d for d in detections if d.class_name in self._allowed]

    def _maybe_save(self, timestamp_ms: int) -> Optional[Path]:
        if timestamp_ms - self.state.last_save_ts_ms < self._config.save_interval_ms:
            return None
        hit = self.state.cached_hit
        if hit is None:
            return None

        captured_at = datetime.fromtimestamp(hit.timestamp_ms / 1000)
        try:
            saved = self._sink.save(hit.frame, hit.detections, captured_at)
        except Exception as e:
            self._halt(e)
            if isinstance(e, PersistenceFailure):
                raise
            raise PersistenceFailure(f"Failed to save capture: {e}") from e
        if not saved:
            error = PersistenceFailure("Capture sink reported a failed save")
            self._halt(error)
            raise error

        try:
            self._store.set_last_save_timestamp(timestamp_ms)
        except Exception as e:
            self._halt(e)
            raise PersistenceFailure(f"Failed to record last save time: {e}") from e

        self.state.last_save_ts_ms = timestamp_ms
        self.state.clear_hit()

        if self._capture_log is not None:
            self._capture_log.record_capture(timestamp_ms, str(saved), hit.detections)

        logging.info(
            f"Capture saved: {saved} ({len(hit.detections)} detections, "
            f"hit age {timestamp_ms - hit.timestamp_ms} ms)"
        )
        return saved

    def _halt(self, error: Exception) -> None:
        self._halted = True
        logging.critical(f"FATAL: failed to persist capture, capture halted: {error}")

    def reset(self) -> None:
        """Discard the cached hit (manual override)."""
        if self.state.cached_hit is not None:
            logging.info("Cached hit discarded")
        self.state.clear_hit()

    def pause(self) -> None:
        """Stop admitting frames until resume(). Paused frames have no side effects."""
        self._paused = True
        logging.info("Capture paused")

    def resume(self) -> None:
        self._paused = False
        logging.info("Capture resumed")

    def apply_config(
        self,
        config: CaptureConfig,
        detection_config: Optional[DetectionConfig] = None,
    ) -> None:
        """
        Swap in new capture (and optionally detection) settings.

        Only allowed while paused, so no frame observes a half-applied
        configuration.

        Raises:
            RuntimeError: If the controller is not paused.
        """
        if not self._paused:
            raise RuntimeError("Configuration can only be applied while capture is paused")

        self._config = config
        self._allowed = set(config.class_allow_list)
        if detection_config is not None and hasattr(self._detector, "apply_config"):
            self._detector.apply_config(detection_config)

        logging.info(
            f"Capture config applied: frame_rate={config.frame_rate}/s, "
            f"quota={config.max_images_per_period} per {config.period_hours}h, "
            f"allow_list={sorted(self._allowed) or 'all'}"
        )
