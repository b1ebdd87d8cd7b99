"""
Capture state owned by the admission controller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from models.detection import Detection


@dataclass(frozen=True)
class CachedHit:
    """
    The most recent frame whose filtered detections were non-empty.

    Attributes:
        frame: Private copy of the frame (BGR).
        detections: Filtered detections for that frame.
        timestamp_ms: Frame timestamp in epoch milliseconds.
    """
    frame: np.ndarray
    detections: List[Detection]
    timestamp_ms: int


@dataclass
class CaptureState:
    """
    Mutable capture state, one instance per controller.

    Attributes:
        last_save_ts_ms: Time of the last persisted capture (epoch ms).
            Mirrors the durable counter store; 0 means never saved.
        cached_hit: Latest hit not yet persisted.
        last_processed_ts_ms: Time of the last frame admitted to the
            detector. None until the first frame is admitted.
    """
    last_save_ts_ms: int = 0
    cached_hit: Optional[CachedHit] = None
    last_processed_ts_ms: Optional[int] = None

    def cache_hit(self, frame: np.ndarray, detections: List[Detection], timestamp_ms: int) -> None:
        """Replace the cached hit. Latest wins regardless of confidence."""
        self.cached_hit = CachedHit(frame=frame.copy(), detections=list(detections), timestamp_ms=timestamp_ms)

    def clear_hit(self) -> None:
        self.cached_hit = None
