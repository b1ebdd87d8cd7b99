"""
Captured frame plus the metadata the pipeline needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass
class FrameData:
    """
    One frame as delivered by an ObservationSource.

    Attributes:
        frame: Pixel data, BGR, shape (height, width, 3).
        width: Pixel columns.
        height: Pixel rows.
        timestamp: Capture time, epoch seconds.
        frame_index: 1-based position since the source was opened.
        source: source_id of the producing source.
    """
    frame: np.ndarray
    width: int
    height: int
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        frame: np.ndarray,
        timestamp: float,
        frame_index: int = 0,
        source: Optional[str] = None,
    ) -> "FrameData":
        """Wrap an array, taking width and height from its shape."""
        height, width = frame.shape[:2]
        return cls(frame, width, height, timestamp, frame_index, source)

    @property
    def timestamp_ms(self) -> int:
        """Capture time in epoch milliseconds."""
        return int(round(self.timestamp * 1000))

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height)"""
        return (self.width, self.height)
