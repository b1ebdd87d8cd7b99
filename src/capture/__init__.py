"""
Capture admission: frame-rate gating, hit caching and the save quota.
"""

from .state import CachedHit, CaptureState
from .controller import CaptureAdmissionController, FrameResult, FrameStatus

__all__ = [
    "CachedHit",
    "CaptureState",
    "CaptureAdmissionController",
    "FrameResult",
    "FrameStatus",
]
