"""
Typed models for the capture monitor.

Frames, detections, model geometry and the typed configuration views.
"""

from .frame import FrameData
from .detection import Detection, ModelGeometry
from .config import (
    Config,
    CameraConfig,
    DetectionConfig,
    CaptureConfig,
    StorageConfig,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "Detection",
    "ModelGeometry",
    # Config
    "Config",
    "CameraConfig",
    "DetectionConfig",
    "CaptureConfig",
    "StorageConfig",
]
