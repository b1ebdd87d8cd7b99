"""
Detection module: raw tensor decoding, non-max suppression and the engine
that wraps them around a model runtime.
"""

from .decoder import decode
from .nms import iou, suppress
from .engine import DetectionEngine, create_detection_engine

__all__ = ["decode", "iou", "suppress", "DetectionEngine", "create_detection_engine"]
