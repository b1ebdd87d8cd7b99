"""
Pipeline module for the capture monitor.

The pipeline orchestrates the processing flow:
- Frame acquisition from observation sources
- Admission, detection and saving (via CaptureAdmissionController)
- Settings reloads applied between frames
"""

from .engine import CapturePipeline, PipelineConfig, PipelineStats

__all__ = [
    "CapturePipeline",
    "PipelineConfig",
    "PipelineStats",
]
