"""
Dataclass views of the YAML configuration, one per top-level section.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

MS_PER_HOUR = 3_600_000


@dataclass
class CameraConfig:
    """Where frames come from and how they are oriented."""
    backend: str = "opencv"
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [1280, 720])
    fps: int = 30
    buffer_size: int = 1
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Build from the `camera` mapping, filling gaps with defaults."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution", [1280, 720]),
            fps=d.get("fps", 30),
            buffer_size=d.get("buffer_size", 1),
            swap_rb=d.get("swap_rb", False),
            rotate=d.get("rotate", 0) or 0,
            flip_horizontal=d.get("flip_horizontal", False),
            flip_vertical=d.get("flip_vertical", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "buffer_size": self.buffer_size,
            "swap_rb": self.swap_rb,
            "rotate": self.rotate,
            "flip_horizontal": self.flip_horizontal,
            "flip_vertical": self.flip_vertical,
        }


@dataclass
class DetectionConfig:
    """
    Detection engine configuration.

    Attributes:
        model: Path to the ONNX model file.
        labels: Path to the label file (text or YAML).
        confidence_threshold: Minimum class score (exclusive) to keep an anchor.
        iou_threshold: Overlap at or above which NMS discards a candidate.
        class_agnostic_nms: Suppress overlaps across classes (True) or only
            within the same class (False).
        clip_boxes: Discard boxes reaching outside the frame.
        accelerators: Preferred onnxruntime providers, tried before CPU.
        input_size: [width, height] for models with dynamic input dims.
    """
    model: str = "models/yolov8n.onnx"
    labels: str = "models/labels.txt"
    confidence_threshold: float = 0.7
    iou_threshold: float = 0.5
    class_agnostic_nms: bool = True
    clip_boxes: bool = False
    accelerators: List[str] = field(default_factory=lambda: ["CUDAExecutionProvider"])
    input_size: Optional[List[int]] = None

    @property
    def input_size_tuple(self) -> Optional[Tuple[int, int]]:
        if not self.input_size:
            return None
        return (int(self.input_size[0]), int(self.input_size[1]))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        return cls(
            model=d.get("model", "models/yolov8n.onnx"),
            labels=d.get("labels", "models/labels.txt"),
            confidence_threshold=d.get("confidence_threshold", 0.7),
            iou_threshold=d.get("iou_threshold", 0.5),
            class_agnostic_nms=d.get("class_agnostic_nms", True),
            clip_boxes=d.get("clip_boxes", False),
            accelerators=list(d.get("accelerators", ["CUDAExecutionProvider"]) or []),
            input_size=d.get("input_size"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "model": self.model,
            "labels": self.labels,
            "confidence_threshold": self.confidence_threshold,
            "iou_threshold": self.iou_threshold,
            "class_agnostic_nms": self.class_agnostic_nms,
            "clip_boxes": self.clip_boxes,
            "accelerators": self.accelerators,
        }
        if self.input_size is not None:
            d["input_size"] = self.input_size
        return d


@dataclass
class CaptureConfig:
    """
    Capture admission configuration.

    Attributes:
        frame_rate: Maximum frames per second handed to the detector.
        max_images_per_period: Save quota per period.
        period_hours: Length of the quota period.
        class_allow_list: Class names that count as a hit. Empty admits all.
        export_class_ids: Optional class name -> exported id mapping for
            label files. Names not in the mapping are left out of the file.
    """
    frame_rate: int = 3
    max_images_per_period: int = 64
    period_hours: int = 8
    class_allow_list: List[str] = field(default_factory=lambda: ["person", "cat", "dog"])
    export_class_ids: Optional[Dict[str, int]] = None

    @property
    def process_interval_ms(self) -> float:
        """Minimum spacing between admitted frames."""
        return 1000.0 / self.frame_rate

    @property
    def save_interval_ms(self) -> float:
        """Minimum spacing between persisted captures (the quota window)."""
        return self.period_hours * MS_PER_HOUR / self.max_images_per_period

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CaptureConfig":
        return cls(
            frame_rate=d.get("frame_rate", 3),
            max_images_per_period=d.get("max_images_per_period", 64),
            period_hours=d.get("period_hours", 8),
            class_allow_list=list(d.get("class_allow_list", ["person", "cat", "dog"]) or []),
            export_class_ids=d.get("export_class_ids"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "frame_rate": self.frame_rate,
            "max_images_per_period": self.max_images_per_period,
            "period_hours": self.period_hours,
            "class_allow_list": self.class_allow_list,
        }
        if self.export_class_ids is not None:
            d["export_class_ids"] = self.export_class_ids
        return d


@dataclass
class StorageConfig:
    """Output directory, state database and saved image format."""
    output_dir: str = "data/captures"
    state_database_path: str = "data/state.sqlite"
    reference_size: int = 640
    jpeg_quality: int = 95
    embed_exif_labels: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StorageConfig":
        return cls(
            output_dir=d.get("output_dir", "data/captures"),
            state_database_path=d.get("state_database_path", "data/state.sqlite"),
            reference_size=d.get("reference_size", 640),
            jpeg_quality=d.get("jpeg_quality", 95),
            embed_exif_labels=d.get("embed_exif_labels", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_dir": self.output_dir,
            "state_database_path": self.state_database_path,
            "reference_size": self.reference_size,
            "jpeg_quality": self.jpeg_quality,
            "embed_exif_labels": self.embed_exif_labels,
        }


@dataclass
class Config:
    """
    Whole configuration after layering and validation.

    Sections missing from the mapping fall back to their defaults.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_path: str = "logs/capture_monitor.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Build from the merged mapping returned by load_config."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            detection=DetectionConfig.from_dict(d.get("detection", {}) or {}),
            capture=CaptureConfig.from_dict(d.get("capture", {}) or {}),
            storage=StorageConfig.from_dict(d.get("storage", {}) or {}),
            log_path=d.get("log_path", "logs/capture_monitor.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of from_dict."""
        return {
            "camera": self.camera.to_dict(),
            "detection": self.detection.to_dict(),
            "capture": self.capture.to_dict(),
            "storage": self.storage.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
