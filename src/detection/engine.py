"""
Detection engine: preprocessing, inference, decoding and suppression behind a
single detect(frame) call.

The engine owns the model geometry, read once from the runtime's declared
tensor shapes when the engine is opened. A failed open is fatal
(ConfigurationError) and releases the runtime; a failed inference on one frame
is reported as TransientInferenceError and leaves the engine usable.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import cv2
import numpy as np

from detection.decoder import decode
from detection.labels import load_labels
from detection.nms import suppress
from domain.errors import ConfigurationError, TransientInferenceError
from inference.backend import ModelRuntime
from models.config import DetectionConfig
from models.detection import Detection, ModelGeometry

# Consecutive per-frame failures before the log level is raised to error
PERSISTENT_FAILURE_COUNT = 3


class DetectionEngine:
    """
    Runs a YOLO-style detector on BGR frames.

    Example:
        with DetectionEngine(runtime, labels, DetectionConfig()) as engine:
            detections = engine.detect(frame)
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        labels: Sequence[str],
        config: DetectionConfig,
    ):
        self._runtime: Optional[ModelRuntime] = runtime
        self.labels: List[str] = list(labels)
        self._input_size = config.input_size_tuple
        self.confidence_threshold = config.confidence_threshold
        self.iou_threshold = config.iou_threshold
        self.class_agnostic = config.class_agnostic_nms
        self.clip_boxes = config.clip_boxes
        self.geometry: Optional[ModelGeometry] = None
        self.consecutive_failures = 0

    @property
    def is_open(self) -> bool:
        return self.geometry is not None and self._runtime is not None

    def open(self) -> None:
        """
        Establish the model geometry and verify it with one warm-up inference.

        Raises:
            ConfigurationError: If the declared shapes are unsupported or the
                model's actual output does not match them. The runtime is
                released before the error propagates.
        """
        if self.is_open:
            return
        if self._runtime is None:
            raise ConfigurationError("Detection engine was closed and cannot be reopened")

        try:
            geometry = ModelGeometry.from_shapes(
                self._runtime.input_shape,
                self._runtime.output_shape,
                input_size=self._input_size,
            )
            self._warm_up(geometry)
        except ConfigurationError:
            self.close()
            raise

        self.geometry = geometry
        if len(self.labels) < geometry.num_classes:
            logging.warning(
                f"Label list has {len(self.labels)} names for {geometry.num_classes} classes; "
                f"missing names resolve to 'Unknown'"
            )

        logging.info(
            f"Detection engine ready: input={geometry.input_width}x{geometry.input_height} "
            f"({geometry.input_layout}), classes={geometry.num_classes}, anchors={geometry.num_anchors}, "
            f"conf>{self.confidence_threshold}, iou>={self.iou_threshold}, "
            f"class_agnostic={self.class_agnostic}"
        )

    def _warm_up(self, geometry: ModelGeometry) -> None:
        blank = np.zeros(geometry.input_shape, dtype=np.float32)
        try:
            output = self._runtime.infer(blank)
        except Exception as e:
            raise ConfigurationError(f"Model warm-up inference failed: {e}") from e

        size = np.asarray(output).size
        if size != geometry.output_size:
            raise ConfigurationError(
                f"Model output has {size} elements, expected "
                f"{geometry.num_channels}x{geometry.num_anchors}={geometry.output_size}"
            )

    def preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Resize a BGR frame to the model input and scale it to [0, 1] float32."""
        geometry = self._require_geometry()
        resized = cv2.resize(
            frame,
            (geometry.input_width, geometry.input_height),
            interpolation=cv2.INTER_LINEAR,
        )

        if resized.ndim == 2:
            rgb = cv2.cvtColor(resized, cv2.COLOR_GRAY2RGB)
        elif resized.shape[2] == 4:
            rgb = cv2.cvtColor(resized, cv2.COLOR_BGRA2RGB)
        else:
            rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)

        image_data = rgb.astype(np.float32) / 255.0
        if geometry.input_layout == "nchw":
            image_data = image_data.transpose((2, 0, 1))  # HWC to CHW
        return np.expand_dims(image_data, axis=0)

    def detect(self, frame: np.ndarray) -> List[Detection]:
        """
        Detect objects in a BGR frame.

        Returns:
            Non-overlapping detections sorted by confidence descending.

        Raises:
            TransientInferenceError: If this frame cannot be preprocessed or
                the runtime call fails.
        """
        geometry = self._require_geometry()

        try:
            inputs = self.preprocess(frame)
            output = np.asarray(self._runtime.infer(inputs))
        except Exception as e:
            self._record_failure(e)
            raise TransientInferenceError(f"Inference failed: {e}") from e

        if output.size != geometry.output_size:
            error = ValueError(f"output has {output.size} elements, expected {geometry.output_size}")
            self._record_failure(error)
            raise TransientInferenceError(f"Inference failed: {error}")

        self.consecutive_failures = 0

        candidates = decode(
            output,
            geometry,
            self.confidence_threshold,
            labels=self.labels,
            clip=self.clip_boxes,
        )
        return suppress(candidates, self.iou_threshold, class_agnostic=self.class_agnostic)

    def _record_failure(self, error: Exception) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= PERSISTENT_FAILURE_COUNT:
            logging.error(
                f"Persistent inference errors ({self.consecutive_failures} in a row): {error}"
            )
        else:
            logging.debug(f"Inference error ({self.consecutive_failures} in a row): {error}")

    def apply_config(self, config: DetectionConfig) -> None:
        """Update the tunable thresholds. The model itself is not reloaded."""
        self.confidence_threshold = config.confidence_threshold
        self.iou_threshold = config.iou_threshold
        self.class_agnostic = config.class_agnostic_nms
        self.clip_boxes = config.clip_boxes
        logging.info(
            f"Detection thresholds updated: conf>{self.confidence_threshold}, "
            f"iou>={self.iou_threshold}, class_agnostic={self.class_agnostic}"
        )

    def close(self) -> None:
        """Release the model runtime. Safe to call multiple times."""
        runtime, self._runtime = self._runtime, None
        self.geometry = None
        if runtime is not None:
            runtime.close()

    def _require_geometry(self) -> ModelGeometry:
        if not self.is_open:
            raise RuntimeError("Detection engine is not open")
        return self.geometry

    def __enter__(self) -> "DetectionEngine":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def create_detection_engine(config: DetectionConfig) -> DetectionEngine:
    """
    Build an (unopened) engine backed by ONNX Runtime.

    Raises:
        ConfigurationError: If the model cannot be loaded.
    """
    from inference.onnx_backend import OnnxRuntimeBackend

    labels = load_labels(config.labels)
    runtime = OnnxRuntimeBackend(config.model, accelerators=config.accelerators)
    return DetectionEngine(runtime, labels, config)
