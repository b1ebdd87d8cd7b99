"""
Tensor decoder for single-output YOLO detection heads.

The raw output is logically shaped [num_channels, num_anchors], channel-major:

    row 0..3  cx, cy, w, h in model-input pixels
    row 4..   one score row per class

Each anchor column becomes at most one Detection: the class with the highest
score wins, and the anchor is kept only if that score is strictly above the
confidence threshold.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from detection.labels import resolve_class_name
from models.detection import BOX_CHANNELS, Detection, ModelGeometry


def decode(
    output: np.ndarray,
    geometry: ModelGeometry,
    confidence_threshold: float,
    labels: Sequence[str] = (),
    clip: bool = False,
) -> List[Detection]:
    """
    Convert a raw output tensor into candidate detections.

    Args:
        output: Raw model output with num_channels * num_anchors elements.
            A leading batch dimension of 1 is accepted.
        geometry: Geometry the engine validated at initialization.
        confidence_threshold: Minimum score (exclusive) for a candidate.
        labels: Class names, index-addressable. Short lists fall back to
            "Unknown".
        clip: Discard candidates whose corners fall outside [0, 1].

    Returns:
        Detections in anchor order. Empty if nothing clears the threshold.
    """
    predictions = np.asarray(output, dtype=np.float32).reshape(
        geometry.num_channels, geometry.num_anchors
    )

    scores = predictions[BOX_CHANNELS:]
    # argmax returns the first maximum, so ties go to the lowest class index
    class_ids = np.argmax(scores, axis=0)
    confidences = scores[class_ids, np.arange(geometry.num_anchors)]

    keep = np.flatnonzero(confidences > confidence_threshold)
    if keep.size == 0:
        return []

    cx = predictions[0, keep] / np.float32(geometry.input_width)
    cy = predictions[1, keep] / np.float32(geometry.input_height)
    w = predictions[2, keep] / np.float32(geometry.input_width)
    h = predictions[3, keep] / np.float32(geometry.input_height)

    detections: List[Detection] = []
    for i, anchor in enumerate(keep):
        class_index = int(class_ids[anchor])
        det = Detection(
            cx=float(cx[i]),
            cy=float(cy[i]),
            w=float(w[i]),
            h=float(h[i]),
            confidence=float(confidences[anchor]),
            class_index=class_index,
            class_name=resolve_class_name(labels, class_index),
        )
        if clip and not det.is_within_unit_square():
            continue
        detections.append(det)

    return detections
