"""
Greedy non-max suppression over normalized detections.
"""

from __future__ import annotations

from typing import List, Sequence

from models.detection import Detection


def iou(a: Detection, b: Detection) -> float:
    """
    Calculate Intersection over Union between two detections.

    Returns 0.0 when the union has no area (both boxes degenerate).
    """
    inter_w = max(0.0, min(a.x2, b.x2) - max(a.x1, b.x1))
    inter_h = max(0.0, min(a.y2, b.y2) - max(a.y1, b.y1))
    intersection = inter_w * inter_h

    union = a.area + b.area - intersection
    if union <= 0:
        return 0.0

    return intersection / union


def suppress(
    detections: Sequence[Detection],
    iou_threshold: float,
    class_agnostic: bool = True,
) -> List[Detection]:
    """
    Remove redundant overlapping detections.

    Candidates are visited in descending confidence (equal confidences keep
    their input order). Each accepted detection removes every remaining
    candidate whose IoU with it is >= iou_threshold. With class_agnostic
    disabled only candidates of the same class index are removed.

    Returns:
        Accepted detections, sorted by confidence descending.
    """
    # sorted() is stable for reverse=True as well
    remaining = sorted(detections, key=lambda d: d.confidence, reverse=True)
    accepted: List[Detection] = []

    while remaining:
        best = remaining.pop(0)
        accepted.append(best)
        remaining = [
            d for d in remaining
            if not _suppresses(best, d, iou_threshold, class_agnostic)
        ]

    return accepted


def _suppresses(best: Detection, other: Detection, iou_threshold: float, class_agnostic: bool) -> bool:
    if not class_agnostic and best.class_index != other.class_index:
        return False
    return iou(best, other) >= iou_threshold
