"""
Tests for IoU and non-max suppression.
"""

import numpy as np
import pytest

from detection.nms import iou, suppress
from models.detection import Detection


def box(x1, y1, x2, y2, confidence=0.9, class_index=0):
    return Detection.from_corners(x1, y1, x2, y2, confidence, class_index)


class TestIoU:
    def test_identical_boxes(self):
        a = box(0.1, 0.1, 0.5, 0.5)
        assert iou(a, a) == pytest.approx(1.0)

    def test_disjoint_boxes(self):
        assert iou(box(0.0, 0.0, 0.2, 0.2), box(0.5, 0.5, 0.7, 0.7)) == 0.0

    def test_touching_boxes(self):
        assert iou(box(0.0, 0.0, 0.2, 0.2), box(0.2, 0.0, 0.4, 0.2)) == pytest.approx(0.0, abs=1e-9)

    def test_partial_overlap(self):
        a = box(0.0, 0.0, 0.2, 0.2)
        b = box(0.1, 0.0, 0.3, 0.2)
        # intersection 0.02, union 0.06
        assert iou(a, b) == pytest.approx(1 / 3)

    def test_symmetric(self):
        a = box(0.05, 0.1, 0.45, 0.6)
        b = box(0.2, 0.3, 0.7, 0.9)
        assert iou(a, b) == iou(b, a)

    def test_degenerate_box_is_zero(self):
        point = Detection(cx=0.3, cy=0.3, w=0.0, h=0.0, confidence=0.9, class_index=0)
        other = box(0.1, 0.1, 0.5, 0.5)

        assert iou(point, other) == 0.0
        assert iou(other, point) == 0.0
        assert iou(point, point) == 0.0


class TestSuppress:
    def test_empty_input(self):
        assert suppress([], 0.5) == []

    def test_keeps_highest_of_overlapping_pair(self):
        low = box(0.1, 0.1, 0.5, 0.5, confidence=0.7)
        high = box(0.12, 0.1, 0.52, 0.5, confidence=0.95)

        assert suppress([low, high], 0.5) == [high]

    def test_keeps_disjoint_boxes_sorted(self):
        a = box(0.0, 0.0, 0.2, 0.2, confidence=0.6)
        b = box(0.5, 0.5, 0.7, 0.7, confidence=0.9)
        c = box(0.8, 0.0, 1.0, 0.2, confidence=0.75)

        assert suppress([a, b, c], 0.5) == [b, c, a]

    def test_threshold_is_inclusive(self):
        a = box(0.0, 0.0, 0.2, 0.2, confidence=0.9)
        b = box(0.1, 0.0, 0.3, 0.2, confidence=0.8)
        overlap = iou(a, b)

        assert suppress([a, b], overlap) == [a]
        assert suppress([a, b], overlap + 1e-6) == [a, b]

    def test_class_agnostic_by_default(self):
        person = box(0.1, 0.1, 0.5, 0.5, confidence=0.9, class_index=0)
        dog = box(0.1, 0.1, 0.5, 0.5, confidence=0.8, class_index=16)

        assert suppress([person, dog], 0.5) == [person]

    def test_per_class_keeps_other_classes(self):
        person = box(0.1, 0.1, 0.5, 0.5, confidence=0.9, class_index=0)
        dog = box(0.1, 0.1, 0.5, 0.5, confidence=0.8, class_index=16)
        person2 = box(0.11, 0.1, 0.51, 0.5, confidence=0.85, class_index=0)

        result = suppress([person, dog, person2], 0.5, class_agnostic=False)

        assert result == [person, dog]

    def test_equal_confidence_keeps_input_order(self):
        first = box(0.1, 0.1, 0.5, 0.5, confidence=0.8)
        second = box(0.1, 0.1, 0.5, 0.5, confidence=0.8, class_index=1)

        assert suppress([first, second], 0.5) == [first]
        assert suppress([second, first], 0.5) == [second]

    def test_output_properties_on_random_input(self):
        rng = np.random.default_rng(42)
        detections = []
        for _ in range(60):
            x1, y1 = rng.uniform(0, 0.8, size=2)
            w, h = rng.uniform(0.05, 0.3, size=2)
            detections.append(box(x1, y1, x1 + w, y1 + h, confidence=float(rng.uniform(0.5, 1.0))))

        threshold = 0.45
        result = suppress(detections, threshold)

        assert all(d in detections for d in result)
        confidences = [d.confidence for d in result]
        assert confidences == sorted(confidences, reverse=True)
        for i, a in enumerate(result):
            for b in result[i + 1:]:
                assert iou(a, b) < threshold
