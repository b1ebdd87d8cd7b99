"""
Smoke tests for typed models and adapters.
"""

import numpy as np
import pytest

from domain.errors import ConfigurationError
from models.detection import Detection, ModelGeometry
from models.frame import FrameData


class TestDetection:
    def test_corner_form_derived_from_center(self):
        det = Detection(cx=0.5, cy=0.4, w=0.2, h=0.4, confidence=0.9, class_index=0)

        assert det.corner == pytest.approx((0.4, 0.2, 0.6, 0.6))
        assert det.area == pytest.approx(0.08)

    def test_from_corners_round_trip(self):
        det = Detection.from_corners(0.1, 0.2, 0.5, 0.9, 0.8, 2, "dog")

        assert det.corner == pytest.approx((0.1, 0.2, 0.5, 0.9))
        assert det.center == pytest.approx((0.3, 0.55, 0.4, 0.7))
        assert det.class_name == "dog"

    def test_from_corners_clamps_inverted_box(self):
        det = Detection.from_corners(0.5, 0.5, 0.4, 0.4, 0.8, 0)

        assert det.w == 0.0
        assert det.h == 0.0

    def test_default_class_name(self):
        assert Detection(0.5, 0.5, 0.1, 0.1, 0.9, 7).class_name == "Unknown"

    def test_is_within_unit_square(self):
        assert Detection(0.5, 0.5, 1.0, 1.0, 0.9, 0).is_within_unit_square()
        assert not Detection(0.05, 0.5, 0.2, 0.2, 0.9, 0).is_within_unit_square()

    def test_with_class(self):
        det = Detection(0.5, 0.5, 0.1, 0.1, 0.9, 0, "person")
        moved = det.with_class(16, "dog")

        assert (moved.class_index, moved.class_name) == (16, "dog")
        assert det.class_name == "person"

    def test_is_immutable(self):
        det = Detection(0.5, 0.5, 0.1, 0.1, 0.9, 0)
        with pytest.raises(AttributeError):
            det.cx = 0.1


class TestModelGeometry:
    def test_nchw(self):
        geometry = ModelGeometry.from_shapes([1, 3, 320, 320], [1, 84, 2100])

        assert geometry.input_layout == "nchw"
        assert (geometry.input_width, geometry.input_height) == (320, 320)
        assert geometry.num_classes == 80
        assert geometry.output_size == 84 * 2100
        assert geometry.input_shape == (1, 3, 320, 320)

    def test_nhwc(self):
        geometry = ModelGeometry.from_shapes([1, 480, 640, 3], [1, 7, 6300])

        assert geometry.input_layout == "nhwc"
        assert (geometry.input_width, geometry.input_height) == (640, 480)
        assert geometry.input_shape == (1, 480, 640, 3)

    def test_input_size_override(self):
        geometry = ModelGeometry.from_shapes(["n", 3, "h", "w"], [1, 6, 100], input_size=(256, 192))

        assert (geometry.input_width, geometry.input_height) == (256, 192)

    @pytest.mark.parametrize(
        "input_shape, output_shape",
        [
            ([1, 3, 320], [1, 84, 2100]),
            ([1, 1, 320, 320], [1, 84, 2100]),
            ([1, 3, "h", "w"], [1, 84, 2100]),
            ([1, 3, 320, 320], [84, 2100]),
            ([1, 3, 320, 320], [1, 4, 2100]),
            ([1, 3, 320, 320], [1, 84, "anchors"]),
        ],
    )
    def test_unsupported_shapes(self, input_shape, output_shape):
        with pytest.raises(ConfigurationError):
            ModelGeometry.from_shapes(input_shape, output_shape)


class TestFrameData:
    def test_from_numpy(self):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)

        fd = FrameData.from_numpy(frame, timestamp=1_700_000_000.5, frame_index=3, source="cam")

        assert fd.size == (640, 480)
        assert fd.frame is frame
        assert fd.frame_index == 3
        assert fd.timestamp_ms == 1_700_000_000_500
