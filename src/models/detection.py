"""
Detection models for object detection results.

Coordinates are normalized to the model input: 0..1 spans the full width or
height of the frame that was fed to the model.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from domain.errors import ConfigurationError

# Channels 0..3 of every anchor column hold cx, cy, w, h.
BOX_CHANNELS = 4

INPUT_LAYOUTS = ("nchw", "nhwc")


@dataclass(frozen=True)
class Detection:
    """
    A single labeled box.

    The center form (cx, cy, w, h) is stored; the corner form is derived from
    it on access so the two can never disagree.

    Attributes:
        cx: Box center x (normalized).
        cy: Box center y (normalized).
        w: Box width (normalized, >= 0).
        h: Box height (normalized, >= 0).
        confidence: Highest class score at this anchor.
        class_index: Index of the winning class.
        class_name: Resolved label for class_index.
    """
    cx: float
    cy: float
    w: float
    h: float
    confidence: float
    class_index: int
    class_name: str = "Unknown"

    @property
    def x1(self) -> float:
        return self.cx - self.w / 2

    @property
    def y1(self) -> float:
        return self.cy - self.h / 2

    @property
    def x2(self) -> float:
        return self.cx + self.w / 2

    @property
    def y2(self) -> float:
        return self.cy + self.h / 2

    @property
    def corner(self) -> Tuple[float, float, float, float]:
        """Return (x1, y1, x2, y2)."""
        return (self.x1, self.y1, self.x2, self.y2)

    @property
    def center(self) -> Tuple[float, float, float, float]:
        """Return (cx, cy, w, h)."""
        return (self.cx, self.cy, self.w, self.h)

    @property
    def area(self) -> float:
        return self.w * self.h

    def is_within_unit_square(self) -> bool:
        """True if all four corners lie inside [0, 1]."""
        return all(0.0 <= v <= 1.0 for v in self.corner)

    def with_class(self, class_index: int, class_name: str) -> "Detection":
        """Return a copy assigned to another class."""
        return replace(self, class_index=class_index, class_name=class_name)

    @classmethod
    def from_corners(
        cls,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        confidence: float,
        class_index: int,
        class_name: str = "Unknown",
    ) -> "Detection":
        """Create from (x1, y1, x2, y2) corner coordinates."""
        w = max(0.0, x2 - x1)
        h = max(0.0, y2 - y1)
        return cls(
            cx=x1 + w / 2,
            cy=y1 + h / 2,
            w=w,
            h=h,
            confidence=confidence,
            class_index=class_index,
            class_name=class_name,
        )


@dataclass(frozen=True)
class ModelGeometry:
    """
    Tensor geometry of a detection model, fixed at initialization.

    Attributes:
        input_width: Model input width in pixels.
        input_height: Model input height in pixels.
        num_channels: Rows of the output tensor (4 box channels + classes).
        num_anchors: Columns of the output tensor (candidate locations).
        input_layout: "nchw" or "nhwc" ordering of the input tensor.
    """
    input_width: int
    input_height: int
    num_channels: int
    num_anchors: int
    input_layout: str = "nchw"

    @property
    def num_classes(self) -> int:
        return self.num_channels - BOX_CHANNELS

    @property
    def output_size(self) -> int:
        """Number of elements in one output tensor."""
        return self.num_channels * self.num_anchors

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        """Batched input shape expected by the runtime."""
        if self.input_layout == "nhwc":
            return (1, self.input_height, self.input_width, 3)
        return (1, 3, self.input_height, self.input_width)

    @classmethod
    def from_shapes(
        cls,
        input_shape: Sequence[object],
        output_shape: Sequence[object],
        input_size: Optional[Tuple[int, int]] = None,
    ) -> "ModelGeometry":
        """
        Derive geometry from the model's declared tensor shapes.

        Args:
            input_shape: Declared input shape, [1, 3, H, W] or [1, H, W, 3].
            output_shape: Declared output shape, [1, 4 + classes, anchors].
            input_size: Optional (width, height) used when the model declares
                dynamic spatial dimensions.

        Raises:
            ConfigurationError: If the shapes do not describe a supported
                detection model.
        """
        if len(input_shape) != 4:
            raise ConfigurationError(f"Unsupported model input shape: {list(input_shape)}")

        if input_shape[1] == 3:
            layout = "nchw"
            height, width = input_shape[2], input_shape[3]
        elif input_shape[3] == 3:
            layout = "nhwc"
            height, width = input_shape[1], input_shape[2]
        else:
            raise ConfigurationError(
                f"Model input must have 3 colour channels, got shape {list(input_shape)}"
            )

        if input_size is not None:
            width, height = input_size

        if not (_is_positive_int(width) and _is_positive_int(height)):
            raise ConfigurationError(
                f"Model input size is not fixed ({list(input_shape)}); "
                f"set detection.input_size in the config"
            )

        if len(output_shape) != 3:
            raise ConfigurationError(f"Unsupported model output shape: {list(output_shape)}")

        _, channels, anchors = output_shape
        if not (_is_positive_int(channels) and _is_positive_int(anchors)):
            raise ConfigurationError(f"Model output shape is not fixed: {list(output_shape)}")
        if channels <= BOX_CHANNELS:
            raise ConfigurationError(
                f"Model output has {channels} channels; expected 4 box channels plus class scores"
            )

        return cls(
            input_width=int(width),
            input_height=int(height),
            num_channels=int(channels),
            num_anchors=int(anchors),
            input_layout=layout,
        )


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
