"""
Model runtime interface.

A runtime is an opaque model session: it takes a preprocessed, batched input
array and returns the raw output tensor. Decoding happens elsewhere.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np


class ModelRuntime(Protocol):
    @property
    def input_shape(self) -> Sequence[object]:
        """Declared input shape, e.g. [1, 3, 640, 640]. May contain dynamic dims."""
        ...

    @property
    def output_shape(self) -> Sequence[object]:
        """Declared output shape, e.g. [1, 84, 8400]."""
        ...

    def infer(self, inputs: np.ndarray) -> np.ndarray:
        ...

    def close(self) -> None:
        ...
