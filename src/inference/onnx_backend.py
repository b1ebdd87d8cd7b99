"""
ONNX Runtime inference backend.

Session creation is two-stage: the configured accelerator providers are tried
first, and if that fails the partial session is dropped and a CPU-only session
is created. If the CPU session also fails the model is unusable and startup
stops with a ConfigurationError.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence

import numpy as np
import onnxruntime

from domain.errors import ConfigurationError

CPU_PROVIDER = "CPUExecutionProvider"


class OnnxRuntimeBackend:
    def __init__(self, model_path: str, accelerators: Optional[Sequence[str]] = None):
        """
        Load an ONNX model.

        Args:
            model_path: Path to the .onnx file.
            accelerators: onnxruntime providers to try before CPU, in order of
                preference. Providers not available in this build are skipped.

        Raises:
            ConfigurationError: If the model cannot be loaded on any provider.
        """
        if not os.path.exists(model_path):
            raise ConfigurationError(f"Model file not found: {model_path}")

        self.model_path = model_path
        self._session: Optional[onnxruntime.InferenceSession] = None
        self.providers: List[str] = []

        preferred = self._available_accelerators(accelerators or [])
        if preferred:
            try:
                self._session = onnxruntime.InferenceSession(
                    model_path, providers=preferred + [CPU_PROVIDER]
                )
                self.providers = list(self._session.get_providers())
                logging.info(f"ONNX model loaded from {model_path} using {self.providers}")
            except Exception as e:
                logging.warning(f"Accelerated session failed, falling back to CPU: {e}")
                self._session = None

        if self._session is None:
            try:
                self._session = onnxruntime.InferenceSession(model_path, providers=[CPU_PROVIDER])
                self.providers = [CPU_PROVIDER]
                logging.info(f"ONNX model loaded from {model_path} using {CPU_PROVIDER}")
            except Exception as e:
                self._session = None
                raise ConfigurationError(f"Failed to load ONNX model {model_path}: {e}") from e

        self._input_name = self._session.get_inputs()[0].name

    @staticmethod
    def _available_accelerators(accelerators: Sequence[str]) -> List[str]:
        available = set(onnxruntime.get_available_providers())
        chosen = [p for p in accelerators if p != CPU_PROVIDER and p in available]
        skipped = [p for p in accelerators if p != CPU_PROVIDER and p not in available]
        if skipped:
            logging.info(f"Accelerators not available in this onnxruntime build: {skipped}")
        return chosen

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def input_shape(self) -> Sequence[object]:
        return list(self._require_session().get_inputs()[0].shape)

    @property
    def output_shape(self) -> Sequence[object]:
        return list(self._require_session().get_outputs()[0].shape)

    def infer(self, inputs: np.ndarray) -> np.ndarray:
        outputs = self._require_session().run(None, {self._input_name: inputs})
        return np.asarray(outputs[0])

    def close(self) -> None:
        """Release the session. Safe to call multiple times."""
        if self._session is not None:
            self._session = None
            logging.info(f"ONNX session released: {self.model_path}")

    def _require_session(self) -> onnxruntime.InferenceSession:
        if self._session is None:
            raise RuntimeError("ONNX session is closed")
        return self._session

    def __enter__(self) -> "OnnxRuntimeBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
