"""
Shared fixtures. src/ is put on sys.path so tests import packages by name.
"""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


@pytest.fixture
def temp_config_dir(tmp_path):
    """config/default.yaml under tmp_path, as load_config expects it."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  backend: "opencv"
  device_id: 0
  resolution: [640, 480]
  fps: 30

detection:
  model: "models/test.onnx"
  labels: "models/labels.txt"
  confidence_threshold: 0.7
  iou_threshold: 0.5

capture:
  frame_rate: 3
  max_images_per_period: 64
  period_hours: 8
  class_allow_list: ["person", "cat", "dog"]

storage:
  output_dir: "data/captures"
  state_database_path: "data/test.sqlite"

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Merged configuration that passes validate_config."""
    return {
        "camera": {
            "backend": "opencv",
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
        },
        "detection": {
            "model": "models/test.onnx",
            "labels": "models/labels.txt",
            "confidence_threshold": 0.7,
            "iou_threshold": 0.5,
            "class_agnostic_nms": True,
        },
        "capture": {
            "frame_rate": 3,
            "max_images_per_period": 64,
            "period_hours": 8,
            "class_allow_list": ["person", "cat", "dog"],
        },
        "storage": {
            "output_dir": "data/captures",
            "state_database_path": "data/test.sqlite",
            "reference_size": 640,
            "jpeg_quality": 95,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
