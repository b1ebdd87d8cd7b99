"""
Capture monitor: always-on camera capture with a YOLO detector.

Reads frames from a camera (USB, RTSP or video file), runs the detector at a
bounded frame rate and saves the latest frame containing an allowed class at
most max_images_per_period times per period_hours.

Usage:
    python src/main.py --config config/config.yaml --display

Arguments:
    --config: Path to configuration file
    --display: Show a preview window ('q' quits, 'r' discards the cached hit)
    --log-level: Override log_level from the configuration
"""

import argparse
import logging
import os
import sqlite3
import sys
from typing import Any, Dict, Optional, Tuple

import yaml

from capture import CaptureAdmissionController
from detection import create_detection_engine
from domain.errors import ConfigurationError, PersistenceFailure
from models.config import Config
from observation import create_source_from_config
from ops.logging import setup_logging
from pipeline import CapturePipeline, PipelineConfig
from storage import StateDatabase, create_image_sink

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

EXIT_CONFIGURATION_ERROR = 1
EXIT_PERSISTENCE_FAILURE = 2


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)

    Raises:
        ConfigurationError: If a layer exists but cannot be read or parsed.
    """
    config_dir = os.path.dirname(config_path)
    base_path = os.path.join(config_dir, "default.yaml")
    local_overrides_path = os.path.join(config_dir, "config.yaml")

    try:
        merged: Dict[str, Any] = {}
        if os.path.exists(base_path):
            merged = _read_yaml(base_path)

        if os.path.exists(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(local_overrides_path))

        # Finally apply explicit config_path if it's not one of the layers above
        explicit = os.path.abspath(config_path)
        if os.path.exists(config_path) and explicit not in (
            os.path.abspath(local_overrides_path),
            os.path.abspath(base_path),
        ):
            merged = _deep_merge(merged, _read_yaml(config_path))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e

    return merged


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['camera', 'detection', 'capture', 'storage', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Camera
    camera = config.get('camera') or {}
    if 'device_id' not in camera:
        return False, "Missing camera.device_id"
    if not isinstance(camera['device_id'], (int, str)) or isinstance(camera['device_id'], bool):
        return False, "camera.device_id must be an integer (index) or string (URL/path)"
    if isinstance(camera['device_id'], int) and camera['device_id'] < 0:
        return False, "camera.device_id integer must be non-negative"
    if camera.get('backend', 'opencv') != 'opencv':
        return False, "camera.backend must be: opencv"
    if 'resolution' in camera:
        resolution = camera['resolution']
        if not isinstance(resolution, list) or len(resolution) != 2:
            return False, "camera.resolution must be a list of [width, height]"
        if not all(_is_positive_int(x) for x in resolution):
            return False, "camera.resolution values must be positive integers"
    if 'fps' in camera and not _is_positive_int(camera['fps']):
        return False, "camera.fps must be a positive integer"
    if camera.get('rotate', 0) not in (0, 90, 180, 270, None):
        return False, "camera.rotate must be one of: 0, 90, 180, 270"

    # Detection
    detection = config.get('detection') or {}
    if not isinstance(detection.get('model'), str) or not detection.get('model'):
        return False, "detection.model is required"
    if 'labels' in detection and not isinstance(detection['labels'], str):
        return False, "detection.labels must be a path"
    for key in ('confidence_threshold', 'iou_threshold'):
        if key in detection:
            value = detection[key]
            if not _is_number(value) or not (0 <= value <= 1):
                return False, f"detection.{key} must be a number between 0 and 1"
    if 'accelerators' in detection and not isinstance(detection['accelerators'], list):
        return False, "detection.accelerators must be a list of provider names"
    if detection.get('input_size') is not None:
        size = detection['input_size']
        if not isinstance(size, list) or len(size) != 2 or not all(_is_positive_int(x) for x in size):
            return False, "detection.input_size must be a list of [width, height]"

    # Capture
    capture = config.get('capture') or {}
    for key in ('frame_rate', 'max_images_per_period', 'period_hours'):
        if key in capture and not _is_positive_int(capture[key]):
            return False, f"capture.{key} must be a positive integer"
    allow_list = capture.get('class_allow_list', [])
    if not isinstance(allow_list, list) or not all(isinstance(x, str) for x in allow_list):
        return False, "capture.class_allow_list must be a list of class names"
    export_ids = capture.get('export_class_ids')
    if export_ids is not None:
        if not isinstance(export_ids, dict) or not all(
            isinstance(k, str) and isinstance(v, int) and not isinstance(v, bool)
            for k, v in export_ids.items()
        ):
            return False, "capture.export_class_ids must map class names to integer ids"

    # Storage
    storage = config.get('storage') or {}
    for key in ('output_dir', 'state_database_path'):
        if key not in storage:
            return False, f"Missing storage.{key}"
        if not isinstance(storage[key], str):
            return False, f"storage.{key} must be a string"
    if 'reference_size' in storage and not _is_positive_int(storage['reference_size']):
        return False, "storage.reference_size must be a positive integer"
    if 'jpeg_quality' in storage:
        quality = storage['jpeg_quality']
        if not _is_positive_int(quality) or quality > 100:
            return False, "storage.jpeg_quality must be an integer between 1 and 100"

    # Logging
    if config['log_level'] not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def _open_state_store(database_path: str) -> StateDatabase:
    """
    Open and migrate the state database.

    Raises:
        ConfigurationError: If the database path is unusable.
    """
    store = None
    try:
        store = StateDatabase(database_path)
        store.initialize()
    except (OSError, sqlite3.Error) as e:
        if store is not None:
            store.close()
        raise ConfigurationError(f"Cannot open state database {database_path}: {e}") from e
    return store


def build_pipeline(cfg: Config, display: bool = False) -> Tuple[CapturePipeline, StateDatabase, Any]:
    """
    Wire source, detection engine, state store, sink and controller.

    Returns the pipeline plus the resources the caller must close. If wiring
    fails after the engine is open, everything opened so far is closed again.

    Raises:
        ConfigurationError: If the model or the storage paths are unusable.
    """
    engine = create_detection_engine(cfg.detection)
    engine.open()

    store = None
    try:
        store = _open_state_store(cfg.storage.state_database_path)
        try:
            sink = create_image_sink(cfg.storage, export_class_ids=cfg.capture.export_class_ids)
            controller = CaptureAdmissionController(engine, sink, store, cfg.capture, capture_log=store)
        except (OSError, sqlite3.Error) as e:
            raise ConfigurationError(f"Cannot prepare capture storage: {e}") from e
        source = create_source_from_config(cfg.camera, source_id="main-camera")
    except Exception:
        engine.close()
        if store is not None:
            store.close()
        raise

    pipeline = CapturePipeline(source, controller, PipelineConfig(display=display))
    return pipeline, store, engine


def main() -> int:
    """Main application function."""
    parser = argparse.ArgumentParser(description='Capture Monitor - always-on YOLO capture')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--display', action='store_true',
                        help='Enable preview window')
    parser.add_argument('--log-level', type=str, choices=VALID_LOG_LEVELS,
                        help='Override log_level from the configuration')
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logging.error(str(e))
        return EXIT_CONFIGURATION_ERROR

    if args.log_level:
        config['log_level'] = args.log_level

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return EXIT_CONFIGURATION_ERROR

    cfg = Config.from_dict(config)
    setup_logging(cfg.log_path, cfg.log_level)
    logging.info("Starting Capture Monitor")

    store = None
    engine = None
    try:
        pipeline, store, engine = build_pipeline(cfg, display=args.display)
        pipeline.run()
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR
    except PersistenceFailure as e:
        logging.critical(f"Persistence failure, stopping: {e}")
        return EXIT_PERSISTENCE_FAILURE
    except RuntimeError as e:
        # Camera could not be opened
        logging.error(f"Failed to start capture: {e}")
        return EXIT_CONFIGURATION_ERROR
    finally:
        if engine is not None:
            engine.close()
        if store is not None:
            store.close()
        logging.info("Capture Monitor stopped")

    return 0


if __name__ == "__main__":
    sys.exit(main())
