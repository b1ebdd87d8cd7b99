"""
Storage: durable capture state and the image sink.
"""

from .database import CaptureLog, CounterStore, StateDatabase, EXPECTED_SCHEMA_VERSION
from .sink import ImageSink, create_image_sink, read_exif_labels
from .labels import format_label_lines, parse_label_lines

__all__ = [
    "CaptureLog",
    "CounterStore",
    "StateDatabase",
    "EXPECTED_SCHEMA_VERSION",
    "ImageSink",
    "create_image_sink",
    "read_exif_labels",
    "format_label_lines",
    "parse_label_lines",
]
