"""
Domain-level contracts shared by the detection and capture layers.
"""

from .errors import (  # noqa: F401
    CaptureMonitorError,
    ConfigurationError,
    PersistenceFailure,
    TransientInferenceError,
)
