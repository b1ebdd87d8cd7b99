"""
Error taxonomy for the capture monitor.

Only ConfigurationError and PersistenceFailure are allowed to reach the host
process. TransientInferenceError is confined to a single frame. Degraded input
(missing labels, unknown class indices) is never raised; it resolves to a
fallback value instead.
"""

from __future__ import annotations


class CaptureMonitorError(Exception):
    """Base class for all capture monitor errors."""


class ConfigurationError(CaptureMonitorError):
    """
    Invalid model, tensor geometry or configuration.

    Raised during startup, before any frame is processed. Fatal.
    """


class TransientInferenceError(CaptureMonitorError):
    """
    A single frame's inference call failed.

    The detection engine remains usable for the next frame.
    """


class PersistenceFailure(CaptureMonitorError):
    """
    A capture could not be persisted (image sink or durable state).

    Fatal: the admission controller stops accepting frames and the host
    terminates after reporting it.
    """
