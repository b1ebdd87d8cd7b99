"""
Model runtimes. Backends return the raw output tensor; decoding lives in
the detection package.
"""

from .backend import ModelRuntime

__all__ = ["ModelRuntime"]
