"""
Class label loading.

Labels are optional input: a missing or short label list never fails, it only
degrades names to a fallback.
"""

from __future__ import annotations

import logging
import os
from typing import List, Sequence

import yaml

UNKNOWN_LABEL = "Unknown"


def load_labels(path: str) -> List[str]:
    """
    Load an ordered list of class names.

    Supports:
    - plain text, one name per line (reading stops at the first blank line)
    - YAML with a ``names`` list, or a ``names`` mapping of index -> name

    Returns an empty list (and logs a warning) if the file is missing or
    cannot be parsed.
    """
    if not path or not os.path.exists(path):
        logging.warning(f"Label file not found at {path}; class names will use fallbacks")
        return []

    try:
        if path.endswith((".yaml", ".yml")):
            return _load_yaml_labels(path)
        return _load_text_labels(path)
    except (OSError, UnicodeDecodeError, yaml.YAMLError, ValueError) as e:
        logging.error(f"Error loading labels from {path}: {e}")
        return []


def _load_text_labels(path: str) -> List[str]:
    labels: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            name = line.rstrip("\r\n")
            if not name:
                break
            labels.append(name)
    logging.info(f"Loaded {len(labels)} labels from {path}")
    return labels


def _load_yaml_labels(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    names = data.get("names") if isinstance(data, dict) else data
    if isinstance(names, dict):
        # Sort by integer key so index i maps to names[i]
        items = sorted(names.items(), key=lambda item: int(item[0]))
        labels = [str(name) for _, name in items]
    elif isinstance(names, list):
        labels = [str(name) for name in names]
    else:
        logging.warning(f"Unexpected label format in {path}; class names will use fallbacks")
        return []

    logging.info(f"Loaded {len(labels)} labels from {path}")
    return labels


def resolve_class_name(labels: Sequence[str], class_index: int, fallback: str = UNKNOWN_LABEL) -> str:
    """Look up a class name by index, returning ``fallback`` when out of range."""
    if 0 <= class_index < len(labels):
        return labels[class_index]
    return fallback
