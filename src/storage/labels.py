"""
YOLO label-line format for persisted captures.

One line per box:

    classId cx cy w h

with cx, cy, w, h normalized to [0, 1] of the reference image. Values are
written as the shortest decimal that round-trips a float32 (``0.5``,
``1.0``, ``0.123``), which downstream dataset tooling reads as-is.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from detection.labels import resolve_class_name
from models.detection import Detection


def format_value(value: float) -> str:
    """
    Format a normalized coordinate as the shortest float32 decimal.

    Always positional: 0.0001 is written as ``0.0001``, never ``1.0E-4``, so
    the output differs byte-wise from writers that switch to scientific
    notation below 1e-3. Label readers accept both forms.
    """
    return np.format_float_positional(np.float32(value), trim="0")


def format_label_line(class_id: int, det: Detection) -> str:
    return " ".join(
        [str(class_id)] + [format_value(v) for v in (det.cx, det.cy, det.w, det.h)]
    )


def format_label_lines(
    detections: Sequence[Detection],
    export_class_ids: Optional[Dict[str, int]] = None,
) -> str:
    """
    Serialize detections to label-file text.

    Args:
        detections: Boxes to write.
        export_class_ids: Optional class name -> id mapping. When given,
            detections whose class name is not mapped are left out. When
            omitted, each detection's own class index is written.

    Returns:
        Newline-separated label lines, without a trailing newline.
    """
    lines: List[str] = []
    for det in detections:
        if export_class_ids is None:
            class_id = det.class_index
        elif det.class_name in export_class_ids:
            class_id = int(export_class_ids[det.class_name])
        else:
            logging.debug(f"Class '{det.class_name}' has no export id; skipped in label file")
            continue
        lines.append(format_label_line(class_id, det))
    return "\n".join(lines)


def parse_label_lines(text: str, labels: Sequence[str] = ()) -> List[Detection]:
    """
    Read label-file text back into detections.

    Lines with fewer than five fields or unparsable coordinates are skipped.
    An unparsable class id reads as 0. Class names come from ``labels`` and
    fall back to ``class_<id>``. Confidence is 1.0 for every parsed box.
    """
    detections: List[Detection] = []
    for line in text.splitlines():
        parts = line.strip().split()
        if len(parts) < 5:
            continue
        try:
            class_id = int(parts[0])
        except ValueError:
            class_id = 0
        try:
            cx, cy, w, h = (float(p) for p in parts[1:5])
        except ValueError:
            logging.warning(f"Skipping malformed label line: {line!r}")
            continue
        detections.append(
            Detection(
                cx=cx,
                cy=cy,
                w=w,
                h=h,
                confidence=1.0,
                class_index=class_id,
                class_name=resolve_class_name(labels, class_id, fallback=f"class_{class_id}"),
            )
        )
    return detections
