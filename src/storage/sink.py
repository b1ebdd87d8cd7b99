"""
Image sink for persisted captures.

Each capture is written as a YOLO dataset pair:

    <output_dir>/images/<YYYYmmdd_HHMMSS>.jpg   resized to the reference size
    <output_dir>/labels/<YYYYmmdd_HHMMSS>.txt   one "classId cx cy w h" line per box

The label text is also embedded in the JPEG's EXIF ImageDescription tag so the
image stays self-describing when copied on its own.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Sequence

import cv2
import numpy as np
import piexif

from domain.errors import PersistenceFailure
from models.config import StorageConfig
from models.detection import Detection
from storage.labels import format_label_lines


class ImageSink:
    """
    Writes captured frames and their label files to disk.

    Any failure to write the image, the label file or the EXIF block raises
    PersistenceFailure.
    """

    def __init__(
        self,
        output_dir: str,
        reference_size: int = 640,
        jpeg_quality: int = 95,
        embed_exif_labels: bool = True,
        export_class_ids: Optional[Dict[str, int]] = None,
    ):
        self.output_dir = Path(output_dir)
        self.images_dir = self.output_dir / "images"
        self.labels_dir = self.output_dir / "labels"
        self.reference_size = reference_size
        self.jpeg_quality = jpeg_quality
        self.embed_exif_labels = embed_exif_labels
        self.export_class_ids = export_class_ids

    def save(
        self,
        image: np.ndarray,
        detections: Sequence[Detection],
        captured_at: Optional[datetime] = None,
    ) -> Path:
        """
        Persist one capture.

        Args:
            image: BGR frame.
            detections: Boxes normalized to the frame.
            captured_at: Capture time used for the file name and EXIF.

        Returns:
            Path of the written JPEG.

        Raises:
            PersistenceFailure: If anything could not be written.
        """
        captured_at = captured_at or datetime.now()
        try:
            os.makedirs(self.images_dir, exist_ok=True)
            os.makedirs(self.labels_dir, exist_ok=True)

            stem = self._unique_stem(captured_at.strftime("%Y%m%d_%H%M%S"))
            image_path = self.images_dir / f"{stem}.jpg"
            label_path = self.labels_dir / f"{stem}.txt"

            size = (self.reference_size, self.reference_size)
            resized = cv2.resize(image, size, interpolation=cv2.INTER_AREA)
            if not cv2.imwrite(str(image_path), resized, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]):
                raise OSError(f"cv2.imwrite returned False for {image_path}")

            label_text = format_label_lines(detections, self.export_class_ids)
            label_path.write_text(label_text + "\n" if label_text else "", encoding="utf-8")

            if self.embed_exif_labels:
                self._write_exif(image_path, label_text, captured_at)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Failed to save capture to {self.output_dir}: {e}") from e

        logging.info(
            f"Saved capture {image_path.name} ({self.reference_size}x{self.reference_size}) "
            f"with {len(detections)} detections"
        )
        return image_path

    def _unique_stem(self, base: str) -> str:
        stem = base
        suffix = 1
        while (self.images_dir / f"{stem}.jpg").exists():
            stem = f"{base}_{suffix}"
            suffix += 1
        return stem

    @staticmethod
    def _write_exif(image_path: Path, label_text: str, captured_at: datetime) -> None:
        exif_dt_str = captured_at.strftime("%Y:%m:%d %H:%M:%S")
        exif_dict = {
            "0th": {},
            "Exif": {
                piexif.ExifIFD.DateTimeOriginal: exif_dt_str,
                piexif.ExifIFD.DateTimeDigitized: exif_dt_str,
            },
            "GPS": {},
        }
        if label_text:
            exif_dict["0th"][piexif.ImageIFD.ImageDescription] = label_text.encode("ascii")
        piexif.insert(piexif.dump(exif_dict), str(image_path))
        logging.debug(f"Embedded labels in EXIF of {image_path.name}")


def read_exif_labels(image_path: str) -> str:
    """Return the label text stored in a capture's EXIF ImageDescription."""
    exif_dict = piexif.load(str(image_path))
    raw = exif_dict.get("0th", {}).get(piexif.ImageIFD.ImageDescription, b"")
    if isinstance(raw, bytes):
        return raw.decode("ascii", errors="replace")
    return str(raw)


def create_image_sink(storage: StorageConfig, export_class_ids: Optional[Dict[str, int]] = None) -> ImageSink:
    """Factory: build an ImageSink from the storage config section."""
    return ImageSink(
        output_dir=storage.output_dir,
        reference_size=storage.reference_size,
        jpeg_quality=storage.jpeg_quality,
        embed_exif_labels=storage.embed_exif_labels,
        export_class_ids=export_class_ids,
    )
