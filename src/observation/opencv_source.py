"""
Frame source backed by cv2.VideoCapture.

device_id selects the input:
- int: local camera index
- "rtsp://..." / "rtsps://...": network camera
- any other string: path to a video file

Live inputs keep a one-frame capture buffer, so the frame handed out is the
newest one the driver has. Video files are stamped with open time plus the
media position, which lets a recording replay through the rate gate and the
save quota as if it were live, however fast it decodes.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import numpy as np

from models.config import CameraConfig
from models.frame import FrameData
from .base import ObservationSource, ObservationConfig

RTSP_SCHEMES = ("rtsp://", "rtsps://")

# Reads that may fail in a row on a live input before read() gives up
MAX_READ_FAILURES = 3

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def mask_url(device_id: Union[int, str]) -> str:
    """Hide the password in a stream URL so it can be logged."""
    text = str(device_id)
    scheme, sep, remainder = text.partition("://")
    if not sep:
        return text

    authority, slash, path = remainder.partition("/")
    credentials, at, host = authority.rpartition("@")
    if not at:
        return text

    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:*****@{host}{slash}{path}"


@dataclass
class OpenCVSourceConfig(ObservationConfig):
    """
    Settings for OpenCVSource.

    Attributes:
        device_id: Camera index, stream URL or video file path.
        rtsp_transport: "tcp" or "udp" for RTSP streams.
        buffer_size: Driver-side frame buffer; 1 keeps only the newest frame.
        max_retries: Open attempts before giving up.
        swap_rb: Exchange the red and blue channels.
        rotate: Clockwise rotation in degrees (0, 90, 180, 270).
        flip_horizontal: Mirror left-right.
        flip_vertical: Mirror top-bottom.
    """
    device_id: Union[int, str] = 0
    rtsp_transport: str = "tcp"
    buffer_size: int = 1
    max_retries: int = 3
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_camera_config(cls, camera: CameraConfig, source_id: str = "camera") -> "OpenCVSourceConfig":
        """Build source settings from the camera section of the config."""
        return cls(
            source_id=source_id,
            resolution=tuple(camera.resolution) if camera.resolution else None,
            fps=camera.fps,
            device_id=camera.device_id,
            buffer_size=camera.buffer_size,
            swap_rb=camera.swap_rb,
            rotate=camera.rotate,
            flip_horizontal=camera.flip_horizontal,
            flip_vertical=camera.flip_vertical,
        )


class OpenCVSource(ObservationSource):
    """
    Camera, stream or video file read through OpenCV.

    Example:
        with OpenCVSource(OpenCVSourceConfig(device_id="clip.mp4")) as source:
            for frame_data in source:
                controller.process_frame(frame_data.frame, frame_data.timestamp_ms)
    """

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self._settings = config
        self._capture: Optional[cv2.VideoCapture] = None
        self._read_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def device_id(self) -> Union[int, str]:
        return self._settings.device_id

    @property
    def is_rtsp(self) -> bool:
        return isinstance(self.device_id, str) and self.device_id.startswith(RTSP_SCHEMES)

    @property
    def is_file(self) -> bool:
        return isinstance(self.device_id, str) and not self.is_rtsp and os.path.exists(self.device_id)

    def open(self) -> None:
        """
        Open the device, retrying with backoff.

        Raises:
            RuntimeError: If the device cannot be opened after max_retries attempts.
        """
        if self._is_open:
            return

        self._connect()
        self._read_failures = 0
        self._is_open = True
        self._frame_index = 0
        self._opened_at = time.time()

        logging.info(
            f"OpenCVSource opened: source_id={self.source_id}, "
            f"device={mask_url(self.device_id)}, resolution={self._settings.resolution}"
        )

    def _connect(self) -> None:
        attempts = max(1, self._settings.max_retries)
        for attempt in range(attempts):
            if attempt > 0:
                delay = min(2 ** attempt, 10)
                logging.info(f"Open attempt {attempt + 1}/{attempts} for {mask_url(self.device_id)} in {delay}s")
                time.sleep(delay)

            self._release_capture()
            if self.is_rtsp:
                os.environ["OPENCV_FFMPEG_CAPTURE_OPTIONS"] = f"rtsp_transport;{self._settings.rtsp_transport}"

            capture = cv2.VideoCapture(self.device_id)
            if capture.isOpened():
                self._capture = capture
                self._configure_capture()
                return

            capture.release()
            logging.warning(f"Could not open {mask_url(self.device_id)}")

        raise RuntimeError(f"Failed to open device {mask_url(self.device_id)} after {attempts} attempts")

    def _configure_capture(self) -> None:
        capture = self._capture
        if not self.is_file:
            capture.set(cv2.CAP_PROP_BUFFERSIZE, self._settings.buffer_size)

        # Resolution and fps only apply to local cameras
        if not isinstance(self.device_id, int) or not self._settings.resolution:
            return

        width, height = self._settings.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        if self._settings.fps:
            capture.set(cv2.CAP_PROP_FPS, self._settings.fps)

        logging.info(
            f"Camera negotiated {capture.get(cv2.CAP_PROP_FRAME_WIDTH):.0f}x"
            f"{capture.get(cv2.CAP_PROP_FRAME_HEIGHT):.0f} @ {capture.get(cv2.CAP_PROP_FPS):.1f} fps"
        )

    def read(self) -> Optional[FrameData]:
        """Return the next frame, or None at end of file or when the camera is lost."""
        if not self._is_open or self._capture is None:
            return None

        ok, frame = self._capture.read()
        if not ok or frame is None:
            frame = self._recover()
            if frame is None:
                return None

        frame = self._apply_transforms(frame)
        self._frame_index += 1
        return FrameData.from_numpy(
            frame,
            timestamp=self._frame_timestamp(),
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def _recover(self) -> Optional[np.ndarray]:
        """Reconnect a live input after a failed read and try once more."""
        self._read_failures += 1

        if self.is_file:
            logging.info(f"End of video file: {self.device_id}")
            return None
        if self._read_failures > MAX_READ_FAILURES:
            logging.error(f"Giving up on {mask_url(self.device_id)} after {self._read_failures} failed reads")
            return None

        logging.warning(f"Frame read failed ({self._read_failures} in a row), reconnecting")
        try:
            self._connect()
        except RuntimeError as e:
            logging.error(f"Reconnect failed: {e}")
            return None

        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        self._read_failures = 0
        return frame

    def _frame_timestamp(self) -> float:
        if self.is_file and self._opened_at is not None:
            return self._opened_at + self._capture.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
        return time.time()

    def _apply_transforms(self, frame: np.ndarray) -> np.ndarray:
        settings = self._settings

        rotation = _ROTATIONS.get(settings.rotate)
        if rotation is not None:
            frame = cv2.rotate(frame, rotation)

        if settings.flip_horizontal or settings.flip_vertical:
            if settings.flip_horizontal and settings.flip_vertical:
                flip_code = -1
            else:
                flip_code = 1 if settings.flip_horizontal else 0
            frame = cv2.flip(frame, flip_code)

        if settings.swap_rb:
            frame = np.ascontiguousarray(frame[..., ::-1])

        return frame

    def _release_capture(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def close(self) -> None:
        """Release the capture device. Safe to call multiple times."""
        self._release_capture()
        if self._is_open:
            logging.info(f"OpenCVSource closed: source_id={self.source_id}")
        self._is_open = False


def create_source_from_config(camera: CameraConfig, source_id: str = "main-camera") -> ObservationSource:
    """
    Build the frame source described by the camera config.

    Raises:
        ValueError: If the camera backend is not supported.
    """
    if camera.backend != "opencv":
        raise ValueError(f"Unsupported camera backend: {camera.backend}")
    return OpenCVSource(OpenCVSourceConfig.from_camera_config(camera, source_id=source_id))
