from __future__ import annotations

import os
import time

import cv2
import numpy as np

from faceclock.exceptions import CameraError
from faceclock.utils.logger import get_logger

logger = get_logger("camera")


def capture_backends() -> list[tuple[str, int | None]]:
    candidates: list[tuple[str, int | None]] = [("Auto", getattr(cv2, "CAP_ANY", None))]
    if os.name == "nt":
        # DirectShow is generally more stable than the default on Windows webcams.
        candidates.insert(0, ("DirectShow", getattr(cv2, "CAP_DSHOW", None)))
        candidates.append(("Media Foundation", getattr(cv2, "CAP_MSMF", None)))
    return candidates


def open_camera_capture(camera_index: int) -> tuple[cv2.VideoCapture, str]:
    attempted: list[str] = []

    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        cap = cv2.VideoCapture(camera_index) if backend is None else cv2.VideoCapture(camera_index, backend)

        if cap.isOpened():
            # Some backends report opened=True but never deliver frames.
            for _ in range(6):
                ok, frame = cap.read()
                if ok and frame is not None:
                    return cap, backend_name
                time.sleep(0.03)
        cap.release()

    tried = ", ".join(attempted) if attempted else "default backend"
    raise CameraError(f"Unable to open webcam index {camera_index}. Tried backends: {tried}.")


class CameraFrameSource:
    """Webcam frame source; ``capture`` returns a BGR frame or None."""

    def __init__(self, camera_index: int = 0, frame_width: int = 1280, frame_height: int = 720):
        self.camera_index = camera_index
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.cap: cv2.VideoCapture | None = None
        self.backend_name: str | None = None

    def __enter__(self) -> "CameraFrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        self.cap, self.backend_name = open_camera_capture(self.camera_index)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        cv2.setUseOptimized(True)
        logger.info(
            "Camera stream opened",
            extra={"event": "camera_opened", "camera_index": self.camera_index, "backend": self.backend_name},
        )

    def capture(self) -> np.ndarray | None:
        if self.cap is None:
            return None
        ok, frame = self.cap.read()
        if not ok or frame is None:
            logger.warning("Frame read failed", extra={"event": "frame_read_failed", "camera_index": self.camera_index})
            return None
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
