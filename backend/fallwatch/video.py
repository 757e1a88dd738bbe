from __future__ import annotations

import logging
from typing import Union

import cv2

from .errors import FrameAcquisitionError

logger = logging.getLogger(__name__)


class CameraFrameSource:
    """Blocking OpenCV capture. `source` is a camera index or a file/stream URL."""

    def __init__(self, source: Union[int, str] = 0) -> None:
        self.source = source
        self._cap = cv2.VideoCapture(source)
        if not self._cap.isOpened():
            self._cap.release()
            raise FrameAcquisitionError(f"could not open video source {source!r}")
        logger.debug(
            "Opened video source %r at %dx%d",
            source,
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def read(self):
        ok, frame = self._cap.read()
        if not ok or frame is None:
            raise FrameAcquisitionError(f"video source {self.source!r} stopped delivering frames")
        return frame

    def release(self) -> None:
        self._cap.release()
