"""
============================================================
 WakeWatch — Threaded Camera
 A capture thread publishes (frame_id, frame) pairs; the
 processing loop asks only for frames it has not seen yet.
============================================================
"""

import logging
import threading
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from wakewatch import config

logger = logging.getLogger(__name__)


class Camera:
    def __init__(self, src: Optional[int] = None, flip: bool = config.CAMERA_FLIP_HORIZONTAL):
        self.src = config.CAMERA_INDEX if src is None else src
        self.flip = flip
        self.cap = None
        self.running = False
        self.fps = 0.0
        self.failures = 0
        self._latest: Tuple[int, Optional[np.ndarray]] = (0, None)
        self._thread: Optional[threading.Thread] = None

    # ── Lifecycle ────────────────────────────────────────────

    def start(self) -> "Camera":
        self.cap = self._open()
        if self.cap is None:
            logger.error("[CAMERA] ✗ Could not open source %s; will keep retrying", self.src)
        self.running = True
        self._thread = threading.Thread(target=self._capture, daemon=True, name="Camera")
        self._thread.start()
        return self

    def stop(self) -> None:
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=3)
        self._release()
        logger.info("[CAMERA] Stopped (%d frames captured)", self._latest[0])

    def _open(self):
        cap = cv2.VideoCapture(self.src)
        if not cap.isOpened():
            cap.release()
            return None
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.CAMERA_HEIGHT)
        cap.set(cv2.CAP_PROP_FPS, config.CAMERA_FPS)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        logger.info("[CAMERA] Source %s open at %dx%d", self.src,
                    int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))
        return cap

    def _release(self) -> None:
        cap, self.cap = self.cap, None
        if cap is not None:
            cap.release()

    # ── Capture thread ───────────────────────────────────────

    def _capture(self) -> None:
        window_start, window_frames = time.time(), 0
        while self.running:
            if self.cap is None:
                time.sleep(config.CAMERA_RECONNECT_DELAY)
                self.cap = self._open()
                continue

            ok, frame = self.cap.read()
            if not ok or frame is None:
                self.failures += 1
                if self.failures >= config.CAMERA_FPS:
                    logger.warning("[CAMERA] No frames from source %s; reopening", self.src)
                    self._release()
                    self.failures = 0
                continue

            self.failures = 0
            if self.flip:
                frame = cv2.flip(frame, 1)
            self._latest = (self._latest[0] + 1, frame)

            window_frames += 1
            elapsed = time.time() - window_start
            if elapsed >= 1.0:
                self.fps = window_frames / elapsed
                window_start, window_frames = time.time(), 0

    # ── Readers ──────────────────────────────────────────────

    def latest(self, after: int = 0) -> Tuple[int, Optional[np.ndarray]]:
        """Newest (frame_id, frame), or (after, None) when nothing newer has arrived."""
        frame_id, frame = self._latest
        if frame is None or frame_id <= after:
            return after, None
        return frame_id, frame

    @property
    def is_opened(self) -> bool:
        return self.cap is not None and self.cap.isOpened()
