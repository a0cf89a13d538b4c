"""
============================================================
 WakeWatch — Processing Loop
 Camera -> landmarks -> session, on one background thread.
 Needs the `camera` extra (opencv-python, mediapipe).
============================================================
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)


class ProcessingLoop:
    def __init__(self, session, camera, landmarks):
        self.session = session
        self.camera = camera
        self.landmarks = landmarks
        self._running = False
        self._thread = None
        self.frames = 0

    def start(self):
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name="Processing")
        self._thread.start()
        logger.info("[ENGINE] Processing thread started ✓")
        return self

    def _run(self):
        last_id = 0
        while self._running:
            frame_id, frame = self.camera.latest(after=last_id)
            if frame is None:
                time.sleep(0.002)
                continue
            last_id = frame_id

            now = time.time()
            ts_ms = int(now * 1000)
            try:
                face = self.landmarks.detect_face(frame, ts_ms)
                if self.landmarks.pose_due(ts_ms):
                    self.session.process_pose(self.landmarks.detect_pose(frame, ts_ms), now)
                self.session.process_frame(face, now)
            except Exception:
                logger.exception("[ENGINE] Frame %d failed", self.frames)
            self.frames += 1

    def stop(self):
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=3)
        logger.info("[ENGINE] Processing thread stopped")
