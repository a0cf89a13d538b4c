"""
============================================================
 WakeWatch — Landmark Detection
 MediaPipe FaceLandmarker + PoseLandmarker in VIDEO mode,
 reduced to plain landmark arrays for the session.
============================================================
"""

import logging
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np

from wakewatch import config
from wakewatch.landmarks import PoseLandmarks, as_points

logger = logging.getLogger(__name__)

BaseOptions = mp.tasks.BaseOptions
FaceLandmarker = mp.tasks.vision.FaceLandmarker
FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
PoseLandmarker = mp.tasks.vision.PoseLandmarker
PoseLandmarkerOptions = mp.tasks.vision.PoseLandmarkerOptions
VisionRunningMode = mp.tasks.vision.RunningMode


class LandmarkPipeline:
    """Runs face detection every frame and pose detection at its own slower cadence."""

    def __init__(self, face_model: str = config.FACE_LANDMARKER_MODEL_PATH,
                 pose_model: Optional[str] = config.POSE_LANDMARKER_MODEL_PATH):
        self._face = FaceLandmarker.create_from_options(FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=face_model),
            running_mode=VisionRunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
        ))
        logger.info("[PERCEPTION] FaceLandmarker loaded ✓")

        self._pose = None
        if pose_model:
            try:
                self._pose = PoseLandmarker.create_from_options(PoseLandmarkerOptions(
                    base_options=BaseOptions(model_asset_path=pose_model),
                    running_mode=VisionRunningMode.VIDEO,
                    num_poses=1,
                ))
                logger.info("[PERCEPTION] PoseLandmarker loaded ✓")
            except (RuntimeError, ValueError) as e:
                logger.warning("[PERCEPTION] ⚠ Pose model unavailable — posture disabled: %s", e)
        self._last_ts = -1
        self._last_pose_ts = None

    def _to_image(self, frame: np.ndarray):
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

    def _timestamp(self, timestamp_ms: int) -> int:
        # VIDEO mode requires strictly increasing timestamps
        ts = max(int(timestamp_ms), self._last_ts + 1)
        self._last_ts = ts
        return ts

    def detect_face(self, frame: np.ndarray, timestamp_ms: int) -> Optional[np.ndarray]:
        result = self._face.detect_for_video(self._to_image(frame), self._timestamp(timestamp_ms))
        if not result.face_landmarks:
            return None
        return as_points(result.face_landmarks[0])

    def pose_due(self, timestamp_ms: int) -> bool:
        if self._pose is None:
            return False
        if self._last_pose_ts is None:
            return True
        return timestamp_ms - self._last_pose_ts >= config.POSE_INTERVAL * 1000

    def detect_pose(self, frame: np.ndarray, timestamp_ms: int) -> Optional[PoseLandmarks]:
        if self._pose is None:
            return None
        self._last_pose_ts = timestamp_ms
        result = self._pose.detect_for_video(self._to_image(frame), self._timestamp(timestamp_ms))
        if not result.pose_landmarks:
            return None
        return PoseLandmarks.from_mediapipe(result.pose_landmarks[0])

    def close(self) -> None:
        self._face.close()
        if self._pose is not None:
            self._pose.close()
