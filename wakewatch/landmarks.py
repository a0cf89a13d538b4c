"""
============================================================
 WakeWatch — Landmark Frames
 Normalized face-mesh and body-pose points as numpy arrays,
 plus the mesh indices every extractor relies on.
============================================================
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

# ── Face mesh: eyes (6-point EAR order p1..p6) ──────────────
LEFT_EYE_EAR = [362, 385, 387, 263, 373, 380]
RIGHT_EYE_EAR = [33, 160, 158, 133, 153, 144]

# ── Face mesh: full eye contours (eye centers / roll) ───────
LEFT_EYE_CONTOUR = [362, 398, 384, 385, 386, 387, 388, 466,
                    263, 249, 390, 373, 374, 380, 381, 382]
RIGHT_EYE_CONTOUR = [33, 246, 161, 160, 159, 158, 157, 173,
                     133, 155, 154, 153, 145, 144, 163, 7]

# ── Face mesh: mouth ────────────────────────────────────────
MOUTH_TOP = [13, 14]
MOUTH_BOTTOM = [78, 308]
MOUTH_LEFT = 61
MOUTH_RIGHT = 291

# ── Face mesh: head pose ────────────────────────────────────
FOREHEAD = 10
CHIN = 152
LEFT_EYE_OUTER = 263
RIGHT_EYE_OUTER = 33

# ── Face mesh: iris / gaze ──────────────────────────────────
LEFT_IRIS = 473
RIGHT_IRIS = 468
RIGHT_EYE_CORNERS = (33, 133)
LEFT_EYE_CORNERS = (362, 263)

# ── Face mesh: outline ──────────────────────────────────────
FACE_LEFT_EDGE = 234
FACE_RIGHT_EDGE = 454

# ── Pose ────────────────────────────────────────────────────
POSE_NOSE = 0
POSE_LEFT_SHOULDER = 11
POSE_RIGHT_SHOULDER = 12
POSE_LEFT_HIP = 23
POSE_RIGHT_HIP = 24
POSE_TORSO = [POSE_LEFT_SHOULDER, POSE_RIGHT_SHOULDER, POSE_LEFT_HIP, POSE_RIGHT_HIP]


def as_points(landmarks) -> Optional[np.ndarray]:
    """Convert MediaPipe landmarks (objects with .x/.y/.z) or nested
    sequences into an (N, 3) float array. None stays None."""
    if landmarks is None:
        return None
    if isinstance(landmarks, np.ndarray):
        pts = landmarks.astype(np.float64, copy=False)
    else:
        rows = []
        for lm in landmarks:
            if hasattr(lm, "x"):
                rows.append((lm.x, lm.y, getattr(lm, "z", 0.0) or 0.0))
            else:
                row = tuple(lm)
                rows.append(row if len(row) == 3 else (row[0], row[1], 0.0))
        pts = np.asarray(rows, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    if pts.shape[1] == 2:
        pts = np.hstack([pts, np.zeros((pts.shape[0], 1))])
    return pts


@dataclass(frozen=True)
class PoseLandmarks:
    """33 body points plus the detector's per-point visibility."""
    points: np.ndarray
    visibility: np.ndarray

    @classmethod
    def from_mediapipe(cls, landmarks: Sequence) -> "PoseLandmarks":
        points = as_points(landmarks)
        visibility = np.asarray(
            [float(getattr(lm, "visibility", 1.0) or 0.0) for lm in landmarks],
            dtype=np.float64,
        )
        return cls(points=points, visibility=visibility)

    def __len__(self) -> int:
        return len(self.points)
