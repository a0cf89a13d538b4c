"""
============================================================
 WakeWatch — Geometric Feature Extractors
 Pure per-frame measurements over landmark arrays.
 Degenerate geometry never raises: it yields 0.0.
============================================================
"""

import math
from typing import Optional, Sequence

import numpy as np

from wakewatch import config
from wakewatch.landmarks import (
    CHIN, FACE_LEFT_EDGE, FACE_RIGHT_EDGE, FOREHEAD,
    LEFT_EYE_CONTOUR, LEFT_EYE_CORNERS, LEFT_EYE_EAR, LEFT_EYE_OUTER, LEFT_IRIS,
    MOUTH_BOTTOM, MOUTH_LEFT, MOUTH_RIGHT, MOUTH_TOP,
    POSE_LEFT_HIP, POSE_LEFT_SHOULDER, POSE_RIGHT_HIP, POSE_RIGHT_SHOULDER, POSE_TORSO,
    RIGHT_EYE_CONTOUR, RIGHT_EYE_CORNERS, RIGHT_EYE_EAR, RIGHT_EYE_OUTER, RIGHT_IRIS,
    PoseLandmarks,
)

_TOWARD_CAMERA = np.array([0.0, 0.0, -1.0])


def _has(points: Optional[np.ndarray], *indices: int) -> bool:
    return points is not None and len(points) > max(indices)


def _normalize(vec: np.ndarray) -> np.ndarray:
    length = np.linalg.norm(vec)
    if length == 0 or not np.isfinite(length):
        return np.zeros(3)
    return vec / length


def _dist2d(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a[:2] - b[:2]))


# ═════════════════════════════════════════════════════════════
#  FACE
# ═════════════════════════════════════════════════════════════

def compute_ear(eye: Sequence) -> float:
    """6-point eye aspect ratio, measured in the image plane."""
    pts = np.asarray(eye, dtype=np.float64)
    if pts.ndim != 2 or len(pts) < 6:
        return 0.0
    horizontal = _dist2d(pts[0], pts[3])
    if horizontal == 0:
        return 0.0
    v1 = _dist2d(pts[1], pts[5])
    v2 = _dist2d(pts[2], pts[4])
    ear = (v1 + v2) / (2.0 * horizontal)
    return float(ear) if math.isfinite(ear) else 0.0


def compute_average_ear(points: Optional[np.ndarray]) -> float:
    if not _has(points, *LEFT_EYE_EAR, *RIGHT_EYE_EAR):
        return 0.0
    left = compute_ear(points[LEFT_EYE_EAR])
    right = compute_ear(points[RIGHT_EYE_EAR])
    return (left + right) / 2.0


def compute_mar(points: Optional[np.ndarray]) -> float:
    """Mouth aspect ratio: mean inner-lip opening over corner width (3-D)."""
    if not _has(points, *MOUTH_TOP, *MOUTH_BOTTOM, MOUTH_LEFT, MOUTH_RIGHT):
        return 0.0
    horizontal = float(np.linalg.norm(points[MOUTH_LEFT] - points[MOUTH_RIGHT]))
    if horizontal == 0:
        return 0.0
    v1 = np.linalg.norm(points[MOUTH_TOP[0]] - points[MOUTH_BOTTOM[0]])
    v2 = np.linalg.norm(points[MOUTH_TOP[1]] - points[MOUTH_BOTTOM[1]])
    mar = float((v1 + v2) / 2.0 / horizontal)
    return mar if math.isfinite(mar) else 0.0


def compute_head_pitch(points: Optional[np.ndarray]) -> float:
    """
    Head pitch in degrees (positive = chin down), from the face's
    forward normal: the cross product of the eye-to-eye and
    forehead-to-chin axes that faces the camera.
    """
    if not _has(points, FOREHEAD, CHIN, LEFT_EYE_OUTER, RIGHT_EYE_OUTER):
        return 0.0
    limit = config.HEAD_PITCH_LIMIT
    side = _normalize(points[LEFT_EYE_OUTER] - points[RIGHT_EYE_OUTER])
    down = _normalize(points[CHIN] - points[FOREHEAD])

    a = np.cross(side, down)
    b = np.cross(down, side)
    forward = a if np.dot(a, _TOWARD_CAMERA) >= np.dot(b, _TOWARD_CAMERA) else b
    forward = _normalize(forward)

    if not forward.any():
        if not down.any():
            return 0.0
        pitch = math.degrees(math.atan2(-down[2], down[1] or 1e-6))
        return float(np.clip(pitch, -limit, limit))

    pitch = math.degrees(math.asin(float(np.clip(forward[1], -1.0, 1.0))))
    return float(np.clip(pitch, -limit, limit))


def _eye_center(points: np.ndarray, contour: list) -> np.ndarray:
    return points[contour].mean(axis=0)


def compute_head_tilt(points: Optional[np.ndarray]) -> float:
    """Roll in degrees: angle of the line between the eye centers."""
    if not _has(points, *LEFT_EYE_CONTOUR, *RIGHT_EYE_CONTOUR):
        return 0.0
    left = _eye_center(points, LEFT_EYE_CONTOUR)
    right = _eye_center(points, RIGHT_EYE_CONTOUR)
    dx = left[0] - right[0]
    dy = left[1] - right[1]
    if dx == 0 and dy == 0:
        return 0.0
    angle = math.degrees(math.atan2(dy, dx))
    if angle > 90:
        angle -= 180
    elif angle < -90:
        angle += 180
    return float(angle)


def _eye_gaze(points: np.ndarray, iris: int, corners: tuple) -> float:
    left_corner, right_corner = points[corners[0]], points[corners[1]]
    width = abs(right_corner[0] - left_corner[0])
    if width == 0:
        return 0.0
    return float((points[iris][0] - left_corner[0]) / width * 2.0 - 1.0)


def compute_horizontal_gaze(points: Optional[np.ndarray]) -> float:
    """Horizontal gaze in [-1, 1] (0 = centered). Needs iris landmarks."""
    if not _has(points, LEFT_IRIS, RIGHT_IRIS):
        return 0.0
    right = _eye_gaze(points, RIGHT_IRIS, RIGHT_EYE_CORNERS)
    left = _eye_gaze(points, LEFT_IRIS, LEFT_EYE_CORNERS)
    return (right + left) / 2.0


def compute_face_width(points: Optional[np.ndarray]) -> float:
    if not _has(points, FACE_LEFT_EDGE, FACE_RIGHT_EDGE):
        return 0.0
    return float(abs(points[FACE_RIGHT_EDGE][0] - points[FACE_LEFT_EDGE][0]))


# ═════════════════════════════════════════════════════════════
#  BODY POSE
# ═════════════════════════════════════════════════════════════

def _torso_midpoints(pose: PoseLandmarks):
    pts = pose.points
    shoulders = (pts[POSE_LEFT_SHOULDER] + pts[POSE_RIGHT_SHOULDER]) / 2.0
    hips = (pts[POSE_LEFT_HIP] + pts[POSE_RIGHT_HIP]) / 2.0
    return shoulders, hips


def compute_posture_vertical(pose: Optional[PoseLandmarks]) -> float:
    """Vertical shoulder-to-hip distance (normalized image units)."""
    if pose is None or not _has(pose.points, *POSE_TORSO):
        return 0.0
    shoulders, hips = _torso_midpoints(pose)
    return float(hips[1] - shoulders[1])


def compute_lean_angle(pose: Optional[PoseLandmarks]) -> float:
    """Torso lean in degrees from the shoulder/hip depth offset."""
    if pose is None or not _has(pose.points, *POSE_TORSO):
        return 0.0
    shoulders, hips = _torso_midpoints(pose)
    dz = hips[2] - shoulders[2]
    dy = hips[1] - shoulders[1]
    if dz == 0 and dy == 0:
        return 0.0
    return float(math.degrees(math.atan2(dz, dy)))


def compute_body_presence(pose: Optional[PoseLandmarks]) -> float:
    if pose is None or len(pose.visibility) <= max(POSE_TORSO):
        return 0.0
    return float(np.mean(pose.visibility[POSE_TORSO]))


def compute_shoulder_width(pose: Optional[PoseLandmarks]) -> float:
    if pose is None or not _has(pose.points, POSE_LEFT_SHOULDER, POSE_RIGHT_SHOULDER):
        return 0.0
    return _dist2d(pose.points[POSE_LEFT_SHOULDER], pose.points[POSE_RIGHT_SHOULDER])
