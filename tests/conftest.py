"""Synthetic landmark builders and effector fakes shared by the test suite."""

import math
import random

import numpy as np
import pytest

from wakewatch import landmarks as L
from wakewatch.landmarks import PoseLandmarks

EYE_WIDTH = 0.06
RIGHT_EYE_CENTER = (0.40, 0.40)
LEFT_EYE_CENTER = (0.60, 0.40)
MOUTH_WIDTH = 0.10


def _place_eye(pts, indices, contour, center, ear):
    cx, cy = center
    h = ear * EYE_WIDTH
    p1, p2, p3, p4, p5, p6 = indices
    for idx in contour:
        pts[idx] = (cx, cy, 0.0)
    pts[p1] = (cx - EYE_WIDTH / 2, cy, 0.0)
    pts[p4] = (cx + EYE_WIDTH / 2, cy, 0.0)
    pts[p2] = (cx - EYE_WIDTH / 6, cy - h / 2, 0.0)
    pts[p6] = (cx - EYE_WIDTH / 6, cy + h / 2, 0.0)
    pts[p3] = (cx + EYE_WIDTH / 6, cy - h / 2, 0.0)
    pts[p5] = (cx + EYE_WIDTH / 6, cy + h / 2, 0.0)


def make_face(ear=0.30, mar=0.10, pitch=0.0, tilt=0.0, gaze=0.0, width=0.25):
    """A 478-point face whose extractors read back the requested values."""
    pts = np.full((478, 3), 0.5)
    pts[:, 2] = 0.0

    _place_eye(pts, L.RIGHT_EYE_EAR, L.RIGHT_EYE_CONTOUR, RIGHT_EYE_CENTER, ear)
    _place_eye(pts, L.LEFT_EYE_EAR, L.LEFT_EYE_CONTOUR, LEFT_EYE_CENTER, ear)

    # Iris position across each eye's corner-to-corner span
    frac = (gaze + 1.0) / 2.0
    pts[L.RIGHT_IRIS] = (RIGHT_EYE_CENTER[0] - EYE_WIDTH / 2 + frac * EYE_WIDTH, 0.40, 0.0)
    pts[L.LEFT_IRIS] = (LEFT_EYE_CENTER[0] - EYE_WIDTH / 2 + frac * EYE_WIDTH, 0.40, 0.0)

    v = mar * MOUTH_WIDTH
    pts[L.MOUTH_LEFT] = (0.5 - MOUTH_WIDTH / 2, 0.7, 0.0)
    pts[L.MOUTH_RIGHT] = (0.5 + MOUTH_WIDTH / 2, 0.7, 0.0)
    for idx in L.MOUTH_TOP:
        pts[idx] = (0.5, 0.7 - v / 2, 0.0)
    for idx in L.MOUTH_BOTTOM:
        pts[idx] = (0.5, 0.7 + v / 2, 0.0)

    theta = math.radians(pitch)
    pts[L.FOREHEAD] = (0.5, 0.2, 0.0)
    pts[L.CHIN] = (0.5, 0.2 + 0.6 * math.cos(theta), 0.6 * math.sin(theta))

    pts[L.FACE_LEFT_EDGE] = (0.5 - width / 2, 0.5, 0.0)
    pts[L.FACE_RIGHT_EDGE] = (0.5 + width / 2, 0.5, 0.0)

    if tilt:
        a = math.radians(tilt)
        rot = np.array([[math.cos(a), -math.sin(a)], [math.sin(a), math.cos(a)]])
        pts[:, :2] = (pts[:, :2] - 0.5) @ rot.T + 0.5
    return pts


def make_pose(vertical=0.30, lean=0.0, visibility=0.9):
    pts = np.zeros((33, 3))
    pts[L.POSE_LEFT_SHOULDER] = (0.6, 0.4, 0.0)
    pts[L.POSE_RIGHT_SHOULDER] = (0.4, 0.4, 0.0)
    dz = vertical * math.tan(math.radians(lean))
    pts[L.POSE_LEFT_HIP] = (0.58, 0.4 + vertical, dz)
    pts[L.POSE_RIGHT_HIP] = (0.42, 0.4 + vertical, dz)
    return PoseLandmarks(points=pts, visibility=np.full(33, visibility))


class FakeAnnouncer:
    def __init__(self):
        self.spoken = []
        self.stops = 0

    def speak(self, message, priority="medium"):
        self.spoken.append((message, priority))
        return True

    def stop(self):
        self.stops += 1

    def reset(self):
        self.spoken.clear()


class FakeTone:
    def __init__(self):
        self.played = []
        self.stops = 0

    def play(self, level):
        self.played.append(level)
        return True

    def stop(self):
        self.stops += 1

    def close(self):
        pass


class FakeBridge:
    def __init__(self):
        self.snapshots = []

    def push_attention(self, snapshot):
        self.snapshots.append(snapshot)


FPS = 30.0


def run_frames(session, face, start, seconds):
    """Feed `face` at 30 fps for `seconds`; returns (last_result, next_timestamp)."""
    result = None
    n = int(round(seconds * FPS))
    t = start
    for _ in range(n):
        result = session.process_frame(face, now=t)
        t += 1.0 / FPS
    return result, t


def calibrate(session, start=0.0, **face):
    """Run a full calibration pass on a neutral face; returns the next timestamp."""
    _, t = run_frames(session, make_face(**face), start, 4.2)
    assert session.calibrator.is_complete
    return t


@pytest.fixture
def announcer():
    return FakeAnnouncer()


@pytest.fixture
def tone():
    return FakeTone()


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def session(announcer, tone, bridge):
    from wakewatch.session import AttentionSession
    s = AttentionSession(announcer=announcer, tone=tone, bridge=bridge,
                         clock=lambda: 0.0, rng=random.Random(7))
    s.start(now=0.0)
    return s
