import numpy as np
import pytest

from wakewatch import geometry as G
from wakewatch.landmarks import PoseLandmarks, as_points

from conftest import make_face, make_pose


class _Landmark:
    def __init__(self, x, y, z=0.0, visibility=1.0):
        self.x, self.y, self.z, self.visibility = x, y, z, visibility


def test_as_points_from_objects_and_tuples():
    pts = as_points([_Landmark(0.1, 0.2, 0.3), _Landmark(0.4, 0.5)])
    assert pts.shape == (2, 3)
    assert pts[1].tolist() == [0.4, 0.5, 0.0]
    assert as_points([(0.1, 0.2)]).shape == (1, 3)
    assert as_points(None) is None


def test_pose_from_mediapipe_keeps_visibility():
    pose = PoseLandmarks.from_mediapipe([_Landmark(0, 0, 0, 0.25)] * 33)
    assert len(pose) == 33
    assert pose.visibility[11] == pytest.approx(0.25)


@pytest.mark.parametrize("ear", [0.12, 0.25, 0.31])
def test_average_ear_reads_back(ear):
    assert G.compute_average_ear(make_face(ear=ear)) == pytest.approx(ear, abs=1e-9)


def test_ear_coincident_points_is_zero():
    assert G.compute_ear(np.zeros((6, 3))) == 0.0
    assert G.compute_ear([[0, 0, 0]] * 3) == 0.0


def test_ear_and_mar_never_negative():
    rng = np.random.default_rng(3)
    for _ in range(50):
        pts = rng.uniform(-1, 1, size=(478, 3))
        assert G.compute_average_ear(pts) >= 0.0
        assert G.compute_mar(pts) >= 0.0


def test_mar_reads_back_and_degenerate():
    assert G.compute_mar(make_face(mar=0.7)) == pytest.approx(0.7)
    assert G.compute_mar(np.zeros((478, 3))) == 0.0


@pytest.mark.parametrize("pitch", [-20.0, 0.0, 15.0])
def test_head_pitch_reads_back(pitch):
    assert G.compute_head_pitch(make_face(pitch=pitch)) == pytest.approx(pitch, abs=1e-6)


def test_head_pitch_clamped():
    assert G.compute_head_pitch(make_face(pitch=80)) == pytest.approx(60.0)
    assert G.compute_head_pitch(make_face(pitch=-80)) == pytest.approx(-60.0)


def test_head_pitch_degenerate_is_neutral():
    assert G.compute_head_pitch(np.zeros((478, 3))) == 0.0
    assert G.compute_head_pitch(np.zeros((20, 3))) == 0.0


def test_head_tilt_reads_back_and_stays_in_range():
    assert G.compute_head_tilt(make_face()) == pytest.approx(0.0, abs=1e-9)
    assert G.compute_head_tilt(make_face(tilt=25)) == pytest.approx(25.0)
    assert G.compute_head_tilt(make_face(tilt=-40)) == pytest.approx(-40.0)
    # Upside-down faces fold back into [-90, 90]
    assert -90 <= G.compute_head_tilt(make_face(tilt=170)) <= 90


def test_gaze_and_zero_width_eye():
    assert G.compute_horizontal_gaze(make_face(gaze=0.5)) == pytest.approx(0.5)
    assert G.compute_horizontal_gaze(make_face()) == pytest.approx(0.0)
    # Without iris refinement (468 points) gaze is neutral
    assert G.compute_horizontal_gaze(make_face(gaze=0.9)[:468]) == 0.0
    assert G.compute_horizontal_gaze(np.zeros((478, 3))) == 0.0


def test_face_width():
    assert G.compute_face_width(make_face(width=0.3)) == pytest.approx(0.3)
    assert G.compute_face_width(None) == 0.0


def test_posture_measurements():
    pose = make_pose(vertical=0.3, lean=20, visibility=0.8)
    assert G.compute_posture_vertical(pose) == pytest.approx(0.3)
    assert G.compute_lean_angle(pose) == pytest.approx(20.0)
    assert G.compute_body_presence(pose) == pytest.approx(0.8)
    assert G.compute_shoulder_width(pose) == pytest.approx(0.2)


def test_posture_missing_pose_is_neutral():
    assert G.compute_posture_vertical(None) == 0.0
    assert G.compute_lean_angle(None) == 0.0
    assert G.compute_body_presence(None) == 0.0
    empty = PoseLandmarks(points=np.zeros((5, 3)), visibility=np.zeros(5))
    assert G.compute_body_presence(empty) == 0.0
