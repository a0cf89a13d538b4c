import pytest

from wakewatch import config
from wakewatch.calibration import CalibrationBaseline, Calibrator, effective_ear_threshold


def _feed(cal, n, start=0.0, step=1 / 30, pitch=0.0, ear=0.3):
    result = None
    t = start
    for _ in range(n):
        baseline = cal.add_sample(t, pitch, ear, 1.0, 0.25)
        if baseline is not None:
            result = baseline
        t += step
    return result, t


def test_completes_after_window_and_minimum_samples():
    cal = Calibrator()
    cal.start()
    result, t = _feed(cal, 120)          # 3.97 s
    assert result is None and cal.is_collecting
    result, _ = _feed(cal, 3, start=t)
    assert isinstance(result, CalibrationBaseline)
    assert cal.is_complete and not cal.is_collecting
    assert cal.progress == 1.0


def test_time_alone_is_not_enough():
    cal = Calibrator()
    cal.start()
    result, _ = _feed(cal, 20, step=0.5)  # 10 s but only 20 samples
    assert result is None
    assert not cal.is_complete


def test_samples_alone_are_not_enough():
    cal = Calibrator()
    cal.start()
    result, _ = _feed(cal, 300, step=0.001)
    assert result is None


def test_pitch_uses_median_others_mean():
    cal = Calibrator(window=1.0, min_samples=5)
    cal.start()
    for i, (pitch, ear) in enumerate([(2, 0.3), (2, 0.3), (2, 0.3), (40, 0.3), (2, 0.2)]):
        cal.add_sample(i * 0.25, pitch, ear, 4.0, 0.2)
    baseline = cal.baseline
    assert baseline.pitch == pytest.approx(2.0)
    assert baseline.ear == pytest.approx(0.28)
    assert baseline.tilt == pytest.approx(4.0)
    assert baseline.face_width == pytest.approx(0.2)


def test_interrupt_discards_samples_and_restarts_window():
    cal = Calibrator()
    cal.start()
    _, t = _feed(cal, 100)
    cal.interrupt()
    assert cal.sample_count == 0
    assert cal.progress == 0.0
    result, t = _feed(cal, 100, start=t)
    assert result is None                # the window restarted at the first new sample
    result, _ = _feed(cal, 30, start=t)
    assert result is not None


def test_progress_tracks_window():
    cal = Calibrator(window=4.0)
    cal.start()
    cal.add_sample(10.0, 0, 0.3, 0, 0.25)
    cal.add_sample(12.0, 0, 0.3, 0, 0.25)
    assert cal.progress == pytest.approx(0.5)


def test_samples_ignored_when_not_collecting():
    cal = Calibrator()
    assert cal.add_sample(0.0, 0, 0.3, 0, 0.25) is None
    assert cal.sample_count == 0


def test_effective_ear_threshold():
    floor = config.EAR_THRESHOLD * 0.75
    assert effective_ear_threshold(CalibrationBaseline(0, 0.32, 0, 0.2)) == pytest.approx(0.24)
    assert effective_ear_threshold(CalibrationBaseline(0, 0.10, 0, 0.2)) == pytest.approx(floor)
    assert effective_ear_threshold(None) == config.EAR_THRESHOLD
