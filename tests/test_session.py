import random
import re

import pytest

from wakewatch import config
from wakewatch.alarms import TIER_NODDING, TIER_SLEEPING
from wakewatch.escalation import ALARMED, QUIET
from wakewatch.session import AttentionSession

from conftest import FPS, calibrate, make_face, make_pose, run_frames

AWAKE, NODDING, SLEEPING = config.STATE_AWAKE, config.STATE_NODDING, config.STATE_SLEEPING


def _missing(session, start, frames):
    """Feed `frames` face-less frames at exact 30 fps timestamps."""
    result = None
    for k in range(frames):
        result = session.process_frame(None, now=start + k / FPS)
    return result


# ── Calibration gating ───────────────────────────────────────

def test_placeholder_until_calibrated(session, announcer):
    result = session.process_frame(make_face(ear=0.05), now=0.0)
    assert (result.state, result.confidence) == (AWAKE, 0.15)
    assert result.calibrating
    run_frames(session, make_face(ear=0.05), 1 / FPS, 2.0)
    assert session.escalator.phase == QUIET
    assert announcer.spoken == []


def test_lost_face_during_calibration(session):
    _, t = run_frames(session, make_face(), 0.0, 2.0)
    result = session.process_frame(None, now=t)
    assert (result.state, result.confidence) == (AWAKE, 0.2)
    assert session.calibrator.sample_count == 0
    assert session.calibrator.is_collecting
    assert session.escalator.alarms == []


def test_calibrated_alert_user_is_awake(session):
    t = calibrate(session)
    result, _ = run_frames(session, make_face(), t, 1.0)
    assert result.state == AWAKE
    assert result.confidence > 0.9
    assert not result.calibrating


def test_baseline_offsets_apply(session):
    t = calibrate(session, pitch=8.0, tilt=20.0)
    result, _ = run_frames(session, make_face(pitch=8.0, tilt=20.0), t, 1.0)
    assert result.state == AWAKE
    assert abs(result.metrics["headPitchDeg"]) < 1e-6
    assert abs(result.metrics["headTiltDeg"]) < 1e-6


def test_posture_baseline_latched_at_calibration(session):
    session.process_pose(make_pose(vertical=0.32), now=0.0)
    calibrate(session)
    assert session.posture.baseline_vertical == pytest.approx(0.32)


# ── Eyes-closed escalation ───────────────────────────────────

def test_sustained_closure_escalates_to_sleeping_alarm(session, announcer, tone):
    t = calibrate(session)
    _, t = run_frames(session, make_face(), t, 3.0)
    result, t = run_frames(session, make_face(ear=0.05), t, 8.0)

    assert result.state == SLEEPING
    assert result.eyes_closed_sec > 5
    esc = session.escalator
    assert esc.phase == ALARMED and esc.tier == TIER_SLEEPING
    assert len(esc.alarms) == 5
    assert esc.challenge.type in ("math", "trivia")
    assert "critical" in tone.played
    spoken = [m for m, _ in announcer.spoken]
    assert spoken[0] == "Your eyes are closing. Stay alert."
    assert "Please open your eyes." in spoken

    challenge = esc.challenge
    _, t = run_frames(session, make_face(ear=0.05), t, 2.0)
    assert esc.challenge is challenge
    assert esc.alarm_count == 1

    assert session.acknowledge(challenge.expected_answer) is False   # still asleep
    result, t = run_frames(session, make_face(), t, 1.0)
    assert result.state == AWAKE
    assert esc.phase == ALARMED                                      # waits for the answer
    assert session.acknowledge("not it") is False
    assert session.acknowledge(challenge.expected_answer) is True
    assert esc.phase == QUIET and esc.alarms == []


def test_brief_dip_recovers_without_alarm(session):
    t = calibrate(session)
    _, t = run_frames(session, make_face(), t, 3.0)
    result, t = run_frames(session, make_face(ear=0.05), t, 3.0)
    assert result.state == NODDING
    assert session.escalator.phase == "warning"
    result, t = run_frames(session, make_face(), t, 1.0)
    assert result.state == AWAKE
    assert session.escalator.phase == QUIET
    assert session.escalator.alarm_count == 0


# ── Absence ──────────────────────────────────────────────────

def test_absence_escalates_through_nodding_to_sleeping(session, tone):
    t = calibrate(session)
    result = _missing(session, t, 60)
    assert (result.state, result.confidence) == (AWAKE, 0.25)
    assert result.eyes_closed_sec == pytest.approx(2.0)
    assert 0 < result.absence_countdown < 5

    result = _missing(session, t + 60 / FPS, 60)                  # 4.0 s missing
    assert (result.state, result.confidence) == (NODDING, 0.94)
    assert session.escalator.tier == TIER_NODDING
    assert len(session.escalator.alarms) == 4


def test_absence_countdown_forces_sleeping(session, announcer):
    t = calibrate(session)
    result = _missing(session, t, 160)
    assert result.state == SLEEPING
    assert result.confidence == 0.99
    assert result.absence_countdown == 0.0
    esc = session.escalator
    assert esc.tier == TIER_SLEEPING
    assert [a.id for a in esc.alarms] == [f"sleeping-{i}" for i in range(1, 6)]
    assert esc.challenge.type in ("math", "trivia")
    assert ("Please return to your desk.", "high") in announcer.spoken


def test_face_return_resets_missing_count(session):
    t = calibrate(session)
    _missing(session, t, 60)
    t += 60 / FPS
    session.process_frame(make_face(), now=t)
    result = _missing(session, t + 1 / FPS, 60)
    assert result.eyes_closed_sec == pytest.approx(2.0)
    assert result.state == AWAKE


def test_disarmed_absence_never_alarms(session):
    t = calibrate(session)
    session.disarm_absence_alarm()
    result = _missing(session, t, 300)
    assert result.state == SLEEPING
    assert result.confidence == 0.98
    assert result.absence_countdown is None
    assert session.escalator.alarms == []
    assert session.escalator.alarm_count == 0


def test_disarm_holds_across_repeated_absences(session, tone):
    t = calibrate(session)
    session.disarm_absence_alarm()
    for _ in range(3):
        result = _missing(session, t, 300)
        t += 300 / FPS
        assert (result.state, result.confidence) == (SLEEPING, 0.98)
        assert result.absence_countdown is None
        result, t = run_frames(session, make_face(), t, 1.0)
        assert result.state == AWAKE
    assert not session.absence_armed
    assert session.escalator.alarms == []
    assert session.escalator.alarm_count == 0
    assert tone.played == []


def test_start_rearms_absence(session):
    session.disarm_absence_alarm()
    session.start(now=100.0)
    assert session.absence_armed


# ── Emission & notification ──────────────────────────────────

def test_snapshots_are_spaced_and_shaped(session, bridge):
    t = calibrate(session)
    run_frames(session, make_face(), t, 3.0)
    stamps = [s.t for s in bridge.snapshots]
    assert len(stamps) > 10
    # stamps are truncated to whole milliseconds
    assert all(b - a >= 299 for a, b in zip(stamps, stamps[1:]))
    last = bridge.snapshots[-1]
    assert set(last.metrics) == {"ear", "eyesClosedSec", "headPitchDeg"}
    assert last.state == AWAKE
    assert last.metrics["ear"] == pytest.approx(0.30, abs=1e-3)


def test_notifications_batched(session):
    batches = []
    session.notifier.subscribe(batches.append)
    run_frames(session, make_face(), 0.0, 1.0)
    assert 7 <= len(batches) <= 11
    assert all("state" in b for b in batches)


def test_bridge_failure_does_not_break_frame_pass(announcer, tone):
    class BrokenBridge:
        def push_attention(self, snapshot):
            raise ConnectionError("down")

    s = AttentionSession(announcer=announcer, tone=tone, bridge=BrokenBridge(),
                         rng=random.Random(1))
    s.start(now=0.0)
    assert s.process_frame(make_face(), now=0.0).state == AWAKE


# ── User actions & lifecycle ─────────────────────────────────

def test_acknowledge_without_alarm_is_accepted(session):
    assert session.acknowledge("whatever") is True


def test_test_alarm_sets_state_and_challenge(session):
    challenge = session.trigger_test_alarm("phrase", now=1.0)
    assert (session.state, session.confidence) == (NODDING, 0.95)
    assert re.match(r"^[A-Z]+(-[A-Z]+){3}-\d{3}$", challenge.prompt)
    assert len(session.escalator.alarms) == 4

    challenge = session.trigger_test_alarm("math", now=2.0)
    assert (session.state, session.confidence) == (SLEEPING, 0.99)
    assert challenge.type == "math"
    assert len(session.escalator.alarms) == 5


def test_stop_is_a_hard_reset(session, announcer, tone):
    t = calibrate(session)
    session.trigger_test_alarm("math", now=t)
    session.stop()
    assert announcer.stops >= 1 and tone.stops >= 1
    assert session.escalator.alarms == [] and session.escalator.challenge is None
    assert not session.calibrator.is_complete
    assert session.process_frame(make_face(), now=t + 1) is None
    assert session.process_pose(make_pose(), now=t + 1) is None
    assert session.status()["running"] is False


def test_status_is_json_ready(session):
    import json
    t = calibrate(session)
    run_frames(session, make_face(), t, 0.5)
    status = session.status()
    json.dumps(status)
    assert status["state"] == AWAKE
    assert status["calibrating"] is False
    assert status["rulesetVersion"]
