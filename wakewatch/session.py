"""
============================================================
 WakeWatch — Attention Session
 One session owns one full component graph: extractors feed
 trackers, calibration gates fusion, fusion drives escalation,
 and a throttled snapshot goes out through the bridge.
 Frames are processed synchronously, one at a time.
============================================================
"""

import functools
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from wakewatch import config
from wakewatch.alarms import (
    TIER_NODDING, TIER_SLEEPING, AlarmLibrary, Challenge, ChallengeFactory,
)
from wakewatch.bridge import AttentionSnapshot, LogBridge
from wakewatch.calibration import Calibrator, effective_ear_threshold
from wakewatch.escalation import (
    WARNING_MESSAGES, Escalator, WarningSignals, select_warning,
)
from wakewatch.fusion import FusionEngine, FusionInputs
from wakewatch.geometry import (
    compute_average_ear, compute_face_width, compute_head_pitch,
    compute_head_tilt, compute_horizontal_gaze, compute_mar,
)
from wakewatch.landmarks import PoseLandmarks, as_points
from wakewatch.notifier import StateNotifier
from wakewatch.trackers import (
    BlinkDetector, EyeClosureCounter, EyelidSpeedDetector, FaceDistanceTracker,
    GazeTracker, HeadNodDetector, HeadTiltTracker, MicrosleepDetector,
    PerclosDetector, PostureState, PostureTracker, YawnDetector,
)

logger = logging.getLogger(__name__)

AWAKE = config.STATE_AWAKE
NODDING = config.STATE_NODDING
SLEEPING = config.STATE_SLEEPING


def _locked(method):
    """Serialize a session entry point against the frame loop and API threads."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


@dataclass
class FrameResult:
    state: str
    confidence: float
    eyes_closed_sec: float
    face_detected: bool
    calibrating: bool = False
    probabilities: Dict[str, float] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)
    fired_rules: List[str] = field(default_factory=list)
    absence_countdown: Optional[float] = None
    snapshot: Optional[AttentionSnapshot] = None


class AttentionSession:
    """
    Effectors (announcer, tone), the bridge, the notifier, the
    clock and the random source are all injected so a session
    can run headless and deterministically.
    """

    def __init__(self, announcer=None, tone=None, bridge=None,
                 notifier: Optional[StateNotifier] = None,
                 clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None,
                 library: Optional[AlarmLibrary] = None,
                 challenges: Optional[ChallengeFactory] = None):
        if tone is None or announcer is None:
            from wakewatch.voice import Announcer, ToneGenerator
            tone = tone or ToneGenerator()
            announcer = announcer or Announcer(tone=tone)
        self.announcer = announcer
        self.tone = tone
        self.bridge = bridge or LogBridge()
        self.notifier = notifier or StateNotifier()
        self.clock = clock
        self.rng = rng or random.Random()

        # ── Component graph (owned, never shared) ──
        self.calibrator = Calibrator()
        self.fusion = FusionEngine()
        self.escalator = Escalator(
            announcer=announcer,
            tone=tone,
            library=library or AlarmLibrary(),
            challenges=challenges or ChallengeFactory(rng=self.rng),
        )
        self.nod = HeadNodDetector()
        self.tilt = HeadTiltTracker()
        self.yawn = YawnDetector()
        self.gaze = GazeTracker()
        self.distance = FaceDistanceTracker()
        self.closure = EyeClosureCounter()
        self.blink = BlinkDetector()
        self.perclos = PerclosDetector()
        self.microsleep = MicrosleepDetector()
        self.eyelid = EyelidSpeedDetector()
        self.posture = PostureTracker()
        self._trackers = (
            self.nod, self.tilt, self.yawn, self.gaze, self.distance, self.closure,
            self.blink, self.perclos, self.microsleep, self.eyelid, self.posture,
        )

        self._lock = threading.RLock()
        self.running = False
        self._clear_state()

    def _clear_state(self) -> None:
        self.state = AWAKE
        self.confidence = 0.0
        self.eyes_closed_sec = 0.0
        self.metrics: Dict[str, float] = {}
        self.missing_frames = 0
        self.absent_since: Optional[float] = None
        self.absence_armed = False
        self.last_emit: Optional[float] = None
        self.started_at: Optional[float] = None
        self.frame_count = 0

    # ═════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ═════════════════════════════════════════════════════════

    @_locked
    def start(self, now: Optional[float] = None) -> None:
        self._reset_graph()
        self.announcer.reset()
        self.running = True
        self.absence_armed = True
        self.started_at = self.clock() if now is None else now
        self.calibrator.start()
        logger.info("[SESSION] Started — calibrating")

    @_locked
    def stop(self) -> None:
        """Hard reset: silence effectors and forget all state."""
        self.announcer.stop()
        self.tone.stop()
        self._reset_graph()
        self.running = False
        logger.info("[SESSION] Stopped")

    def _reset_graph(self) -> None:
        for tracker in self._trackers:
            tracker.reset()
        self.calibrator.reset()
        self.escalator.reset()
        self.notifier.reset()
        self._clear_state()

    # ═════════════════════════════════════════════════════════
    #  FRAME PASS
    # ═════════════════════════════════════════════════════════

    @_locked
    def process_frame(self, face, now: Optional[float] = None) -> Optional[FrameResult]:
        """Run one frame. `face` is a landmark array/sequence or None. Returns None when stopped."""
        if not self.running:
            return None
        now = self.clock() if now is None else now
        self.frame_count += 1

        points = as_points(face)
        if points is None or len(points) == 0:
            result = self._missing_frame(now)
        else:
            result = self._face_frame(points, now)

        self.state = result.state
        self.confidence = result.confidence
        self.eyes_closed_sec = result.eyes_closed_sec
        self.metrics = result.metrics
        result.snapshot = self._maybe_emit(now)

        self.notifier.queue(
            state=result.state,
            confidence=round(result.confidence, 3),
            eyesClosedSec=round(result.eyes_closed_sec, 2),
            faceDetected=result.face_detected,
            calibrating=result.calibrating,
            calibrationProgress=round(self.calibrator.progress, 2),
            absenceCountdown=result.absence_countdown,
            metrics=result.metrics,
            escalation=self.escalator.to_dict(),
        )
        self.notifier.flush_if_due(now)
        return result

    @_locked
    def process_pose(self, pose: Optional[PoseLandmarks],
                     now: Optional[float] = None) -> Optional[PostureState]:
        """Posture runs on its own cadence; fusion uses the latest reading."""
        if not self.running:
            return None
        now = self.clock() if now is None else now
        posture = self.posture.update(pose, now)
        self.notifier.queue(posture={
            "isPresent": posture.is_present,
            "bodyPresence": round(posture.body_presence, 2),
            "isSlouched": posture.is_slouched,
            "leanDirection": posture.lean_direction,
            "leanAngle": round(posture.lean_angle, 1),
        })
        return posture

    # ── Face missing ─────────────────────────────────────────

    def _missing_frame(self, now: float) -> FrameResult:
        self.missing_frames += 1
        missing_sec = self.missing_frames / config.FPS

        if self.calibrator.is_collecting:
            self.calibrator.interrupt()
            self.absent_since = None
            self.escalator.on_frame(AWAKE, None, now)
            return FrameResult(AWAKE, config.CALIBRATION_LOST_CONFIDENCE, missing_sec,
                               face_detected=False, calibrating=True)

        countdown = None
        if self.absence_armed:
            if self.absent_since is None:
                self.absent_since = now
            away = now - self.absent_since
            countdown = max(0.0, config.ABSENCE_COUNTDOWN - away)
            if away >= config.ABSENCE_COUNTDOWN:
                if self.escalator.raise_alarm(TIER_SLEEPING, now, WARNING_MESSAGES["noFaceDetected"]):
                    logger.warning("[SESSION] 🚨 No face for %.1fs — forcing sleeping", away)
                return FrameResult(SLEEPING, 0.99, missing_sec, face_detected=False,
                                   absence_countdown=0.0)

        if missing_sec >= config.CLOSED_SLEEPING_SEC:
            state, confidence, tier = SLEEPING, 0.98, TIER_SLEEPING
        elif missing_sec >= config.CLOSED_DEEP_NOD_SEC:
            state, confidence, tier = NODDING, 0.94, TIER_NODDING
        else:
            state, confidence, tier = AWAKE, 0.25, None

        if tier is None:
            self.escalator.on_frame(AWAKE, None, now)
        elif self.absence_armed:
            self.escalator.raise_alarm(tier, now, WARNING_MESSAGES["noFaceDetected"])
        return FrameResult(state, confidence, missing_sec, face_detected=False,
                           absence_countdown=countdown)

    # ── Face present ─────────────────────────────────────────

    def _face_frame(self, points, now: float) -> FrameResult:
        self.missing_frames = 0
        self.absent_since = None

        ear = compute_average_ear(points)
        mar = compute_mar(points)
        pitch = compute_head_pitch(points)
        tilt = compute_head_tilt(points)
        gaze = compute_horizontal_gaze(points)
        width = compute_face_width(points)

        if not self.calibrator.is_complete:
            if self.calibrator.add_sample(now, pitch, ear, tilt, width) is not None:
                if not self.posture.latch_baseline():
                    logger.info("[CALIBRATION] No posture reading — posture baseline deferred")
            return FrameResult(AWAKE, config.CALIBRATING_CONFIDENCE, 0.0, face_detected=True,
                               calibrating=True,
                               metrics={"ear": ear, "mar": mar, "headPitchDeg": pitch})

        baseline = self.calibrator.baseline
        threshold = effective_ear_threshold(baseline)

        is_tilted = self.tilt.update(tilt - baseline.tilt)
        nod = self.nod.update(pitch - baseline.pitch)
        yawn = self.yawn.update(mar, now)
        gaze_state = self.gaze.update(gaze, now)
        distance = self.distance.update(width, now)

        closed_sec = self.closure.update(ear, threshold)
        is_closed = self.closure.is_closed
        blink = self.blink.update(is_closed, now)
        perclos = self.perclos.update(is_closed)
        microsleep = self.microsleep.update(is_closed, now)
        eyelid = self.eyelid.update(is_closed, now)
        posture = self.posture.latest

        result = self.fusion.evaluate(FusionInputs(
            eyes_closed_sec=closed_sec,
            nod=nod,
            is_tilted=is_tilted,
            yawn=yawn,
            gaze=gaze_state,
            is_abnormal_distance=distance.is_abnormal,
            posture=posture,
            perclos=perclos.perclos,
            microsleep_count=microsleep.count,
            slow_closures=eyelid.slow_count,
            is_low_blink_rate=blink.is_drowsy,
            face_present=True,
        ))

        warning = select_warning(WarningSignals(
            body_present=posture.is_present if posture is not None else True,
            eyes_closed_sec=closed_sec,
            is_head_nodding=nod.is_forward_nodding,
            is_head_tilting_back=nod.is_backward_tilting,
            is_head_tilted=is_tilted,
            is_slouched=posture.is_slouched if posture is not None else False,
            lean_direction=posture.lean_direction if posture is not None else "neutral",
            is_yawning=yawn.is_yawning,
            yawn_count=yawn.yawn_count,
            is_looking_away=gaze_state.is_looking_away,
        ), at_risk=result.state in config.RISK_STATES)
        self.escalator.on_frame(result.state, warning, now)

        return FrameResult(
            state=result.state,
            confidence=result.confidence,
            eyes_closed_sec=closed_sec,
            face_detected=True,
            probabilities=result.probabilities,
            fired_rules=result.fired_rules,
            metrics={
                "ear": ear,
                "mar": yawn.avg_mar,
                "headPitchDeg": nod.avg_pitch,
                "headTiltDeg": tilt - baseline.tilt,
                "gaze": gaze_state.horizontal_gaze,
                "faceWidth": distance.face_width,
                "blinkRate": blink.blink_rate,
                "perclos": perclos.perclos,
                "microsleeps": microsleep.count,
                "slowClosures": eyelid.slow_count,
                "yawns": yawn.yawn_count,
                "nods": nod.nod_count,
            },
        )

    # ── Emission ─────────────────────────────────────────────

    def _maybe_emit(self, now: float) -> Optional[AttentionSnapshot]:
        if self.last_emit is not None and now - self.last_emit < config.EMIT_INTERVAL:
            return None
        self.last_emit = now
        snapshot = AttentionSnapshot(
            t=int(now * 1000),
            state=self.state,
            confidence=round(self.confidence, 4),
            metrics={
                "ear": round(float(self.metrics.get("ear", 0.0)), 4),
                "eyesClosedSec": round(self.eyes_closed_sec, 3),
                "headPitchDeg": round(float(self.metrics.get("headPitchDeg", 0.0)), 2),
            },
        )
        try:
            self.bridge.push_attention(snapshot)
        except Exception:
            logger.exception("[SESSION] Bridge push failed")
        return snapshot

    # ═════════════════════════════════════════════════════════
    #  USER ACTIONS
    # ═════════════════════════════════════════════════════════

    @_locked
    def acknowledge(self, answer: Optional[str]) -> bool:
        accepted = self.escalator.acknowledge(answer, self.state)
        self.notifier.queue(escalation=self.escalator.to_dict())
        return accepted

    @_locked
    def disarm_absence_alarm(self) -> None:
        """One-way for the rest of this session; start() re-arms."""
        if self.absence_armed:
            logger.info("[SESSION] Absence alarm disarmed")
        self.absence_armed = False
        self.absent_since = None

    @_locked
    def trigger_test_alarm(self, preferred: str = "phrase",
                           now: Optional[float] = None) -> Challenge:
        now = self.clock() if now is None else now
        tier = self.escalator.trigger_test_alarm(preferred, now)
        if tier == TIER_SLEEPING:
            self.state, self.confidence = SLEEPING, 0.99
        else:
            self.state, self.confidence = NODDING, 0.95
        self.notifier.queue(state=self.state, confidence=self.confidence,
                            escalation=self.escalator.to_dict())
        return self.escalator.challenge

    @property
    def calibrating(self) -> bool:
        return self.running and not self.calibrator.is_complete

    @_locked
    def status(self) -> dict:
        posture = self.posture.latest
        return {
            "running": self.running,
            "state": self.state,
            "confidence": round(self.confidence, 4),
            "eyesClosedSec": round(self.eyes_closed_sec, 3),
            "calibrating": self.calibrating,
            "calibrationProgress": round(self.calibrator.progress, 2),
            "absenceArmed": self.absence_armed,
            "frames": self.frame_count,
            "metrics": {k: float(v) for k, v in self.metrics.items()},
            "posture": None if posture is None else {
                "isPresent": posture.is_present,
                "isSlouched": posture.is_slouched,
                "leanDirection": posture.lean_direction,
            },
            "escalation": self.escalator.to_dict(),
            "rulesetVersion": self.fusion.version,
        }
