"""
============================================================
 WakeWatch — Escalation
 quiet -> warning (spoken prompt + grace timer)
       -> alarmed (alarm batch + tone + one challenge)
       -> quiet (only after a correct answer while awake)
============================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from wakewatch import config
from wakewatch.alarms import (
    TIER_NODDING, TIER_SLEEPING, Alarm, AlarmLibrary, Challenge, ChallengeFactory,
)

logger = logging.getLogger(__name__)

QUIET = "quiet"
WARNING = "warning"
ALARMED = "alarmed"


@dataclass(frozen=True)
class VoiceWarning:
    message: str
    priority: str         # "low" | "medium" | "high"
    category: str         # "absence" | "eyes" | "head" | "posture" | "fatigue"


WARNING_MESSAGES = {
    "eyesClosing": VoiceWarning("Your eyes are closing. Stay alert.", "medium", "eyes"),
    "eyesClosed": VoiceWarning("Please open your eyes.", "high", "eyes"),
    "headNodding": VoiceWarning("Please keep your head up.", "high", "head"),
    "headTiltingBack": VoiceWarning("Sit up straight.", "medium", "posture"),
    "headTilted": VoiceWarning("Straighten your head.", "low", "posture"),
    "slouching": VoiceWarning("Please correct your posture.", "medium", "posture"),
    "slouchingForward": VoiceWarning("You're slouching forward. Sit back.", "medium", "posture"),
    "leaningForward": VoiceWarning("You're leaning too far forward.", "medium", "posture"),
    "leaningBackward": VoiceWarning("Please sit upright.", "medium", "posture"),
    "noFaceDetected": VoiceWarning("Please return to your desk.", "high", "absence"),
    "bodyNotPresent": VoiceWarning("Stay in frame.", "medium", "absence"),
    "yawning": VoiceWarning("Take a deep breath and refocus.", "low", "fatigue"),
    "frequentYawning": VoiceWarning("You seem tired. Consider taking a break.", "low", "fatigue"),
    "lookingAway": VoiceWarning("Keep your focus on the screen.", "low", "fatigue"),
    "drowsy": VoiceWarning("You seem drowsy. Stay alert.", "medium", "fatigue"),
}


@dataclass(frozen=True)
class WarningSignals:
    face_missing: bool = False
    body_present: bool = True
    eyes_closed_sec: float = 0.0
    is_head_nodding: bool = False
    is_head_tilting_back: bool = False
    is_head_tilted: bool = False
    is_slouched: bool = False
    lean_direction: str = "neutral"
    is_yawning: bool = False
    yawn_count: int = 0
    is_looking_away: bool = False


def select_warning(signals: WarningSignals, at_risk: bool = False) -> Optional[VoiceWarning]:
    """Most important contextual prompt for this frame, or None."""
    m = WARNING_MESSAGES
    if signals.face_missing:
        return m["noFaceDetected"]
    if not signals.body_present:
        return m["bodyNotPresent"]
    if signals.eyes_closed_sec > 2:
        return m["eyesClosed"]
    if signals.eyes_closed_sec > 1:
        return m["eyesClosing"]
    if signals.is_head_nodding:
        return m["headNodding"]
    if signals.is_slouched:
        return m["slouchingForward"] if signals.lean_direction == "forward" else m["slouching"]
    if signals.lean_direction == "forward":
        return m["leaningForward"]
    if signals.lean_direction == "backward":
        return m["leaningBackward"]
    if signals.is_head_tilting_back:
        return m["headTiltingBack"]
    if signals.is_head_tilted:
        return m["headTilted"]
    if signals.yawn_count >= 3:
        return m["frequentYawning"]
    if signals.is_yawning:
        return m["yawning"]
    if signals.is_looking_away:
        return m["lookingAway"]
    return m["drowsy"] if at_risk else None


def tier_for_state(state: str) -> str:
    return TIER_SLEEPING if state == config.STATE_SLEEPING else TIER_NODDING


class Escalator:
    """
    Owns the warning timer, the active alarm batch and the single
    outstanding challenge. Driven once per frame by the session.
    """

    def __init__(self, announcer=None, tone=None,
                 library: Optional[AlarmLibrary] = None,
                 challenges: Optional[ChallengeFactory] = None,
                 grace_period: float = config.VOICE_GRACE_PERIOD):
        self.announcer = announcer
        self.tone = tone
        self.library = library or AlarmLibrary()
        self.challenges = challenges or ChallengeFactory()
        self.grace_period = grace_period

        self.phase = QUIET
        self.alarms: List[Alarm] = []
        self.challenge: Optional[Challenge] = None
        self.tier: Optional[str] = None
        self.require_ack = False
        self.warning: Optional[VoiceWarning] = None
        self.warning_started: Optional[float] = None
        self.alarm_count = 0

    # ═════════════════════════════════════════════════════════
    #  PER-FRAME
    # ═════════════════════════════════════════════════════════

    def on_frame(self, state: str, warning: Optional[VoiceWarning], now: float) -> None:
        if state not in config.RISK_STATES:
            self._settle()
            return

        if self.phase == ALARMED:
            if state == config.STATE_SLEEPING and self.tier == TIER_NODDING:
                logger.info("[ESCALATION] State deepened to sleeping — escalating alarm tier")
                self._raise(TIER_SLEEPING, now)
            elif not self.alarms and self.require_ack:
                self.alarms = self.library.batch(self.tier, now)
            return

        warning = warning or WARNING_MESSAGES["drowsy"]
        if self.phase == QUIET:
            self.phase = WARNING
            self.warning = warning
            self.warning_started = now
            self._speak(warning)
            logger.info("[ESCALATION] ⚠ %s — grace period %.0fs", state, self.grace_period)
            return

        # WARNING: a new category restarts the grace timer; a new message
        # within the same category is spoken without restarting it
        if warning.category != self.warning.category:
            self.warning_started = now
            logger.info("[ESCALATION] Warning moved to %s, grace restarted", warning.category)
        if warning.message != self.warning.message:
            self.warning = warning
            self._speak(warning)
        if now - self.warning_started >= self.grace_period:
            self._raise(tier_for_state(state), now)

    def _settle(self) -> None:
        """Back to awake: drop a pending warning; alarms stay until answered."""
        if self.phase == WARNING:
            if self.announcer is not None:
                self.announcer.stop()
            self.phase = QUIET
            self.warning = None
            self.warning_started = None

    # ═════════════════════════════════════════════════════════
    #  ALARMS
    # ═════════════════════════════════════════════════════════

    def raise_alarm(self, tier: str, now: float,
                    warning: Optional[VoiceWarning] = None) -> bool:
        """Direct alarm (absence path). Never duplicates or downgrades an active tier."""
        if self.phase == ALARMED and (self.tier == tier or self.tier == TIER_SLEEPING):
            return False
        if warning is not None:
            self._speak(warning)
        self._raise(tier, now)
        return True

    def _raise(self, tier: str, now: float, preferred: Optional[str] = None) -> None:
        self.alarms = self.library.batch(tier, now)
        if preferred is not None:
            self.challenge = self.challenges.of_type(preferred)
        else:
            self.challenge = self.challenges.create(tier)
        self.tier = tier
        self.require_ack = True
        self.phase = ALARMED
        self.warning = None
        self.warning_started = None
        self.alarm_count += 1
        if self.tone is not None:
            self.tone.play("critical" if tier == TIER_SLEEPING else "warning")
        logger.warning("[ESCALATION] 🚨 %s alarm — %d alerts, %s challenge",
                       tier, len(self.alarms), self.challenge.type)

    def trigger_test_alarm(self, preferred: str = "phrase", now: float = 0.0) -> str:
        """Manual alarm for checking audio and the challenge UI. Returns the tier used."""
        self.clear()
        tier = TIER_NODDING if preferred == "phrase" else TIER_SLEEPING
        self._raise(tier, now, preferred=preferred)
        return tier

    # ═════════════════════════════════════════════════════════
    #  ACKNOWLEDGMENT
    # ═════════════════════════════════════════════════════════

    def acknowledge(self, answer: Optional[str], current_state: str) -> bool:
        if self.challenge is None:
            return True
        if current_state != config.STATE_AWAKE:
            logger.info("[ESCALATION] Answer rejected — user not classified awake")
            return False
        if not self.challenge.check(answer):
            logger.info("[ESCALATION] Incorrect %s answer", self.challenge.type)
            return False
        logger.info("[ESCALATION] ✓ Challenge solved — alarms cleared")
        self.clear()
        if self.tone is not None:
            self.tone.stop()
        return True

    def clear(self) -> None:
        self.phase = QUIET
        self.alarms = []
        self.challenge = None
        self.tier = None
        self.require_ack = False
        self.warning = None
        self.warning_started = None

    def reset(self) -> None:
        """Session boundary: clear everything, rewind the alarm rotation."""
        self.clear()
        self.library.reset()
        self.alarm_count = 0

    # ── Helpers ──────────────────────────────────────────────

    def _speak(self, warning: VoiceWarning) -> None:
        if self.announcer is not None:
            self.announcer.speak(warning.message, warning.priority)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "tier": self.tier,
            "requireAck": self.require_ack,
            "alarms": [a.to_dict() for a in self.alarms],
            "challenge": self.challenge.to_dict() if self.challenge else None,
            "warning": self.warning.message if self.warning else None,
        }
