"""
============================================================
 WakeWatch — Evidence Fusion
 A versioned, ordered rule table turns one frame's tracker
 states into awake / noddingOff / sleeping scores, then a
 normalized probability triple and a ranked confidence.
============================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from wakewatch import config
from wakewatch.trackers import GazeState, NodState, PostureState, YawnState

RULESET_VERSION = "2.1.0"

AWAKE = config.STATE_AWAKE
NODDING = config.STATE_NODDING
SLEEPING = config.STATE_SLEEPING
STATES = (AWAKE, NODDING, SLEEPING)


@dataclass(frozen=True)
class FusionInputs:
    """Everything the rule table may look at for one frame."""
    eyes_closed_sec: float
    nod: NodState
    is_tilted: bool
    yawn: YawnState
    gaze: GazeState
    is_abnormal_distance: bool = False
    posture: Optional[PostureState] = None
    perclos: float = 0.0
    microsleep_count: int = 0
    slow_closures: int = 0
    is_low_blink_rate: bool = False
    face_present: bool = True


Amount = Union[float, Callable[[FusionInputs], float]]


@dataclass(frozen=True)
class FusionRule:
    """
    One (condition -> weight delta) entry.

    op:
      "add"   : score += amount
      "set"   : score  = amount
      "scale" : score *= amount
    """
    name: str
    when: Callable[[FusionInputs], bool]
    targets: Tuple[str, ...]
    op: str
    amount: Amount

    def applies(self, inputs: FusionInputs) -> bool:
        return bool(self.when(inputs))

    def apply(self, scores: Dict[str, float], inputs: FusionInputs) -> bool:
        if not self.applies(inputs):
            return False
        value = self.amount(inputs) if callable(self.amount) else self.amount
        for target in self.targets:
            if self.op == "add":
                scores[target] += value
            elif self.op == "set":
                scores[target] = value
            elif self.op == "scale":
                scores[target] *= value
            else:
                raise ValueError(f"unknown fusion op {self.op!r}")
        return True


@dataclass(frozen=True)
class FusionResult:
    state: str
    confidence: float
    probabilities: Dict[str, float]
    evidence: Dict[str, float]
    fired_rules: List[str] = field(default_factory=list)


def _add(name, target, amount, when) -> FusionRule:
    return FusionRule(name, when, (target,), "add", amount)


# ═════════════════════════════════════════════════════════════
#  RULE TABLE (order matters: "set" rules see earlier adds)
# ═════════════════════════════════════════════════════════════

def _closed(i: FusionInputs) -> float:
    return i.eyes_closed_sec


def _has_posture(fn):
    return lambda i: i.posture is not None and fn(i.posture, i)


_FWD = config.HEAD_PITCH_THRESHOLD
_BACK = config.HEAD_PITCH_BACK_THRESHOLD

RULES: Tuple[FusionRule, ...] = (
    # ── Eye closure bands ──
    _add("eyes_closed_sleeping", SLEEPING,
         lambda i: 2.0 + min((_closed(i) - config.CLOSED_SLEEPING_SEC) / 2.0, 1.0),
         lambda i: _closed(i) >= config.CLOSED_SLEEPING_SEC),
    _add("eyes_closed_deep_nod", NODDING, 1.5,
         lambda i: config.CLOSED_DEEP_NOD_SEC <= _closed(i) < config.CLOSED_SLEEPING_SEC),
    _add("eyes_closed_nod", NODDING, 0.8,
         lambda i: config.CLOSED_NOD_SEC <= _closed(i) < config.CLOSED_DEEP_NOD_SEC),
    _add("eyes_closed_light", NODDING, 0.3,
         lambda i: config.CLOSED_LIGHT_SEC <= _closed(i) < config.CLOSED_NOD_SEC),

    # ── Head ──
    _add("head_forward_nod", NODDING, 0.3, lambda i: i.nod.is_forward_nodding),
    _add("head_forward_peak", NODDING, 0.25, lambda i: i.nod.window_max > _FWD + 4),
    _add("head_backward_tilt", NODDING, 0.2, lambda i: i.nod.is_backward_tilting),
    _add("head_backward_eyes_closed", SLEEPING, 0.2,
         lambda i: i.nod.is_backward_tilting and _closed(i) >= 4),

    # ── Fatigue ──
    _add("yawning", NODDING, 0.15, lambda i: i.yawn.is_yawning),
    _add("frequent_yawning", NODDING, 0.1, lambda i: i.yawn.is_frequent),
    _add("looking_away", NODDING, 0.15,
         lambda i: i.gaze.is_looking_away and i.gaze.look_away_duration > config.GAZE_AWAY_SEC),
    _add("gaze_on_task", AWAKE, 0.05,
         lambda i: not (i.gaze.is_looking_away and i.gaze.look_away_duration > config.GAZE_AWAY_SEC)),
    _add("abnormal_distance", NODDING, 0.1, lambda i: i.is_abnormal_distance),
    _add("perclos_drowsy", NODDING, 0.2, lambda i: i.perclos >= config.PERCLOS_DROWSY),
    _add("perclos_critical", SLEEPING, 0.3, lambda i: i.perclos >= config.PERCLOS_CRITICAL),
    _add("microsleeps", NODDING, 0.25,
         lambda i: i.microsleep_count >= config.MICROSLEEP_CRITICAL_COUNT),
    _add("slow_eyelids", NODDING, 0.15,
         lambda i: i.slow_closures >= config.EYELID_SLOW_DROWSY_COUNT),
    _add("low_blink_rate", NODDING, 0.05, lambda i: i.is_low_blink_rate),

    # ── Awake bonuses ──
    _add("head_level", AWAKE, 0.1, lambda i: not i.is_tilted),
    _add("head_steady", AWAKE, 0.2,
         lambda i: not i.nod.is_forward_nodding and not i.nod.is_backward_tilting),
    _add("head_within_band", AWAKE, 0.05,
         lambda i: abs(i.nod.window_max) < _FWD and abs(i.nod.window_min) < _BACK),
    _add("mouth_relaxed", AWAKE, 0.05,
         lambda i: not i.yawn.is_yawning and i.yawn.yawn_count < 2),

    # ── Posture: sleeping ──
    _add("lean_back_eyes_closed", SLEEPING, 0.4, _has_posture(
        lambda p, i: p.lean_direction == "backward" and p.lean_duration > 5 and _closed(i) > 3)),
    _add("body_away", SLEEPING, 0.5, _has_posture(
        lambda p, i: not p.is_present and p.away_duration > 10)),
    _add("slumped_back_eyes_closed", SLEEPING, 0.3, _has_posture(
        lambda p, i: p.is_slouched and p.lean_direction == "backward" and _closed(i) > 4)),

    # ── Posture: nodding ──
    _add("slouch_prolonged", NODDING, 0.3, _has_posture(
        lambda p, i: p.is_slouched and p.slouch_duration > 10)),
    _add("slouch_early", NODDING, 0.2, _has_posture(
        lambda p, i: p.is_slouched and 5 < p.slouch_duration <= 10)),
    _add("lean_forward_eyes_closing", NODDING, 0.25, _has_posture(
        lambda p, i: p.lean_direction == "forward" and p.lean_duration > 3 and _closed(i) > 1.5)),
    _add("lean_back_mild", NODDING, 0.15, _has_posture(
        lambda p, i: p.lean_direction == "backward" and 5 < p.lean_duration < 15)),
    _add("lean_and_yawn", NODDING, 0.1, _has_posture(
        lambda p, i: p.is_leaning and i.yawn.is_yawning)),

    # ── Posture: awake ──
    _add("posture_upright", AWAKE, 0.25, _has_posture(
        lambda p, i: not p.is_slouched and not p.is_leaning and p.is_present)),
    _add("posture_clear", AWAKE, 0.15, _has_posture(
        lambda p, i: p.is_present and p.body_presence > 0.7 and not p.is_slouched)),
    _add("posture_held", AWAKE, 0.1, _has_posture(
        lambda p, i: not p.is_slouching and p.slouch_duration == 0 and p.lean_direction == "neutral")),

    # ── Eyes gate awake last so nothing above can revive it ──
    _add("eyes_open", AWAKE, 0.3, lambda i: _closed(i) < 1.0),
    _add("eyes_brief_close", AWAKE, 0.05, lambda i: 1.0 <= _closed(i) < 2.0),
    FusionRule("eyes_closed_suppress_awake", lambda i: _closed(i) >= 2.0,
               (AWAKE,), "set", 0.0),

    # ── Uncertain framing ──
    FusionRule("body_partially_visible", _has_posture(
        lambda p, i: p.body_presence < 0.5 and i.face_present),
        STATES, "scale", 0.8),
)


# ═════════════════════════════════════════════════════════════
#  ENGINE
# ═════════════════════════════════════════════════════════════

class FusionEngine:
    """Evaluates the rule table for one frame. Stateless between frames."""

    version = RULESET_VERSION

    def __init__(self, rules: Tuple[FusionRule, ...] = RULES):
        self.rules = rules

    def evaluate(self, inputs: FusionInputs) -> FusionResult:
        scores = {AWAKE: 0.3, NODDING: 0.0, SLEEPING: 0.0}
        fired = [rule.name for rule in self.rules if rule.apply(scores, inputs)]

        evidence = {
            SLEEPING: min(1.0, max(0.0, scores[SLEEPING])),
            NODDING: min(1.0, max(0.0, scores[NODDING])),
            AWAKE: min(1.0, max(0.05, scores[AWAKE])),
        }
        probabilities = normalize(evidence)
        state, confidence = rank(probabilities)
        return FusionResult(
            state=state,
            confidence=confidence,
            probabilities=probabilities,
            evidence=evidence,
            fired_rules=fired,
        )


def normalize(evidence: Dict[str, float]) -> Dict[str, float]:
    total = sum(evidence[s] for s in STATES)
    if total <= 0:
        return {AWAKE: 1.0, NODDING: 0.0, SLEEPING: 0.0}
    return {s: evidence[s] / total for s in STATES}


def rank(probabilities: Dict[str, float]) -> Tuple[str, float]:
    """Best state and its margin-boosted confidence. Ties keep awake > nodding > sleeping."""
    ranked = sorted(STATES, key=lambda s: -probabilities[s])
    best, second = probabilities[ranked[0]], probabilities[ranked[1]]
    confidence = min(0.99, max(0.05, best + (best - second) * 0.5))
    return ranked[0], confidence
