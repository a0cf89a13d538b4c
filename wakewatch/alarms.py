"""
============================================================
 WakeWatch — Alarm Library & Challenges
 Tiered alarm messages drawn round-robin, and the short
 tasks a user must solve to prove they are awake.
============================================================
"""

import random
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from wakewatch import config

BASE_NODDING_MESSAGES = [
    "Time to stretch your neck",
    "Give your eyes a quick reset",
    "Take a deep breath and refocus",
    "Roll your shoulders back",
    "Straighten posture and re-engage",
    "Blink hard three times",
    "Sip some water now",
    "Shift your gaze to the horizon",
    "Stand up for a brief walk",
    "Adjust your seat position",
]

BASE_SLEEPING_MESSAGES = [
    "Wake up immediately",
    "Stand up and move now",
    "Splash water on your face",
    "Take a 10-minute break",
    "Call a friend for a reset",
    "Do a quick physical check-in",
    "Walk around the room",
    "Step outside for fresh air",
    "Play energizing music",
    "Review your task list aloud",
]

WORD_BANK = [
    "focus", "alert", "energy", "hydrate", "stretch", "breathe", "wake",
    "active", "bright", "sharp", "drive", "spark", "tempo", "pivot",
    "laser", "glow", "bounce", "charge", "ignite", "thrive", "reset",
    "revive", "steady", "clarity", "swift", "fresh", "prime", "vivid",
    "rise", "awake", "mirror", "stride", "sparkle", "pulse", "anchor",
    "momentum",
]

TRIVIA_BANK: List[Tuple[str, str]] = [
    ("Spell the day that follows Tuesday.", "WEDNESDAY"),
    ("Type the word 'SUNRISE' backwards.", "ESIRNUS"),
    ("What planet is known as the Red Planet?", "MARS"),
    ("What is the capital city of France?", "PARIS"),
    ("Spell the chemical symbol for water.", "H2O"),
    ("Type the first three letters of the alphabet in reverse order.", "CBA"),
    ("What animal says 'moo'?", "COW"),
    ("Spell the word 'energy' in lowercase letters.", "energy"),
]

TIER_NODDING = "nodding"
TIER_SLEEPING = "sleeping"
CHALLENGE_TYPES = ("phrase", "math", "trivia")


# ═════════════════════════════════════════════════════════════
#  ALARMS
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Alarm:
    id: str
    message: str
    level: str            # "warning" | "critical"
    triggered_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "level": self.level,
            "triggeredAt": int(self.triggered_at * 1000),
        }


def _build_tier(prefix: str, title: str, bases: Sequence[str], level: str,
                size: int) -> List[Alarm]:
    alarms = []
    for i in range(size):
        base = bases[i % len(bases)]
        alarms.append(Alarm(
            id=f"{prefix}-{i + 1}",
            message=f"{title} {i + 1:02d}: {base} ({i + 1})",
            level=level,
        ))
    return alarms


class AlarmLibrary:
    """40 alarms per tier; batches rotate through each tier independently."""

    BATCH_SIZES = {
        TIER_NODDING: config.NODDING_BATCH_SIZE,
        TIER_SLEEPING: config.SLEEPING_BATCH_SIZE,
    }

    def __init__(self, size: int = config.ALARMS_PER_TIER):
        self.tiers: Dict[str, List[Alarm]] = {
            TIER_NODDING: _build_tier("nodding", "Nodding Alarm",
                                      BASE_NODDING_MESSAGES, "warning", size),
            TIER_SLEEPING: _build_tier("sleeping", "Sleep Alarm",
                                       BASE_SLEEPING_MESSAGES, "critical", size),
        }
        self._cursor = {tier: 0 for tier in self.tiers}

    def batch(self, tier: str, now: Optional[float] = None) -> List[Alarm]:
        if tier not in self.tiers:
            raise ValueError(f"unknown alarm tier {tier!r}")
        stamp = time.time() if now is None else now
        pool = self.tiers[tier]
        start = self._cursor[tier]
        out = []
        for k in range(self.BATCH_SIZES[tier]):
            template = pool[(start + k) % len(pool)]
            out.append(Alarm(template.id, template.message, template.level, stamp))
        self._cursor[tier] = (start + len(out)) % len(pool)
        return out

    def reset(self) -> None:
        self._cursor = {tier: 0 for tier in self.tiers}


# ═════════════════════════════════════════════════════════════
#  CHALLENGES
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Challenge:
    type: str             # "phrase" | "math" | "trivia"
    prompt: str
    expected_answer: str

    def check(self, answer: Optional[str]) -> bool:
        if answer is None:
            return False
        if self.type == "phrase":
            return answer == self.expected_answer
        if self.type == "math":
            return answer.strip() == self.expected_answer
        return answer.strip().upper() == self.expected_answer.strip().upper()

    def to_dict(self) -> dict:
        # Never ship the answer to the client
        return {"type": self.type, "prompt": self.prompt}


class ChallengeFactory:
    """Seedable challenge generator. Sleeping-tier alarms never get a phrase."""

    def __init__(self, rng: Optional[random.Random] = None,
                 word_bank: Sequence[str] = WORD_BANK,
                 trivia_bank: Sequence[Tuple[str, str]] = TRIVIA_BANK,
                 weights: Optional[Mapping[str, float]] = None):
        if len(word_bank) < 4:
            raise ValueError("word bank needs at least 4 words")
        if not trivia_bank:
            raise ValueError("trivia bank is empty")
        self.rng = rng or random.Random()
        self.word_bank = list(word_bank)
        self.trivia_bank = list(trivia_bank)
        self.weights = dict(weights or config.CHALLENGE_WEIGHTS)

    def phrase(self) -> Challenge:
        words = self.rng.sample(self.word_bank, 4)
        number = self.rng.randint(100, 999)
        text = "-".join(w.upper() for w in words) + f"-{number}"
        return Challenge("phrase", text, text)

    def math(self) -> Challenge:
        a = self.rng.randint(10, 99)
        b = self.rng.randint(10, 99)
        c = self.rng.randint(1, 9)
        return Challenge("math", f"Solve: {a} + {b} - {c} = ?", str(a + b - c))

    def trivia(self) -> Challenge:
        prompt, answer = self.rng.choice(self.trivia_bank)
        return Challenge("trivia", prompt, answer)

    def of_type(self, kind: str) -> Challenge:
        if kind not in CHALLENGE_TYPES:
            raise ValueError(f"unknown challenge type {kind!r}")
        return getattr(self, kind)()

    def create(self, tier: str = TIER_NODDING) -> Challenge:
        kinds = ("math", "trivia") if tier == TIER_SLEEPING else CHALLENGE_TYPES
        weights = [max(0.0, float(self.weights.get(k, 0.0))) for k in kinds]
        if sum(weights) <= 0:
            weights = [1.0] * len(kinds)
        kind = self.rng.choices(kinds, weights=weights, k=1)[0]
        return self.of_type(kind)
