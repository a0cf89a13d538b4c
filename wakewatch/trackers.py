"""
============================================================
 WakeWatch — Temporal Trackers
 Rolling windows over per-frame measurements. Each tracker
 belongs to exactly one session and is reset with it.
 Every update() takes the frame timestamp `now` (seconds).
============================================================
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from wakewatch import config
from wakewatch.geometry import (
    compute_body_presence, compute_lean_angle, compute_posture_vertical,
)
from wakewatch.landmarks import PoseLandmarks


class RingBuffer:
    """Fixed-capacity window; the oldest value falls out when full."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: deque = deque(maxlen=capacity)

    def push(self, value) -> None:
        self._items.append(value)

    def mean(self) -> float:
        return float(np.mean(self._items)) if self._items else 0.0

    def max(self) -> float:
        return float(max(self._items)) if self._items else 0.0

    def min(self) -> float:
        return float(min(self._items)) if self._items else 0.0

    def count(self, value=True) -> int:
        return sum(1 for item in self._items if item == value)

    def values(self) -> list:
        return list(self._items)

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    @property
    def is_full(self) -> bool:
        return len(self._items) == self._items.maxlen

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def _prune(events: deque, now: float, window: float) -> None:
    """Drop timestamped events older than `window` seconds."""
    while events and now - _stamp(events[0]) > window:
        events.popleft()


def _stamp(event) -> float:
    return event[0] if isinstance(event, tuple) else event


# ═════════════════════════════════════════════════════════════
#  HEAD
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NodState:
    avg_pitch: float
    instantaneous_pitch: float
    window_max: float
    window_min: float
    is_forward_nodding: bool
    is_backward_tilting: bool
    nod_count: int


class HeadNodDetector:
    """
    Forward nods / backward tilts from the extrema of an 18-frame
    pitch window. Flags latch until the window leaves the band by
    the hysteresis margin.
    """

    def __init__(self,
                 forward_threshold: float = config.HEAD_PITCH_THRESHOLD,
                 backward_threshold: float = config.HEAD_PITCH_BACK_THRESHOLD,
                 window: int = config.HEAD_NOD_WINDOW,
                 hysteresis: float = config.HEAD_NOD_HYSTERESIS):
        self.forward_threshold = forward_threshold
        self.backward_threshold = backward_threshold
        self.hysteresis = hysteresis
        self._history = RingBuffer(window)
        self._forward = False
        self._backward = False
        self._nod_count = 0

    def update(self, adjusted_pitch: float) -> NodState:
        self._history.push(adjusted_pitch)
        window_max = self._history.max()
        window_min = self._history.min()

        if window_max > self.forward_threshold:
            if not self._forward:
                self._nod_count += 1
            self._forward = True
        elif window_max < self.forward_threshold - self.hysteresis:
            self._forward = False

        if window_min < -self.backward_threshold:
            self._backward = True
        elif window_min > -(self.backward_threshold - self.hysteresis):
            self._backward = False

        return NodState(
            avg_pitch=self._history.mean(),
            instantaneous_pitch=adjusted_pitch,
            window_max=window_max,
            window_min=window_min,
            is_forward_nodding=self._forward,
            is_backward_tilting=self._backward,
            nod_count=self._nod_count,
        )

    def reset(self) -> None:
        self._history.clear()
        self._forward = False
        self._backward = False
        self._nod_count = 0


class HeadTiltTracker:
    """Roll flag with hysteresis: set above the threshold, cleared below threshold - margin."""

    def __init__(self, threshold: float = config.HEAD_TILT_THRESHOLD,
                 hysteresis: float = config.HEAD_TILT_HYSTERESIS):
        self.threshold = threshold
        self.hysteresis = hysteresis
        self.is_tilted = False

    def update(self, adjusted_tilt: float) -> bool:
        magnitude = abs(adjusted_tilt)
        if magnitude > self.threshold:
            self.is_tilted = True
        elif magnitude < self.threshold - self.hysteresis:
            self.is_tilted = False
        return self.is_tilted

    def reset(self) -> None:
        self.is_tilted = False


# ═════════════════════════════════════════════════════════════
#  MOUTH / GAZE / DISTANCE
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class YawnState:
    avg_mar: float
    is_yawning: bool
    yawn_count: int       # yawns in the last minute
    total_yawns: int
    is_frequent: bool


class YawnDetector:
    def __init__(self):
        self._mar = RingBuffer(config.MAR_SMOOTHING)
        self._events: deque = deque()
        self._open_since: Optional[float] = None
        self._total = 0

    def update(self, mar: float, now: float) -> YawnState:
        self._mar.push(mar)
        avg = self._mar.mean()
        is_open = avg > config.MAR_THRESHOLD

        if is_open and self._open_since is None:
            self._open_since = now
        elif not is_open and self._open_since is not None:
            duration = now - self._open_since
            if config.YAWN_MIN_DURATION <= duration <= config.YAWN_MAX_DURATION:
                self._events.append(now)
                self._total += 1
            self._open_since = None

        _prune(self._events, now, config.YAWN_WINDOW)
        count = len(self._events)
        return YawnState(
            avg_mar=avg,
            is_yawning=is_open,
            yawn_count=count,
            total_yawns=self._total,
            is_frequent=count >= config.YAWN_FREQUENT_COUNT,
        )

    def reset(self) -> None:
        self._mar.clear()
        self._events.clear()
        self._open_since = None
        self._total = 0


@dataclass(frozen=True)
class GazeState:
    horizontal_gaze: float
    is_looking_away: bool
    look_away_duration: float
    is_drowsy: bool


class GazeTracker:
    def __init__(self):
        self._gaze = RingBuffer(config.GAZE_SMOOTHING)
        self._away_since: Optional[float] = None

    def update(self, gaze: float, now: float) -> GazeState:
        self._gaze.push(gaze)
        avg = self._gaze.mean()
        away = abs(avg) > config.GAZE_THRESHOLD
        if away:
            if self._away_since is None:
                self._away_since = now
            duration = now - self._away_since
        else:
            self._away_since = None
            duration = 0.0
        return GazeState(
            horizontal_gaze=avg,
            is_looking_away=away,
            look_away_duration=duration,
            is_drowsy=duration > config.GAZE_AWAY_SEC,
        )

    def reset(self) -> None:
        self._gaze.clear()
        self._away_since = None


@dataclass(frozen=True)
class DistanceState:
    face_width: float
    is_too_close: bool
    is_too_far: bool
    warning_duration: float
    is_abnormal: bool


class FaceDistanceTracker:
    def __init__(self):
        self._width = RingBuffer(config.DISTANCE_SMOOTHING)
        self._warning_since: Optional[float] = None

    def update(self, face_width: float, now: float) -> DistanceState:
        self._width.push(face_width)
        avg = self._width.mean()
        too_close = avg > config.FACE_TOO_CLOSE
        too_far = avg < config.FACE_TOO_FAR
        if too_close or too_far:
            if self._warning_since is None:
                self._warning_since = now
            duration = now - self._warning_since
        else:
            self._warning_since = None
            duration = 0.0
        return DistanceState(
            face_width=avg,
            is_too_close=too_close,
            is_too_far=too_far,
            warning_duration=duration,
            is_abnormal=duration > config.DISTANCE_ABNORMAL_SEC,
        )

    def reset(self) -> None:
        self._width.clear()
        self._warning_since = None


# ═════════════════════════════════════════════════════════════
#  EYES
# ═════════════════════════════════════════════════════════════

class EyeClosureCounter:
    """Consecutive closed frames; closure time only accrues past the blink filter."""

    def __init__(self, min_frames: int = config.MIN_CLOSED_FRAMES, fps: int = config.FPS):
        self.min_frames = min_frames
        self.fps = fps
        self.frames = 0

    def update(self, ear: float, threshold: float) -> float:
        if ear < threshold:
            self.frames += 1
        else:
            self.frames = 0
        return self.closed_seconds

    @property
    def is_closed(self) -> bool:
        return self.frames > 0

    @property
    def closed_seconds(self) -> float:
        if self.frames < self.min_frames:
            return 0.0
        return (self.frames - self.min_frames) / self.fps

    def reset(self) -> None:
        self.frames = 0


@dataclass(frozen=True)
class BlinkState:
    blink_rate: float     # blinks per minute
    total_blinks: int
    is_drowsy: bool


class BlinkDetector:
    """A closed -> open transition counts as one blink."""

    def __init__(self, window: float = config.BLINK_RATE_WINDOW):
        self.window = window
        self._stamps: deque = deque()
        self._started: Optional[float] = None
        self._was_closed = False
        self._total = 0

    def update(self, is_closed: bool, now: float) -> BlinkState:
        if self._started is None:
            self._started = now
        if self._was_closed and not is_closed:
            self._stamps.append(now)
            self._total += 1
        self._was_closed = is_closed

        _prune(self._stamps, now, self.window)
        # Scale by the observed span until a full window has elapsed
        span = min(self.window, now - self._started)
        rate = len(self._stamps) * 60.0 / span if span > 0 else 0.0
        return BlinkState(
            blink_rate=rate,
            total_blinks=self._total,
            is_drowsy=0 < rate < config.LOW_BLINK_RATE,
        )

    def reset(self) -> None:
        self._stamps.clear()
        self._was_closed = False
        self._total = 0
        self._started = None


@dataclass(frozen=True)
class PerclosState:
    perclos: float        # percent of recent frames with eyes closed
    is_drowsy: bool
    is_critical: bool


class PerclosDetector:
    def __init__(self, window_frames: int = config.PERCLOS_WINDOW_FRAMES):
        self._frames = RingBuffer(window_frames)

    def update(self, is_closed: bool) -> PerclosState:
        self._frames.push(bool(is_closed))
        total = len(self._frames)
        perclos = 100.0 * self._frames.count(True) / total if total else 0.0
        return PerclosState(
            perclos=perclos,
            is_drowsy=perclos >= config.PERCLOS_DROWSY,
            is_critical=perclos >= config.PERCLOS_CRITICAL,
        )

    def reset(self) -> None:
        self._frames.clear()


@dataclass(frozen=True)
class MicrosleepState:
    count: int            # episodes in the last five minutes
    current_closure: float
    is_critical: bool


class MicrosleepDetector:
    """Closure episodes of 0.5-15 s, counted when the eyes reopen."""

    def __init__(self):
        self._episodes: deque = deque()
        self._closed_since: Optional[float] = None

    def update(self, is_closed: bool, now: float) -> MicrosleepState:
        if is_closed:
            if self._closed_since is None:
                self._closed_since = now
        elif self._closed_since is not None:
            duration = now - self._closed_since
            if config.MICROSLEEP_MIN <= duration <= config.MICROSLEEP_MAX:
                self._episodes.append(now)
            self._closed_since = None

        _prune(self._episodes, now, config.MICROSLEEP_WINDOW)
        current = now - self._closed_since if self._closed_since is not None else 0.0
        count = len(self._episodes)
        return MicrosleepState(
            count=count,
            current_closure=current,
            is_critical=count >= config.MICROSLEEP_CRITICAL_COUNT,
        )

    def reset(self) -> None:
        self._episodes.clear()
        self._closed_since = None


@dataclass(frozen=True)
class EyelidSpeedState:
    last_closure_ms: float
    last_speed: str       # "fast" | "normal" | "slow" | "none"
    slow_count: int
    fast_count: int
    is_drowsy: bool


class EyelidSpeedDetector:
    """Classifies each completed closure by how long the lid stayed down."""

    def __init__(self):
        self._events: deque = deque()   # (timestamp, speed)
        self._closed_since: Optional[float] = None
        self._last_ms = 0.0
        self._last_speed = "none"

    def update(self, is_closed: bool, now: float) -> EyelidSpeedState:
        if is_closed:
            if self._closed_since is None:
                self._closed_since = now
        elif self._closed_since is not None:
            closure_ms = (now - self._closed_since) * 1000.0
            if closure_ms < config.EYELID_FAST_MS:
                speed = "fast"
            elif closure_ms > config.EYELID_SLOW_MS:
                speed = "slow"
            else:
                speed = "normal"
            self._events.append((now, speed))
            self._last_ms = closure_ms
            self._last_speed = speed
            self._closed_since = None

        _prune(self._events, now, config.EYELID_WINDOW)
        slow = sum(1 for _, s in self._events if s == "slow")
        fast = sum(1 for _, s in self._events if s == "fast")
        return EyelidSpeedState(
            last_closure_ms=self._last_ms,
            last_speed=self._last_speed,
            slow_count=slow,
            fast_count=fast,
            is_drowsy=slow >= config.EYELID_SLOW_DROWSY_COUNT,
        )

    def reset(self) -> None:
        self._events.clear()
        self._closed_since = None
        self._last_ms = 0.0
        self._last_speed = "none"


# ═════════════════════════════════════════════════════════════
#  POSTURE
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PostureState:
    is_present: bool
    body_presence: float
    vertical_distance: float
    is_slouching: bool        # instantaneous, with hysteresis
    is_slouched: bool         # sustained past the slouch window
    slouch_duration: float
    lean_angle: float         # relative to baseline
    lean_direction: str       # "forward" | "backward" | "neutral"
    lean_duration: float
    away_duration: float

    @property
    def is_leaning(self) -> bool:
        return self.lean_direction != "neutral"


class PostureTracker:
    """Baseline-relative slouch and lean, plus body-away timing."""

    def __init__(self):
        self.baseline_vertical: Optional[float] = None
        self.baseline_lean: Optional[float] = None
        self.latest: Optional[PostureState] = None
        self._raw_vertical = 0.0
        self._raw_lean = 0.0
        self._slouching = False
        self._slouch_since: Optional[float] = None
        self._lean_direction = "neutral"
        self._lean_since: Optional[float] = None
        self._away_since: Optional[float] = None

    def set_baseline(self, vertical: float, lean: float) -> None:
        self.baseline_vertical = vertical
        self.baseline_lean = lean

    def latch_baseline(self) -> bool:
        """Adopt the latest raw reading as the baseline. False when nothing usable was seen."""
        if self.latest is None or not self.latest.is_present:
            return False
        self.set_baseline(self._raw_vertical, self._raw_lean)
        return True

    def update(self, pose: Optional[PoseLandmarks], now: float) -> PostureState:
        presence = compute_body_presence(pose)
        if pose is None or presence < config.BODY_PRESENCE_THRESHOLD:
            if self._away_since is None:
                self._away_since = now
            self._slouching = False
            self._slouch_since = None
            self._lean_direction = "neutral"
            self._lean_since = None
            self.latest = PostureState(
                is_present=False, body_presence=presence, vertical_distance=0.0,
                is_slouching=False, is_slouched=False, slouch_duration=0.0,
                lean_angle=0.0, lean_direction="neutral", lean_duration=0.0,
                away_duration=now - self._away_since,
            )
            return self.latest

        self._away_since = None
        vertical = compute_posture_vertical(pose)
        lean_raw = compute_lean_angle(pose)
        self._raw_vertical, self._raw_lean = vertical, lean_raw

        # One-time fallback baseline when calibration never latched one
        if self.baseline_vertical is None:
            self.baseline_vertical = vertical
        if self.baseline_lean is None:
            self.baseline_lean = lean_raw

        baseline = self.baseline_vertical
        if self._slouching:
            self._slouching = vertical < baseline * config.SLOUCH_RELEASE_RATIO
        else:
            self._slouching = vertical < baseline * config.SLOUCH_RATIO
        if self._slouching:
            if self._slouch_since is None:
                self._slouch_since = now
            slouch_duration = now - self._slouch_since
        else:
            self._slouch_since = None
            slouch_duration = 0.0

        lean = lean_raw - self.baseline_lean
        if lean > config.LEAN_FORWARD_DEG:
            direction = "forward"
        elif lean < config.LEAN_BACKWARD_DEG:
            direction = "backward"
        else:
            direction = "neutral"
        if direction != self._lean_direction:
            self._lean_direction = direction
            self._lean_since = now if direction != "neutral" else None
        lean_duration = now - self._lean_since if self._lean_since is not None else 0.0

        self.latest = PostureState(
            is_present=True,
            body_presence=presence,
            vertical_distance=vertical,
            is_slouching=self._slouching,
            is_slouched=slouch_duration > config.SLOUCH_SUSTAIN_SEC,
            slouch_duration=slouch_duration,
            lean_angle=lean,
            lean_direction=direction,
            lean_duration=lean_duration,
            away_duration=0.0,
        )
        return self.latest

    def reset(self) -> None:
        self.__init__()
