"""
============================================================
 WakeWatch — Calibration
 Collects a few seconds of neutral-pose samples at session
 start and freezes them into per-user baselines.
============================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from wakewatch import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationBaseline:
    pitch: float
    ear: float
    tilt: float
    face_width: float


def effective_ear_threshold(baseline: Optional[CalibrationBaseline]) -> float:
    """Closed-eye threshold scaled to the user's open-eye EAR, floored at the global default."""
    floor = config.EAR_THRESHOLD * config.EAR_THRESHOLD_RATIO
    if baseline is None:
        return config.EAR_THRESHOLD
    return max(baseline.ear * config.EAR_THRESHOLD_RATIO, floor)


class Calibrator:
    """
    Sample collector. Completion needs both the full time window
    and a minimum sample count; a frame without a face discards
    everything collected so far and restarts the window.
    """

    def __init__(self, window: float = config.CALIBRATION_WINDOW,
                 min_samples: int = config.CALIBRATION_MIN_SAMPLES):
        self.window = window
        self.min_samples = min_samples
        self.baseline: Optional[CalibrationBaseline] = None
        self._collecting = False
        self._started_at: Optional[float] = None
        self._samples: List[tuple] = []
        self._last_now: Optional[float] = None

    # ── Lifecycle ────────────────────────────────────────────

    def start(self) -> None:
        self.baseline = None
        self._collecting = True
        self._started_at = None
        self._samples = []
        logger.info("[CALIBRATION] Collecting baseline — hold a neutral, alert pose")

    def interrupt(self) -> None:
        """Face lost mid-collection: drop partial samples and restart the window."""
        if not self._collecting:
            return
        if self._samples:
            logger.info("[CALIBRATION] Face lost — discarding %d samples", len(self._samples))
        self._samples = []
        self._started_at = None

    def reset(self) -> None:
        self.baseline = None
        self._collecting = False
        self._started_at = None
        self._samples = []
        self._last_now = None

    # ── Sampling ─────────────────────────────────────────────

    def add_sample(self, now: float, pitch: float, ear: float,
                   tilt: float, face_width: float) -> Optional[CalibrationBaseline]:
        """Record one frame. Returns the baseline on the frame that completes it."""
        if not self._collecting:
            return None
        if self._started_at is None:
            self._started_at = now
        self._last_now = now
        self._samples.append((pitch, ear, tilt, face_width))

        elapsed = now - self._started_at
        if elapsed < self.window or len(self._samples) < self.min_samples:
            return None

        data = np.asarray(self._samples, dtype=np.float64)
        self.baseline = CalibrationBaseline(
            pitch=float(np.median(data[:, 0])),
            ear=float(np.mean(data[:, 1])),
            tilt=float(np.mean(data[:, 2])),
            face_width=float(np.mean(data[:, 3])),
        )
        self._collecting = False
        logger.info(
            "[CALIBRATION] ✓ Baseline from %d samples: pitch=%.1f° ear=%.3f tilt=%.1f° width=%.3f",
            len(self._samples), self.baseline.pitch, self.baseline.ear,
            self.baseline.tilt, self.baseline.face_width,
        )
        self._samples = []
        return self.baseline

    # ── State ────────────────────────────────────────────────

    @property
    def is_collecting(self) -> bool:
        return self._collecting

    @property
    def is_complete(self) -> bool:
        return self.baseline is not None

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def progress(self) -> float:
        if self.baseline is not None:
            return 1.0
        if self._started_at is None or self._last_now is None:
            return 0.0
        return min(1.0, (self._last_now - self._started_at) / self.window)
