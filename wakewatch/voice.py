"""
============================================================
 WakeWatch — Voice & Tone Effectors
 Spoken warnings through pyttsx3 on a background thread,
 synthesized tones through pygame. Both are fire-and-forget
 and never raise into the frame loop.
============================================================
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional, Tuple

import numpy as np
import pygame
import pyttsx3

from wakewatch import config

logger = logging.getLogger(__name__)

# Voice-priority fallback patterns: (frequency Hz, duration s)
VOICE_PATTERNS = {
    "low": [(400, 0.15), (500, 0.15)],
    "medium": [(600, 0.2), (700, 0.2), (800, 0.2)],
    "high": [(900, 0.15), (1000, 0.15), (1100, 0.15), (1200, 0.15)],
}
PATTERN_GAP = 0.05


class ToneGenerator:
    """
    Beeps for voice priorities (low/medium/high) and alarm
    severities (warning/critical). The mixer is opened on first
    use; when audio is unavailable every call is a logged no-op.
    """

    def __init__(self, sample_rate: int = 22050, volume: float = 0.4):
        self.sample_rate = sample_rate
        self.volume = volume
        self._mixer_ready: Optional[bool] = None
        self._lock = threading.Lock()

    # ── Synthesis (pure) ─────────────────────────────────────

    def _sine(self, freq: float, duration: float) -> np.ndarray:
        t = np.arange(int(self.sample_rate * duration)) / self.sample_rate
        return np.sin(2 * np.pi * freq * t)

    def _square(self, freq: float, duration: float) -> np.ndarray:
        return np.sign(self._sine(freq, duration))

    def _silence(self, duration: float) -> np.ndarray:
        return np.zeros(int(self.sample_rate * duration))

    def synthesize(self, level: str) -> np.ndarray:
        """16-bit mono samples for a voice priority or alarm severity."""
        if level == "critical":
            # Square wave alternating 1800/800 Hz every 100 ms for 500 ms
            parts = [self._square(1800 if k % 2 == 0 else 800, 0.1) for k in range(5)]
        elif level == "warning":
            parts = [self._sine(800, 0.15), self._sine(1200, 0.25)]
        elif level in VOICE_PATTERNS:
            parts = []
            for freq, duration in VOICE_PATTERNS[level]:
                if parts:
                    parts.append(self._silence(PATTERN_GAP))
                parts.append(self._sine(freq, duration))
        else:
            raise ValueError(f"unknown tone level {level!r}")
        wave = np.concatenate(parts) * self.volume
        return (wave * 32767).astype(np.int16)

    # ── Playback ─────────────────────────────────────────────

    def _ensure_mixer(self) -> bool:
        with self._lock:
            if self._mixer_ready is None:
                try:
                    if not pygame.mixer.get_init():
                        pygame.mixer.init(frequency=self.sample_rate, size=-16,
                                          channels=1, buffer=1024)
                    self._mixer_ready = True
                    logger.info("[VOICE] Tone mixer (pygame) initialized ✓")
                except Exception as e:
                    self._mixer_ready = False
                    logger.warning("[VOICE] ⚠ Audio unavailable — tones disabled: %s", e)
            return self._mixer_ready

    def play(self, level: str) -> bool:
        samples = self.synthesize(level)
        if not self._ensure_mixer():
            return False
        try:
            _, _, channels = pygame.mixer.get_init()
            if channels > 1:
                samples = np.repeat(samples[:, None], channels, axis=1)
            pygame.sndarray.make_sound(np.ascontiguousarray(samples)).play()
            return True
        except Exception as e:
            logger.warning("[VOICE] Tone playback failed: %s", e)
            return False

    def stop(self) -> None:
        if self._mixer_ready:
            try:
                pygame.mixer.stop()
            except Exception as e:
                logger.debug("[VOICE] Mixer stop failed: %s", e)

    def close(self) -> None:
        self.stop()
        with self._lock:
            if self._mixer_ready:
                pygame.mixer.quit()
            self._mixer_ready = None


class Announcer:
    """
    Text-to-speech with three guards: the same message within
    the debounce window is dropped, a new message is skipped
    while one is still playing, and after repeated engine
    failures speech is replaced by tone patterns for the rest
    of the session.
    """

    HISTORY = 20   # recent utterances kept for inspection

    def __init__(self, tone: Optional[ToneGenerator] = None,
                 rate: int = config.SPEECH_RATE,
                 engine_factory: Callable = pyttsx3.init,
                 background: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        self.tone = tone
        self.rate = rate
        self.background = background
        self._engine_factory = engine_factory
        self._clock = clock
        self._engine = None
        self._engine_lock = threading.Lock()
        self._lock = threading.Lock()
        self.is_speaking = False
        self.failures = 0
        self.use_tones = False
        self.spoken: Deque[Tuple[str, str]] = deque(maxlen=self.HISTORY)
        self._last_message: Optional[str] = None
        self._last_time = float("-inf")

    def speak(self, message: str, priority: str = "medium") -> bool:
        """Fire-and-forget. Returns False when the message was dropped."""
        now = self._clock()
        with self._lock:
            if message == self._last_message and now - self._last_time < config.VOICE_DEBOUNCE:
                return False
            if self.is_speaking:
                return False
            self._last_message = message
            self._last_time = now
            if self.use_tones:
                self._play_tone(priority)
                return True
            self.is_speaking = True

        if self.background:
            threading.Thread(target=self._run, args=(message, priority),
                             daemon=True, name="Announcer").start()
        else:
            self._run(message, priority)
        return True

    def _run(self, message: str, priority: str) -> None:
        try:
            with self._engine_lock:
                if self._engine is None:
                    self._engine = self._engine_factory()
                    self._engine.setProperty("rate", self.rate)
                    self._engine.setProperty("volume", 1.0)
                self._engine.say(message)
                self._engine.runAndWait()
            self.failures = 0
            self.spoken.append((message, priority))
            logger.info("[VOICE] 🔊 %s", message)
        except Exception as e:
            self.failures += 1
            self._engine = None
            logger.warning("[VOICE] ⚠ Speech failed (%d): %s", self.failures, e)
            if self.failures >= config.VOICE_MAX_FAILURES and not self.use_tones:
                self.use_tones = True
                logger.warning("[VOICE] Falling back to tone patterns for this session")
            self._play_tone(priority)
        finally:
            with self._lock:
                self.is_speaking = False

    def _play_tone(self, priority: str) -> None:
        if self.tone is not None:
            self.tone.play(priority if priority in VOICE_PATTERNS else "medium")

    def stop(self) -> None:
        """Halt speech and pending tones immediately."""
        engine = self._engine
        if engine is not None:
            try:
                engine.stop()
            except Exception as e:
                logger.debug("[VOICE] Engine stop failed: %s", e)
        if self.tone is not None:
            self.tone.stop()
        with self._lock:
            self.is_speaking = False
            self._last_message = None

    def reset(self) -> None:
        """New session: forget failures and re-enable speech."""
        self.stop()
        self.failures = 0
        self.use_tones = False
        self.spoken.clear()
