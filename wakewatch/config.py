"""
============================================================
 WakeWatch — Central Configuration
 All tunable thresholds and constants live here.
============================================================
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ── Logging ─────────────────────────────────────────────────
LOG_LEVEL = os.getenv("WAKEWATCH_LOG_LEVEL", "INFO")

# ── Camera ──────────────────────────────────────────────────
CAMERA_INDEX = int(os.getenv("WAKEWATCH_CAMERA_INDEX", 0))
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
CAMERA_FPS = 30
CAMERA_RECONNECT_DELAY = 2.0
CAMERA_FLIP_HORIZONTAL = True  # Mirror view, matches what the user sees

# ── MediaPipe models ────────────────────────────────────────
FACE_LANDMARKER_MODEL_PATH = os.getenv("WAKEWATCH_FACE_MODEL", "face_landmarker.task")
POSE_LANDMARKER_MODEL_PATH = os.getenv("WAKEWATCH_POSE_MODEL", "pose_landmarker_lite.task")
POSE_INTERVAL = 0.1  # Pose pipeline runs at ~10 Hz

# ── Flask ───────────────────────────────────────────────────
FLASK_SECRET_KEY = os.getenv("WAKEWATCH_SECRET_KEY", "change-me")
FLASK_HOST = os.getenv("WAKEWATCH_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("WAKEWATCH_PORT", 5000))
FLASK_DEBUG = False

# ── Snapshot Bridge ─────────────────────────────────────────
BRIDGE_URL = os.getenv("WAKEWATCH_BRIDGE_URL", "")
BRIDGE_QUEUE_SIZE = 50
EMIT_INTERVAL = 0.3       # Minimum spacing between attention snapshots (s)
NOTIFY_INTERVAL = 0.1     # UI state notifications are batched to ~100ms

# ── Frame timing ────────────────────────────────────────────
FPS = 30
MIN_CLOSED_FRAMES = 15    # Frames below threshold before closure time accrues

# ── Eyes ────────────────────────────────────────────────────
EAR_THRESHOLD = 0.20
EAR_THRESHOLD_RATIO = 0.75  # Effective threshold = baseline EAR x ratio
BLINK_RATE_WINDOW = 60.0
LOW_BLINK_RATE = 10.0
PERCLOS_WINDOW_FRAMES = 1800
PERCLOS_DROWSY = 20.0
PERCLOS_CRITICAL = 40.0
MICROSLEEP_MIN = 0.5
MICROSLEEP_MAX = 15.0
MICROSLEEP_WINDOW = 300.0
MICROSLEEP_CRITICAL_COUNT = 2
EYELID_FAST_MS = 200.0
EYELID_SLOW_MS = 300.0
EYELID_WINDOW = 60.0
EYELID_SLOW_DROWSY_COUNT = 3

# ── Eye-closure evidence bands (seconds) ────────────────────
CLOSED_SLEEPING_SEC = 5.0
CLOSED_DEEP_NOD_SEC = 3.5
CLOSED_NOD_SEC = 2.0
CLOSED_LIGHT_SEC = 1.0

# ── Head ────────────────────────────────────────────────────
HEAD_PITCH_THRESHOLD = 10.0
HEAD_PITCH_BACK_THRESHOLD = 12.0
HEAD_PITCH_LIMIT = 60.0
HEAD_NOD_WINDOW = 18
HEAD_NOD_HYSTERESIS = 3.0
HEAD_TILT_THRESHOLD = 30.0
HEAD_TILT_HYSTERESIS = 3.0

# ── Mouth / Gaze / Distance ─────────────────────────────────
MAR_THRESHOLD = 0.6
MAR_SMOOTHING = 10
YAWN_MIN_DURATION = 0.5
YAWN_MAX_DURATION = 3.0
YAWN_WINDOW = 60.0
YAWN_FREQUENT_COUNT = 2
GAZE_SMOOTHING = 10
GAZE_THRESHOLD = 0.4
GAZE_AWAY_SEC = 5.0
DISTANCE_SMOOTHING = 10
FACE_TOO_CLOSE = 0.35
FACE_TOO_FAR = 0.15
DISTANCE_ABNORMAL_SEC = 5.0

# ── Posture ─────────────────────────────────────────────────
SLOUCH_RATIO = 0.75
SLOUCH_RELEASE_RATIO = 0.80
SLOUCH_SUSTAIN_SEC = 3.0
LEAN_FORWARD_DEG = 15.0
LEAN_BACKWARD_DEG = -10.0
BODY_PRESENCE_THRESHOLD = 0.4

# ── Calibration ─────────────────────────────────────────────
CALIBRATION_WINDOW = 4.0
CALIBRATION_MIN_SAMPLES = 90
CALIBRATING_CONFIDENCE = 0.15
CALIBRATION_LOST_CONFIDENCE = 0.2

# ── Escalation ──────────────────────────────────────────────
VOICE_GRACE_PERIOD = 5.0
VOICE_DEBOUNCE = 0.5
VOICE_MAX_FAILURES = 2
SPEECH_RATE = int(os.getenv("WAKEWATCH_SPEECH_RATE", 180))
ABSENCE_COUNTDOWN = 5.0
NODDING_BATCH_SIZE = 4
SLEEPING_BATCH_SIZE = 5
ALARMS_PER_TIER = 40
CHALLENGE_WEIGHTS = {"phrase": 1.0, "math": 1.0, "trivia": 1.0}

# ── States ──────────────────────────────────────────────────
STATE_AWAKE = "awake"
STATE_NODDING = "noddingOff"
STATE_SLEEPING = "sleeping"
RISK_STATES = (STATE_NODDING, STATE_SLEEPING)
