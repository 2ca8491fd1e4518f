"""
Air DJ configuration.

All tunable constants live here so the audio engine, the gesture mapper and
the launchers agree on one set of numbers.
"""

import logging
import os

# ---------------------------------------------------------------------------
# Audio processing
# ---------------------------------------------------------------------------
SAMPLE_RATE = 44100
RENDER_BLOCK_SIZE = 128       # Frames per render block (automation/timer granularity)
OUTPUT_BUFFER_SIZE = 512      # pyo server buffer size
OUTPUT_CHANNELS = 2

FADE_SECONDS = 0.008          # Micro-fade used by fade-replace (8 ms)
JOG_MAX_STEP = 5.0            # Max seconds a single jog call may move
DEFAULT_LOOP_LENGTH = 1.0     # Used when set_loop() is given no length

# EQ (dB)
EQ_MIN_DB = -12.0
EQ_MAX_DB = 12.0
LOW_SHELF_FREQ = 200.0
MID_PEAK_FREQ = 1000.0
MID_PEAK_Q = 1.0
HIGH_SHELF_FREQ = 4000.0
SHELF_Q = 0.7071

# FX
DELAY_MAX_SECONDS = 5.0
FEEDBACK_MAX = 0.6            # Kept below 1 so the echo always decays
LOWPASS_MIN_HZ = 40.0
LOWPASS_MAX_HZ = 20000.0
REVERB_SECONDS = 0.5
REVERB_DECAY = 2.0

DEFAULT_DELAY_TIME = 0.25
DEFAULT_DELAY_FEEDBACK = 0.2
DEFAULT_LOWPASS_CUTOFF = 8000.0
DEFAULT_REVERB_WET = 0.0
DEFAULT_FX_WET = 0.0

DEFAULT_VOLUME = 1.0
DEFAULT_CROSSFADE = 0.5
CROSSFADE_STEP = 0.05         # Arrow-key crossfade nudge

# Analysis / metering
PEAK_COUNT = 2048
METER_WINDOW = 2048
METER_SCALE = 3.0             # Typical RMS sits around 0.1-0.3, scale up for the meter

# ---------------------------------------------------------------------------
# Gesture mapping
# ---------------------------------------------------------------------------
SMOOTHING_ALPHA = 0.15
ASSIGN_LEFT_THRESHOLD = 0.45
ASSIGN_RIGHT_THRESHOLD = 0.55
HOLD_MS = 300

FALLBACK_RANGE_MIN = 0.3      # Fingers usually span ~0.3 (top) to ~0.8 (bottom)
FALLBACK_RANGE_MAX = 0.8

FIST_SPREAD_THRESHOLD = 0.08
PINCH_THRESHOLD = 0.04
JOG_SENSITIVITY = 2.5         # Seconds of audio per radian of palm rotation
JOG_DEADZONE = 0.0001
GESTURE_LOOP_LENGTH = 2.0
CALIBRATION_SECONDS = 3.0
DECAY_ALPHA = 0.05            # Per-frame pull toward neutral for the DECAY policy
NEUTRAL_VOLUME = 0.5

CALIBRATION_FILE = "calibration.json"
CALIBRATION_KEY = "airdj:calibration"

# ---------------------------------------------------------------------------
# Camera / hand tracking
# ---------------------------------------------------------------------------
FPS_LIMIT = 30
MAX_NUM_HANDS = 2
MODEL_COMPLEXITY = 1
MIN_DETECTION_CONFIDENCE = 0.7
MIN_TRACKING_CONFIDENCE = 0.5
CAMERA_WIDTH = 1280
CAMERA_HEIGHT = 720

SONGS_FOLDER = "songs"
AUDIO_EXTENSIONS = ('.mp3', '.wav', '.ogg', '.flac', '.aiff', '.aif', '.m4a')

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: bool = False):
    """Set up root logging and quiet the TensorFlow backend used by MediaPipe"""
    # Disable TensorFlow logging
    os.environ['TF_CPP_MIN_LOG_LEVEL'] = '2'  # 0=DEBUG, 1=INFO, 2=WARNING, 3=ERROR
    os.environ['TF_ENABLE_ONEDNN_OPTS'] = '0'
    logging.getLogger('tensorflow').setLevel(logging.ERROR)
    logging.getLogger('absl').setLevel(logging.ERROR)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
