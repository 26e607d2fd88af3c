"""
Core configuration constants for capture, VAD and inference.
These are transport-agnostic settings.
"""

# -------------------------
# AUDIO CONFIG
# -------------------------
SAMPLE_RATE = 16000
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per sample (int16)

# -------------------------
# CAPTURE LIMITS
# -------------------------
MAX_RECORDING_SECONDS = 30
MAX_RECORDING_BYTES = SAMPLE_RATE * SAMPLE_WIDTH * CHANNELS * MAX_RECORDING_SECONDS
MIN_RECORDING_BYTES = 6400  # 0.2s; shorter recordings are reported as errors
DEVICE_BUFFER_SAMPLES = 1024  # preferred device buffer before VAD sizing
VISUALIZATION_INTERVAL_S = 0.033  # ~30 fps for the waveform sink

# -------------------------
# VAD CONFIG (webrtcvad)
# -------------------------
VAD_AGGRESSIVENESS = 1  # 0..3
VAD_FRAME_SAMPLES = 480  # 30 ms at 16 kHz
VAD_MIN_SILENCE_MS = 300  # silence needed before the verdict falls
VAD_MIN_SPEECH_MS = 50  # speech needed before the verdict rises

# -------------------------
# MODEL ASSETS
# -------------------------
ENGLISH_MODEL_FILE = "tiny.en.pt"
MULTILINGUAL_MODEL_FILE = "base.pt"
DEFAULT_LANGUAGE = "en"

# -------------------------
# DECODING
# -------------------------
TIMESTAMPS_MIN_SECONDS = 25  # timestamps only for inputs at least this long
DEFAULT_BEAM_SIZE = 1  # 1 = greedy
FILLER_SEGMENT = " you"  # trailing artifact emitted on near-silent tails

# -------------------------
# RECOGNITION WATCHDOG
# -------------------------
RECOGNITION_TIMEOUT_S = 15.0
