"""
Data model shared by capture, the model layer and recognition.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from . import config


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    DONE = "done"
    ERROR = "error"


class StopReason(str, Enum):
    REQUESTED = "requested"
    CAP_REACHED = "cap_reached"
    DEVICE_FAILURE = "device_failure"
    VAD_SILENCE = "vad_silence"


class ModelCategory(str, Enum):
    ENGLISH_ONLY = "english"
    MULTILINGUAL = "multilingual"


@dataclass(frozen=True)
class AudioBuffer:
    """Finished capture: 16-bit little-endian mono PCM at 16 kHz."""

    pcm: bytes
    sample_rate: int = config.SAMPLE_RATE

    def __post_init__(self) -> None:
        if len(self.pcm) > config.MAX_RECORDING_BYTES:
            raise ValueError(
                f"audio buffer exceeds {config.MAX_RECORDING_BYTES} bytes"
            )

    def __len__(self) -> int:
        return len(self.pcm)

    @property
    def num_samples(self) -> int:
        return len(self.pcm) // config.SAMPLE_WIDTH

    @property
    def duration_s(self) -> float:
        return self.num_samples / float(self.sample_rate)

    def to_float32(self) -> np.ndarray:
        """Convert to float32 samples normalized to [-1, 1]."""
        return pcm16_to_float32(self.pcm)


def pcm16_to_float32(pcm: bytes) -> np.ndarray:
    usable = len(pcm) - (len(pcm) % config.SAMPLE_WIDTH)
    audio_np = np.frombuffer(pcm[:usable], dtype=np.int16).astype(np.float32)
    audio_np /= 32768.0  # Normalize to [-1, 1]
    return audio_np


@dataclass
class RecordingSession:
    """State of one capture session, from start() until its buffer is handed off."""

    vad_enabled: bool = False
    state: CaptureState = CaptureState.IDLE
    bytes_captured: int = 0
    started_at: float | None = None
    stop_reason: StopReason | None = None
    buffer: AudioBuffer | None = None
    completed: threading.Event = field(default_factory=threading.Event, repr=False)


@dataclass(frozen=True)
class DecodingMode:
    """Greedy decoding when beam_size == 1, beam search otherwise."""

    beam_size: int = 1

    def __post_init__(self) -> None:
        if self.beam_size < 1:
            raise ValueError("beam_size must be >= 1")

    @classmethod
    def greedy(cls) -> "DecodingMode":
        return cls(1)

    @classmethod
    def beam_search(cls, width: int = 5) -> "DecodingMode":
        return cls(width)

    @property
    def is_greedy(self) -> bool:
        return self.beam_size == 1


@dataclass(frozen=True)
class LanguageConstraint:
    """Allowed languages (ordered, empty = auto-detect) and bail languages."""

    allowed: tuple[str, ...] = ()
    bail: frozenset[str] = frozenset()

    @property
    def unrestricted(self) -> bool:
        return not self.allowed


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    language: str
    confidence: float = 0.0
    timestamp: float = field(default_factory=time.time)


class CancellationToken:
    """Cooperative cancellation flag; only the first cancel() is effective."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Transcribed:
    result: RecognitionResult

    @property
    def text(self) -> str:
        return self.result.text


@dataclass(frozen=True)
class Bailed:
    language: str


@dataclass(frozen=True)
class Cancelled:
    pass


InferenceOutcome = Transcribed | Bailed | Cancelled
