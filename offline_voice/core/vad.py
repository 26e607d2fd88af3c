"""
Voice Activity Detection (VAD) gate.
Classifies fixed-size audio frames as speech or silence with hysteresis.
This module is independent of any transport or UI.
"""

import logging
import math
from typing import Iterator

import webrtcvad

from . import config

logger = logging.getLogger(__name__)


def frame_generator(
    frame_ms: int, audio_bytes: bytes, sample_rate: int
) -> Iterator[bytes]:
    """Yield frames (bytes) of length frame_ms from audio_bytes."""
    bytes_per_sample = config.SAMPLE_WIDTH
    frame_size = int(sample_rate * (frame_ms / 1000.0)) * bytes_per_sample
    offset = 0
    total = len(audio_bytes)
    while offset + frame_size <= total:
        yield audio_bytes[offset : offset + frame_size]
        offset += frame_size


class VoiceActivityGate:
    """
    webrtcvad-backed speech/silence classifier with hysteresis.

    The verdict rises to speech after ``min_speech_ms`` of consecutive speech
    frames and falls back to silence after ``min_silence_ms`` of consecutive
    silence frames. Callers act on the edges of the returned verdicts.

    The gate holds a native classifier and must be closed when the session
    that owns it ends.
    """

    def __init__(
        self,
        aggressiveness: int = config.VAD_AGGRESSIVENESS,
        min_silence_ms: int = config.VAD_MIN_SILENCE_MS,
        min_speech_ms: int = config.VAD_MIN_SPEECH_MS,
        sample_rate: int = config.SAMPLE_RATE,
        frame_samples: int = config.VAD_FRAME_SAMPLES,
    ):
        if not 0 <= int(aggressiveness) <= 3:
            raise ValueError("aggressiveness must be between 0 and 3")
        self.sample_rate = sample_rate
        self.frame_samples = frame_samples
        self.frame_bytes = frame_samples * config.SAMPLE_WIDTH
        self.frame_ms = frame_samples * 1000 // sample_rate
        self.min_silence_ms = min_silence_ms
        self.min_speech_ms = min_speech_ms

        self._speech_frames_needed = max(1, int(math.ceil(min_speech_ms / self.frame_ms)))
        self._silence_frames_needed = max(
            1, int(math.ceil(min_silence_ms / self.frame_ms))
        )

        self._vad: webrtcvad.Vad | None = webrtcvad.Vad(int(aggressiveness))

        # State
        self._speaking = False
        self._speech_run = 0
        self._silence_run = 0

    @classmethod
    def from_settings(cls, settings) -> "VoiceActivityGate":
        return cls(
            aggressiveness=settings.vad_aggressiveness,
            min_silence_ms=settings.vad_min_silence_ms,
            min_speech_ms=settings.vad_min_speech_ms,
        )

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def closed(self) -> bool:
        return self._vad is None

    def classify(self, frame: bytes) -> bool:
        """
        Classify one frame and return the smoothed speech verdict.

        Raises:
            ValueError: the frame is not exactly ``frame_bytes`` long.
            RuntimeError: the gate has been closed.
        """
        if self._vad is None:
            raise RuntimeError("VoiceActivityGate is closed")
        if len(frame) != self.frame_bytes:
            raise ValueError(
                f"VAD frame must be {self.frame_bytes} bytes, got {len(frame)}"
            )

        if self._vad.is_speech(bytes(frame), self.sample_rate):
            self._speech_run += 1
            self._silence_run = 0
            if not self._speaking and self._speech_run >= self._speech_frames_needed:
                self._speaking = True
        else:
            self._silence_run += 1
            self._speech_run = 0
            if self._speaking and self._silence_run >= self._silence_frames_needed:
                self._speaking = False
        return self._speaking

    def contains_speech(self, audio_bytes: bytes) -> bool:
        """Run a finished buffer through the gate; True if speech was ever seen."""
        seen = False
        for frame in frame_generator(self.frame_ms, audio_bytes, self.sample_rate):
            seen = self.classify(frame) or seen
        return seen

    def reset(self) -> None:
        """Reset hysteresis state."""
        self._speaking = False
        self._speech_run = 0
        self._silence_run = 0

    def close(self) -> None:
        """Release the classifier. Safe to call more than once."""
        if self._vad is not None:
            logger.debug("Releasing VAD classifier")
        self._vad = None
        self.reset()

    def __enter__(self) -> "VoiceActivityGate":
        return self

    def __exit__(self, *args) -> None:
        self.close()
