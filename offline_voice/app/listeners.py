"""
Listener surfaces consumed by hosts (UI, IME, CLI).

All methods default to no-ops so hosts override only what they need.
Callbacks run on worker threads; UI hosts must marshal to their own thread.
"""

import numpy as np

from ..core.types import AudioBuffer


class CaptureListener:
    """Events from AudioCaptureWorker (capture thread)."""

    def on_recording_started(self) -> None:
        pass

    def on_recording_done(self, buffer: AudioBuffer) -> None:
        """Ownership of ``buffer`` moves to the listener."""

    def on_recording_error(self, message: str) -> None:
        pass

    def on_permission_error(self) -> None:
        pass

    def on_audio_frame(self, samples: np.ndarray) -> None:
        """Latest chunk as float32 in [-1, 1], for visualization only."""


class RecognitionListener:
    """Events from RecognitionOrchestrator (inference thread)."""

    def on_recognition_started(self) -> None:
        pass

    def on_recognition_partial(self, text: str) -> None:
        pass

    def on_recognition_result(self, text: str, language: str) -> None:
        pass

    def on_recognition_error(self, message: str) -> None:
        pass

    def on_recognition_finished(self) -> None:
        pass


class VoiceInputListener(CaptureListener, RecognitionListener):
    """Full listener surface of a voice input session."""
