"""
Runtime configuration that can be modified during execution.
Thread-safe settings store for tunable recognition parameters.
"""

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable

from . import config
from .types import DecodingMode

logger = logging.getLogger(__name__)

DEFAULT_MODELS_DIR = os.path.join(os.path.expanduser("~"), ".cache", "whisper")


def _split_codes(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RecognitionSettings:
    """
    Runtime-tunable recognition values.
    These can be changed while the application is running; new values
    apply to the next capture session or recognition call.
    """

    # VAD settings
    vad_aggressiveness: int = config.VAD_AGGRESSIVENESS
    vad_min_silence_ms: int = config.VAD_MIN_SILENCE_MS
    vad_min_speech_ms: int = config.VAD_MIN_SPEECH_MS

    # Decoding
    beam_size: int = config.DEFAULT_BEAM_SIZE
    suppress_non_speech: bool = True
    prompt: str = ""
    bail_languages: tuple[str, ...] = ()
    device: str | None = None

    # Model assets
    models_dir: str = DEFAULT_MODELS_DIR
    english_model_file: str = config.ENGLISH_MODEL_FILE
    multilingual_model_file: str = config.MULTILINGUAL_MODEL_FILE

    # Caller-side watchdog
    recognition_timeout_s: float = config.RECOGNITION_TIMEOUT_S

    @property
    def decoding_mode(self) -> DecodingMode:
        return DecodingMode(max(1, int(self.beam_size)))

    @staticmethod
    def from_env() -> "RecognitionSettings":
        """
        Load settings from OFFLINE_VOICE_* environment variables.
        Unset variables keep their defaults.
        """
        defaults = RecognitionSettings()
        return RecognitionSettings(
            vad_aggressiveness=int(
                os.getenv("OFFLINE_VOICE_VAD_AGGRESSIVENESS", defaults.vad_aggressiveness)
            ),
            vad_min_silence_ms=int(
                os.getenv("OFFLINE_VOICE_VAD_SILENCE_MS", defaults.vad_min_silence_ms)
            ),
            vad_min_speech_ms=int(
                os.getenv("OFFLINE_VOICE_VAD_SPEECH_MS", defaults.vad_min_speech_ms)
            ),
            beam_size=int(os.getenv("OFFLINE_VOICE_BEAM_SIZE", defaults.beam_size)),
            suppress_non_speech=_env_bool(
                "OFFLINE_VOICE_SUPPRESS_NON_SPEECH", defaults.suppress_non_speech
            ),
            prompt=os.getenv("OFFLINE_VOICE_PROMPT", defaults.prompt),
            bail_languages=_split_codes(os.getenv("OFFLINE_VOICE_BAIL_LANGUAGES", "")),
            device=os.getenv("OFFLINE_VOICE_DEVICE") or None,
            models_dir=os.getenv("OFFLINE_VOICE_MODELS_DIR", defaults.models_dir),
            english_model_file=os.getenv(
                "OFFLINE_VOICE_ENGLISH_MODEL", defaults.english_model_file
            ),
            multilingual_model_file=os.getenv(
                "OFFLINE_VOICE_MULTILINGUAL_MODEL", defaults.multilingual_model_file
            ),
            recognition_timeout_s=float(
                os.getenv("OFFLINE_VOICE_TIMEOUT_S", defaults.recognition_timeout_s)
            ),
        )


class SettingsStore:
    """
    Thread-safe settings store with change notifications.
    """

    def __init__(self, settings: RecognitionSettings | None = None):
        self._settings = settings or RecognitionSettings()
        self._lock = threading.RLock()
        self._listeners: list[Callable[[RecognitionSettings], None]] = []

    def get(self) -> RecognitionSettings:
        """Get a copy of the current settings."""
        with self._lock:
            return dataclasses.replace(self._settings)

    def update(self, **kwargs) -> None:
        """
        Update settings values. Unknown keys are ignored with a warning.

        Args:
            **kwargs: Settings fields to update
        """
        field_names = {f.name for f in dataclasses.fields(RecognitionSettings)}
        with self._lock:
            for key, value in kwargs.items():
                if key in field_names:
                    setattr(self._settings, key, value)
                else:
                    logger.warning("Ignoring unknown setting %r", key)

            # Notify listeners
            settings_copy = self.get()
            for listener in list(self._listeners):
                try:
                    listener(settings_copy)
                except Exception:
                    logger.exception("Settings listener failed")

    def add_listener(self, callback: Callable[[RecognitionSettings], None]) -> None:
        """Add a listener for settings changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[RecognitionSettings], None]) -> None:
        """Remove a settings change listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)
