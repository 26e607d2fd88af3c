"""
Voice input session: wires the capture worker to the recognizer for hosts
that want one start/stop/cancel surface and one listener.
"""

import logging
import threading
from typing import Callable

from ..core.errors import ERROR_MESSAGES, RECOGNITION_TIMEOUT
from ..core.runtime_config import SettingsStore
from ..core.types import AudioBuffer
from .capture import AudioCaptureWorker
from .factory import create_recognizer
from .listeners import VoiceInputListener

logger = logging.getLogger(__name__)


class VoiceInputSession(VoiceInputListener):
    """
    One utterance at a time: record, hand the buffer to the recognizer and
    forward every event to the host listener.

    After cancel() no further events reach the host for the current
    utterance. A watchdog reports a timeout when recognition does not end
    within ``recognition_timeout_s``.
    """

    def __init__(
        self,
        listener: VoiceInputListener | None = None,
        settings: SettingsStore | None = None,
        capture: AudioCaptureWorker | None = None,
        recognizer=None,
        timer_factory: Callable = threading.Timer,
    ):
        self.listener = listener or VoiceInputListener()
        self._settings = settings or SettingsStore()
        self._timer_factory = timer_factory

        self._capture = capture or AudioCaptureWorker(self, self._settings)
        self._capture.listener = self
        self._recognizer = recognizer or create_recognizer(self._settings, self)
        self._recognizer.listener = self

        self._lock = threading.RLock()
        self._language_hint: str | None = None
        self._suppressed = False
        self._awaiting_result = False
        self._watchdog = None
        self._closed = False

    @property
    def recognizer(self):
        return self._recognizer

    def is_listening(self) -> bool:
        return self._capture.is_in_progress()

    def is_busy(self) -> bool:
        return self._capture.is_in_progress() or self._awaiting_result

    def start_listening(self, language_hint: str | None = None, use_vad: bool = True) -> bool:
        """Start recording an utterance. Returns False while one is still active."""
        with self._lock:
            if self._closed:
                logger.warning("start_listening() on a closed session")
                return False
            if self.is_busy() or self._recognizer.is_recognizing():
                logger.warning("Voice input is already active")
                return False
            self._language_hint = language_hint
            self._suppressed = False
        logger.info("Listening (language=%s, vad=%s)", language_hint or "default", use_vad)
        return self._capture.start(use_vad=use_vad)

    def stop_listening(self):
        """Stop recording; recognition of the captured audio follows."""
        return self._capture.stop()

    def cancel(self) -> None:
        """Abandon the current utterance, whether recording or recognizing."""
        with self._lock:
            self._suppressed = True
            self._awaiting_result = False
            self._cancel_watchdog()
        if self._capture.is_in_progress():
            self._capture.stop()
        self._recognizer.cancel()
        logger.info("Voice input cancelled")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.cancel()
        self._capture.shutdown()
        self._recognizer.cleanup()

    def __enter__(self) -> "VoiceInputSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Capture events
    # ------------------------------------------------------------------

    def on_recording_started(self) -> None:
        self._forward("on_recording_started")

    def on_audio_frame(self, samples) -> None:
        self._forward("on_audio_frame", samples)

    def on_recording_error(self, message: str) -> None:
        self._forward("on_recording_error", message)

    def on_permission_error(self) -> None:
        self._forward("on_permission_error")

    def on_recording_done(self, buffer: AudioBuffer) -> None:
        with self._lock:
            if self._suppressed:
                logger.debug("Dropping recording of a cancelled session")
                return
            hint = self._language_hint
            self._awaiting_result = True
        self._forward("on_recording_done", buffer)

        self._start_watchdog()
        if not self._recognizer.recognize(buffer, hint):
            # Load failures were already reported by the recognizer.
            logger.warning("Recognizer did not accept the recording")
            with self._lock:
                self._awaiting_result = False
                self._cancel_watchdog()

    # ------------------------------------------------------------------
    # Recognition events
    # ------------------------------------------------------------------

    def on_recognition_started(self) -> None:
        self._forward("on_recognition_started")

    def on_recognition_partial(self, text: str) -> None:
        self._forward("on_recognition_partial", text)

    def on_recognition_result(self, text: str, language: str) -> None:
        self._finish_waiting()
        self._forward("on_recognition_result", text, language)

    def on_recognition_error(self, message: str) -> None:
        self._finish_waiting()
        self._forward("on_recognition_error", message)

    def on_recognition_finished(self) -> None:
        self._finish_waiting()
        self._forward("on_recognition_finished")

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    def _start_watchdog(self) -> None:
        timeout = self._settings.get().recognition_timeout_s
        if not timeout or timeout <= 0:
            return
        with self._lock:
            self._cancel_watchdog()
            timer = self._timer_factory(timeout, self._on_timeout)
            timer.daemon = True
            self._watchdog = timer
        timer.start()

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_timeout(self) -> None:
        with self._lock:
            if not self._awaiting_result or self._suppressed:
                return
            self._watchdog = None
            self._awaiting_result = False
        logger.error("Recognition timed out")
        self._forward("on_recognition_error", ERROR_MESSAGES[RECOGNITION_TIMEOUT])
        self._forward("on_recognition_finished")
        with self._lock:
            self._suppressed = True
        self._recognizer.cancel()

    def _finish_waiting(self) -> None:
        with self._lock:
            self._awaiting_result = False
            self._cancel_watchdog()

    def _forward(self, event: str, *args) -> None:
        if self._suppressed:
            return
        try:
            getattr(self.listener, event)(*args)
        except Exception:
            logger.exception("Voice input listener %s failed", event)
