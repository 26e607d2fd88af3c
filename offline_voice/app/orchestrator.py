"""
Recognition orchestrator - accepts finished audio, selects the cached engine
for the requested language and runs inference serially on one worker thread.
"""

import logging
import queue
import threading
from dataclasses import dataclass

import numpy as np

from ..core import config
from ..core.errors import (
    ERROR_MESSAGES,
    INFERENCE_FAILURE,
    RECOGNITION_UNAVAILABLE,
    ModelLoadFailure,
)
from ..core.languages import parse_language_hint, resolve_category
from ..core.model_cache import ModelCache
from ..core.runtime_config import SettingsStore
from ..core.types import (
    AudioBuffer,
    Bailed,
    Cancelled,
    CancellationToken,
    LanguageConstraint,
    ModelCategory,
    Transcribed,
    pcm16_to_float32,
)
from .listeners import RecognitionListener

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    samples: np.ndarray
    primary: str
    constraint: LanguageConstraint
    engine: object
    token: CancellationToken


def to_samples(audio) -> np.ndarray:
    """Accept an AudioBuffer, int16 PCM bytes or float samples."""
    if isinstance(audio, AudioBuffer):
        return audio.to_float32()
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return pcm16_to_float32(bytes(audio))
    return np.asarray(audio, dtype=np.float32)


class RecognitionOrchestrator:
    """
    Engine-facing recognition API.

    recognize() returns immediately; the listener receives
    recognition-started, any partials, one terminal event (result or error;
    nothing for a cancelled call) and recognition-finished.
    """

    engine_name = "Whisper (offline)"

    def __init__(
        self,
        cache: ModelCache,
        settings: SettingsStore | None = None,
        listener: RecognitionListener | None = None,
    ):
        self._cache = cache
        self._settings = settings or SettingsStore()
        self.listener = listener or RecognitionListener()

        self._engine = None
        self._current_category: ModelCategory | None = None
        self._current_language: str | None = None

        self._lock = threading.Lock()
        self._in_flight = False
        self._token: CancellationToken | None = None
        self._closed = False

        self._jobs: queue.Queue[_Job | None] = queue.Queue()
        self._worker = threading.Thread(
            target=self._inference_worker, name="recognition", daemon=True
        )
        self._worker.start()

    @property
    def current_language(self) -> str | None:
        return self._current_language

    @property
    def current_category(self) -> ModelCategory | None:
        return self._current_category

    def is_recognizing(self) -> bool:
        return self._in_flight

    def recognize(self, audio, language_hint: str | None = None) -> bool:
        """
        Submit finished audio for recognition.

        Returns False when the call was not accepted: another inference is
        in flight, the orchestrator was cleaned up, or the model could not
        be loaded (reported through on_recognition_error).
        """
        languages = parse_language_hint(language_hint)
        primary = languages[0]
        category = resolve_category(primary)
        samples = to_samples(audio)

        with self._lock:
            if self._closed:
                logger.warning("Recognition requested after cleanup")
                return False
            if self._in_flight:
                logger.warning("Recognition already in progress")
                return False
            # Reserve the slot; the model is loaded without holding the lock.
            self._in_flight = True
            token = CancellationToken()
            self._token = token
            engine = self._engine
            switch = engine is None or category != self._current_category

        if switch:
            try:
                engine = self._cache.engine_for(category)
            except ModelLoadFailure as exc:
                logger.error("Failed to load %s model: %s", category.value, exc)
                with self._lock:
                    self._engine = None
                    self._current_category = None
                    self._release_slot()
                self._notify("on_recognition_error", exc.user_message)
                return False

        with self._lock:
            closed = self._closed
            if closed:
                self._release_slot()
            else:
                self._engine = engine
                self._current_category = category
                self._current_language = primary
        if closed:
            logger.warning("Orchestrator was cleaned up while loading the %s model", category.value)
            # The load may have landed in the cache after it was cleared.
            self._cache.cleanup()
            return False

        constraint = LanguageConstraint(
            allowed=tuple(languages),
            bail=frozenset(self._settings.get().bail_languages),
        )
        job = _Job(samples, primary, constraint, engine, token)
        logger.info(
            "Recognizing %.2fs of audio (languages=%s)",
            len(job.samples) / float(config.SAMPLE_RATE),
            languages,
        )
        self._notify("on_recognition_started")
        self._jobs.put(job)
        return True

    def cancel(self) -> None:
        """Cancel the in-flight recognition; it finishes without a result."""
        with self._lock:
            if not self._in_flight:
                return
            token = self._token
            engine = self._engine
        if token is not None:
            token.cancel()
        if engine is not None:
            engine.cancel()

    def cleanup(self) -> None:
        """Cancel, stop the worker and close every cached engine. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.cancel()
        self._jobs.put(None)
        self._worker.join(timeout=5.0)
        self._cache.cleanup()
        with self._lock:
            self._engine = None
            self._current_category = None
            self._current_language = None

    def _release_slot(self) -> None:
        # Caller holds self._lock.
        self._in_flight = False
        self._token = None

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _inference_worker(self) -> None:
        while True:
            job = self._jobs.get()  # blocking
            if job is None:
                return
            try:
                self._run_job(job)
            finally:
                with self._lock:
                    self._release_slot()
                self._notify("on_recognition_finished")

    def _run_job(self, job: _Job) -> None:
        primary = job.primary
        if job.token.cancelled:
            logger.info("Recognition cancelled before inference started")
            return

        settings = self._settings.get()
        try:
            outcome = job.engine.infer(
                job.samples,
                prompt=settings.prompt,
                allowed=job.constraint.allowed,
                bail=job.constraint.bail,
                decoding_mode=settings.decoding_mode,
                suppress_non_speech=settings.suppress_non_speech,
                on_partial=lambda text: self._on_partial(job, text),
                token=job.token,
            )
        except Exception:
            logger.exception("Recognition error")
            if not job.token.cancelled:
                self._notify("on_recognition_error", ERROR_MESSAGES[INFERENCE_FAILURE])
            return

        if isinstance(outcome, Cancelled) or job.token.cancelled:
            # A cancel can land after the engine has produced its outcome.
            logger.info("Inference cancelled")
        elif isinstance(outcome, Bailed):
            # Bail languages are an internal policy; surface an empty result.
            logger.info("Bail language detected: %s", outcome.language)
            self._notify("on_recognition_result", "", primary)
        elif isinstance(outcome, Transcribed):
            result = outcome.result
            logger.debug("Recognition result (%s): %r", result.language, result.text)
            self._notify("on_recognition_result", result.text, result.language)
        else:
            logger.error("Unexpected inference outcome: %r", outcome)
            self._notify("on_recognition_error", ERROR_MESSAGES[INFERENCE_FAILURE])

    def _on_partial(self, job: _Job, text: str) -> None:
        if not job.token.cancelled:
            self._notify("on_recognition_partial", text)

    def _notify(self, event: str, *args) -> None:
        callback = getattr(self.listener, event, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Recognition listener %s failed", event)


class UnavailableRecognizer:
    """
    Stand-in used when offline inference cannot run on this machine
    (missing torch/whisper or no model files). Every call reports an error.
    """

    engine_name = "Unavailable"

    def __init__(self, listener: RecognitionListener | None = None):
        self.listener = listener or RecognitionListener()

    def is_recognizing(self) -> bool:
        return False

    def recognize(self, audio, language_hint: str | None = None) -> bool:
        logger.warning("Offline recognition is unavailable")
        for event, args in (
            ("on_recognition_error", (ERROR_MESSAGES[RECOGNITION_UNAVAILABLE],)),
            ("on_recognition_finished", ()),
        ):
            try:
                getattr(self.listener, event)(*args)
            except Exception:
                logger.exception("Recognition listener %s failed", event)
        return False

    def cancel(self) -> None:
        pass

    def cleanup(self) -> None:
        pass
