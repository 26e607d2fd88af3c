"""Tests for RecognitionOrchestrator with a fake cache and engine."""

import threading
from unittest.mock import MagicMock

import numpy as np

from offline_voice.app.listeners import RecognitionListener
from offline_voice.app.orchestrator import (
    RecognitionOrchestrator,
    UnavailableRecognizer,
    to_samples,
)
from offline_voice.core.errors import ModelLoadFailure
from offline_voice.core.model_cache import ModelCache
from offline_voice.core.model_store import ModelStore
from offline_voice.core.runtime_config import RecognitionSettings, SettingsStore
from offline_voice.core.types import (
    AudioBuffer,
    Bailed,
    Cancelled,
    ModelCategory,
    RecognitionResult,
    Transcribed,
)

AUDIO = AudioBuffer(b"\x00\x10" * 16000)


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _transcribed(text: str, language: str = "en") -> Transcribed:
    return Transcribed(RecognitionResult(text=text, language=language, confidence=0.9))


class FakeEngine:
    def __init__(self, outcome=None, partials=(), block: threading.Event | None = None) -> None:
        self.outcome = outcome or _transcribed("hello")
        self.partials = list(partials)
        self.block = block
        self.calls: list[dict] = []
        self.cancelled = threading.Event()
        self.entered = threading.Event()

    def infer(self, samples, **kwargs):  # noqa: ANN001
        self.calls.append({"samples": samples, **kwargs})
        self.entered.set()
        for partial in self.partials:
            kwargs["on_partial"](partial)
        if self.block is not None:
            self.block.wait(2.0)
        if self.cancelled.is_set():
            return Cancelled()
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def cancel(self) -> bool:
        self.cancelled.set()
        return True


class FakeCache:
    def __init__(self, engines=None, fail: bool = False) -> None:
        self.engines = engines or {
            ModelCategory.ENGLISH_ONLY: FakeEngine(_transcribed("hello", "en")),
            ModelCategory.MULTILINGUAL: FakeEngine(_transcribed("hola", "es")),
        }
        self.fail = fail
        self.loads: list[ModelCategory] = []
        self.cleanups = 0

    def engine_for(self, category: ModelCategory):
        self.loads.append(category)
        if self.fail:
            raise ModelLoadFailure("corrupt checkpoint")
        return self.engines[category]

    def cleanup(self) -> None:
        self.cleanups += 1


class SlowCache(FakeCache):
    """Blocks in engine_for until released."""

    def __init__(self) -> None:
        super().__init__()
        self.loading = threading.Event()
        self.release = threading.Event()

    def engine_for(self, category: ModelCategory):
        self.loading.set()
        self.release.wait(2.0)
        return super().engine_for(category)


class EventListener(RecognitionListener):
    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.finished = threading.Event()

    def on_recognition_started(self) -> None:
        self.events.append(("started",))

    def on_recognition_partial(self, text: str) -> None:
        self.events.append(("partial", text))

    def on_recognition_result(self, text: str, language: str) -> None:
        self.events.append(("result", text, language))

    def on_recognition_error(self, message: str) -> None:
        self.events.append(("error", message))

    def on_recognition_finished(self) -> None:
        self.events.append(("finished",))
        self.finished.set()


def _orchestrator(cache=None, settings=None):
    listener = EventListener()
    orchestrator = RecognitionOrchestrator(cache or FakeCache(), settings, listener)
    return orchestrator, listener


def _recognize(orchestrator, listener, hint=None, audio=AUDIO) -> list[tuple]:
    listener.events.clear()
    listener.finished.clear()
    assert orchestrator.recognize(audio, hint)
    assert listener.finished.wait(2.0)
    return list(listener.events)


# ---------------------------------------------------------------
# Engine selection
# ---------------------------------------------------------------

def test_english_result() -> None:
    orchestrator, listener = _orchestrator()
    events = _recognize(orchestrator, listener, "en")
    assert events == [("started",), ("result", "hello", "en"), ("finished",)]
    orchestrator.cleanup()


def test_engine_switches_once_per_category() -> None:
    cache = FakeCache()
    orchestrator, listener = _orchestrator(cache)

    _recognize(orchestrator, listener, "en")
    _recognize(orchestrator, listener, "es")
    _recognize(orchestrator, listener, "fr")
    _recognize(orchestrator, listener, "de")

    assert cache.loads == [ModelCategory.ENGLISH_ONLY, ModelCategory.MULTILINGUAL]
    assert orchestrator.current_category is ModelCategory.MULTILINGUAL
    assert orchestrator.current_language == "de"
    assert len(cache.engines[ModelCategory.MULTILINGUAL].calls) == 3
    orchestrator.cleanup()


def test_missing_hint_defaults_to_english() -> None:
    cache = FakeCache()
    orchestrator, listener = _orchestrator(cache)
    _recognize(orchestrator, listener, None)
    assert cache.loads == [ModelCategory.ENGLISH_ONLY]
    assert cache.engines[ModelCategory.ENGLISH_ONLY].calls[0]["allowed"] == ("en",)
    orchestrator.cleanup()


def test_language_list_is_passed_through() -> None:
    cache = FakeCache()
    orchestrator, listener = _orchestrator(cache)

    _recognize(orchestrator, listener, "en,en")
    _recognize(orchestrator, listener, "de,en,fr")

    assert cache.engines[ModelCategory.ENGLISH_ONLY].calls[0]["allowed"] == ("en", "en")
    assert cache.engines[ModelCategory.MULTILINGUAL].calls[0]["allowed"] == ("de", "en", "fr")
    orchestrator.cleanup()


def test_settings_reach_the_engine() -> None:
    settings = SettingsStore(
        RecognitionSettings(beam_size=4, prompt="Ahoy", bail_languages=("ja",))
    )
    cache = FakeCache()
    orchestrator, listener = _orchestrator(cache, settings)

    _recognize(orchestrator, listener, "es")

    call = cache.engines[ModelCategory.MULTILINGUAL].calls[0]
    assert call["prompt"] == "Ahoy"
    assert call["bail"] == frozenset({"ja"})
    assert call["decoding_mode"].beam_size == 4
    assert call["samples"].dtype == np.float32
    orchestrator.cleanup()


def test_model_load_failure_reports_one_error() -> None:
    orchestrator, listener = _orchestrator(FakeCache(fail=True))

    assert orchestrator.recognize(AUDIO, "de") is False
    assert listener.events == [("error", "Failed to load voice model")]
    assert not orchestrator.is_recognizing()
    orchestrator.cleanup()


def test_empty_model_asset_reports_one_error(tmp_path) -> None:
    (tmp_path / "tiny.en.pt").write_bytes(b"")
    factory = MagicMock()
    cache = ModelCache(ModelStore(str(tmp_path)), engine_factory=factory)
    orchestrator, listener = _orchestrator(cache)

    assert orchestrator.recognize(AUDIO, "en") is False
    assert listener.events == [("error", "Failed to load voice model")]
    assert not orchestrator.is_recognizing()
    factory.assert_not_called()
    orchestrator.cleanup()


def test_model_load_does_not_block_cancel() -> None:
    cache = SlowCache()
    orchestrator, listener = _orchestrator(cache)
    accepted: list[bool] = []

    submit = threading.Thread(target=lambda: accepted.append(orchestrator.recognize(AUDIO, "en")))
    submit.start()
    assert cache.loading.wait(2.0)

    assert orchestrator.is_recognizing()
    assert orchestrator.recognize(AUDIO, "en") is False
    canceller = threading.Thread(target=orchestrator.cancel)
    canceller.start()
    canceller.join(1.0)
    assert not canceller.is_alive()

    cache.release.set()
    submit.join(2.0)
    assert accepted == [True]
    assert listener.finished.wait(2.0)
    assert listener.events == [("started",), ("finished",)]
    assert cache.engines[ModelCategory.ENGLISH_ONLY].calls == []
    assert cache.loads == [ModelCategory.ENGLISH_ONLY]
    orchestrator.cleanup()


# ---------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------

def test_bailed_is_an_empty_result_in_the_primary_language() -> None:
    engine = FakeEngine(Bailed("ja"))
    cache = FakeCache({ModelCategory.MULTILINGUAL: engine})
    orchestrator, listener = _orchestrator(cache)

    events = _recognize(orchestrator, listener, "de,fr")

    assert events == [("started",), ("result", "", "de"), ("finished",)]
    orchestrator.cleanup()


def test_inference_error_is_reported() -> None:
    engine = FakeEngine(RuntimeError("boom"))
    cache = FakeCache({ModelCategory.ENGLISH_ONLY: engine})
    orchestrator, listener = _orchestrator(cache)

    events = _recognize(orchestrator, listener, "en")

    assert events == [("started",), ("error", "Voice recognition failed"), ("finished",)]
    assert not orchestrator.is_recognizing()
    orchestrator.cleanup()


def test_partials_are_forwarded() -> None:
    engine = FakeEngine(_transcribed("hello world"), partials=["hello"])
    cache = FakeCache({ModelCategory.ENGLISH_ONLY: engine})
    orchestrator, listener = _orchestrator(cache)

    events = _recognize(orchestrator, listener, "en")

    assert events == [
        ("started",),
        ("partial", "hello"),
        ("result", "hello world", "en"),
        ("finished",),
    ]
    orchestrator.cleanup()


def test_cancel_finishes_without_result() -> None:
    release = threading.Event()
    engine = FakeEngine(block=release)
    cache = FakeCache({ModelCategory.ENGLISH_ONLY: engine})
    orchestrator, listener = _orchestrator(cache)

    assert orchestrator.recognize(AUDIO, "en")
    assert engine.entered.wait(2.0)
    orchestrator.cancel()
    release.set()

    assert listener.finished.wait(2.0)
    assert listener.events == [("started",), ("finished",)]
    assert engine.cancelled.is_set()
    orchestrator.cleanup()


def test_cancel_racing_a_finished_inference_drops_the_result() -> None:
    class LateCancelEngine(FakeEngine):
        """Ignores cancel() and returns a transcript after cancel was requested."""

        orchestrator = None

        def infer(self, samples, **kwargs):  # noqa: ANN001
            self.calls.append({"samples": samples, **kwargs})
            self.orchestrator.cancel()
            return _transcribed("too late")

        def cancel(self) -> bool:
            return False

    engine = LateCancelEngine()
    cache = FakeCache({ModelCategory.ENGLISH_ONLY: engine})
    orchestrator, listener = _orchestrator(cache)
    engine.orchestrator = orchestrator

    events = _recognize(orchestrator, listener, "en")

    assert events == [("started",), ("finished",)]
    assert engine.calls[0]["token"].cancelled
    orchestrator.cleanup()


def test_second_request_while_busy_is_rejected() -> None:
    release = threading.Event()
    engine = FakeEngine(block=release)
    cache = FakeCache({ModelCategory.ENGLISH_ONLY: engine})
    orchestrator, listener = _orchestrator(cache)

    assert orchestrator.recognize(AUDIO, "en")
    assert engine.entered.wait(2.0)
    assert orchestrator.is_recognizing()
    assert orchestrator.recognize(AUDIO, "en") is False

    release.set()
    assert listener.finished.wait(2.0)
    assert listener.events.count(("started",)) == 1
    assert len(engine.calls) == 1
    orchestrator.cleanup()


# ---------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------

def test_cleanup_is_idempotent() -> None:
    cache = FakeCache()
    orchestrator, listener = _orchestrator(cache)
    _recognize(orchestrator, listener, "en")

    orchestrator.cleanup()
    orchestrator.cleanup()

    assert cache.cleanups == 1
    assert orchestrator.recognize(AUDIO, "en") is False


def test_cancel_when_idle_is_a_no_op() -> None:
    orchestrator, listener = _orchestrator()
    orchestrator.cancel()
    assert listener.events == []
    orchestrator.cleanup()


def test_unavailable_recognizer_reports_error_then_finished() -> None:
    listener = EventListener()
    recognizer = UnavailableRecognizer(listener)

    assert recognizer.recognize(AUDIO, "en") is False
    assert listener.events == [
        ("error", "Offline recognition is unavailable"),
        ("finished",),
    ]


def test_to_samples_accepts_bytes_and_arrays() -> None:
    from_bytes = to_samples(b"\x00\x40\x00\xc0")
    assert from_bytes.tolist() == [0.5, -0.5]
    assert to_samples(AUDIO).shape == (16000,)
    assert to_samples(np.zeros(4, dtype=np.float64)).dtype == np.float32
