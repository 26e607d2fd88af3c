"""
ASR inference engine using an OpenAI Whisper checkpoint.
This module is independent of any transport or UI.

One engine owns one loaded model and runs at most one inference at a time.
Outcomes are returned as a tagged value (Transcribed / Bailed / Cancelled).
"""

import io
import logging
import math
import os
import threading
from typing import Callable

import numpy as np
import torch
import whisper
from whisper.decoding import DecodingOptions, DecodingTask, LogitFilter
from whisper.model import ModelDimensions, Whisper
from whisper.tokenizer import LANGUAGES

from . import config
from .errors import EngineBusyError, EngineClosedError, InferenceFailure, ModelLoadFailure
from .languages import LanguagePolicy, PolicyMode, resolve_language_policy
from .types import (
    Bailed,
    Cancelled,
    CancellationToken,
    DecodingMode,
    InferenceOutcome,
    RecognitionResult,
    Transcribed,
)

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]


class _DecodeCancelled(Exception):
    """Raised from inside the decode loop when the cancellation token is set."""


def split_segments(tokens, tokenizer) -> list[list[int]]:
    """Split generated tokens into text segments at timestamp tokens."""
    segments: list[list[int]] = []
    current: list[int] = []
    for token in tokens:
        if token >= tokenizer.timestamp_begin:
            if current:
                segments.append(current)
                current = []
        elif token < tokenizer.eot:
            current.append(token)
    if current:
        segments.append(current)
    return segments


def drop_filler_segment(segments: list[str]) -> list[str]:
    """Drop a trailing filler-only segment (a known model artifact)."""
    if segments and segments[-1] == config.FILLER_SEGMENT:
        return segments[:-1]
    return segments


class _DecodeMonitor(LogitFilter):
    """
    Logit filter hooked into Whisper's decode loop.

    Runs once per generated token: observes cancellation and reports the
    best hypothesis (closed segments plus the one still being decoded)
    whenever its text changes.
    """

    def __init__(
        self,
        token: CancellationToken,
        tokenizer,
        sample_begin: int,
        on_segment: Callable[[list[str]], None] | None,
    ):
        self._token = token
        self._tokenizer = tokenizer
        self._sample_begin = sample_begin
        self._on_segment = on_segment
        self._last_text = ""

    def apply(self, logits: torch.Tensor, tokens: torch.Tensor) -> None:
        if self._token.cancelled:
            raise _DecodeCancelled()
        if self._on_segment is None:
            return

        generated = tokens[0, self._sample_begin :].tolist()
        texts = [self._tokenizer.decode(seg) for seg in split_segments(generated, self._tokenizer)]
        text = "".join(texts)
        # A trailing U+FFFD is a multi-byte character cut in half.
        if text == self._last_text or text.endswith("\ufffd"):
            return
        self._last_text = text
        self._on_segment(texts)


class _PartialStream:
    """Forwards hypothesis text to the caller, skipping empty and repeated text."""

    def __init__(self, callback: PartialCallback | None):
        self._callback = callback
        self._last: str | None = None

    def __call__(self, segment_texts: list[str]) -> None:
        if self._callback is None:
            return
        text = "".join(segment_texts).strip()
        if not text or text == self._last:
            return
        self._last = text
        try:
            self._callback(text)
        except Exception:
            logger.exception("Partial result callback failed")


class InferenceEngine:
    """Whisper model bound to one device; one inference call at a time."""

    def __init__(self, model: Whisper, device: str):
        self._model: Whisper | None = model
        self.device = device
        self._infer_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._token: CancellationToken | None = None

    @classmethod
    def open(cls, source, device: str | None = None) -> "InferenceEngine":
        """
        Load a Whisper checkpoint.

        Args:
            source: path to a checkpoint, a file-like / memory-mapped buffer,
                or raw checkpoint bytes
            device: torch device; defaults to CUDA when available

        Raises:
            ModelLoadFailure: the checkpoint could not be read or built.
        """
        device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        logger.info("Loading ASR model on %s...", device)
        try:
            if isinstance(source, (str, os.PathLike)):
                checkpoint = torch.load(source, map_location=device, weights_only=True)
            elif hasattr(source, "read"):
                source.seek(0)
                checkpoint = torch.load(source, map_location=device, weights_only=True)
            else:
                checkpoint = torch.load(
                    io.BytesIO(source), map_location=device, weights_only=True
                )
            dims = ModelDimensions(**checkpoint["dims"])
            model = Whisper(dims)
            model.load_state_dict(checkpoint["model_state_dict"])
        except Exception as exc:
            raise ModelLoadFailure(f"The Whisper model could not be loaded: {exc}") from exc

        # Optimize for inference
        model = model.to(device)
        model.eval()

        if device.startswith("cuda"):
            logger.info("ASR model loaded on GPU with FP16 decoding.")
        else:
            logger.info("ASR model loaded on CPU.")
        return cls(model, device)

    @property
    def closed(self) -> bool:
        return self._model is None

    @property
    def is_multilingual(self) -> bool:
        return self._model is not None and self._model.is_multilingual

    @property
    def busy(self) -> bool:
        return self._infer_lock.locked()

    def infer(
        self,
        samples,
        prompt: str = "",
        allowed=(),
        bail=(),
        decoding_mode: DecodingMode = DecodingMode.greedy(),
        suppress_non_speech: bool = True,
        on_partial: PartialCallback | None = None,
        token: CancellationToken | None = None,
    ) -> InferenceOutcome:
        """
        Transcribe float32 samples (16 kHz mono, normalized to [-1, 1]).

        A caller-owned ``token`` may be passed so that a cancel issued before
        this call starts is still observed.

        Returns:
            Transcribed(result), Bailed(language) when the resolved language
            is in ``bail``, or Cancelled() when cancel() was observed.

        Raises:
            EngineClosedError: the engine has been closed.
            EngineBusyError: another inference is in flight.
            InferenceFailure: the model failed unexpectedly.
        """
        if self._model is None:
            raise EngineClosedError("Engine has already been closed, cannot infer")
        if not self._infer_lock.acquire(blocking=False):
            raise EngineBusyError("An inference is already running on this engine")

        if token is None:
            token = CancellationToken()
        try:
            with self._state_lock:
                model = self._model
                if model is None:
                    raise EngineClosedError("Engine has already been closed, cannot infer")
                self._token = token
            return self._infer(
                model,
                np.asarray(samples, dtype=np.float32),
                prompt,
                self._known_languages(allowed),
                set(self._known_languages(bail)),
                decoding_mode,
                suppress_non_speech,
                on_partial,
                token,
            )
        finally:
            with self._state_lock:
                self._token = None
            self._infer_lock.release()

    def _infer(
        self,
        model: Whisper,
        samples: np.ndarray,
        prompt: str,
        allowed: list[str],
        bail: set[str],
        decoding_mode: DecodingMode,
        suppress_non_speech: bool,
        on_partial: PartialCallback | None,
        token: CancellationToken,
    ) -> InferenceOutcome:
        policy = resolve_language_policy(allowed)
        logger.debug(
            "Inference: %d samples, policy=%s hint=%s allowed=%s bail=%s beam=%d",
            len(samples),
            policy.mode.value,
            policy.hint,
            policy.allowed,
            sorted(bail),
            decoding_mode.beam_size,
        )

        partials = _PartialStream(on_partial)
        try:
            with torch.inference_mode():
                if token.cancelled:
                    return Cancelled()
                mel = self._prepare(model, samples)
                if token.cancelled:
                    return Cancelled()

                language, language_prob = self._resolve_language(model, policy, mel)
                logger.info("Resolved language %s (p=%.2f)", language, language_prob)
                if token.cancelled:
                    return Cancelled()
                if language in bail:
                    logger.info("Detected language %s is a bail language", language)
                    return Bailed(language)

                options = DecodingOptions(
                    task="transcribe",
                    language=language,
                    temperature=0.0,
                    beam_size=None if decoding_mode.is_greedy else decoding_mode.beam_size,
                    prompt=prompt or None,
                    suppress_tokens="-1" if suppress_non_speech else "",
                    suppress_blank=False,
                    without_timestamps=len(samples)
                    < config.SAMPLE_RATE * config.TIMESTAMPS_MIN_SECONDS,
                    fp16=self.device.startswith("cuda"),
                )
                segments, avg_logprob = self._decode(model, mel, options, token, partials)
        except _DecodeCancelled:
            logger.info("Inference cancelled during decoding")
            return Cancelled()
        except Exception as exc:
            raise InferenceFailure(f"Whisper inference failed: {exc}") from exc

        if token.cancelled:
            return Cancelled()

        # The last segment is complete once decoding returns.
        partials(segments)

        text = "".join(drop_filler_segment(segments)).strip()
        confidence = math.exp(avg_logprob) if math.isfinite(avg_logprob) else 0.0
        return Transcribed(
            RecognitionResult(
                text=text,
                language=language,
                confidence=min(1.0, max(0.0, confidence)),
            )
        )

    def _prepare(self, model: Whisper, samples: np.ndarray) -> torch.Tensor:
        """Pad/trim to one 30s window and compute the log-mel spectrogram."""
        audio = whisper.pad_or_trim(samples)
        return whisper.log_mel_spectrogram(audio, n_mels=model.dims.n_mels).to(model.device)

    def _resolve_language(
        self, model: Whisper, policy: LanguagePolicy, mel: torch.Tensor
    ) -> tuple[str, float]:
        if not model.is_multilingual:
            # English-only checkpoints have no language head.
            return "en", 1.0
        if policy.mode == PolicyMode.STRICT:
            return policy.hint, 1.0

        _, probs = model.detect_language(mel)
        if policy.mode == PolicyMode.AUTO:
            language = max(probs, key=probs.get)
        else:
            # Ties resolve to the earlier (higher priority) entry.
            language = max(policy.allowed, key=lambda lang: probs.get(lang, 0.0))
        return language, float(probs.get(language, 0.0))

    def _decode(
        self,
        model: Whisper,
        mel: torch.Tensor,
        options: DecodingOptions,
        token: CancellationToken,
        on_segment: Callable[[list[str]], None],
    ) -> tuple[list[str], float]:
        task = DecodingTask(model, options)
        task.logit_filters.append(
            _DecodeMonitor(token, task.tokenizer, task.sample_begin, on_segment)
        )
        result = task.run(mel.unsqueeze(0))[0]
        segments = [
            task.tokenizer.decode(segment)
            for segment in split_segments(result.tokens, task.tokenizer)
        ]
        return segments, result.avg_logprob

    @staticmethod
    def _known_languages(codes) -> list[str]:
        known = []
        for code in codes:
            if code in LANGUAGES:
                known.append(code)
            else:
                logger.warning("Ignoring unsupported language code %r", code)
        return known

    def cancel(self) -> bool:
        """Request cancellation of the in-flight inference, if any."""
        with self._state_lock:
            token = self._token
        if token is None:
            return False
        return token.cancel()

    def close(self) -> None:
        """Release the model. Waits for an in-flight inference to stop."""
        if self._model is None:
            return
        self.cancel()
        with self._infer_lock:
            with self._state_lock:
                if self._model is None:
                    return
                self._model = None
        logger.info("ASR model released")

    def __enter__(self) -> "InferenceEngine":
        return self

    def __exit__(self, *args) -> None:
        self.close()
