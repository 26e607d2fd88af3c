"""
Audio capture worker: microphone -> capped PCM buffer, with optional VAD
auto-stop. One long-lived thread serves every recording session.
"""

import logging
import queue
import threading
import time
from typing import Callable

from ..core import config
from ..core.errors import BufferTooShort, DeviceUnavailable
from ..core.runtime_config import SettingsStore
from ..core.types import (
    AudioBuffer,
    CaptureState,
    RecordingSession,
    StopReason,
    pcm16_to_float32,
)
from ..core.vad import VoiceActivityGate
from ..interfaces.microphone import MicrophoneInput
from .listeners import CaptureListener

logger = logging.getLogger(__name__)


class AudioCaptureWorker:
    """
    Records one utterance per start()/stop() pair.

    The worker thread parks on a command queue until start() posts a
    session, records until a stop trigger, releases the device and the VAD
    gate, then publishes exactly one terminal notification:
    recording-done (with the buffer), recording-error or permission-error.
    """

    def __init__(
        self,
        listener: CaptureListener | None = None,
        settings: SettingsStore | None = None,
        microphone_factory: Callable | None = None,
        permission_check: Callable[[], bool] | None = None,
        gate_factory: Callable | None = None,
        frame_samples: int = config.VAD_FRAME_SAMPLES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.listener = listener or CaptureListener()
        self._settings = settings or SettingsStore()
        self._microphone_factory = microphone_factory or MicrophoneInput
        self._permission_check = permission_check or MicrophoneInput.has_permission
        self._gate_factory = gate_factory or VoiceActivityGate.from_settings
        self._frame_samples = frame_samples
        self._frames_per_buffer = max(config.DEVICE_BUFFER_SAMPLES, frame_samples)
        self._clock = clock

        self._commands: queue.Queue[RecordingSession | None] = queue.Queue()
        self._in_progress = threading.Event()
        self._lock = threading.Lock()
        self._session: RecordingSession | None = None
        self._closed = False

        self._thread = threading.Thread(
            target=self._run, name="audio-capture", daemon=True
        )
        self._thread.start()

    @property
    def session(self) -> RecordingSession | None:
        """Current session, or the last finished one."""
        return self._session

    def is_in_progress(self) -> bool:
        return self._in_progress.is_set()

    def start(self, use_vad: bool = False) -> bool:
        """Begin a recording session. Returns False if one is already running."""
        with self._lock:
            if self._closed:
                raise RuntimeError("AudioCaptureWorker has been shut down")
            if self._in_progress.is_set():
                logger.warning("Recording is already in progress")
                return False
            self._in_progress.set()
            session = RecordingSession(vad_enabled=use_vad)
            self._session = session
        logger.debug("Recording starts now (vad=%s)", use_vad)
        self._commands.put(session)
        return True

    def stop(self, timeout: float | None = None) -> RecordingSession | None:
        """
        Request the session to end and block until the worker has released
        the device and published its completion.
        """
        with self._lock:
            session = self._session
            if session is None:
                return None
            if session.state == CaptureState.RECORDING:
                session.state = CaptureState.STOPPING
            self._in_progress.clear()

        if not session.completed.wait(timeout):
            logger.warning("Timed out waiting for the capture thread to finish")
        return session

    def shutdown(self, timeout: float | None = 2.0) -> None:
        """Stop any session and end the worker thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._in_progress.clear()
        self._commands.put(None)
        self._thread.join(timeout)

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            session = self._commands.get()  # blocking
            if session is None:
                return
            try:
                self._record(session)
            except Exception:
                logger.exception("Recording error")
                self._set_state(session, CaptureState.ERROR)
                self._notify("on_recording_error", DeviceUnavailable().user_message)
            finally:
                with self._lock:
                    # start() may already have handed the flag to a newer session.
                    if self._session is session:
                        self._in_progress.clear()
                session.completed.set()

    def _record(self, session: RecordingSession) -> None:
        if not self._permission_check():
            logger.warning("Microphone permission is not granted")
            self._set_state(session, CaptureState.ERROR)
            self._notify("on_permission_error")
            return

        settings = self._settings.get()
        pcm = bytearray()
        microphone = None
        gate = None
        device_error: DeviceUnavailable | None = None
        try:
            microphone = self._microphone_factory(frames_per_buffer=self._frames_per_buffer)
            microphone.start()
            if session.vad_enabled:
                gate = self._gate_factory(settings)
            self._set_state(session, CaptureState.RECORDING)
            session.started_at = time.time()
            session.stop_reason = self._capture_loop(session, microphone, gate, pcm)
        except DeviceUnavailable as exc:
            device_error = exc
        finally:
            if microphone is not None:
                microphone.stop()
            if gate is not None:
                gate.close()
                logger.debug("Closed VAD gate")

        if device_error is not None:
            logger.error("Microphone unavailable: %s", device_error)
            self._set_state(session, CaptureState.ERROR)
            self._notify("on_recording_error", device_error.user_message)
            return

        buffer = AudioBuffer(bytes(pcm))
        session.buffer = buffer
        session.bytes_captured = len(buffer)
        logger.info(
            "Total bytes recorded: %d (%.2fs, %s)",
            len(buffer),
            buffer.duration_s,
            session.stop_reason.value,
        )

        if len(buffer) > config.MIN_RECORDING_BYTES:
            self._set_state(session, CaptureState.DONE)
            self._notify("on_recording_done", buffer)
        else:
            self._set_state(session, CaptureState.ERROR)
            self._notify("on_recording_error", BufferTooShort().user_message)

    def _capture_loop(self, session, microphone, gate, pcm: bytearray) -> StopReason:
        """Read chunks until a stop trigger fires; returns which one."""
        last_visual: float | None = None
        announced = False
        heard_speech = False

        while True:
            if not self._in_progress.is_set() or self._session is not session:
                return StopReason.REQUESTED
            if len(pcm) >= config.MAX_RECORDING_BYTES:
                logger.info("Reached the %ds recording cap", config.MAX_RECORDING_SECONDS)
                return StopReason.CAP_REACHED

            chunk = microphone.read(self._frame_samples)
            if not chunk:
                logger.error("Microphone read returned no data, aborting capture")
                return StopReason.DEVICE_FAILURE

            chunk = chunk[: config.MAX_RECORDING_BYTES - len(pcm)]
            pcm.extend(chunk)
            session.bytes_captured = len(pcm)

            now = self._clock()
            if last_visual is None or now - last_visual > config.VISUALIZATION_INTERVAL_S:
                self._notify("on_audio_frame", pcm16_to_float32(chunk))
                last_visual = now

            if gate is None:
                if not announced:
                    announced = True
                    self._notify("on_recording_started")
                continue

            if len(pcm) < gate.frame_bytes:
                continue
            # Always classify the most recent frame of the buffer.
            speaking = gate.classify(bytes(pcm[-gate.frame_bytes :]))
            if speaking and not heard_speech:
                logger.debug("VAD speech detected: recording starts")
                heard_speech = True
                self._notify("on_recording_started")
            elif not speaking and heard_speech:
                logger.info("VAD silence detected: stopping recording")
                return StopReason.VAD_SILENCE

    def _set_state(self, session: RecordingSession, state: CaptureState) -> None:
        with self._lock:
            session.state = state

    def _notify(self, event: str, *args) -> None:
        callback = getattr(self.listener, event, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Capture listener %s failed", event)
