"""
Microphone input interface using PyAudio.
"""

import logging

import pyaudio

from ..core import config
from ..core.errors import DeviceUnavailable

logger = logging.getLogger(__name__)


class MicrophoneInput:
    """
    Blocking microphone reader using PyAudio.

    Opens the default input device at 16 kHz mono int16 and hands out
    chunks of PCM bytes on request.
    """

    def __init__(
        self,
        sample_rate: int = config.SAMPLE_RATE,
        channels: int = config.CHANNELS,
        frames_per_buffer: int = config.DEVICE_BUFFER_SAMPLES,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None

    @staticmethod
    def has_permission() -> bool:
        """
        Check whether an input device can be used at all.

        The OS reports denied microphone access as a missing or
        zero-channel default input device.
        """
        pa = pyaudio.PyAudio()
        try:
            info = pa.get_default_input_device_info()
        except (IOError, OSError):
            return False
        finally:
            pa.terminate()
        return int(info.get("maxInputChannels", 0)) > 0

    def start(self) -> None:
        """Open the input stream."""
        if self._stream is not None:
            return  # Already running

        self._pa = pyaudio.PyAudio()
        try:
            self._stream = self._pa.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
            )
        except (IOError, OSError) as exc:
            self._pa.terminate()
            self._pa = None
            raise DeviceUnavailable(f"Could not open microphone: {exc}") from exc

    def read(self, num_samples: int) -> bytes:
        """
        Read up to num_samples samples.

        Returns b"" when the device fails; callers treat that as a hard
        read failure.
        """
        if self._stream is None:
            return b""
        try:
            return self._stream.read(num_samples, exception_on_overflow=False)
        except (IOError, OSError) as exc:
            logger.warning("Microphone read failed: %s", exc)
            return b""

    def stop(self) -> None:
        """Stop capturing audio and release the device."""
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            finally:
                self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None

    def is_active(self) -> bool:
        """Check if the stream is active."""
        return self._stream is not None and self._stream.is_active()

    def __enter__(self) -> "MicrophoneInput":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
