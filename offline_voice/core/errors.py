"""Error taxonomy, error codes and user-facing messages."""

PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
BUFFER_TOO_SHORT = "BUFFER_TOO_SHORT"
MODEL_LOAD_FAILURE = "MODEL_LOAD_FAILURE"
INFERENCE_FAILURE = "INFERENCE_FAILURE"
RECOGNITION_TIMEOUT = "RECOGNITION_TIMEOUT"
RECOGNITION_UNAVAILABLE = "RECOGNITION_UNAVAILABLE"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone permission required",
    DEVICE_UNAVAILABLE: "Microphone is unavailable",
    BUFFER_TOO_SHORT: "Recording too short",
    MODEL_LOAD_FAILURE: "Failed to load voice model",
    INFERENCE_FAILURE: "Voice recognition failed",
    RECOGNITION_TIMEOUT: "Recognition timed out",
    RECOGNITION_UNAVAILABLE: "Offline recognition is unavailable",
}


class VoiceInputError(Exception):
    """Base class for capture and recognition failures."""

    code = INFERENCE_FAILURE

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or ERROR_MESSAGES[self.code])

    @property
    def user_message(self) -> str:
        return ERROR_MESSAGES[self.code]


class PermissionDenied(VoiceInputError):
    code = PERMISSION_DENIED


class DeviceUnavailable(VoiceInputError):
    code = DEVICE_UNAVAILABLE


class BufferTooShort(VoiceInputError):
    code = BUFFER_TOO_SHORT


class ModelLoadFailure(VoiceInputError):
    code = MODEL_LOAD_FAILURE


class InferenceFailure(VoiceInputError):
    code = INFERENCE_FAILURE


class EngineBusyError(InferenceFailure):
    """Raised when a second inference is submitted to a busy engine."""


class EngineClosedError(InferenceFailure):
    """Raised when inference is attempted on a released engine."""
