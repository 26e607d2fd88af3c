"""Tests for recognizer selection."""

from unittest.mock import patch

from offline_voice.app.factory import create_recognizer, inference_available
from offline_voice.app.orchestrator import RecognitionOrchestrator, UnavailableRecognizer
from offline_voice.core.runtime_config import RecognitionSettings, SettingsStore


def _settings(models_dir) -> SettingsStore:  # noqa: ANN001
    return SettingsStore(RecognitionSettings(models_dir=str(models_dir)))


def test_inference_available_checks_required_packages() -> None:
    with patch("offline_voice.app.factory.importlib.util.find_spec", return_value=None):
        assert inference_available() is False
    with patch("offline_voice.app.factory.importlib.util.find_spec", return_value=object()):
        assert inference_available() is True


@patch("offline_voice.app.factory.inference_available", return_value=False)
def test_missing_packages_make_recognition_unavailable(mock_available, tmp_path) -> None:  # noqa: ANN001
    (tmp_path / "base.pt").write_bytes(b"x")
    recognizer = create_recognizer(_settings(tmp_path))
    assert isinstance(recognizer, UnavailableRecognizer)


@patch("offline_voice.app.factory.inference_available", return_value=True)
def test_missing_models_make_recognition_unavailable(mock_available, tmp_path) -> None:  # noqa: ANN001
    recognizer = create_recognizer(_settings(tmp_path))
    assert isinstance(recognizer, UnavailableRecognizer)


@patch("offline_voice.app.factory.inference_available", return_value=True)
def test_orchestrator_when_stack_and_model_exist(mock_available, tmp_path) -> None:  # noqa: ANN001
    (tmp_path / "tiny.en.pt").write_bytes(b"x")
    recognizer = create_recognizer(_settings(tmp_path))
    try:
        assert isinstance(recognizer, RecognitionOrchestrator)
    finally:
        recognizer.cleanup()
