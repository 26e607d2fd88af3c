"""
Builds the recognizer for this machine: the offline orchestrator when the
inference stack and at least one model are present, otherwise a stand-in
that reports recognition as unavailable.
"""

import importlib.util
import logging

from ..core.model_cache import ModelCache
from ..core.model_store import ModelStore
from ..core.runtime_config import SettingsStore
from .listeners import RecognitionListener
from .orchestrator import RecognitionOrchestrator, UnavailableRecognizer

logger = logging.getLogger(__name__)

REQUIRED_MODULES = ("torch", "whisper")


def inference_available() -> bool:
    """True when the packages needed for local inference can be imported."""
    missing = [name for name in REQUIRED_MODULES if importlib.util.find_spec(name) is None]
    if missing:
        logger.warning("Offline recognition unavailable, missing: %s", ", ".join(missing))
        return False
    return True


def create_recognizer(
    settings: SettingsStore | None = None,
    listener: RecognitionListener | None = None,
    store: ModelStore | None = None,
):
    settings = settings or SettingsStore()
    current = settings.get()
    store = store or ModelStore.from_settings(current)

    if not inference_available():
        return UnavailableRecognizer(listener)
    if not store.has_any_model():
        logger.warning("No model files found in %s", store.models_dir)
        return UnavailableRecognizer(listener)

    cache = ModelCache(store, device=current.device)
    return RecognitionOrchestrator(cache, settings, listener)
