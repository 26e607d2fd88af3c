"""
Per-category cache of opened inference engines.
"""

import logging
import threading
from typing import Callable

from .errors import ModelLoadFailure
from .model_store import ModelStore
from .types import ModelCategory

logger = logging.getLogger(__name__)


class ModelCache:
    """
    Keeps at most one opened engine per model category.

    Engines are created lazily on first use and kept until cleanup();
    nothing is evicted automatically.
    """

    def __init__(
        self,
        store: ModelStore,
        engine_factory: Callable | None = None,
        device: str | None = None,
    ):
        self._store = store
        self._device = device
        self._engine_factory = engine_factory or self._open_engine
        self._engines: dict[ModelCategory, object] = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> ModelStore:
        return self._store

    def _open_engine(self, source):
        from .asr import InferenceEngine

        return InferenceEngine.open(source, device=self._device)

    def engine_for(self, category: ModelCategory):
        """
        Return the cached engine for a category, loading it on first use.

        Raises:
            ModelLoadFailure: the asset is missing or could not be opened.
        """
        with self._lock:
            engine = self._engines.get(category)
            if engine is not None:
                logger.debug("Using cached %s model", category.value)
                return engine

            try:
                source = self._store.load_bytes(category)
            except (OSError, ValueError) as exc:
                # mmap raises ValueError for an empty file.
                raise ModelLoadFailure(
                    f"Model asset for {category.value} is unavailable: {exc}"
                ) from exc

            try:
                engine = self._engine_factory(source)
            finally:
                # torch has copied what it needs; the mapping can go.
                close = getattr(source, "close", None)
                if close is not None:
                    close()

            self._engines[category] = engine
            logger.info("Loaded and cached %s model", category.value)
            return engine

    def engine_for_language(self, language: str):
        return self.engine_for(self._store.resolve_category(language))

    def loaded_categories(self) -> list[ModelCategory]:
        with self._lock:
            return list(self._engines)

    def __contains__(self, category: ModelCategory) -> bool:
        with self._lock:
            return category in self._engines

    def cleanup(self) -> None:
        """Close every cached engine and clear the cache. Idempotent."""
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            try:
                engine.close()
            except Exception:
                logger.exception("Failed to close cached engine")
