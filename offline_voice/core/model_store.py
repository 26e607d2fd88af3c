"""
Model asset store: maps languages to model categories and memory-maps the
checkpoint for a category.
"""

import logging
import mmap
import os

from . import config
from .languages import resolve_category
from .types import ModelCategory

logger = logging.getLogger(__name__)


class ModelStore:
    """Locates the English-only and multilingual checkpoints on disk."""

    def __init__(
        self,
        models_dir: str,
        english_model_file: str = config.ENGLISH_MODEL_FILE,
        multilingual_model_file: str = config.MULTILINGUAL_MODEL_FILE,
    ):
        self.models_dir = models_dir
        self._files = {
            ModelCategory.ENGLISH_ONLY: english_model_file,
            ModelCategory.MULTILINGUAL: multilingual_model_file,
        }

    @classmethod
    def from_settings(cls, settings) -> "ModelStore":
        return cls(
            settings.models_dir,
            english_model_file=settings.english_model_file,
            multilingual_model_file=settings.multilingual_model_file,
        )

    @staticmethod
    def resolve_category(language_code: str) -> ModelCategory:
        return resolve_category(language_code)

    def asset_path(self, category: ModelCategory) -> str:
        return os.path.join(self.models_dir, self._files[category])

    def has_model(self, category: ModelCategory) -> bool:
        return os.path.isfile(self.asset_path(category))

    def has_any_model(self) -> bool:
        return any(self.has_model(category) for category in ModelCategory)

    def load_bytes(self, category: ModelCategory) -> mmap.mmap:
        """
        Memory-map the checkpoint for a category (read-only).

        The returned mapping is a zero-copy buffer and also file-like, so it
        can be handed to the engine without reading it into memory first.

        Raises:
            FileNotFoundError: the asset is not present.
            ValueError: the asset is empty.
        """
        path = self.asset_path(category)
        with open(path, "rb") as fp:
            mapping = mmap.mmap(fp.fileno(), 0, access=mmap.ACCESS_READ)
        logger.info("Mapped %s model from %s (%d bytes)", category.value, path, len(mapping))
        return mapping
