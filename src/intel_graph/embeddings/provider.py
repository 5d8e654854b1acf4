"""
Embedding providers.

A provider turns text into a fixed-dimension float vector and names the
model version that produced it. The default implementation runs a
sentence-transformers model in process.
"""

import gc
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from intel_graph.config import Settings
from intel_graph.core.exceptions import EmbeddingError
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EmbeddingVector:
    """One embedding plus the model version that produced it."""

    values: np.ndarray  # Shape: (dimensions,)
    model_version: str | None = None

    @property
    def dimensions(self) -> int:
        return int(self.values.shape[0]) if self.values.ndim else 0


class EmbeddingProvider(Protocol):
    """Anything that can embed a string. May raise on any call."""

    name: str

    def embed(self, text: str) -> EmbeddingVector:
        ...


class SentenceTransformerProvider:
    """
    Local sentence-transformers embedding provider.

    The model is loaded lazily on first use and guarded by a lock so
    concurrent first calls load it once.

    Example:
        >>> provider = SentenceTransformerProvider.from_settings(settings)
        >>> vector = provider.embed("Acme Corp. Tags: competitor")
        >>> vector.dimensions
        384
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        device: str = "cpu",
        normalize: bool = True,
        cache_dir: Path | None = None,
        name: str = "sentence-transformers",
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self.cache_dir = str(cache_dir) if cache_dir else None
        self.name = name

        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()
        self._loaded = False

        logger.info(f"Embedding provider initialized (model={model_name}, device={device})")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SentenceTransformerProvider":
        embedding = settings.embedding
        return cls(
            model_name=embedding.model_name,
            device=embedding.device,
            normalize=embedding.normalize_embeddings,
            cache_dir=embedding.cache_dir,
            name=embedding.provider_name,
        )

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """
        Load the model.

        Raises:
            EmbeddingError: If the model cannot be loaded
        """
        if self._loaded:
            return

        with self._lock:
            if self._loaded:
                return

            logger.info(f"Loading embedding model: {self.model_name}")
            try:
                self._model = SentenceTransformer(
                    self.model_name,
                    device=self.device,
                    cache_folder=self.cache_dir,
                )
            except Exception as e:
                logger.error(f"Failed to load embedding model: {e}")
                raise EmbeddingError(
                    f"Failed to load embedding model {self.model_name}",
                    details={"error": str(e), "model": self.model_name},
                ) from e

            self._loaded = True
            logger.info(
                "Embedding model loaded "
                f"(dimensions={self._model.get_sentence_embedding_dimension()})"
            )

    def unload(self) -> None:
        """Unload model to free memory."""
        with self._lock:
            if not self._loaded:
                return
            del self._model
            self._model = None
            self._loaded = False

            gc.collect()
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
            logger.info("Embedding model unloaded")

    def embed(self, text: str) -> EmbeddingVector:
        """
        Embed one text.

        Raises:
            EmbeddingError: If encoding fails
        """
        self.load()
        try:
            values = self._model.encode(
                text,
                normalize_embeddings=self.normalize,
                show_progress_bar=False,
                convert_to_numpy=True,
            )
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingError(
                "Embedding generation failed",
                text_length=len(text),
                details={"error": str(e)},
            ) from e

        return EmbeddingVector(
            values=np.asarray(values, dtype=np.float32),
            model_version=self.model_name,
        )

    def __repr__(self) -> str:
        status = "loaded" if self._loaded else "not loaded"
        return f"SentenceTransformerProvider(model={self.model_name!r}, {status})"
