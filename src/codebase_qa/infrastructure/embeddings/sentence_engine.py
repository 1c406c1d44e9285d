import threading
from typing import Any

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from sentence_transformers import SentenceTransformer

from codebase_qa.core.errors import EmbeddingError
from codebase_qa.infrastructure.embeddings.batching import embed_concurrently
from codebase_qa.infrastructure.embeddings.outputs import to_vector

_MODEL_CACHE: dict[str, Any] = {}
_MODEL_LOCK = threading.Lock()


def _load_model(model_name: str) -> Any:
    """Loads a model once per process; concurrent first callers share a single load."""
    model = _MODEL_CACHE.get(model_name)
    if model is not None:
        return model

    with _MODEL_LOCK:
        model = _MODEL_CACHE.get(model_name)
        if model is None:
            logger.info("Loading embedding model: {}", model_name)
            model = SentenceTransformer(model_name)
            _MODEL_CACHE[model_name] = model
        return model


class SentenceTransformerEmbedder:
    """
    Concrete implementation of IEmbedder using sentence-transformers.
    The model is loaded lazily on first use and shared by every embedder in the process.
    """

    def __init__(
        self,
        model_name: str,
        dimension: int,
        passage_prefix: str = "",
        query_prefix: str = "",
        concurrency: int = 5,
    ) -> None:
        self._model_name = model_name
        self._dimension = dimension
        self._passage_prefix = passage_prefix
        self._query_prefix = query_prefix
        self._concurrency = concurrency

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model(self) -> Any:
        return _load_model(self._model_name)

    def _encode(self, text: str) -> NDArray[np.float32]:
        if not text.strip():
            return np.zeros(self._dimension, dtype=np.float32)

        try:
            output = self.model.encode(
                text, normalize_embeddings=True, convert_to_numpy=True, show_progress_bar=False
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding model call failed: {e}") from e

        vector = to_vector(output)

        # Critical structural guarantee
        if vector.shape != (self._dimension,):
            raise EmbeddingError(
                f"Invalid embedding: got {vector.shape[0]} dimensions, expected {self._dimension}"
            )
        return vector

    def embed(self, text: str) -> NDArray[np.float32]:
        """Embeds one passage, prepending the passage prefix for asymmetric models."""
        if not text.strip():
            return self._encode(text)
        return self._encode(f"{self._passage_prefix}{text}")

    def embed_query(self, text: str) -> NDArray[np.float32]:
        """Embeds one question, prepending the query prefix for asymmetric models."""
        if not text.strip():
            return self._encode(text)
        return self._encode(f"{self._query_prefix}{text}")

    def embed_batch(
        self, texts: list[str], concurrency: int | None = None
    ) -> list[NDArray[np.float32]]:
        """Embeds passages with a bounded worker pool; failures are empty arrays."""
        return embed_concurrently(self.embed, texts, concurrency or self._concurrency)
