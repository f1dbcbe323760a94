"""fastembed-backed embedding provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from tool_retriever.config import EMBEDDING_CONFIG, EmbeddingConfig

if TYPE_CHECKING:
    from fastembed import TextEmbedding  # pyright: ignore[reportMissingTypeStubs]

logger = logging.getLogger(__name__)


class FastEmbedProvider:
    """Embeds query text with a pinned fastembed ``TextEmbedding`` model.

    The model is loaded in :meth:`connect` rather than at import time, so
    constructing the provider is cheap and never downloads anything.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EMBEDDING_CONFIG
        self._model: TextEmbedding | None = None

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def connect(self) -> None:
        if self._model is not None:
            return
        from fastembed import TextEmbedding  # pyright: ignore[reportMissingTypeStubs]

        self._model = TextEmbedding(
            model_name=self._config.model_name,
            cache_dir=self._config.cache_dir,
        )
        logger.info("Loaded embedding model %s", self._config.model_name)

    def close(self) -> None:
        self._model = None

    def embed(self, text: str) -> np.ndarray:
        """Return the embedding of *text* as a float32 vector."""
        if self._model is None:
            self.connect()
        assert self._model is not None
        embeddings = list(self._model.embed([text]))  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
        return np.asarray(embeddings[0], dtype=np.float32)
