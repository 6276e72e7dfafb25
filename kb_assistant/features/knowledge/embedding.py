"""
Knowledge feature: Embedding client.
Wraps the LLM provider's embedding model for use across the app.
"""

import logging

from langchain_core.embeddings import Embeddings

from kb_assistant.config import get_settings
from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.core.llm_provider import create_embeddings

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Turns text into fixed-dimension vectors.

    One blocking provider call per text; no retries. Any provider failure
    surfaces as ExternalServiceError and the caller decides what to do.
    """

    def __init__(self, model: Embeddings | None = None, dimensions: int | None = None):
        self._model = model
        self.dimensions = dimensions or get_settings().EMBEDDING_DIMENSIONS

    @property
    def model(self) -> Embeddings:
        # Lazy init: the provider SDK is only touched on first use
        if self._model is None:
            self._model = create_embeddings()
        return self._model

    def embed(self, text: str) -> list[float]:
        """Generate the embedding vector for a single text.

        Args:
            text: The text to embed.

        Returns:
            A list of exactly ``dimensions`` floats.

        Raises:
            ExternalServiceError: Provider call failed or returned a short vector.
        """
        try:
            vector = self.model.embed_query(text)
        except Exception as e:
            logger.error(f"❌ Embedding request failed: {e}")
            raise ExternalServiceError("embeddings", str(e)) from e

        if len(vector) < self.dimensions:
            raise ExternalServiceError(
                "embeddings",
                f"Expected {self.dimensions} dimensions, provider returned {len(vector)}",
            )
        # Truncate to the configured dimensionality (e.g. 768)
        return [float(v) for v in vector[: self.dimensions]]
