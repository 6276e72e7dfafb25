"""
Knowledge feature: Nearest-neighbour retrieval over stored chunks.
"""

import logging

from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.features.knowledge.schemas import ScoredChunk
from kb_assistant.features.knowledge.store import DocumentStore

logger = logging.getLogger(__name__)


class Retriever:
    """Cosine-similarity top-k lookup. Read-only."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def find_similar(self, query_vector: list[float], k: int = 5) -> list[ScoredChunk]:
        """Return at most k chunks ordered by non-increasing similarity.

        Raises:
            ExternalServiceError: The store could not be searched.
        """
        if k <= 0:
            return []
        try:
            results = self.store.search(query_vector, k)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise ExternalServiceError("vector_store", str(e)) from e

        # Backends already rank, re-sort so the ordering holds for any store
        ranked = sorted(results, key=lambda r: r.similarity, reverse=True)[:k]
        logger.debug(f"Retrieved {len(ranked)} chunk(s) (k={k})")
        return ranked
