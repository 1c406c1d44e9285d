import numpy as np
from loguru import logger
from numpy.typing import NDArray

from codebase_qa.core.errors import RetrievalError, ValidationError
from codebase_qa.core.models import RetrievedChunk
from codebase_qa.core.ports import IChunkStore, IEmbedder


class Retriever:
    """Fetches the chunks of one repository nearest to a query vector."""

    def __init__(self, store: IChunkStore, embedder: IEmbedder | None = None) -> None:
        self.store = store
        self.embedder = embedder

    def retrieve_top_k(
        self, repository_id: str, query_vector: NDArray[np.float32], k: int = 5
    ) -> list[RetrievedChunk]:
        """Returns up to k chunks ordered by descending similarity; empty if nothing matches."""
        if not repository_id:
            raise ValidationError("Missing or invalid repositoryId")

        try:
            results = self.store.search(
                repository_id=repository_id, query_vector=query_vector, limit=k
            )
        except Exception as e:
            raise RetrievalError(f"Vector search failed: {e}") from e

        scoped = [r for r in results if r.repository_id == repository_id]
        if len(scoped) != len(results):
            logger.error(
                "Store returned {} chunks outside repository {}; discarding them",
                len(results) - len(scoped),
                repository_id,
            )

        return sorted(scoped, key=lambda r: r.similarity, reverse=True)[:k]

    def search(self, repository_id: str, query: str, k: int = 5) -> list[RetrievedChunk]:
        """Embeds free text and retrieves the nearest chunks."""
        if self.embedder is None:
            raise RuntimeError("Retriever was created without an embedder")
        logger.info("Executing query: {}", query)
        return self.retrieve_top_k(repository_id, self.embedder.embed_query(query), k)

    def print_results(self, results: list[RetrievedChunk]) -> None:
        """Formats and logs retrieved chunks."""
        if not results:
            logger.info("No results found")
            return

        logger.info("Top Results:")
        for res in results:
            logger.info(
                "[Similarity: {:.4f} | {} ({}-{})]",
                res.similarity,
                res.file_path,
                res.start_line,
                res.end_line,
            )
            snippet = res.content[:100].replace("\n", " ")
            logger.info('  --> "{}..."', snippet)
