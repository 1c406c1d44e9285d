from collections.abc import Iterator
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from codebase_qa.core.models import Chunk, Document, QnARecord, Repository, RetrievedChunk


class IEmbedder(Protocol):
    """Protocol defining how an embedder should behave."""

    @property
    def dimension(self) -> int:
        """Returns the embedding vector dimension size."""
        ...

    def embed(self, text: str) -> NDArray[np.float32]:
        """Converts one passage into a flat float32 vector of `dimension` floats."""
        ...

    def embed_query(self, text: str) -> NDArray[np.float32]:
        """Converts one question into a flat float32 vector of `dimension` floats."""
        ...

    def embed_batch(
        self, texts: list[str], concurrency: int | None = None
    ) -> list[NDArray[np.float32]]:
        """Embeds passages in input order; failed items come back as empty arrays."""
        ...


class IChunker(Protocol):
    """Protocol defining how documents are split into line-numbered chunks."""

    @property
    def supported_extensions(self) -> list[str]: ...

    def process(self, document: Document) -> Iterator[Chunk]:
        """Yields chunks from a raw document."""
        ...


class IChunkStore(Protocol):
    """Similarity-search collaborator holding chunk embeddings."""

    def ingest_chunks(
        self, repository_id: str, chunks: list[Chunk], vectors: list[NDArray[np.float32]]
    ) -> None: ...

    def search(
        self, repository_id: str, query_vector: NDArray[np.float32], limit: int = 5
    ) -> list[RetrievedChunk]:
        """Returns the nearest chunks of one repository, most similar first."""
        ...


class IHistoryStore(Protocol):
    """Persistence for Q&A records."""

    def insert_qna(self, record: QnARecord) -> None: ...

    def prune_qna(self, repository_id: str, keep: int) -> int:
        """Deletes all but the `keep` newest records of a repository; returns the count removed."""
        ...

    def list_qna(self, repository_id: str, limit: int) -> list[QnARecord]: ...

    def delete_qna(self, record_id: str) -> None: ...


class IRepositoryStore(Protocol):
    """Persistence for repositories, with cascade deletion of owned rows."""

    def create_repository(self, name: str) -> Repository: ...

    def list_repositories(self) -> list[Repository]: ...

    def delete_repository(self, repository_id: str) -> None: ...

    def ping(self) -> None:
        """Raises if the database cannot be read."""
        ...


class IGenerator(Protocol):
    """Black-box language model: prompt in, free text out."""

    def generate(self, prompt: str) -> str: ...

    def check(self) -> None:
        """Raises if the model provider is unreachable."""
        ...
