import uuid
from typing import Any

import lancedb
import numpy as np
import polars as pl
from loguru import logger
from numpy.typing import NDArray

from codebase_qa.core.models import Chunk, QnARecord, Repository, RetrievedChunk
from codebase_qa.infrastructure.storage.mappers import ChunkMapper, QnAMapper, RepositoryMapper

CHUNKS_TABLE = "chunks"
HISTORY_TABLE = "qna_history"
REPOSITORIES_TABLE = "repositories"

INSERT_BATCH_SIZE = 100


def _quote(value: str) -> str:
    """Quotes a string literal for a LanceDB filter expression."""
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


class LanceDBStore:
    """
    Embedded LanceDB persistence for repositories, chunk embeddings and Q&A history.
    Implements the IChunkStore, IHistoryStore and IRepositoryStore protocols.
    Owned rows are removed together with their repository.
    """

    def __init__(self, db_path: str, vector_dimension: int) -> None:
        self.db_path = db_path
        self.vector_dimension = vector_dimension
        self.chunk_mapper = ChunkMapper(vector_dimension)
        self.qna_mapper = QnAMapper()
        self.repository_mapper = RepositoryMapper()

        self.db = lancedb.connect(db_path)
        self.repositories = self.db.create_table(
            REPOSITORIES_TABLE, schema=self.repository_mapper.schema, exist_ok=True
        )
        self.chunks = self.db.create_table(
            CHUNKS_TABLE, schema=self.chunk_mapper.schema, exist_ok=True
        )
        self.history = self.db.create_table(
            HISTORY_TABLE, schema=self.qna_mapper.schema, exist_ok=True
        )
        self._check_vector_schema()

    def _check_vector_schema(self) -> None:
        existing = self.chunks.schema.field("vector").type
        expected = self.chunk_mapper.schema.field("vector").type
        if existing != expected:
            raise ValueError(
                f"Schema mismatch: table '{CHUNKS_TABLE}' stores {existing}, "
                f"but the embedding model produces {expected}. Use a new db_path."
            )

    def _rows(self, table: Any, column: str, value: str) -> pl.DataFrame:
        frame = pl.from_arrow(table.to_arrow())
        return frame.filter(pl.col(column) == value)

    # Repositories

    def create_repository(self, name: str) -> Repository:
        repository = Repository(id=str(uuid.uuid4()), name=name)
        self.repositories.add(self.repository_mapper.to_table(repository))
        logger.info("Created repository {} ({})", repository.id, name)
        return repository

    def list_repositories(self) -> list[Repository]:
        frame = pl.from_arrow(self.repositories.to_arrow()).sort("created_at", descending=True)
        return [self.repository_mapper.from_polars_row(row) for row in frame.iter_rows(named=True)]

    def delete_repository(self, repository_id: str) -> None:
        """Deletes a repository with all of its chunks and history records."""
        where = f"repository_id = {_quote(repository_id)}"
        self.chunks.delete(where)
        self.history.delete(where)
        self.repositories.delete(f"id = {_quote(repository_id)}")
        logger.info("Deleted repository {} with its chunks and history", repository_id)

    def ping(self) -> None:
        self.repositories.count_rows()

    # Chunks

    def ingest_chunks(
        self, repository_id: str, chunks: list[Chunk], vectors: list[NDArray[np.float32]]
    ) -> None:
        """Appends chunks and their matching vectors in batches."""
        if len(chunks) != len(vectors):
            raise ValueError(f"Got {len(chunks)} chunks but {len(vectors)} vectors")

        for offset in range(0, len(chunks), INSERT_BATCH_SIZE):
            batch = chunks[offset : offset + INSERT_BATCH_SIZE]
            ids = [str(uuid.uuid4()) for _ in batch]
            table = self.chunk_mapper.to_table(
                repository_id, ids, batch, vectors[offset : offset + INSERT_BATCH_SIZE]
            )
            self.chunks.add(table)

    def search(
        self, repository_id: str, query_vector: NDArray[np.float32], limit: int = 5
    ) -> list[RetrievedChunk]:
        """Cosine similarity search restricted to one repository."""
        results = (
            self.chunks.search(query_vector, vector_column_name="vector")
            .distance_type("cosine")
            .where(f"repository_id = {_quote(repository_id)}", prefilter=True)
            .limit(limit)
            .to_polars()
        )
        if results.is_empty():
            return []

        return [
            self.chunk_mapper.from_polars_row(row, row.get("_distance"))
            for row in results.iter_rows(named=True)
        ]

    # History

    def insert_qna(self, record: QnARecord) -> None:
        self.history.add(self.qna_mapper.to_table(record))

    def prune_qna(self, repository_id: str, keep: int) -> int:
        frame = self._rows(self.history, "repository_id", repository_id)
        stale = frame.sort("created_at", descending=True).slice(keep)["id"].to_list()
        if not stale:
            return 0

        ids = ", ".join(_quote(record_id) for record_id in stale)
        self.history.delete(f"id IN ({ids})")
        logger.debug("Pruned {} history records of repository {}", len(stale), repository_id)
        return len(stale)

    def list_qna(self, repository_id: str, limit: int) -> list[QnARecord]:
        frame = (
            self._rows(self.history, "repository_id", repository_id)
            .sort("created_at", descending=True)
            .head(limit)
        )
        return [self.qna_mapper.from_polars_row(row) for row in frame.iter_rows(named=True)]

    def delete_qna(self, record_id: str) -> None:
        self.history.delete(f"id = {_quote(record_id)}")
