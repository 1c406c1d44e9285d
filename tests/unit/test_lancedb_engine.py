"""Unit tests for LanceDBStore."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import numpy as np
import polars as pl
import pyarrow as pa
import pytest

from codebase_qa.infrastructure.storage.lancedb_engine import (
    CHUNKS_TABLE,
    HISTORY_TABLE,
    REPOSITORIES_TABLE,
    LanceDBStore,
)
from codebase_qa.infrastructure.storage.mappers import ChunkMapper


@pytest.fixture
def mock_tables():
    """One mock per table; the chunks table reports a matching vector schema."""
    tables = {
        REPOSITORIES_TABLE: MagicMock(),
        CHUNKS_TABLE: MagicMock(),
        HISTORY_TABLE: MagicMock(),
    }
    tables[CHUNKS_TABLE].schema = ChunkMapper(3).schema
    return tables


@pytest.fixture
def lancedb_store(mock_tables, tmp_path):
    """Create a LanceDBStore with mocked lancedb connection.

    Returns a tuple of (store, mock_db, mock_tables) for test verification.
    """
    db_path = str(tmp_path / "test.db")

    with patch("codebase_qa.infrastructure.storage.lancedb_engine.lancedb") as mock_lancedb:
        mock_db = MagicMock()
        mock_db.create_table.side_effect = lambda name, **kwargs: mock_tables[name]
        mock_lancedb.connect.return_value = mock_db

        store = LanceDBStore(db_path=db_path, vector_dimension=3)
        yield store, mock_db, mock_tables


class TestInit:
    """Tests for LanceDBStore initialization."""

    def test_creates_all_tables(self, lancedb_store):
        store, mock_db, _ = lancedb_store
        names = [call.args[0] for call in mock_db.create_table.call_args_list]
        assert names == [REPOSITORIES_TABLE, CHUNKS_TABLE, HISTORY_TABLE]
        for call in mock_db.create_table.call_args_list:
            assert call.kwargs["exist_ok"] is True

    def test_schema_mismatch(self, mock_tables, tmp_path):
        mock_tables[CHUNKS_TABLE].schema = ChunkMapper(768).schema
        with patch("codebase_qa.infrastructure.storage.lancedb_engine.lancedb") as mock_lancedb:
            mock_db = MagicMock()
            mock_db.create_table.side_effect = lambda name, **kwargs: mock_tables[name]
            mock_lancedb.connect.return_value = mock_db

            with pytest.raises(ValueError, match="Schema mismatch"):
                LanceDBStore(db_path=str(tmp_path), vector_dimension=3)


class TestRepositories:
    """Tests for repository rows."""

    def test_create_repository(self, lancedb_store):
        store, _, tables = lancedb_store
        repository = store.create_repository("demo")

        assert repository.name == "demo"
        added = tables[REPOSITORIES_TABLE].add.call_args.args[0]
        assert added.to_pylist()[0]["id"] == repository.id

    def test_delete_cascades(self, lancedb_store):
        store, _, tables = lancedb_store
        store.delete_repository("r1")

        tables[CHUNKS_TABLE].delete.assert_called_once_with("repository_id = 'r1'")
        tables[HISTORY_TABLE].delete.assert_called_once_with("repository_id = 'r1'")
        tables[REPOSITORIES_TABLE].delete.assert_called_once_with("id = 'r1'")

    def test_filter_literals_are_escaped(self, lancedb_store):
        store, _, tables = lancedb_store
        store.delete_repository("x' OR '1'='1")
        tables[CHUNKS_TABLE].delete.assert_called_once_with(
            "repository_id = 'x'' OR ''1''=''1'"
        )

    def test_ping(self, lancedb_store):
        store, _, tables = lancedb_store
        store.ping()
        tables[REPOSITORIES_TABLE].count_rows.assert_called_once()


class TestChunks:
    """Tests for chunk ingestion and search."""

    def test_ingest_in_batches(self, lancedb_store, chunk_factory):
        store, _, tables = lancedb_store
        chunks = [chunk_factory("a.py", i + 1, 1) for i in range(250)]
        vectors = [np.ones(3, dtype=np.float32) for _ in chunks]

        store.ingest_chunks("r1", chunks, vectors)

        sizes = [call.args[0].num_rows for call in tables[CHUNKS_TABLE].add.call_args_list]
        assert sizes == [100, 100, 50]

    def test_ingest_length_mismatch(self, lancedb_store, chunk_factory):
        store, _, _ = lancedb_store
        with pytest.raises(ValueError):
            store.ingest_chunks("r1", [chunk_factory()], [])

    def test_search_is_cosine_and_scoped(self, lancedb_store):
        store, _, tables = lancedb_store
        query = tables[CHUNKS_TABLE].search.return_value
        query.distance_type.return_value = query
        query.where.return_value = query
        query.limit.return_value = query
        query.to_polars.return_value = pl.DataFrame(
            {
                "id": ["c1"],
                "repository_id": ["r1"],
                "file_path": ["a.py"],
                "start_line": [1],
                "end_line": [1],
                "content": ["x"],
                "_distance": [0.2],
            }
        )

        results = store.search("r1", np.ones(3, dtype=np.float32), limit=4)

        query.distance_type.assert_called_once_with("cosine")
        query.where.assert_called_once_with("repository_id = 'r1'", prefilter=True)
        query.limit.assert_called_once_with(4)
        assert results[0].similarity == pytest.approx(0.8)

    def test_search_no_results(self, lancedb_store):
        store, _, tables = lancedb_store
        query = tables[CHUNKS_TABLE].search.return_value
        query.distance_type.return_value = query
        query.where.return_value = query
        query.limit.return_value = query
        query.to_polars.return_value = pl.DataFrame()

        assert store.search("r1", np.ones(3, dtype=np.float32)) == []


class TestHistory:
    """Tests for Q&A history retention."""

    def test_prune_removes_oldest_of_repository(self, lancedb_store):
        store, _, tables = lancedb_store
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        tables[HISTORY_TABLE].to_arrow.return_value = pa.table(
            {
                "id": ["old", "mid", "new", "other"],
                "repository_id": ["r1", "r1", "r1", "r2"],
                "created_at": [base, base + timedelta(minutes=1), base + timedelta(minutes=2), base],
            }
        )

        removed = store.prune_qna("r1", keep=2)

        assert removed == 1
        tables[HISTORY_TABLE].delete.assert_called_once_with("id IN ('old')")

    def test_prune_nothing_to_remove(self, lancedb_store):
        store, _, tables = lancedb_store
        tables[HISTORY_TABLE].to_arrow.return_value = pa.table(
            {
                "id": ["a"],
                "repository_id": ["r1"],
                "created_at": [datetime(2024, 1, 1, tzinfo=timezone.utc)],
            }
        )

        assert store.prune_qna("r1", keep=10) == 0
        tables[HISTORY_TABLE].delete.assert_not_called()

    def test_delete_qna(self, lancedb_store):
        store, _, tables = lancedb_store
        store.delete_qna("q1")
        tables[HISTORY_TABLE].delete.assert_called_once_with("id = 'q1'")
