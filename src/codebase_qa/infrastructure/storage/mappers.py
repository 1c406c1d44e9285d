import json
from datetime import datetime, timezone
from typing import Any

import numpy as np
import pyarrow as pa
from loguru import logger
from numpy.typing import NDArray
from pydantic import ValidationError as PydanticValidationError

from codebase_qa.core.models import Chunk, QnARecord, Reference, Repository, RetrievedChunk, Snippet

_TIMESTAMP = pa.timestamp("us", tz="UTC")


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ChunkMapper:
    """Mapper for mapping code chunks to PyArrow structures and vice versa."""

    def __init__(self, vector_dimension: int) -> None:
        self.vector_dimension = vector_dimension
        self._schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("repository_id", pa.string()),
                pa.field("vector", pa.list_(pa.float32(), self.vector_dimension)),
                pa.field("file_path", pa.string()),
                pa.field("start_line", pa.int32()),
                pa.field("end_line", pa.int32()),
                pa.field("content", pa.string()),
            ]
        )

    @property
    def schema(self) -> Any:
        return self._schema

    def to_table(
        self,
        repository_id: str,
        ids: list[str],
        chunks: list[Chunk],
        vectors: list[NDArray[np.float32]],
    ) -> Any:
        flat = (
            np.stack(vectors).astype(np.float32).ravel()
            if vectors
            else np.empty(0, dtype=np.float32)
        )
        return pa.Table.from_arrays(
            [
                pa.array(ids, type=pa.string()),
                pa.array([repository_id] * len(chunks), type=pa.string()),
                pa.FixedSizeListArray.from_arrays(
                    pa.array(flat, type=pa.float32()), list_size=self.vector_dimension
                ),
                pa.array([c.file_path for c in chunks], type=pa.string()),
                pa.array([c.start_line for c in chunks], type=pa.int32()),
                pa.array([c.end_line for c in chunks], type=pa.int32()),
                pa.array([c.content for c in chunks], type=pa.string()),
            ],
            schema=self._schema,
        )

    def from_polars_row(self, row: dict[str, Any], distance: float | None) -> RetrievedChunk:
        # Cosine distance from the store; similarity is its complement
        similarity = 1.0 - distance if distance is not None else 0.0
        return RetrievedChunk(
            id=row["id"],
            repository_id=row["repository_id"],
            file_path=row["file_path"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            content=row["content"],
            similarity=similarity,
        )


class QnAMapper:
    """Mapper for Q&A history rows; references and snippets are stored as JSON text."""

    def __init__(self) -> None:
        self._schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("repository_id", pa.string()),
                pa.field("question", pa.string()),
                pa.field("answer", pa.string()),
                pa.field("references", pa.string()),
                pa.field("snippets", pa.string()),
                pa.field("created_at", _TIMESTAMP),
            ]
        )

    @property
    def schema(self) -> Any:
        return self._schema

    def to_table(self, record: QnARecord) -> Any:
        row = {
            "id": record.id,
            "repository_id": record.repository_id,
            "question": record.question,
            "answer": record.answer,
            "references": json.dumps([r.model_dump(mode="json") for r in record.references]),
            "snippets": json.dumps(
                [s.model_dump(mode="json", by_alias=True) for s in record.snippets]
            ),
            "created_at": _as_utc(record.created_at),
        }
        return pa.Table.from_pylist([row], schema=self._schema)

    @staticmethod
    def _load_list(raw: Any, record_id: str, column: str) -> list[Any]:
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("Unparseable {} JSON in history record {}", column, record_id)
                return []
        return raw if isinstance(raw, list) else []

    def from_polars_row(self, row: dict[str, Any]) -> QnARecord:
        """Builds a record; malformed stored JSON degrades to empty lists."""
        record_id = row["id"]

        references: list[Reference] = []
        for item in self._load_list(row.get("references"), record_id, "references"):
            try:
                references.append(Reference.model_validate(item))
            except PydanticValidationError:
                continue

        snippets: list[Snippet] = []
        for item in self._load_list(row.get("snippets"), record_id, "snippets"):
            try:
                snippets.append(Snippet.model_validate(item))
            except PydanticValidationError:
                continue

        return QnARecord(
            id=record_id,
            repository_id=row["repository_id"],
            question=row.get("question") or "",
            answer=row.get("answer") or "",
            references=references,
            snippets=snippets,
            created_at=_as_utc(row["created_at"]),
        )


class RepositoryMapper:
    """Mapper for repository rows."""

    def __init__(self) -> None:
        self._schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("name", pa.string()),
                pa.field("created_at", _TIMESTAMP),
            ]
        )

    @property
    def schema(self) -> Any:
        return self._schema

    def to_table(self, repository: Repository) -> Any:
        return pa.Table.from_pylist(
            [
                {
                    "id": repository.id,
                    "name": repository.name,
                    "created_at": _as_utc(repository.created_at),
                }
            ],
            schema=self._schema,
        )

    def from_polars_row(self, row: dict[str, Any]) -> Repository:
        return Repository(id=row["id"], name=row["name"], created_at=_as_utc(row["created_at"]))
