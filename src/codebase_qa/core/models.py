from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """A raw source file before chunking."""

    filepath: str  # repository-relative, POSIX separators
    content: str


class Chunk(BaseModel):
    """A line-numbered slice of one source file, used as the retrieval unit."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    start_line: int = Field(ge=1)
    end_line: int
    content: str

    @model_validator(mode="after")
    def _check_line_range(self) -> "Chunk":
        if self.end_line < self.start_line:
            raise ValueError(f"end_line {self.end_line} precedes start_line {self.start_line}")
        expected = self.end_line - self.start_line + 1
        if self.content.count("\n") + 1 != expected:
            raise ValueError(f"content must span exactly {expected} lines")
        return self


class RetrievedChunk(Chunk):
    """A stored chunk matched by similarity search for one query."""

    id: str
    repository_id: str
    similarity: float

    def to_response(self) -> dict[str, Any]:
        return {
            "file": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "content": self.content,
        }


class Reference(BaseModel):
    """A model-asserted citation of a file and line range."""

    file: str
    lines: tuple[int, int]
    explanation: str = ""

    @model_validator(mode="after")
    def _check_lines(self) -> "Reference":
        if self.lines[1] < self.lines[0]:
            raise ValueError("reference line range is reversed")
        return self

    def overlaps(self, chunk: Chunk) -> bool:
        return (
            self.file == chunk.file_path
            and self.lines[0] <= chunk.end_line
            and self.lines[1] >= chunk.start_line
        )


class Answer(BaseModel):
    """The resolved, structured output of one question."""

    text: str
    references: list[Reference] = Field(default_factory=list)


class Snippet(BaseModel):
    """Stored copy of a chunk that was shown to the model."""

    model_config = ConfigDict(populate_by_name=True)

    file: str
    start_line: int = Field(alias="startLine")
    end_line: int = Field(alias="endLine")
    code: str
    highlight: tuple[int, int]

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "Snippet":
        return cls(
            file=chunk.file_path,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            code=chunk.content,
            highlight=(chunk.start_line, chunk.end_line),
        )


class QnARecord(BaseModel):
    """One persisted question/answer pair with its supporting snippets."""

    id: str
    repository_id: str
    question: str
    answer: str
    references: list[Reference] = Field(default_factory=list)
    snippets: list[Snippet] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def to_response(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "references": [r.model_dump(mode="json") for r in self.references],
            "snippets": [s.model_dump(mode="json", by_alias=True) for s in self.snippets],
            "created_at": self.created_at.isoformat(),
        }


class Repository(BaseModel):
    """An indexed code repository; owns its chunks and Q&A history."""

    id: str
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class IndexReport(BaseModel):
    """Summary returned after indexing a repository."""

    repository_id: str
    files_indexed: int
    chunks_created: int
    status: str = "completed"
    log: dict[str, Any] = Field(default_factory=dict)
