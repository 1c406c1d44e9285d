import uuid

from loguru import logger

from codebase_qa.core.errors import StorageError, ValidationError
from codebase_qa.core.models import Answer, QnARecord, RetrievedChunk, Snippet
from codebase_qa.core.ports import IHistoryStore


class HistoryService:
    """Keeps the most recent Q&A records of each repository."""

    def __init__(self, store: IHistoryStore, limit: int = 10) -> None:
        self.store = store
        self.limit = limit

    def save(self, record: QnARecord) -> None:
        """Inserts a record, then trims the repository to the newest `limit` records."""
        try:
            self.store.insert_qna(record)
            self.store.prune_qna(record.repository_id, keep=self.limit)
        except Exception as e:
            raise StorageError(f"Failed to save QnA: {e}") from e

    def record_answer(
        self,
        repository_id: str,
        question: str,
        answer: Answer,
        chunks: list[RetrievedChunk],
    ) -> QnARecord:
        record = QnARecord(
            id=str(uuid.uuid4()),
            repository_id=repository_id,
            question=question,
            answer=answer.text,
            references=answer.references,
            snippets=[Snippet.from_chunk(c) for c in chunks],
        )
        self.save(record)
        logger.debug("Saved QnA {} for repository {}", record.id, repository_id)
        return record

    def list_recent(self, repository_id: str) -> list[QnARecord]:
        """Newest first, at most `limit` records."""
        if not repository_id:
            raise ValidationError("Missing repositoryId")
        try:
            return self.store.list_qna(repository_id, limit=self.limit)
        except Exception as e:
            raise StorageError(f"Failed to fetch QnA history: {e}") from e

    def delete(self, record_id: str) -> None:
        if not record_id:
            raise ValidationError("Missing id")
        try:
            self.store.delete_qna(record_id)
        except Exception as e:
            raise StorageError(f"Failed to delete QnA: {e}") from e
