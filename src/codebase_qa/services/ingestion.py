import tempfile
import time
from pathlib import Path
from typing import BinaryIO

from loguru import logger

from codebase_qa.core.errors import StorageError, ValidationError
from codebase_qa.core.models import Chunk, Document, IndexReport, Repository
from codebase_qa.core.ports import IChunker, IChunkStore, IEmbedder, IRepositoryStore
from codebase_qa.infrastructure.embeddings.batching import is_failed
from codebase_qa.infrastructure.sources.archives import (
    MAX_ZIP_BYTES,
    download_github_repo,
    extract_zip,
    parse_github_url,
)
from codebase_qa.infrastructure.sources.files import get_valid_files

TEMP_PREFIX = "cbqna-"


class IngestionService:
    """Orchestrates the acquisition, chunking, embedding, and storage of a repository."""

    def __init__(
        self,
        chunker: IChunker,
        embedder: IEmbedder,
        chunk_store: IChunkStore,
        repository_store: IRepositoryStore,
        concurrency: int = 5,
        max_file_bytes: int = 1024 * 1024,
    ) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.chunk_store = chunk_store
        self.repository_store = repository_store
        self.concurrency = concurrency
        self.max_file_bytes = max_file_bytes

    def _chunk_directory(self, root: Path) -> tuple[int, list[Chunk]]:
        files = get_valid_files(
            root, extensions=self.chunker.supported_extensions, max_file_bytes=self.max_file_bytes
        )
        chunks: list[Chunk] = []
        for filepath in files:
            with open(filepath, encoding="utf-8", errors="replace") as f:
                content = f.read()
            doc = Document(filepath=filepath.relative_to(root).as_posix(), content=content)
            chunks.extend(self.chunker.process(doc))
        return len(files), chunks

    def _index(self, repository_id: str, root: Path) -> IndexReport:
        log: dict[str, int] = {}

        files_indexed, chunks = self._chunk_directory(root)
        log["files_scanned"] = files_indexed
        log["total_chunks"] = len(chunks)
        logger.info("Chunked {} files into {} chunks", files_indexed, len(chunks))

        t0 = time.perf_counter()
        vectors = self.embedder.embed_batch([c.content for c in chunks], self.concurrency)
        log["embedding_time_ms"] = int((time.perf_counter() - t0) * 1000)

        # Failed embeddings are empty vectors and must never reach the store
        keep = [i for i, vector in enumerate(vectors) if not is_failed(vector)]
        log["failed_embeddings"] = len(chunks) - len(keep)
        if log["failed_embeddings"]:
            logger.warning("Skipping {} chunks whose embedding failed", log["failed_embeddings"])

        t1 = time.perf_counter()
        self.chunk_store.ingest_chunks(
            repository_id, [chunks[i] for i in keep], [vectors[i] for i in keep]
        )
        log["insert_time_ms"] = int((time.perf_counter() - t1) * 1000)

        logger.info("Indexed repository {}: {}", repository_id, log)
        return IndexReport(
            repository_id=repository_id,
            files_indexed=files_indexed,
            chunks_created=len(keep),
            status="completed",
            log=log,
        )

    def _index_new_repository(self, name: str, root: Path) -> IndexReport:
        repository = self.repository_store.create_repository(name)
        try:
            return self._index(repository.id, root)
        except Exception:
            logger.error("Indexing of {} failed; removing partial repository", name)
            self.repository_store.delete_repository(repository.id)
            raise

    def index_directory(self, path: str | Path, name: str | None = None) -> IndexReport:
        """Indexes a local checkout as a new repository."""
        root = Path(path)
        if not root.is_dir():
            raise ValidationError(f"Not a directory: {path}")
        return self._index_new_repository(name or root.resolve().name, root)

    def index_zip(self, filename: str, archive: str | Path | BinaryIO) -> IndexReport:
        """Indexes an uploaded ZIP archive; the extraction directory is always removed."""
        if not filename.endswith(".zip"):
            raise ValidationError("Uploaded file must be a .zip archive")

        with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp:
            root = extract_zip(archive, Path(tmp) / "extracted")
            return self._index_new_repository(Path(filename).name.removesuffix(".zip"), root)

    def index_github(self, url: str) -> IndexReport:
        """Downloads and indexes a public GitHub repository."""
        owner, repo = parse_github_url(url)
        with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp:
            root = download_github_repo(owner, repo, Path(tmp))
            return self._index_new_repository(f"{owner}/{repo}", root)

    def index_path(self, target: str) -> IndexReport:
        """Dispatches a CLI target: GitHub URL, ZIP file, or directory."""
        if target.startswith("https://"):
            return self.index_github(target)
        if target.endswith(".zip"):
            if not Path(target).is_file():
                raise ValidationError(f"No such file: {target}")
            if Path(target).stat().st_size > MAX_ZIP_BYTES:
                raise ValidationError("Uploaded ZIP exceeds 100MB limit")
            return self.index_zip(Path(target).name, target)
        return self.index_directory(target)

    def list_repositories(self) -> list[Repository]:
        try:
            return self.repository_store.list_repositories()
        except Exception as e:
            raise StorageError(f"Failed to list repositories: {e}") from e

    def delete_repository(self, repository_id: str) -> None:
        """Removes a repository together with its chunks and history."""
        if not repository_id or not isinstance(repository_id, str):
            raise ValidationError("Missing or invalid repositoryId")
        try:
            self.repository_store.delete_repository(repository_id)
        except Exception as e:
            raise StorageError(f"Failed to delete repository: {e}") from e
