import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import numpy as np
from loguru import logger

from codebase_qa.core.ports import IChunkStore, IGenerator, IRepositoryStore

NIL_REPOSITORY_ID = "00000000-0000-0000-0000-000000000000"


class StatusService:
    """Checks the database, vector search and language model dependencies."""

    def __init__(
        self,
        repository_store: IRepositoryStore,
        chunk_store: IChunkStore,
        generator: IGenerator,
        vector_dimension: int,
    ) -> None:
        self.repository_store = repository_store
        self.chunk_store = chunk_store
        self.generator = generator
        self.vector_dimension = vector_dimension

    @staticmethod
    def _check_component(name: str, check: Callable[[], Any]) -> dict[str, Any]:
        try:
            check()
        except Exception as e:
            logger.error("[Status] {} check error: {}", name, e)
            return {"status": "unhealthy", "error": str(e) or f"{name} check failed"}
        return {"status": "healthy", "error": None}

    def check_database(self) -> dict[str, Any]:
        return self._check_component("Database", self.repository_store.ping)

    def check_vector(self) -> dict[str, Any]:
        zero_vector = np.zeros(self.vector_dimension, dtype=np.float32)
        return self._check_component(
            "Vector", lambda: self.chunk_store.search(NIL_REPOSITORY_ID, zero_vector, limit=1)
        )

    def check_llm(self) -> dict[str, Any]:
        return self._check_component("LLM", self.generator.check)

    async def report(self) -> dict[str, Any]:
        database, vector, llm = await asyncio.gather(
            asyncio.to_thread(self.check_database),
            asyncio.to_thread(self.check_vector),
            asyncio.to_thread(self.check_llm),
        )
        unhealthy = any(c["status"] == "unhealthy" for c in (database, vector, llm))
        return {
            "database": database,
            "vector": vector,
            "llm": llm,
            "overall": "degraded" if unhealthy else "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
