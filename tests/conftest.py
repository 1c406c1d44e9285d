"""Pytest configuration and fixtures."""

import numpy as np
import pytest
from loguru import logger

from codebase_qa.core.models import Chunk, RetrievedChunk


@pytest.fixture
def caplog(caplog):
    """Enable Loguru logging to be captured by pytest's caplog fixture."""
    import logging

    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


def make_chunk(file_path="src/app.py", start_line=1, lines=3, text="line"):
    """Builds a chunk whose content spans exactly `lines` lines."""
    content = "\n".join(f"{text} {start_line + i}" for i in range(lines))
    return Chunk(
        file_path=file_path,
        start_line=start_line,
        end_line=start_line + lines - 1,
        content=content,
    )


def make_retrieved(
    repository_id="repo-1", file_path="src/app.py", start_line=1, lines=3, similarity=0.9, id=None
):
    chunk = make_chunk(file_path, start_line, lines)
    return RetrievedChunk(
        **chunk.model_dump(),
        id=id or f"{file_path}:{start_line}",
        repository_id=repository_id,
        similarity=similarity,
    )


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def retrieved_factory():
    return make_retrieved


@pytest.fixture
def unit_vector():
    vector = np.zeros(4, dtype=np.float32)
    vector[0] = 1.0
    return vector
