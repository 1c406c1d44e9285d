"""Question resolution pipeline.

One question moves strictly in sequence through validate, embed, retrieve,
build prompt, generate, parse and persist. Validation, embedding, retrieval and
generation failures end the resolution with a typed error. Parse failures never
do: the output goes through a fallback ladder (direct JSON, embedded object,
one stricter retry) and ends in a fixed fallback answer. Persistence is
best-effort and reported separately from the answer.
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from codebase_qa.core.errors import (
    EmbeddingError,
    GenerationError,
    NotFoundError,
    ValidationError,
)
from codebase_qa.core.models import Answer, RetrievedChunk
from codebase_qa.core.parsing import grounded_references, parse_model_output, to_answer
from codebase_qa.core.ports import IEmbedder
from codebase_qa.logger import preview
from codebase_qa.services.history import HistoryService
from codebase_qa.services.prompt import STRICT_JSON_DIRECTIVE, PromptBuilder
from codebase_qa.services.retrieval import Retriever

FALLBACK_ANSWER_TEXT = "Model returned invalid format."


class Stage(str, Enum):
    VALIDATE = "validate"
    EMBED = "embed"
    RETRIEVE = "retrieve"
    BUILD_PROMPT = "build_prompt"
    GENERATE = "generate"
    PARSE = "parse"
    RETRY = "retry"
    PERSIST = "persist"
    RESPOND = "respond"


class ParseOutcome(str, Enum):
    DIRECT = "direct"
    EXTRACTED = "extracted"
    RETRY_DIRECT = "retry_direct"
    RETRY_EXTRACTED = "retry_extracted"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded re-generation using the prompt with an appended directive."""

    max_retries: int = 1
    directive: str = STRICT_JSON_DIRECTIVE

    def apply(self, prompt: str) -> str:
        return f"{prompt}\n\n{self.directive}"


@dataclass
class Resolution:
    """Outcome of one question: the answer plus how it was reached."""

    repository_id: str
    question: str
    answer: Answer
    chunks: list[RetrievedChunk]
    outcome: ParseOutcome
    attempts: int
    persisted: bool = False
    trace: list[Stage] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {
            "answer": self.answer.text,
            "references": [r.model_dump(mode="json") for r in self.answer.references],
            "retrieved_chunks": [c.to_response() for c in self.chunks],
        }


class AnswerResolver:
    """Answers a question about one repository from its retrieved code."""

    def __init__(
        self,
        embedder: IEmbedder,
        retriever: Retriever,
        generate: Callable[[str], str],
        prompt_builder: PromptBuilder | None = None,
        history: HistoryService | None = None,
        top_k: int = 5,
        timeout: float = 30.0,
        min_question_length: int = 3,
        retry_policy: RetryPolicy | None = None,
        verify_references: bool = False,
    ) -> None:
        self.embedder = embedder
        self.retriever = retriever
        self.generate = generate
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.history = history
        self.top_k = top_k
        self.timeout = timeout
        self.min_question_length = min_question_length
        self.retry_policy = retry_policy or RetryPolicy()
        self.verify_references = verify_references

    def resolve(self, repository_id: Any, question: Any) -> Resolution:
        trace = [Stage.VALIDATE]
        self._validate(repository_id, question)
        logger.info("[ASK] repositoryId: {} question: {}", repository_id, preview(question))

        trace.append(Stage.EMBED)
        query_vector = self._embed(question)

        trace.append(Stage.RETRIEVE)
        chunks = self.retriever.retrieve_top_k(repository_id, query_vector, k=self.top_k)
        logger.info("[ASK] Retrieved chunks: {}", len(chunks))
        if not chunks:
            logger.warning("[ASK] No relevant code found for repo {}", repository_id)
            raise NotFoundError("No relevant code found")

        trace.append(Stage.BUILD_PROMPT)
        prompt = self.prompt_builder.build(question, chunks)

        trace.append(Stage.GENERATE)
        raw = self._generate(prompt)
        logger.debug("[ASK] LLM raw response: {}", preview(raw, 100))

        trace.append(Stage.PARSE)
        answer, outcome, attempts = self._parse(prompt, raw, trace)
        if self.verify_references:
            answer = Answer(
                text=answer.text, references=grounded_references(answer.references, chunks)
            )

        resolution = Resolution(
            repository_id=repository_id,
            question=question,
            answer=answer,
            chunks=chunks,
            outcome=outcome,
            attempts=attempts,
            trace=trace,
        )

        trace.append(Stage.PERSIST)
        resolution.persisted = self._persist(resolution)

        trace.append(Stage.RESPOND)
        return resolution

    def _validate(self, repository_id: Any, question: Any) -> None:
        if not repository_id or not isinstance(repository_id, str):
            logger.warning("[ASK] Missing or invalid repositoryId {!r}", repository_id)
            raise ValidationError("Missing or invalid repositoryId")
        if not isinstance(question, str) or len(question.strip()) < self.min_question_length:
            logger.warning("[ASK] Question too short or missing {!r}", question)
            raise ValidationError("Question too short or missing")

    def _embed(self, question: str) -> NDArray[np.float32]:
        try:
            return self.embedder.embed_query(question)
        except EmbeddingError as e:
            logger.error("[ASK] Embedding failed: {}", e)
            raise
        except Exception as e:
            logger.error("[ASK] Embedding failed: {}", e)
            raise EmbeddingError(f"Embedding failed: {e}") from e

    def _generate(self, prompt: str) -> str:
        """Calls the model with its own deadline; a timed-out call is abandoned.

        Each call gets a dedicated single-worker pool, so concurrent resolutions
        never wait behind each other and an abandoned call only holds its own thread.
        """
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="generate")
        future = pool.submit(self.generate, prompt)
        try:
            raw = future.result(timeout=self.timeout)
        except FuturesTimeoutError as e:
            logger.error("[ASK] LLM timed out after {}s", self.timeout)
            raise GenerationError(f"LLM timed out after {self.timeout}s") from e
        except GenerationError as e:
            logger.error("[ASK] LLM error: {}", e)
            raise
        except Exception as e:
            logger.error("[ASK] LLM error: {}", e)
            raise GenerationError(f"LLM error: {e}") from e
        finally:
            pool.shutdown(wait=False)
        return raw if isinstance(raw, str) else ""

    def _parse(
        self, prompt: str, raw: str, trace: list[Stage]
    ) -> tuple[Answer, ParseOutcome, int]:
        attempts = 1
        payload, strategy = parse_model_output(raw)
        if payload is not None and strategy is not None:
            return to_answer(payload), ParseOutcome(strategy.value), attempts

        for _ in range(self.retry_policy.max_retries):
            attempts += 1
            trace.append(Stage.RETRY)
            logger.warning("[ASK] Unparseable model output, retrying with strict prompt")
            try:
                retry_raw = self._generate(self.retry_policy.apply(prompt))
            except GenerationError as e:
                logger.warning("[ASK] Retry generation failed: {}", e)
                break

            payload, strategy = parse_model_output(retry_raw)
            if payload is not None and strategy is not None:
                return to_answer(payload), ParseOutcome(f"retry_{strategy.value}"), attempts

        logger.warning("[ASK] Model returned invalid format after fallback")
        return Answer(text=FALLBACK_ANSWER_TEXT, references=[]), ParseOutcome.FALLBACK, attempts

    def _persist(self, resolution: Resolution) -> bool:
        """Best-effort history write; failures are logged and never raised."""
        if self.history is None:
            return False
        try:
            self.history.record_answer(
                resolution.repository_id,
                resolution.question,
                resolution.answer,
                resolution.chunks,
            )
        except Exception as e:
            logger.warning("[ASK] Failed to save QnA: {}", e)
            return False
        return True
