"""Error taxonomy for question resolution and its collaborators.

Each error carries the HTTP status it is surfaced with and, for upstream
failures, a fixed message that hides internal detail from clients. Parse
failures are not represented here: the resolver always turns them into a
fallback answer.
"""


class CodebaseQAError(Exception):
    status_code = 500
    public_message: str | None = None

    @property
    def client_message(self) -> str:
        return self.public_message or str(self)


class ValidationError(CodebaseQAError):
    """Client input was missing or malformed."""

    status_code = 400


class NotFoundError(CodebaseQAError):
    """No indexed code matched the question."""

    status_code = 404


class EmbeddingError(CodebaseQAError):
    """The embedding model failed or produced a malformed vector."""

    public_message = "Embedding failed"


class RetrievalError(CodebaseQAError):
    """The similarity search collaborator failed."""

    public_message = "Vector retrieval failed"


class StorageError(CodebaseQAError):
    """Reading or writing repositories or history failed."""


class GenerationError(CodebaseQAError):
    """The language model was unreachable, failed, or timed out."""

    status_code = 502
    public_message = "LLM timeout or error"
