"""Integration tests for FastAPI endpoints."""

import io
import json
import zipfile
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
from fastapi.testclient import TestClient

from codebase_qa.core.errors import EmbeddingError, GenerationError, NotFoundError, ValidationError
from codebase_qa.core.models import Answer, IndexReport, QnARecord, Reference
from codebase_qa.services.answer import AnswerResolver, ParseOutcome, Resolution


@contextmanager
def mocked_client(raise_server_exceptions=True, **overrides):
    """Yields (client, services) with every service mocked unless overridden."""
    services = {
        "ingestion": MagicMock(),
        "retriever": MagicMock(),
        "resolver": MagicMock(),
        "history": MagicMock(),
        "status": MagicMock(),
    }
    services.update(overrides)

    with patch("codebase_qa.api.main._services", services):
        from codebase_qa.api.main import app

        yield TestClient(app, raise_server_exceptions=raise_server_exceptions), services


def resolver_with(model_outputs, chunks):
    """A real resolver over fake collaborators, replaying canned model outputs."""
    embedder = MagicMock()
    embedder.embed_query.return_value = np.ones(4, dtype=np.float32)
    retriever = MagicMock()
    retriever.retrieve_top_k.return_value = chunks
    outputs = list(model_outputs)
    return AnswerResolver(
        embedder=embedder,
        retriever=retriever,
        generate=lambda prompt: outputs.pop(0),
        history=MagicMock(),
    )


class TestAskEndpoint:
    """Tests for POST /ask."""

    def test_success(self, retrieved_factory):
        chunk = retrieved_factory(file_path="src/auth.py", start_line=1, lines=3)
        output = json.dumps(
            {
                "answer": "See login()",
                "references": [
                    {"file": "src/auth.py", "start_line": 1, "end_line": 3, "reason": "login"}
                ],
            }
        )
        resolver = resolver_with([output], [chunk])

        with mocked_client(resolver=resolver) as (client, _):
            response = client.post(
                "/ask", json={"repositoryId": "repo-1", "question": "How does login work?"}
            )

        assert response.status_code == 200
        assert response.json() == {
            "answer": "See login()",
            "references": [{"file": "src/auth.py", "lines": [1, 3], "explanation": "login"}],
            "retrieved_chunks": [
                {
                    "file": "src/auth.py",
                    "start_line": 1,
                    "end_line": 3,
                    "content": "line 1\nline 2\nline 3",
                }
            ],
        }

    def test_unparseable_twice_is_fallback_not_error(self, retrieved_factory):
        resolver = resolver_with(["no json here", "still none"], [retrieved_factory()])

        with mocked_client(resolver=resolver) as (client, _):
            response = client.post(
                "/ask", json={"repositoryId": "repo-1", "question": "How does login work?"}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Model returned invalid format."
        assert body["references"] == []
        assert len(body["retrieved_chunks"]) == 1

    def test_short_question(self):
        resolver = resolver_with([], [])
        with mocked_client(resolver=resolver) as (client, _):
            response = client.post("/ask", json={"repositoryId": "repo-1", "question": "hi"})

        assert response.status_code == 400
        assert response.json() == {"error": "Question too short or missing"}

    def test_missing_repository(self):
        resolver = resolver_with([], [])
        with mocked_client(resolver=resolver) as (client, _):
            response = client.post("/ask", json={"question": "How does login work?"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing or invalid repositoryId"}

    def test_no_relevant_code(self):
        with mocked_client() as (client, services):
            services["resolver"].resolve.side_effect = NotFoundError("No relevant code found")
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})

        assert response.status_code == 404
        assert response.json() == {"error": "No relevant code found", "retrieved_chunks": []}

    def test_llm_failure(self):
        with mocked_client() as (client, services):
            services["resolver"].resolve.side_effect = GenerationError("LLM timed out after 30s")
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})

        assert response.status_code == 502
        assert response.json() == {"error": "LLM timeout or error"}

    def test_embedding_failure(self):
        with mocked_client() as (client, services):
            services["resolver"].resolve.side_effect = EmbeddingError("dimension 3 != 4")
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})

        assert response.status_code == 500
        assert response.json() == {"error": "Embedding failed"}

    def test_unexpected_error(self):
        with mocked_client(raise_server_exceptions=False) as (client, services):
            services["resolver"].resolve.side_effect = KeyError("boom")
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})

        assert response.status_code == 500
        assert response.json() == {"error": "Unexpected error"}

    def test_malformed_body(self):
        with mocked_client() as (client, _):
            response = client.post(
                "/ask", content="{not json", headers={"content-type": "application/json"}
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}

    def test_service_not_initialized(self):
        with mocked_client(resolver=None) as (client, _):
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})
        assert response.status_code == 503

    def test_mocked_resolution_passthrough(self, retrieved_factory):
        with mocked_client() as (client, services):
            services["resolver"].resolve.return_value = Resolution(
                repository_id="r",
                question="what?",
                answer=Answer(text="a", references=[Reference(file="f.py", lines=(1, 1))]),
                chunks=[retrieved_factory()],
                outcome=ParseOutcome.DIRECT,
                attempts=1,
            )
            response = client.post("/ask", json={"repositoryId": "r", "question": "what?"})

        services["resolver"].resolve.assert_called_once_with("r", "what?")
        assert response.json()["references"] == [
            {"file": "f.py", "lines": [1, 1], "explanation": ""}
        ]


class TestIndexEndpoint:
    """Tests for POST /index."""

    REPORT = IndexReport(repository_id="repo-1", files_indexed=2, chunks_created=3)

    def _zip(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("main.py", "print('hi')\n")
        return buffer.getvalue()

    def test_zip_upload(self):
        with mocked_client() as (client, services):
            services["ingestion"].index_zip.return_value = self.REPORT
            response = client.post(
                "/index", files={"file": ("repo.zip", self._zip(), "application/zip")}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["repository_id"] == "repo-1"
        assert body["chunks_created"] == 3
        assert body["status"] == "completed"
        assert services["ingestion"].index_zip.call_args.args[0] == "repo.zip"

    def test_rejects_non_zip_upload(self):
        with mocked_client() as (client, services):
            response = client.post("/index", files={"file": ("repo.tar", b"data", "text/plain")})

        assert response.status_code == 400
        services["ingestion"].index_zip.assert_not_called()

    def test_missing_file_field(self):
        with mocked_client() as (client, _):
            response = client.post("/index", files={"other": ("repo.zip", b"PK", "application/zip")})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing file field in form-data"}

    def test_github_url(self):
        with mocked_client() as (client, services):
            services["ingestion"].index_github.return_value = self.REPORT
            response = client.post("/index", json={"githubUrl": "https://github.com/octo/demo"})

        assert response.status_code == 200
        services["ingestion"].index_github.assert_called_once_with("https://github.com/octo/demo")

    def test_invalid_github_url(self):
        with mocked_client() as (client, services):
            services["ingestion"].index_github.side_effect = ValidationError(
                "Invalid GitHub repository URL. Must be in format: https://github.com/owner/repo"
            )
            response = client.post("/index", json={"githubUrl": "https://gitlab.com/a/b"})

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid GitHub repository URL")

    def test_missing_github_url(self):
        with mocked_client() as (client, _):
            response = client.post("/index", json={"url": "x"})
        assert response.status_code == 400

    def test_unsupported_content_type(self):
        with mocked_client() as (client, _):
            response = client.post("/index", content="x", headers={"content-type": "text/plain"})
        assert response.status_code == 400
        assert "multipart/form-data" in response.json()["error"]


class TestHistoryEndpoints:
    """Tests for the history endpoints."""

    def test_list(self):
        with mocked_client() as (client, services):
            services["history"].list_recent.return_value = [
                QnARecord(id="q1", repository_id="r", question="q?", answer="a")
            ]
            response = client.post("/history", json={"repositoryId": "r"})

        assert response.status_code == 200
        history = response.json()["history"]
        assert [h["id"] for h in history] == ["q1"]
        assert set(history[0]) == {"id", "question", "answer", "references", "snippets", "created_at"}

    def test_list_requires_repository(self):
        with mocked_client() as (client, _):
            response = client.post("/history", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing repositoryId"}

    def test_delete(self):
        with mocked_client() as (client, services):
            response = client.request("DELETE", "/history", json={"id": "q1"})

        assert response.json() == {"success": True}
        services["history"].delete.assert_called_once_with("q1")

    def test_delete_requires_id(self):
        with mocked_client() as (client, _):
            response = client.request("DELETE", "/history", json={})
        assert response.status_code == 400


class TestRepositoryEndpoint:
    def test_delete(self):
        with mocked_client() as (client, services):
            response = client.request("DELETE", "/repository", json={"repositoryId": "r"})

        assert response.status_code == 200
        assert response.json() == {"success": True}
        services["ingestion"].delete_repository.assert_called_once_with("r")


class TestStatusEndpoint:
    """Tests for GET /status."""

    def _report(self, overall):
        return {
            "database": {"status": "healthy", "error": None},
            "vector": {"status": "healthy", "error": None},
            "llm": {"status": "healthy" if overall == "healthy" else "unhealthy", "error": None},
            "overall": overall,
            "timestamp": "2024-01-01T00:00:00+00:00",
        }

    def test_healthy(self):
        with mocked_client() as (client, services):
            services["status"].report = AsyncMock(return_value=self._report("healthy"))
            response = client.get("/status")
        assert response.status_code == 200
        assert response.json()["overall"] == "healthy"

    def test_degraded(self):
        with mocked_client() as (client, services):
            services["status"].report = AsyncMock(return_value=self._report("degraded"))
            response = client.get("/status")
        assert response.status_code == 500
        assert response.json()["llm"]["status"] == "unhealthy"
