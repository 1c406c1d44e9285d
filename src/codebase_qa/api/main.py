import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from starlette.datastructures import UploadFile

from codebase_qa.api.state import _services
from codebase_qa.cli import _build_dependencies, _build_services
from codebase_qa.core.errors import CodebaseQAError, NotFoundError, ValidationError
from codebase_qa.infrastructure.sources.archives import MAX_ZIP_BYTES


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown events for the API."""
    logger.info("[Startup] Initializing embedder, LanceDB store and LLM client...")

    try:
        _services.update(_build_services(_build_dependencies())._asdict())
        logger.info("[Startup] API is ready to accept concurrent requests.")
    except Exception as e:
        logger.error("[Startup] Failed to initialize services: {}", e)
        raise

    yield

    logger.info("[Shutdown] Cleaning up resources...")
    _services.clear()


app = FastAPI(
    title="codebase-qa API",
    description="Ask questions about an indexed repository and get answers citing file lines.",
    version="0.1.0",
    lifespan=lifespan,
)


class AskRequest(BaseModel):
    """Schema for a question about one repository. Field checks happen in the resolver."""

    model_config = ConfigDict(populate_by_name=True)

    repository_id: Any = Field(None, alias="repositoryId")
    question: Any = None


class RepositoryRequest(BaseModel):
    """Schema for requests addressing one repository."""

    model_config = ConfigDict(populate_by_name=True)

    repository_id: Any = Field(None, alias="repositoryId")


class HistoryDeleteRequest(BaseModel):
    """Schema for deleting one history record."""

    id: Any = None


def _service(name: str) -> Any:
    service = _services.get(name)
    if service is None:
        raise HTTPException(status_code=503, detail=f"The {name} service is not initialized.")
    return service


@app.exception_handler(CodebaseQAError)
async def handle_domain_error(request: Request, exc: CodebaseQAError) -> JSONResponse:
    body: dict[str, Any] = {"error": exc.client_message}
    if isinstance(exc, NotFoundError):
        body["retrieved_chunks"] = []
    if exc.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unexpected error in {} {}", request.method, request.url.path)
    return JSONResponse({"error": "Unexpected error"}, status_code=500)


@app.post("/ask")
async def ask(request: AskRequest) -> dict[str, Any]:
    """Answers a question from the repository's most similar code chunks."""
    resolver = _service("resolver")
    resolution = await asyncio.to_thread(
        resolver.resolve, request.repository_id, request.question
    )
    return resolution.to_response()


@app.post("/index")
async def index_repository(request: Request) -> dict[str, Any]:
    """Indexes a ZIP upload (multipart `file`) or a public GitHub repository (`githubUrl`)."""
    ingestion = _service("ingestion")
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise ValidationError("Missing file field in form-data")
        filename = upload.filename or ""
        if not filename.endswith(".zip"):
            raise ValidationError("Uploaded file must be a .zip archive")
        if upload.size is not None and upload.size > MAX_ZIP_BYTES:
            raise ValidationError("Uploaded ZIP exceeds 100MB limit")
        report = await asyncio.to_thread(ingestion.index_zip, filename, upload.file)

    elif content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON body") from e
        github_url = body.get("githubUrl") if isinstance(body, dict) else None
        if not github_url or not isinstance(github_url, str):
            raise ValidationError("Missing githubUrl in request body")
        report = await asyncio.to_thread(ingestion.index_github, github_url)

    else:
        raise ValidationError(
            "Invalid request. Use multipart/form-data for ZIP or JSON for GitHub URL."
        )

    return report.model_dump()


@app.post("/history")
async def list_history(request: RepositoryRequest) -> dict[str, Any]:
    """Returns up to the last 10 Q&A records of a repository, newest first."""
    history = _service("history")
    if not request.repository_id or not isinstance(request.repository_id, str):
        raise ValidationError("Missing repositoryId")
    records = await asyncio.to_thread(history.list_recent, request.repository_id)
    return {"history": [record.to_response() for record in records]}


@app.delete("/history")
async def delete_history(request: HistoryDeleteRequest) -> dict[str, bool]:
    """Deletes one Q&A record."""
    history = _service("history")
    if not request.id or not isinstance(request.id, str):
        raise ValidationError("Missing id")
    await asyncio.to_thread(history.delete, request.id)
    return {"success": True}


@app.delete("/repository")
async def delete_repository(request: RepositoryRequest) -> dict[str, bool]:
    """Deletes a repository together with its chunks and history."""
    ingestion = _service("ingestion")
    await asyncio.to_thread(ingestion.delete_repository, request.repository_id)
    return {"success": True}


@app.get("/status")
async def status() -> JSONResponse:
    """Dependency health: 200 when every check passes, 500 when degraded."""
    report = await _service("status").report()
    return JSONResponse(report, status_code=200 if report["overall"] == "healthy" else 500)
