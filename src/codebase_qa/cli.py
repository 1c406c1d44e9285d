import os
from typing import Annotated, Any, NamedTuple, NoReturn

import typer

from codebase_qa.config import settings
from codebase_qa.core.errors import CodebaseQAError
from codebase_qa.infrastructure.chunking.lines import LineChunker
from codebase_qa.infrastructure.embeddings.sentence_engine import SentenceTransformerEmbedder
from codebase_qa.infrastructure.llm.openrouter import OpenRouterClient
from codebase_qa.infrastructure.storage.lancedb_engine import LanceDBStore
from codebase_qa.services.answer import AnswerResolver
from codebase_qa.services.history import HistoryService
from codebase_qa.services.ingestion import IngestionService
from codebase_qa.services.retrieval import Retriever
from codebase_qa.services.status import StatusService

app = typer.Typer(
    help="codebase-qa: Ask questions about a code repository, answered with cited snippets",
    no_args_is_help=True,
)


class AppDeps(NamedTuple):
    """Container for resolved adapter dependencies."""

    embedder: Any
    store: Any
    chunker: Any
    generator: Any


class AppServices(NamedTuple):
    """Container for the wired application services."""

    ingestion: IngestionService
    retriever: Retriever
    resolver: AnswerResolver
    history: HistoryService
    status: StatusService


def version_callback(value: bool) -> None:
    if value:
        from codebase_qa import __version__

        typer.echo(f"codebase-qa version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config_file: Annotated[
        str, typer.Option("--config-file", "-c", help="Path to config.yaml file.")
    ] = "config.yaml",
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show the version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """codebase-qa: Retrieval-augmented Q&A over indexed repositories."""
    from codebase_qa.config import Settings, load_settings
    from codebase_qa.logger import configure_logger

    # Export to environment so uvicorn subprocesses (in API mode) inherit it
    os.environ["CQA_CONFIG_FILE"] = config_file

    # Dynamically update the current process global settings singleton
    new_settings = load_settings(config_file)
    for name in Settings.model_fields:
        setattr(settings, name, getattr(new_settings, name))

    configure_logger(settings.log_level, settings.log_serialize)


def _build_dependencies() -> AppDeps:
    """Dependency Injection Factory driven by config.yaml configuration."""
    embedding = settings.embedding

    # Model weights are loaded lazily on the first embedding call
    embedder = SentenceTransformerEmbedder(
        model_name=embedding.model_name,
        dimension=embedding.vector_dimension,
        passage_prefix=embedding.passage_prefix,
        query_prefix=embedding.query_prefix,
        concurrency=embedding.concurrency,
    )

    chunker = LineChunker(
        min_lines=settings.chunking.min_lines, max_lines=settings.chunking.max_lines
    )

    try:
        store = LanceDBStore(db_path=settings.db_path, vector_dimension=embedding.vector_dimension)
    except ValueError as e:
        if "Schema mismatch" in str(e):
            typer.echo(f"\n[!] Database Error: {e}", err=True)
            raise typer.Exit(code=1) from e
        raise

    generator = OpenRouterClient(settings.llm)

    return AppDeps(embedder=embedder, store=store, chunker=chunker, generator=generator)


def _build_services(deps: AppDeps) -> AppServices:
    """Wires the services around one set of adapters."""
    retriever = Retriever(deps.store, deps.embedder)
    history = HistoryService(deps.store, limit=settings.history_limit)
    resolver = AnswerResolver(
        embedder=deps.embedder,
        retriever=retriever,
        generate=deps.generator.generate,
        history=history,
        top_k=settings.top_k,
        timeout=settings.llm.timeout,
        min_question_length=settings.min_question_length,
        verify_references=settings.verify_references,
    )
    ingestion = IngestionService(
        chunker=deps.chunker,
        embedder=deps.embedder,
        chunk_store=deps.store,
        repository_store=deps.store,
        concurrency=settings.embedding.concurrency,
        max_file_bytes=settings.chunking.max_file_bytes,
    )
    status = StatusService(
        repository_store=deps.store,
        chunk_store=deps.store,
        generator=deps.generator,
        vector_dimension=settings.embedding.vector_dimension,
    )
    return AppServices(
        ingestion=ingestion,
        retriever=retriever,
        resolver=resolver,
        history=history,
        status=status,
    )


def _fail(error: CodebaseQAError) -> NoReturn:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1)


@app.command()
def ingest(
    target: Annotated[
        str, typer.Argument(help="Directory, .zip archive, or https://github.com/owner/repo URL.")
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Repository name (directories only)."),
    ] = None,
) -> None:
    """Indexes a repository into the vector store."""
    services = _build_services(_build_dependencies())
    try:
        if name and os.path.isdir(target):
            report = services.ingestion.index_directory(target, name=name)
        else:
            report = services.ingestion.index_path(target)
    except CodebaseQAError as e:
        _fail(e)

    typer.echo(f"Repository ID: {report.repository_id}")
    typer.echo(f"Files indexed: {report.files_indexed}")
    typer.echo(f"Chunks created: {report.chunks_created}")


@app.command()
def repos() -> None:
    """Lists indexed repositories, newest first."""
    services = _build_services(_build_dependencies())
    repositories = services.ingestion.list_repositories()
    if not repositories:
        typer.echo("No repositories indexed.")
        return
    for repository in repositories:
        typer.echo(f"{repository.id}  {repository.name}  {repository.created_at:%Y-%m-%d %H:%M}")


@app.command()
def search(
    repository_id: Annotated[str, typer.Argument(help="Repository to search.")],
    query: Annotated[str, typer.Argument(help="Text to search for within the indexed code.")],
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum number of chunks to return.")
    ] = 5,
) -> None:
    """Shows the chunks most similar to a query, without asking the model."""
    services = _build_services(_build_dependencies())
    try:
        results = services.retriever.search(repository_id, query, k=limit)
    except CodebaseQAError as e:
        _fail(e)
    services.retriever.print_results(results)


@app.command()
def ask(
    repository_id: Annotated[str, typer.Argument(help="Repository to ask about.")],
    question: Annotated[str, typer.Argument(help="Natural-language question.")],
) -> None:
    """Answers a question using retrieved code snippets."""
    services = _build_services(_build_dependencies())
    try:
        resolution = services.resolver.resolve(repository_id, question)
    except CodebaseQAError as e:
        _fail(e)

    typer.echo(resolution.answer.text)
    if resolution.answer.references:
        typer.echo("\nReferences:")
        for ref in resolution.answer.references:
            suffix = f" - {ref.explanation}" if ref.explanation else ""
            typer.echo(f"  {ref.file}:{ref.lines[0]}-{ref.lines[1]}{suffix}")


@app.command()
def history(
    repository_id: Annotated[str, typer.Argument(help="Repository whose history to show.")],
) -> None:
    """Shows the most recent questions asked about a repository."""
    services = _build_services(_build_dependencies())
    try:
        records = services.history.list_recent(repository_id)
    except CodebaseQAError as e:
        _fail(e)
    if not records:
        typer.echo("No questions asked yet.")
        return
    for record in records:
        typer.echo(f"[{record.created_at:%Y-%m-%d %H:%M}] {record.id}")
        typer.echo(f"  Q: {record.question}")
        typer.echo(f"  A: {record.answer}")


@app.command("delete-repo")
def delete_repo(
    repository_id: Annotated[str, typer.Argument(help="Repository to delete.")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Bypass confirmation prompt."),
    ] = False,
) -> None:
    """Deletes a repository with all of its chunks and history."""
    if not force:
        typer.confirm(
            f"Are you sure you want to delete repository '{repository_id}'? "
            "This will erase its chunks and history.",
            abort=True,
        )
    services = _build_services(_build_dependencies())
    try:
        services.ingestion.delete_repository(repository_id)
    except CodebaseQAError as e:
        _fail(e)
    typer.echo(f"Deleted repository {repository_id}")


@app.command()
def serve(
    host: Annotated[
        str, typer.Option("--host", "-h", help="Host to bind the API server to.")
    ] = "127.0.0.1",
    port: Annotated[
        int, typer.Option("--port", "-p", help="Port to bind the API server to.")
    ] = 8000,
    reload: Annotated[
        bool, typer.Option("--reload", help="Enable auto-reload for development.")
    ] = False,
) -> None:
    """Starts the asynchronous FastAPI server."""
    import uvicorn

    typer.echo(f"Starting codebase-qa API server at http://{host}:{port}...")
    uvicorn.run("codebase_qa.api.main:app", host=host, port=port, reload=reload)


@app.command()
def mcp() -> None:
    """Starts the FastMCP standard input/output (stdio) server for integrations."""
    from loguru import logger

    from codebase_qa.api.mcp_server import mcp as mcp_server
    from codebase_qa.api.state import _services

    logger.info("[MCP Startup] Initializing embedder, LanceDB store and LLM client...")
    try:
        _services.update(_build_services(_build_dependencies())._asdict())
    except Exception as e:
        logger.error("[MCP Startup] Failed to initialize services: {}", e)
        raise

    mcp_server.run()


if __name__ == "__main__":
    app()
