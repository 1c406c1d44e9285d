import asyncio

from mcp.server.fastmcp import FastMCP

from codebase_qa.api.state import _services
from codebase_qa.core.errors import CodebaseQAError

# For SSE we do not use the lifespan here, it is driven by main.py
mcp = FastMCP("codebase-qa")


@mcp.tool()
async def ask_codebase(repository_id: str, question: str) -> str:
    """
    Answer a question about an indexed repository, citing file line ranges.

    Args:
        repository_id: The id returned when the repository was indexed.
        question: The natural-language question about the code.
    """
    resolver = _services.get("resolver")
    if not resolver:
        return "Error: Answer service is not initialized."

    try:
        resolution = await asyncio.to_thread(resolver.resolve, repository_id, question)
    except CodebaseQAError as e:
        return f"Question could not be answered: {e.client_message}"

    output = [resolution.answer.text]
    if resolution.answer.references:
        output.append("\nReferences:")
        for ref in resolution.answer.references:
            line = f"- {ref.file} ({ref.lines[0]}-{ref.lines[1]})"
            if ref.explanation:
                line += f": {ref.explanation}"
            output.append(line)

    return "\n".join(output)


@mcp.tool()
async def recent_questions(repository_id: str) -> str:
    """
    List the most recent questions asked about an indexed repository.

    Args:
        repository_id: The id returned when the repository was indexed.
    """
    history = _services.get("history")
    if not history:
        return "Error: History service is not initialized."

    try:
        records = await asyncio.to_thread(history.list_recent, repository_id)
    except CodebaseQAError as e:
        return f"History lookup failed: {e.client_message}"

    if not records:
        return f"No questions recorded for repository '{repository_id}'"

    output = [f"Found {len(records)} questions for '{repository_id}':\n"]
    for record in records:
        output.append(f"--- {record.created_at:%Y-%m-%d %H:%M} ---\nQ: {record.question}\nA: {record.answer}\n")
    return "\n".join(output)
