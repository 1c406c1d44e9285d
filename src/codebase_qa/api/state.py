"""Process-wide service instances shared by the HTTP API and the MCP server."""

from typing import Any

# Keys: ingestion, retriever, resolver, history, status
_services: dict[str, Any] = {}
