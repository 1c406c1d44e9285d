import re
from collections.abc import Iterator

from codebase_qa.core.models import Chunk, Document

_LINE_BREAK = re.compile(r"\r?\n")

SOURCE_EXTENSIONS = [
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".py",
    ".java",
    ".go",
    ".rb",
    ".cpp",
    ".c",
    ".md",
    ".json",
    ".yml",
    ".yaml",
    ".sql",
    ".sh",
]


def chunk_file_content(
    file_path: str, content: str, min_lines: int = 300, max_lines: int = 500
) -> list[Chunk]:
    """Splits file content into contiguous line windows, preserving line numbers.

    Windows hold at most `max_lines` lines; a window that would stop short of
    `min_lines` before the end of the file is widened to `min_lines`. Windows
    whose text is blank are skipped. Line numbers are 1-indexed and inclusive.
    """
    if min_lines < 1 or max_lines < 1:
        raise ValueError("min_lines and max_lines must be positive")

    lines = _LINE_BREAK.split(content)
    chunks: list[Chunk] = []
    start = 0
    while start < len(lines):
        end = min(start + max_lines, len(lines))
        if end - start < min_lines and end != len(lines):
            end = min(start + min_lines, len(lines))

        window = lines[start:end]
        if "".join(window).strip():
            chunks.append(
                Chunk(
                    file_path=file_path,
                    start_line=start + 1,
                    end_line=end,
                    content="\n".join(window),
                )
            )
        start = end
    return chunks


class LineChunker:
    """
    Deterministic line-window chunker for source files.
    Identical content always yields identical chunk boundaries.
    Implements the IChunker protocol.
    """

    def __init__(self, min_lines: int = 300, max_lines: int = 500) -> None:
        self.min_lines = min_lines
        self.max_lines = max_lines

    @property
    def supported_extensions(self) -> list[str]:
        return list(SOURCE_EXTENSIONS)

    def process(self, document: Document) -> Iterator[Chunk]:
        """Yields chunks from a raw document."""
        yield from chunk_file_content(
            document.filepath, document.content, self.min_lines, self.max_lines
        )
