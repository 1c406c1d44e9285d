import os
from pathlib import Path

from codebase_qa.infrastructure.chunking.lines import SOURCE_EXTENSIONS

IGNORED_DIRS = {
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "coverage",
    ".out",
    ".target",
    "bin",
    "obj",
    "venv",
    ".env",
    ".idea",
    ".vscode",
    "__pycache__",
    ".mypy_cache",
    ".gradle",
}

BINARY_SNIFF_BYTES = 8000


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def is_binary(path: Path) -> bool:
    """A NUL byte near the start of a file marks it as binary."""
    with open(path, "rb") as f:
        return b"\x00" in f.read(BINARY_SNIFF_BYTES)


def get_valid_files(
    root_dir: str | Path,
    extensions: list[str] | None = None,
    max_file_bytes: int = 1024 * 1024,
) -> list[Path]:
    """Walks a repository checkout and returns indexable source files, sorted."""
    allowed = set(extensions if extensions is not None else SOURCE_EXTENSIONS)
    valid: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root_dir):
        # Prune in place so os.walk never descends into ignored directories
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS and not is_hidden(d))

        for filename in sorted(filenames):
            if is_hidden(filename):
                continue
            path = Path(dirpath, filename)
            if path.suffix not in allowed or path.is_symlink():
                continue
            if path.stat().st_size > max_file_bytes:
                continue
            if is_binary(path):
                continue
            valid.append(path)

    return valid
