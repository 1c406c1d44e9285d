import re
import zipfile
from pathlib import Path
from typing import BinaryIO

import requests
from loguru import logger

from codebase_qa.core.errors import ValidationError

MAX_ZIP_BYTES = 100 * 1024 * 1024

_GITHUB_URL = re.compile(r"^https://github\.com/([\w.-]+)/([\w.-]+)/?$")


def parse_github_url(url: str) -> tuple[str, str]:
    """Returns (owner, repo) for a https://github.com/owner/repo URL."""
    match = _GITHUB_URL.match(url.strip()) if isinstance(url, str) else None
    if not match:
        raise ValidationError(
            "Invalid GitHub repository URL. Must be in format: https://github.com/owner/repo"
        )
    return match.group(1), match.group(2)


def extract_zip(archive: str | Path | BinaryIO, dest_dir: Path) -> Path:
    """Extracts an archive into dest_dir, refusing members that escape it."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()
    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                target = (root / member.filename).resolve()
                if not target.is_relative_to(root):
                    raise ValidationError(f"Archive member escapes extraction root: {member.filename}")
            zf.extractall(root)
    except zipfile.BadZipFile as e:
        raise ValidationError(f"Uploaded file is not a valid ZIP archive: {e}") from e
    return root


def download_github_repo(
    owner: str, repo: str, dest_dir: Path, timeout: float = 60.0
) -> Path:
    """Downloads the default-branch zipball of a public repository and extracts it."""
    url = f"https://api.github.com/repos/{owner}/{repo}/zipball"
    zip_path = dest_dir / f"{repo}.zip"
    logger.info("Downloading {}", url)

    with requests.get(url, stream=True, timeout=timeout) as response:
        if not response.ok:
            raise ValidationError(f"Failed to download repo ZIP: {response.status_code}")
        with open(zip_path, "wb") as f:
            for block in response.iter_content(chunk_size=1024 * 1024):
                f.write(block)

    extracted = extract_zip(zip_path, dest_dir / "extracted")
    zip_path.unlink()

    # Zipballs wrap the tree in a single "owner-repo-sha" directory
    entries = list(extracted.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return extracted
