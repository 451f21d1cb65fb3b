"""
Document access for study folders.

A study folder holds markdown documents. Each document may have a sidecar
card file next to it and the folder may hold an archive of session
transcripts; both are written through this loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger


@dataclass(frozen=True)
class DocumentRef:
    """A markdown document inside a study folder."""

    name: str
    path: Path


class DocumentLoader:
    """Read and list markdown documents."""

    def __init__(self, patterns: list[str] | None = None):
        """
        Initialize loader.

        Args:
            patterns: Glob patterns for documents. Defaults to ["*.md"]
        """
        self.patterns = patterns or ["*.md"]

    def read_text(self, path: Path | str) -> str:
        """Read a document as UTF-8 text."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {path}")
        return path.read_text(encoding="utf-8")

    def list_documents(self, folder: Path | str) -> list[DocumentRef]:
        """
        List documents directly inside a folder.

        Hidden files are skipped. Results are sorted by name.
        """
        folder = Path(folder)
        if not folder.is_dir():
            logger.warning(f"Study folder not found: {folder}")
            return []

        found: dict[Path, DocumentRef] = {}
        for pattern in self.patterns:
            for file_path in folder.glob(pattern):
                if file_path.name.startswith(".") or not file_path.is_file():
                    continue
                found[file_path] = DocumentRef(name=file_path.name, path=file_path)

        return sorted(found.values(), key=lambda ref: ref.name.lower())

    def write_text(self, path: Path | str, content: str) -> Path:
        """Write text, creating parent folders as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info(f"Wrote {path}")
        return path
