"""
Filesystem-backed document source: a directory of Markdown files.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote

from .exceptions import DocumentWriteError
from .models import Document

logger = logging.getLogger(__name__)


class Vault:
    """A vault rooted at a directory. Paths handed out and accepted are
    vault-relative POSIX paths."""

    def __init__(self, root: Union[str, Path], vault_name: Optional[str] = None):
        self.root = Path(root).resolve()
        self.vault_name = vault_name or self.root.name
        self._by_name: Optional[Dict[str, Path]] = None

    def _is_hidden(self, path: Path) -> bool:
        return any(
            part.startswith(".") for part in path.relative_to(self.root).parts
        )

    def list_documents(self) -> List[Document]:
        documents = []
        for file_path in sorted(self.root.rglob("*.md")):
            if not file_path.is_file() or self._is_hidden(file_path):
                continue
            relative = file_path.relative_to(self.root)
            folder = relative.parent.as_posix()
            documents.append(
                Document(
                    path=relative.as_posix(),
                    text=self.read_text(relative.as_posix()),
                    folder_path="" if folder == "." else folder,
                )
            )
        logger.info(f"Found {len(documents)} documents in {self.root}")
        return documents

    def read_text(self, path: str) -> str:
        # newline="" keeps line endings byte-identical on rewrite
        with open(self.root / path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_text(self, path: str, text: str) -> None:
        try:
            with open(self.root / path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
        except OSError as e:
            raise DocumentWriteError(
                f"Could not write {path}: {e}", original_exception=e
            ) from e

    def resolve_media(self, link: str, from_path: str) -> Optional[Path]:
        """
        Find the file a media link refers to.

        Links are tried relative to the linking document, then relative to
        the vault root, then as a bare file name anywhere in the vault.
        """
        folder = (self.root / from_path).parent
        for candidate in (folder / link, self.root / link):
            if candidate.is_file():
                return candidate.resolve()
        return self._files_by_name().get(Path(link).name)

    def _files_by_name(self) -> Dict[str, Path]:
        if self._by_name is None:
            self._by_name = {}
            for file_path in sorted(self.root.rglob("*")):
                if file_path.is_file() and not self._is_hidden(file_path):
                    self._by_name.setdefault(file_path.name, file_path)
        return self._by_name

    def url_for(self, path: str) -> str:
        return (
            f"obsidian://open?vault={quote(self.vault_name, safe='')}"
            f"&file={quote(path, safe='')}"
        )
