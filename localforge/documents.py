"""
Document collaborators used by the suggestion applicator.

``Document`` and ``DocumentProvider`` are the protocols an editor host
implements. ``TextDocument``, ``FileDocument`` and ``ProjectDocuments`` are the
built-in implementations used by the terminal client.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Union, runtime_checkable

from .exceptions import TargetNotFound, TextNotFound

logger = logging.getLogger("localforge.documents")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Document(Protocol):
    identifier: str

    def full_text(self) -> str: ...

    def replace(self, span: tuple[int, int], text: str) -> None: ...


@runtime_checkable
class DocumentProvider(Protocol):
    def find(self, identifier: str) -> Document | None: ...

    def open(self, identifier: str) -> Document: ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class TextDocument:
    """An in-memory document."""

    def __init__(self, identifier: str, text: str = "") -> None:
        self.identifier = identifier
        self._text = text

    def full_text(self) -> str:
        return self._text

    def replace(self, span: tuple[int, int], text: str) -> None:
        self._text = self._spliced(span, text)

    def _spliced(self, span: tuple[int, int], text: str) -> str:
        start, end = span
        if not 0 <= start <= end <= len(self._text):
            raise IndexError(f"span {span} outside document of length {len(self._text)}")
        return self._text[:start] + text + self._text[end:]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(identifier={self.identifier!r}, length={len(self._text)})"


class FileDocument(TextDocument):
    """A UTF-8 text file, read from disk on every ``full_text`` call.

    ``replace`` applies to the text last returned by ``full_text``. If the file
    changed on disk since then, nothing is written and ``TextNotFound`` is
    raised. The in-memory text is only updated once the write succeeds.
    """

    def __init__(self, path: Union[str, Path], identifier: str | None = None) -> None:
        self.path = Path(path)
        super().__init__(identifier or self.path.as_posix(), self.path.read_text(encoding="utf-8"))

    def full_text(self) -> str:
        self.reload()
        return self._text

    def replace(self, span: tuple[int, int], text: str) -> None:
        updated = self._spliced(span, text)
        if self.path.read_text(encoding="utf-8") != self._text:
            logger.info("[LocalForge Documents] %s changed on disk; not writing.", self.path)
            raise TextNotFound(self.identifier)
        self.path.write_text(updated, encoding="utf-8")
        self._text = updated

    def reload(self) -> None:
        self._text = self.path.read_text(encoding="utf-8")


class ProjectDocuments:
    """Open documents keyed by their path inside a project root.

    ``find`` only consults documents already open; ``open`` loads a file from
    disk. Identifiers that resolve outside the root are never opened.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser().resolve()
        self._open: dict[Path, Document] = {}

    def register(self, document: Document) -> None:
        self._open[self._resolve(document.identifier)] = document

    def find(self, identifier: str) -> Document | None:
        try:
            return self._open.get(self._resolve(identifier))
        except TargetNotFound:
            return None

    def open(self, identifier: str) -> Document:
        path = self._resolve(identifier)
        if path in self._open:
            return self._open[path]
        if not path.is_file():
            raise FileNotFoundError(f"No such file: {path}")
        document = FileDocument(path, identifier=path.relative_to(self.root).as_posix())
        self._open[path] = document
        logger.debug("[LocalForge Documents] Opened %s", path)
        return document

    def _resolve(self, identifier: str) -> Path:
        try:
            candidate = Path(identifier.strip()).expanduser()
            if not candidate.is_absolute():
                candidate = self.root / candidate
            resolved = candidate.resolve()
        except (OSError, ValueError, RuntimeError) as exc:
            # NUL bytes, unknown ~user and the like
            raise TargetNotFound(identifier) from exc
        if not resolved.is_relative_to(self.root):
            raise TargetNotFound(identifier)
        return resolved

    def __repr__(self) -> str:
        return f"ProjectDocuments(root={self.root!r}, open={len(self._open)})"
