"""
Code-change suggestions embedded in model output.

A reply may carry one suggestion in this shape, optionally wrapped in a pair of
outer delimiters::

    FILE: path/to/file.py
    BEFORE:
    ```
    x = 1
    ```
    AFTER:
    ```
    x = 2
    ```

``extract_suggestion`` finds the first such block; ``SuggestionApplicator``
substitutes the exact before-text in the target document.
"""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import DEFAULT_SUGGESTION_DELIMITERS
from .exceptions import DocumentWriteError, TargetNotFound, TextNotFound

if TYPE_CHECKING:
    from .documents import Document, DocumentProvider

logger = logging.getLogger("localforge.suggestions")

_SUGGESTION_RE = re.compile(
    r"^[ \t]*FILE:[ \t]*(?P<target>[^\n]*?)[ \t]*\n"
    r"\s*BEFORE:[ \t]*\n"
    r"[ \t]*```[^\n]*\n(?P<before>.*?)^[ \t]*```[ \t]*$"
    r"\s*AFTER:[ \t]*\n"
    r"[ \t]*```[^\n]*\n(?P<after>.*?)^[ \t]*```[ \t]*$",
    re.MULTILINE | re.DOTALL,
)


@dataclass(frozen=True)
class Suggestion:
    target: str
    before: str
    after: str


@dataclass(frozen=True)
class AppliedSuggestion:
    """Where a suggestion landed: the original span of the replaced text."""

    suggestion: Suggestion
    document: Document
    start: int
    end: int


def _delimited_region(text: str, delimiters: tuple[str, str] | None) -> str:
    if not delimiters:
        return text
    opening, closing = delimiters
    start = text.find(opening)
    if start < 0:
        return text
    start += len(opening)
    end = text.find(closing, start)
    return text[start:] if end < 0 else text[start:end]


def extract_suggestion(
    text: str, delimiters: tuple[str, str] | None = DEFAULT_SUGGESTION_DELIMITERS
) -> Suggestion | None:
    """Return the first suggestion in ``text``, or ``None`` when there is none.

    When ``delimiters`` are given and present, only the delimited region is
    searched. Later suggestions in the same text are ignored.
    """
    match = _SUGGESTION_RE.search(_delimited_region(text, delimiters))
    if match is None:
        return None

    target = match.group("target").strip().strip("`\"'").strip()
    before = match.group("before").strip()
    after = match.group("after").strip()
    if not target or not before:
        logger.debug("[LocalForge Suggestions] Ignoring suggestion with empty target or BEFORE.")
        return None
    return Suggestion(target=target, before=before, after=after)


def render_preview(suggestion: Suggestion) -> str:
    """Render the suggestion as a unified diff of before against after."""
    diff = difflib.unified_diff(
        suggestion.before.splitlines(),
        suggestion.after.splitlines(),
        fromfile=f"a/{suggestion.target}",
        tofile=f"b/{suggestion.target}",
        lineterm="",
    )
    return "\n".join(diff)


class SuggestionApplicator:
    """Applies or rejects suggestions against documents from a provider."""

    def __init__(self, provider: DocumentProvider) -> None:
        self.provider = provider

    def resolve(self, target: str) -> Document:
        """Find an open document for ``target``, else open it, else raise ``TargetNotFound``."""
        document = self.provider.find(target)
        if document is not None:
            return document
        try:
            return self.provider.open(target)
        except TargetNotFound:
            raise
        except (OSError, UnicodeDecodeError) as exc:
            raise TargetNotFound(target) from exc

    def apply(self, suggestion: Suggestion) -> AppliedSuggestion:
        """Replace the first exact occurrence of ``before`` with ``after``.

        Raises ``TargetNotFound``, ``TextNotFound`` or ``DocumentWriteError``;
        on any of them the document is left untouched.
        """
        document = self.resolve(suggestion.target)
        try:
            text = document.full_text()
        except (OSError, UnicodeDecodeError) as exc:
            raise TargetNotFound(suggestion.target) from exc
        start = text.find(suggestion.before)
        if start < 0:
            raise TextNotFound(suggestion.target)
        end = start + len(suggestion.before)
        try:
            document.replace((start, end), suggestion.after)
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentWriteError(suggestion.target, exc) from exc
        logger.info(
            "[LocalForge Suggestions] Applied suggestion to %s at [%d, %d).",
            suggestion.target,
            start,
            end,
        )
        return AppliedSuggestion(suggestion=suggestion, document=document, start=start, end=end)

    def reject(self, suggestion: Suggestion) -> None:
        logger.info("[LocalForge Suggestions] Rejected suggestion for %s.", suggestion.target)
