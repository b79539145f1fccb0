"""
Context bundles and the prompt template that teaches the model the suggestion format.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

_BACKTICK_RUN = re.compile(r"`{3,}")

SUGGESTION_INSTRUCTIONS = """\
You are a careful coding assistant. The user has shared the files below for context.
If you propose a change to one of them, describe it exactly once, in this format:

{open_delimiter}FILE: <path of the file, as given below>
BEFORE:
```
<the exact existing lines to replace, copied verbatim>
```
AFTER:
```
<the replacement lines>
```
{close_delimiter}
Propose at most one change per reply. Explain the change in prose outside the block."""


class ContextBundle:
    """Ordered ``(identifier, content)`` pairs prepended to a prompt.

    The bundle belongs to the caller; prompt construction only iterates it.
    """

    def __init__(self, entries: Iterable[tuple[str, str]] = ()) -> None:
        self._entries: list[tuple[str, str]] = []
        for identifier, content in entries:
            self.add(identifier, content)

    @classmethod
    def from_files(
        cls, paths: Iterable[Union[str, Path]], root: Union[str, Path, None] = None
    ) -> ContextBundle:
        """Read each file as UTF-8, naming it relative to ``root`` when possible."""
        base = Path(root).resolve() if root is not None else None
        bundle = cls()
        for raw_path in paths:
            path = Path(raw_path)
            identifier = path.as_posix()
            if base is not None:
                resolved = path.resolve()
                if resolved.is_relative_to(base):
                    identifier = resolved.relative_to(base).as_posix()
            bundle.add(identifier, path.read_text(encoding="utf-8"))
        return bundle

    def add(self, identifier: str, content: str) -> None:
        if not identifier.strip():
            raise ValueError("context identifier must not be empty")
        self._entries.append((identifier, content))

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __repr__(self) -> str:
        return f"ContextBundle(identifiers={[identifier for identifier, _ in self._entries]!r})"


def _fence_for(content: str) -> str:
    longest = max((len(run) for run in _BACKTICK_RUN.findall(content)), default=2)
    return "`" * max(3, longest + 1)


def serialize_bundle(bundle: Iterable[tuple[str, str]]) -> str:
    """Render bundle entries as ``FILE:`` headers followed by fenced content."""
    blocks = []
    for identifier, content in bundle:
        fence = _fence_for(content)
        body = content if content.endswith("\n") or not content else content + "\n"
        blocks.append(f"FILE: {identifier}\n{fence}\n{body}{fence}")
    return "\n\n".join(blocks)


def build_prompt(
    request: str,
    bundle: Iterable[tuple[str, str]] | None = None,
    delimiters: tuple[str, str] | None = None,
) -> str:
    """Build the full prompt text for one request.

    Without context the prompt is the request itself. With context, the fixed
    instruction template and the serialized bundle are prepended.
    """
    entries = list(bundle) if bundle is not None else []
    if not entries:
        return request

    open_delimiter, close_delimiter = delimiters if delimiters else ("", "")
    instructions = SUGGESTION_INSTRUCTIONS.format(
        open_delimiter=f"{open_delimiter}\n" if open_delimiter else "",
        close_delimiter=f"{close_delimiter}\n" if close_delimiter else "",
    )
    return "\n\n".join(
        [
            instructions,
            "Files:",
            serialize_bundle(entries),
            "Request:",
            request,
        ]
    )
