"""
Chat transcript state: an append-only log of turns rendered into a text view,
plus the single writable composition region where the next user turn is typed.

Positions in the view are tracked with ``Marker`` objects that every structural
edit updates in one place, so no caller ever holds a stale offset.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import ReadOnlyError, SessionBusyError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("localforge.transcript")

USER_LABEL = "You: "
ASSISTANT_LABEL = "Assistant: "


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str


class ChangeKind(str, Enum):
    INPUT = "input"  # edits inside the composition region
    STRUCTURE = "structure"  # labels, separators and rendered turns
    RESPONSE = "response"  # streamed output and notices at a session's marker


@dataclass(frozen=True)
class TranscriptChange:
    """One edit of the rendered view, as seen by subscribers."""

    offset: int
    removed: int
    text: str
    kind: ChangeKind


class Marker:
    """A position in the view that follows insertions made before it.

    Text inserted exactly at the marker's offset pushes it forward only when
    ``advances`` is true; that is how an insertion point keeps moving past the
    text written at it while a region start stays put.
    """

    __slots__ = ("offset", "advances", "__weakref__")

    def __init__(self, offset: int, advances: bool = False) -> None:
        self.offset = offset
        self.advances = advances

    def __repr__(self) -> str:
        return f"Marker(offset={self.offset}, advances={self.advances})"


class Transcript:
    """Rendered chat history with one composition region at its tail."""

    def __init__(self, user_label: str = USER_LABEL, assistant_label: str = ASSISTANT_LABEL):
        if not user_label or not assistant_label:
            raise ValueError("role labels must be non-empty")
        self.labels = {Role.USER: user_label, Role.ASSISTANT: assistant_label}
        self._text = ""
        self._turns: list[Turn] = []
        self._markers: weakref.WeakSet[Marker] = weakref.WeakSet()
        self._listeners: list[Callable[[TranscriptChange], None]] = []
        self._label_start: Marker | None = None
        self._input_start: Marker | None = None
        self._input_end: Marker | None = None
        self.begin_new_turn()

    # ── Views ─────────────────────────────────────────────────────────────

    @property
    def text(self) -> str:
        return self._text

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def is_composing(self) -> bool:
        """Whether the composition region is open for user input."""
        return self._input_start is not None

    @property
    def input_span(self) -> tuple[int, int] | None:
        if self._input_start is None or self._input_end is None:
            return None
        return self._input_start.offset, self._input_end.offset

    def current_input(self) -> str:
        span = self.input_span
        if span is None:
            return ""
        return self._text[span[0] : span[1]]

    def is_read_only(self, offset: int) -> bool:
        span = self.input_span
        return span is None or not span[0] <= offset <= span[1]

    def subscribe(self, listener: Callable[[TranscriptChange], None]) -> None:
        self._listeners.append(listener)

    def marker(self, offset: int, advances: bool = False) -> Marker:
        """Create a marker that the transcript keeps up to date."""
        if not 0 <= offset <= len(self._text):
            raise IndexError(f"offset {offset} outside transcript of length {len(self._text)}")
        marker = Marker(offset, advances)
        self._markers.add(marker)
        return marker

    # ── Editing surface ───────────────────────────────────────────────────

    def edit(self, start: int, end: int, text: str) -> None:
        """Replace ``[start, end)`` with ``text``; only allowed inside the composition region."""
        span = self.input_span
        if span is None:
            raise ReadOnlyError("The transcript is not accepting input while a response is pending.")
        if not span[0] <= start <= end <= span[1]:
            raise ReadOnlyError(
                f"Range [{start}, {end}) is outside the composition region {list(span)}."
            )
        if end > start:
            self._delete(start, end, ChangeKind.INPUT)
        if text:
            self._insert(start, text, ChangeKind.INPUT)

    def set_input(self, text: str) -> None:
        """Replace the whole composition text."""
        span = self.input_span
        if span is None:
            raise ReadOnlyError("The transcript is not accepting input while a response is pending.")
        self.edit(span[0], span[1], text)

    # ── Structure ─────────────────────────────────────────────────────────

    def append_turn(self, role: Role | str, content: str) -> None:
        """Render a finished turn just before the composition region's label."""
        role = Role(role)
        if self._label_start is None:
            raise SessionBusyError("Cannot append a turn while a response is streaming.")
        # The region markers sit after the insertion point, so the typed text rides along.
        rendered = f"{self.labels[role]}{content.rstrip()}\n\n"
        self._insert(self._label_start.offset, rendered, ChangeKind.STRUCTURE)
        self._turns.append(Turn(role, content))

    def begin_new_turn(self) -> None:
        """Open a fresh composition region after a label at the end of the view."""
        if self.is_composing:
            logger.debug("[LocalForge Transcript] Composition region already open.")
            return
        separator = self._separator()
        label = self.labels[Role.USER]
        label_offset = len(self._text) + len(separator)
        self._insert(len(self._text), separator + label, ChangeKind.STRUCTURE)
        self._label_start = self.marker(label_offset, advances=True)
        self._input_start = self.marker(len(self._text), advances=False)
        self._input_end = self.marker(len(self._text), advances=True)

    def submit(self) -> tuple[str, Marker]:
        """Freeze the composition text as a user turn and open an assistant reply.

        Returns the submitted text and an advancing marker where the reply goes.
        """
        if not self.is_composing:
            raise SessionBusyError("A response is already pending.")
        content = self.current_input()
        self._close_region()
        self._turns.append(Turn(Role.USER, content))
        reply_label = "\n\n" + self.labels[Role.ASSISTANT]
        self._insert(len(self._text), reply_label, ChangeKind.STRUCTURE)
        return content, self.marker(len(self._text), advances=True)

    def insert(self, marker: Marker, text: str) -> None:
        """Insert rendered text at ``marker`` and move the marker past it."""
        if not text:
            return
        offset = marker.offset
        self._insert(offset, text, ChangeKind.RESPONSE)
        marker.offset = offset + len(text)

    def commit_turn(self, role: Role | str, content: str) -> None:
        """Record a turn whose text is already rendered (streamed replies)."""
        self._turns.append(Turn(Role(role), content))

    # ── Primitives ────────────────────────────────────────────────────────

    def _separator(self) -> str:
        if not self._text:
            return ""
        trailing = len(self._text) - len(self._text.rstrip("\n"))
        return "\n" * max(0, 2 - trailing)

    def _close_region(self) -> None:
        for marker in (self._label_start, self._input_start, self._input_end):
            if marker is not None:
                self._markers.discard(marker)
        self._label_start = self._input_start = self._input_end = None

    def _insert(self, offset: int, text: str, kind: ChangeKind) -> None:
        self._text = self._text[:offset] + text + self._text[offset:]
        for marker in self._markers:
            if marker.offset > offset or (marker.offset == offset and marker.advances):
                marker.offset += len(text)
        self._notify(TranscriptChange(offset, 0, text, kind))

    def _delete(self, start: int, end: int, kind: ChangeKind) -> None:
        self._text = self._text[:start] + self._text[end:]
        removed = end - start
        for marker in self._markers:
            if marker.offset >= end:
                marker.offset -= removed
            elif marker.offset > start:
                marker.offset = start
        self._notify(TranscriptChange(start, removed, "", kind))

    def _notify(self, change: TranscriptChange) -> None:
        for listener in self._listeners:
            listener(change)

    def __repr__(self) -> str:
        return f"Transcript(turns={len(self._turns)}, composing={self.is_composing})"
