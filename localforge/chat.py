"""
Per-transcript chat context.

``ChatContext`` bundles everything one transcript needs: configuration and
model, the caller's context bundle, the active session handle and the single
pending suggestion. Nothing here is process-global.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import ClientConfig
from .context import build_prompt
from .documents import ProjectDocuments
from .exceptions import SessionBusyError, SuggestionError
from .session import StreamingSession
from .suggestions import SuggestionApplicator, extract_suggestion, render_preview
from .transcript import Transcript

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from .documents import DocumentProvider
    from .suggestions import AppliedSuggestion, Suggestion

logger = logging.getLogger("localforge")


class ChatContext:
    """Drives one transcript: sends turns, tracks the session and the pending suggestion.

    ``notify`` receives user-facing messages that are not part of the
    transcript (suggestion results); it defaults to logging them.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transcript: Transcript | None = None,
        bundle: Iterable[tuple[str, str]] | None = None,
        documents: DocumentProvider | None = None,
        notify: Callable[[str], None] | None = None,
        open_connection: Callable[..., Awaitable[tuple[Any, Any]]] | None = None,
    ) -> None:
        self.config = config if config is not None else ClientConfig()
        self.model = self.config.model
        self.transcript = transcript if transcript is not None else Transcript()
        self.bundle = bundle
        self.applicator = SuggestionApplicator(
            documents if documents is not None else ProjectDocuments(self.config.project_root)
        )
        self.session: StreamingSession | None = None
        self.pending_suggestion: Suggestion | None = None
        self._notify = notify if notify is not None else logger.info
        self._open_connection = open_connection

    @property
    def busy(self) -> bool:
        return self.session is not None and not self.session.finished

    def send(self) -> StreamingSession:
        """Submit the composition text and start streaming the reply.

        Raises ``SessionBusyError`` while another session is connecting or
        streaming, and ``ValueError`` when there is nothing to send.
        """
        if self.busy:
            raise SessionBusyError("A response is still streaming; wait for it or cancel it.")
        request = self.transcript.current_input()
        if not request.strip():
            raise ValueError("Type a message first.")

        prompt = build_prompt(request, self.bundle, self.config.suggestion_delimiters)
        # A suggestion only lives until the next turn, whatever that turn's outcome.
        self.pending_suggestion = None
        _, marker = self.transcript.submit()
        self.session = StreamingSession(
            self.transcript,
            marker,
            self.config,
            prompt,
            model=self.model,
            on_complete=self._on_response_complete,
            open_connection=self._open_connection,
        )
        self.session.start()
        return self.session

    async def ask(self, text: str) -> StreamingSession:
        """Type ``text`` into the composition region, send it and wait for the reply."""
        self.transcript.set_input(text)
        session = self.send()
        await session.wait()
        return session

    def cancel(self) -> None:
        if self.session is not None:
            self.session.cancel()

    async def close(self) -> None:
        """Cancel any active session and wait for its connection to be released."""
        session = self.session
        if session is None:
            return
        session.cancel()
        await session.wait()

    # ── Suggestions ───────────────────────────────────────────────────────

    def _on_response_complete(self, text: str) -> None:
        self.pending_suggestion = extract_suggestion(text, self.config.suggestion_delimiters)
        if self.pending_suggestion is not None:
            logger.info(
                "[LocalForge] Suggestion pending for %s.", self.pending_suggestion.target
            )

    def preview_suggestion(self) -> str | None:
        if self.pending_suggestion is None:
            return None
        return render_preview(self.pending_suggestion)

    def accept_suggestion(self) -> AppliedSuggestion | None:
        """Apply the pending suggestion; report exactly one message either way."""
        suggestion = self.pending_suggestion
        if suggestion is None:
            self._notify("No suggestion is pending.")
            return None
        self.pending_suggestion = None
        try:
            applied = self.applicator.apply(suggestion)
        except SuggestionError as exc:
            self._notify(str(exc))
            return None
        self._notify(f"Applied suggestion to {suggestion.target}.")
        return applied

    def reject_suggestion(self) -> None:
        suggestion = self.pending_suggestion
        if suggestion is None:
            return
        self.pending_suggestion = None
        self.applicator.reject(suggestion)
        self._notify(f"Discarded suggestion for {suggestion.target}.")
