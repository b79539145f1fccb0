"""
Streaming session: one request/response exchange with the model server.

A background reader task turns the connection into lifecycle notifications
(``connected``, ``chunk``, ``closed``, ``error``) on an ``asyncio.Queue``. The
session's pump consumes them one at a time on the event loop, so transcript
edits are never interleaved with event delivery.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from .decoder import Event, HTTPResponseDeframer
from .exceptions import LocalForgeError, ProtocolError, ServerConnectionError, SessionBusyError
from .protocol import READ_CHUNK_SIZE, build_generate_body, close_writer, connect, encode_request
from .transcript import Role

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import ClientConfig
    from .protocol import StreamWriter
    from .transcript import Marker, Transcript

logger = logging.getLogger("localforge.session")

ERROR_NOTICE = "\n[LocalForge] Request failed: {error}"


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED})


class StreamingSession:
    """Owns one connection and writes the streamed reply into a transcript.

    ``marker`` is the insertion point for the reply; it only moves forward.
    ``on_complete`` receives the full reply text exactly once, after ``done``.
    Whatever the outcome, the transcript's composition region is reopened when
    the session reaches a terminal state.
    """

    def __init__(
        self,
        transcript: Transcript,
        marker: Marker,
        config: ClientConfig,
        prompt: str,
        *,
        model: str | None = None,
        on_complete: Callable[[str], Any] | None = None,
        open_connection: Callable[..., Awaitable[tuple[Any, Any]]] | None = None,
    ) -> None:
        self.transcript = transcript
        self.marker = marker
        self.config = config
        self.prompt = prompt
        self.model = model or config.model
        self.state = SessionState.IDLE
        self.token_count = 0
        self.error: BaseException | None = None
        self.cancelled = False
        self._on_complete = on_complete
        self._open_connection = open_connection
        self._deframer = HTTPResponseDeframer()
        self._parts: list[str] = []
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._writer: StreamWriter | None = None
        self._task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def completed(self) -> bool:
        return self.state is SessionState.COMPLETED

    @property
    def text(self) -> str:
        """All reply text inserted by this session so far."""
        return "".join(self._parts)

    def start(self) -> asyncio.Task[None]:
        """Open the connection and begin streaming in the background."""
        if self.state is not SessionState.IDLE:
            raise SessionBusyError(f"Session already started (state={self.state.value}).")
        self._set_state(SessionState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name="localforge-session")
        return self._task

    async def wait(self) -> SessionState:
        """Wait for the session to reach a terminal state and return it."""
        if self._task is not None:
            await self._task
        return self.state

    def cancel(self) -> None:
        """Close the connection and drop undelivered chunks, without an error notice."""
        if self.finished:
            return
        self.cancelled = True
        discarded = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            discarded += 1
        logger.debug(
            "[LocalForge Session] Cancelled; discarded %d queued notification(s).", discarded
        )
        self._fail(None, notify=False)
        # Wake the pump so it can release the connection.
        self._queue.put_nowait(("cancelled", None))

    # ── Notification handlers ─────────────────────────────────────────────

    def handle_connected(self) -> None:
        logger.debug("[LocalForge Session] Request sent to %s.", self.config.endpoint)

    def handle_chunk(self, data: bytes) -> None:
        if self.finished:
            return
        try:
            events = self._deframer.feed(data)
        except ProtocolError as exc:
            self._fail(exc)
            return
        for event in events:
            if self.finished:
                break
            self.handle_event(event)

    def handle_closed(self) -> None:
        if self.finished:
            return
        try:
            events = self._deframer.finish()
        except ProtocolError as exc:
            self._fail(exc)
            return
        for event in events:
            if self.finished:
                break
            self.handle_event(event)
        if not self.finished:
            self._fail(ProtocolError("Connection closed before the response completed."))

    def handle_error(self, exc: BaseException) -> None:
        self._fail(exc)

    def handle_event(self, event: Event) -> None:
        if self.finished:
            logger.debug("[LocalForge Session] Ignoring event after finalization: %r", event)
            return
        if self.state is not SessionState.STREAMING:
            self._set_state(SessionState.STREAMING)
        if event.error is not None:
            self._fail(ProtocolError(f"Model server reported an error: {event.error}"))
            return
        if event.token:
            self.transcript.insert(self.marker, event.token)
            self._parts.append(event.token)
            self.token_count += 1
        if event.done:
            self._finalize()

    # ── Internals ─────────────────────────────────────────────────────────

    async def _run(self) -> None:
        self._reader_task = asyncio.create_task(self._read_connection(), name="localforge-reader")
        handlers: dict[str, Callable[[Any], None]] = {
            "connected": lambda _: self.handle_connected(),
            "chunk": self.handle_chunk,
            "closed": lambda _: self.handle_closed(),
            "error": self.handle_error,
        }
        try:
            while not self.finished:
                kind, payload = await self._queue.get()
                if self.finished:
                    break
                handlers[kind](payload)
        finally:
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
            if self._writer is not None:
                await close_writer(self._writer)
                self._writer = None

    async def _read_connection(self) -> None:
        try:
            reader, writer = await connect(self.config, self._open_connection)
            self._writer = writer
            body = build_generate_body(self.model, self.prompt, stream=True)
            writer.write(encode_request(self.config, body))
            await writer.drain()
            self._queue.put_nowait(("connected", None))
            while chunk := await reader.read(READ_CHUNK_SIZE):
                self._queue.put_nowait(("chunk", chunk))
            self._queue.put_nowait(("closed", None))
        except LocalForgeError as exc:
            self._queue.put_nowait(("error", exc))
        except OSError as exc:
            error = ServerConnectionError(f"Connection to {self.config.endpoint} failed: {exc}")
            self._queue.put_nowait(("error", error))

    def _set_state(self, state: SessionState) -> None:
        logger.debug("[LocalForge Session] %s -> %s", self.state.value, state.value)
        self.state = state

    def _finalize(self) -> None:
        self._set_state(SessionState.COMPLETED)
        text = self.text
        self.transcript.commit_turn(Role.ASSISTANT, text)
        self._release()
        logger.info("[LocalForge Session] Response complete: %d token(s).", self.token_count)
        try:
            if self._on_complete is not None:
                self._on_complete(text)
        except Exception:
            logger.warning("[LocalForge Session] Completion hook failed.", exc_info=True)
        finally:
            self.transcript.begin_new_turn()

    def _fail(self, exc: BaseException | None, notify: bool = True) -> None:
        if self.finished:
            return
        self._set_state(SessionState.FAILED)
        self.error = exc
        if exc is not None:
            logger.warning("[LocalForge Session] Request failed: %s", exc)
        if notify and exc is not None:
            self.transcript.insert(self.marker, ERROR_NOTICE.format(error=exc))
        if self._parts:
            self.transcript.commit_turn(Role.ASSISTANT, self.text)
        self._release()
        self.transcript.begin_new_turn()

    def _release(self) -> None:
        if self._writer is not None:
            self._writer.close()
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()

    def __repr__(self) -> str:
        return (
            f"StreamingSession(model={self.model!r}, state={self.state.value}, "
            f"tokens={self.token_count})"
        )
