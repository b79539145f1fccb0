"""
Incremental decoding of the model server's streamed HTTP response.

``HTTPResponseDeframer`` strips the status line and header block exactly once
(de-chunking the body when the server uses chunked transfer encoding) and hands
the body bytes to ``LineJSONDecoder``, which turns newline-delimited JSON into
validated ``Event`` objects. Both accept arbitrarily fragmented chunks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .exceptions import DecodeError, ProtocolError

logger = logging.getLogger("localforge.decoder")

_HEADER_TERMINATORS = (b"\r\n\r\n", b"\n\n")


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """One decoded stream event.

    ``token`` is the text fragment carried by the ``response`` field (``None``
    when absent), ``done`` marks the final event, and ``error`` carries the
    message of a server-side failure payload.
    """

    token: str | None = None
    done: bool = False
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> Event:
        """Validate a parsed JSON value and build an ``Event`` from it."""
        if not isinstance(payload, dict):
            raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")

        token = payload.get("response")
        if token is not None and not isinstance(token, str):
            raise DecodeError("'response' must be a string")

        done = payload.get("done", False)
        if not isinstance(done, bool):
            raise DecodeError("'done' must be a boolean")

        error = payload.get("error")
        if error is not None:
            error = str(error)

        return cls(token=token, done=done, error=error)

    @classmethod
    def from_line(cls, line: bytes) -> Event:
        """Parse one complete line of the stream."""
        try:
            payload = json.loads(line.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise DecodeError(f"line is not valid UTF-8: {exc}", line) from exc
        except json.JSONDecodeError as exc:
            raise DecodeError(f"line is not valid JSON: {exc}", line) from exc
        try:
            return cls.from_payload(payload)
        except DecodeError as exc:
            exc.line = line
            raise


def _is_blank(line: bytes) -> bool:
    return all(byte <= 0x20 or byte == 0x7F for byte in line)


# ---------------------------------------------------------------------------
# LineJSONDecoder
# ---------------------------------------------------------------------------


class LineJSONDecoder:
    """Turns a sequence of byte chunks into complete ``Event`` objects.

    Bytes accumulate in an unbounded buffer until a ``\\n`` arrives. Blank lines
    and lines that are not well-formed events are dropped and logged at debug
    level, so a partial or corrupt line never aborts the stream. Bytes already
    searched for a terminator are not searched again.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scan_from = 0
        self.dropped = 0

    def feed(self, chunk: bytes) -> list[Event]:
        if not chunk:
            return []

        self._buffer.extend(chunk)
        events: list[Event] = []
        while True:
            newline = self._buffer.find(b"\n", self._scan_from)
            if newline < 0:
                self._scan_from = len(self._buffer)
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            self._scan_from = 0
            event = self._decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[Event]:
        """Decode a final unterminated line, if any, and reset the buffer."""
        line = bytes(self._buffer)
        self._buffer.clear()
        self._scan_from = 0
        event = self._decode_line(line)
        return [] if event is None else [event]

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a complete line."""
        return len(self._buffer)

    def _decode_line(self, line: bytes) -> Event | None:
        if _is_blank(line):
            return None
        try:
            return Event.from_line(line.strip())
        except DecodeError as exc:
            self.dropped += 1
            logger.debug("[LocalForge Decoder] Dropped line (%s): %r", exc, exc.line[:120])
            return None

    def __repr__(self) -> str:
        return f"LineJSONDecoder(pending={self.pending}, dropped={self.dropped})"


# ---------------------------------------------------------------------------
# ChunkedBodyDecoder
# ---------------------------------------------------------------------------


class ChunkedBodyDecoder:
    """Removes HTTP/1.1 chunked transfer framing from a body, incrementally."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._state = "size"
        self._remaining = 0

    @property
    def finished(self) -> bool:
        return self._state == "done"

    def feed(self, data: bytes) -> bytes:
        self._buffer.extend(data)
        out = bytearray()
        while self._buffer and self._state != "done":
            if self._state == "data":
                take = min(self._remaining, len(self._buffer))
                out += self._buffer[:take]
                del self._buffer[:take]
                self._remaining -= take
                if self._remaining:
                    break
                self._state = "data_end"
                continue

            line = self._take_line()
            if line is None:
                break
            if self._state == "size":
                self._remaining = self._parse_size(line)
                self._state = "data" if self._remaining else "trailer"
            elif self._state == "data_end":
                if line:
                    raise ProtocolError("Chunk data was not followed by a line terminator.")
                self._state = "size"
            elif self._state == "trailer" and not line:
                self._state = "done"

        if self._state == "done":
            self._buffer.clear()
        return bytes(out)

    def _take_line(self) -> bytes | None:
        newline = self._buffer.find(b"\n")
        if newline < 0:
            return None
        line = bytes(self._buffer[:newline]).rstrip(b"\r")
        del self._buffer[: newline + 1]
        return line

    @staticmethod
    def _parse_size(line: bytes) -> int:
        size_field = line.split(b";", 1)[0].strip()
        try:
            return int(size_field, 16)
        except ValueError:
            raise ProtocolError(f"Invalid chunk size line: {line[:40]!r}") from None


# ---------------------------------------------------------------------------
# HTTPResponseDeframer
# ---------------------------------------------------------------------------


class HTTPResponseDeframer:
    """Strips the HTTP status line and headers once, then passes the body on.

    Until the header terminator arrives nothing is yielded. The strip happens at
    most once per connection (tracked by ``headers_done``), so blank lines inside
    the body are never mistaken for a header block.
    """

    def __init__(self, decoder: LineJSONDecoder | None = None) -> None:
        self.decoder = decoder if decoder is not None else LineJSONDecoder()
        self.headers_done = False
        self.status_code: int | None = None
        self.reason = ""
        self.headers: dict[str, str] = {}
        self._head = bytearray()
        self._chunked: ChunkedBodyDecoder | None = None

    @property
    def is_chunked(self) -> bool:
        return self._chunked is not None

    def feed(self, chunk: bytes) -> list[Event]:
        if not chunk:
            return []
        if not self.headers_done:
            body = self._strip_headers(chunk)
            if body is None:
                return []
            chunk = body
        if self._chunked is not None:
            chunk = self._chunked.feed(chunk)
        return self.decoder.feed(chunk)

    def finish(self) -> list[Event]:
        """Signal end of connection and return any final unterminated event."""
        if not self.headers_done:
            raise ProtocolError(
                "Connection closed before the HTTP header terminator arrived."
            )
        return self.decoder.flush()

    def _strip_headers(self, chunk: bytes) -> bytes | None:
        # A terminator may straddle the previous chunk boundary.
        search_from = max(0, len(self._head) - 3)
        self._head.extend(chunk)

        found: tuple[int, bytes] | None = None
        for terminator in _HEADER_TERMINATORS:
            index = self._head.find(terminator, search_from)
            if index >= 0 and (found is None or index < found[0]):
                found = (index, terminator)
        if found is None:
            return None

        index, terminator = found
        head = bytes(self._head[:index])
        body = bytes(self._head[index + len(terminator) :])
        self._head.clear()
        self.headers_done = True
        self._parse_head(head)
        return body

    def _parse_head(self, head: bytes) -> None:
        lines = head.decode("latin-1").splitlines()
        status_line = lines[0] if lines else ""
        parts = status_line.split(None, 2)
        if len(parts) >= 2 and parts[0].startswith("HTTP/") and parts[1].isdigit():
            self.status_code = int(parts[1])
            self.reason = parts[2] if len(parts) > 2 else ""
        else:
            logger.warning("[LocalForge Decoder] Unrecognised status line: %r", status_line)

        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if sep:
                self.headers[name.strip().lower()] = value.strip()

        if "chunked" in self.headers.get("transfer-encoding", "").lower():
            self._chunked = ChunkedBodyDecoder()
        logger.debug(
            "[LocalForge Decoder] Response %s %s (chunked=%s)",
            self.status_code,
            self.reason,
            self.is_chunked,
        )

    def __repr__(self) -> str:
        return (
            f"HTTPResponseDeframer(headers_done={self.headers_done}, "
            f"status_code={self.status_code}, chunked={self.is_chunked})"
        )
