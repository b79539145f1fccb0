"""
Wire protocol for the model server's generate endpoint.

Requests are hand-framed HTTP/1.1 POSTs written to a plain asyncio stream so the
response can be consumed as raw bytes by ``HTTPResponseDeframer``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from .decoder import HTTPResponseDeframer
from .exceptions import ProtocolError, ServerConnectionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import ClientConfig

logger = logging.getLogger("localforge.protocol")

READ_CHUNK_SIZE = 4096


class StreamWriter(Protocol):
    """The subset of ``asyncio.StreamWriter`` used by sessions."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


def build_generate_body(model: str, prompt: str, stream: bool = True) -> dict[str, Any]:
    return {"model": model, "prompt": prompt, "stream": stream}


def encode_request(config: ClientConfig, body: dict[str, Any]) -> bytes:
    """Serialize ``body`` as a complete HTTP/1.1 POST to ``config.path``."""
    payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
    head = (
        f"POST {config.path} HTTP/1.1\r\n"
        f"Host: {config.host}:{config.port}\r\n"
        "Content-Type: application/json\r\n"
        "Accept: application/x-ndjson\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + payload


async def connect(
    config: ClientConfig,
    open_connection: Callable[..., Awaitable[tuple[Any, Any]]] | None = None,
) -> tuple[asyncio.StreamReader, StreamWriter]:
    """Open a connection to the model server, mapping OS errors to ``ServerConnectionError``."""
    opener = open_connection if open_connection is not None else asyncio.open_connection
    try:
        return await opener(config.host, config.port)
    except OSError as exc:
        raise ServerConnectionError(
            f"Could not connect to model server at {config.endpoint}: {exc}"
        ) from exc


async def close_writer(writer: StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


async def generate_once(
    config: ClientConfig,
    prompt: str,
    *,
    model: str | None = None,
    open_connection: Callable[..., Awaitable[tuple[Any, Any]]] | None = None,
) -> str:
    """Send a non-streaming request and return the complete response text.

    The single JSON object in the body needs no ``done`` gating: the response
    is complete once the server closes the connection.
    """
    reader, writer = await connect(config, open_connection)
    deframer = HTTPResponseDeframer()
    events = []
    try:
        body = build_generate_body(model or config.model, prompt, stream=False)
        writer.write(encode_request(config, body))
        await writer.drain()
        while chunk := await reader.read(READ_CHUNK_SIZE):
            events.extend(deframer.feed(chunk))
        events.extend(deframer.finish())
    except OSError as exc:
        raise ServerConnectionError(f"Connection to {config.endpoint} failed: {exc}") from exc
    finally:
        await close_writer(writer)

    for event in events:
        if event.error is not None:
            raise ProtocolError(f"Model server reported an error: {event.error}")
    if not events:
        raise ProtocolError(
            f"Model server returned no response body (HTTP {deframer.status_code})."
        )
    logger.debug("[LocalForge Protocol] Non-streaming response in %d event(s).", len(events))
    return "".join(event.token or "" for event in events)
