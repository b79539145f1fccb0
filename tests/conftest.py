"""Shared fixtures and fakes: an in-process connection with no real sockets."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from localforge import ClientConfig, TextDocument, Transcript
from localforge.documents import ProjectDocuments

HTTP_OK = b"HTTP/1.1 200 OK\r\nContent-Type: application/x-ndjson\r\n\r\n"


def ndjson(*payloads: dict[str, Any]) -> bytes:
    return b"".join(json.dumps(payload).encode("utf-8") + b"\n" for payload in payloads)


def token_stream(*tokens: str, done: bool = True) -> bytes:
    """Body of a streamed reply carrying ``tokens`` and, optionally, the final event."""
    payloads: list[dict[str, Any]] = [{"response": token, "done": False} for token in tokens]
    if done:
        payloads.append({"response": "", "done": True})
    return ndjson(*payloads)


def chunked(*parts: bytes) -> bytes:
    """Frame ``parts`` with HTTP/1.1 chunked transfer encoding."""
    framed = b"".join(f"{len(part):x}\r\n".encode("ascii") + part + b"\r\n" for part in parts)
    return framed + b"0\r\n\r\n"


class FakeWriter:
    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    @property
    def body(self) -> dict[str, Any]:
        _, _, payload = bytes(self.data).partition(b"\r\n\r\n")
        return json.loads(payload)


class FakeConnection:
    """Stands in for ``asyncio.open_connection``.

    Every call counts as one connection; ``chunks`` are fed to a fresh
    ``StreamReader`` and EOF follows unless ``eof`` is false, in which case the
    test can keep feeding ``reader``.
    """

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        eof: bool = True,
        error: BaseException | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.eof = eof
        self.error = error
        self.calls = 0
        self.reader: asyncio.StreamReader | None = None
        self.writer = FakeWriter()

    async def __call__(self, host: str, port: int) -> tuple[asyncio.StreamReader, FakeWriter]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.reader = asyncio.StreamReader()
        for chunk in self.chunks:
            self.reader.feed_data(chunk)
        if self.eof:
            self.reader.feed_eof()
        return self.reader, self.writer


async def until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)


@pytest.fixture
def config(tmp_path) -> ClientConfig:
    return ClientConfig(model="test-model", project_root=tmp_path)


@pytest.fixture
def transcript() -> Transcript:
    return Transcript()


@pytest.fixture
def documents(tmp_path) -> ProjectDocuments:
    return ProjectDocuments(tmp_path)


@pytest.fixture
def app_document(documents) -> TextDocument:
    document = TextDocument("app.py", "import os\n\nx = 1\nprint(x)\n")
    documents.register(document)
    return document
