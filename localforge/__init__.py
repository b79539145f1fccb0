"""
LocalForge: a streaming chat client for local model servers that can propose,
preview and apply exact code changes.

Replies are decoded incrementally from the server's newline-delimited JSON
stream, rendered into an append-only transcript, and scanned for a single
FILE/BEFORE/AFTER suggestion the user may accept or reject.
"""

from .chat import ChatContext
from .config import ClientConfig
from .context import ContextBundle, build_prompt
from .decoder import Event, HTTPResponseDeframer, LineJSONDecoder
from .documents import FileDocument, ProjectDocuments, TextDocument
from .exceptions import (
    DecodeError,
    DocumentWriteError,
    LocalForgeError,
    ProtocolError,
    ReadOnlyError,
    ServerConnectionError,
    SessionBusyError,
    SuggestionError,
    TargetNotFound,
    TextNotFound,
)
from .protocol import generate_once
from .session import SessionState, StreamingSession
from .suggestions import Suggestion, SuggestionApplicator, extract_suggestion, render_preview
from .transcript import Marker, Role, Transcript, Turn

__all__ = [
    "ChatContext",
    "ClientConfig",
    "ContextBundle",
    "build_prompt",
    "Event",
    "HTTPResponseDeframer",
    "LineJSONDecoder",
    "FileDocument",
    "ProjectDocuments",
    "TextDocument",
    "DecodeError",
    "DocumentWriteError",
    "LocalForgeError",
    "ProtocolError",
    "ReadOnlyError",
    "ServerConnectionError",
    "SessionBusyError",
    "SuggestionError",
    "TargetNotFound",
    "TextNotFound",
    "generate_once",
    "SessionState",
    "StreamingSession",
    "Suggestion",
    "SuggestionApplicator",
    "extract_suggestion",
    "render_preview",
    "Marker",
    "Role",
    "Transcript",
    "Turn",
]
