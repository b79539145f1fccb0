"""
Error taxonomy for LocalForge.

Everything raised by the package derives from ``LocalForgeError`` so hosts can
catch a single base class. None of these errors is fatal to the host process.
"""

from __future__ import annotations


class LocalForgeError(Exception):
    """Base class for all LocalForge errors."""


class DecodeError(LocalForgeError, ValueError):
    """A stream line was not a well-formed event. Dropped, never surfaced."""

    def __init__(self, message: str, line: bytes = b"") -> None:
        super().__init__(message)
        self.line = line


class ServerConnectionError(LocalForgeError, ConnectionError):
    """Transport failure talking to the model server."""


class ProtocolError(LocalForgeError):
    """The server's response did not follow the expected HTTP/NDJSON framing."""


class SessionBusyError(LocalForgeError, RuntimeError):
    """A send was attempted while another session still owns the transcript."""


class ReadOnlyError(LocalForgeError):
    """An edit touched rendered transcript text outside the composition region."""


class SuggestionError(LocalForgeError):
    """Base class for suggestion application failures."""

    def __init__(self, message: str, target: str) -> None:
        super().__init__(message)
        self.target = target


class TargetNotFound(SuggestionError):
    """The suggestion's target could not be found or opened."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Target '{target}' could not be found or opened.", target)


class DocumentWriteError(SuggestionError):
    """The substituted text could not be written back to the target."""

    def __init__(self, target: str, reason: BaseException) -> None:
        super().__init__(f"Could not write changes to '{target}': {reason}", target)


class TextNotFound(SuggestionError):
    """The suggestion's before-text does not occur verbatim in the target."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"The original text was not found in '{target}'; it may have changed since "
            "the suggestion was generated.",
            target,
        )
