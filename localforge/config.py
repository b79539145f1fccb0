"""Client configuration: where the model server lives and how prompts are framed."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 11434
DEFAULT_PATH = "/api/generate"
DEFAULT_MODEL = "llama3"
DEFAULT_SUGGESTION_DELIMITERS = ("<<<SUGGESTION", "SUGGESTION>>>")

ENV_PREFIX = "LOCALFORGE_"


@dataclass(frozen=True)
class ClientConfig:
    """Connection and prompt settings shared by every session of a chat."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH
    model: str = DEFAULT_MODEL
    project_root: Path = field(default_factory=Path.cwd)
    suggestion_delimiters: tuple[str, str] | None = DEFAULT_SUGGESTION_DELIMITERS

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if not self.path.startswith("/"):
            raise ValueError("path must start with '/'")
        if not self.model.strip():
            raise ValueError("model must not be empty")
        if self.suggestion_delimiters is not None and not all(self.suggestion_delimiters):
            raise ValueError("suggestion delimiters must both be non-empty")
        object.__setattr__(self, "project_root", Path(self.project_root).expanduser())

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ClientConfig:
        """Build a config from ``LOCALFORGE_*`` environment variables."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if host := env.get(f"{ENV_PREFIX}HOST"):
            kwargs["host"] = host
        if port := env.get(f"{ENV_PREFIX}PORT"):
            try:
                kwargs["port"] = int(port)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}PORT must be an integer, got {port!r}") from None
        if model := env.get(f"{ENV_PREFIX}MODEL"):
            kwargs["model"] = model
        if root := env.get(f"{ENV_PREFIX}PROJECT_ROOT"):
            kwargs["project_root"] = Path(root)
        return cls(**kwargs)

    def with_overrides(self, **overrides: object) -> ClientConfig:
        """Return a copy with every non-``None`` override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"
