"""
LocalForge CLI — chat with a local model server and apply its code suggestions.

Registered as the `localforge` console script via pyproject.toml.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TextIO

import click

from .chat import ChatContext
from .config import ClientConfig
from .context import ContextBundle, build_prompt
from .documents import ProjectDocuments
from .exceptions import LocalForgeError, SessionBusyError, SuggestionError
from .protocol import generate_once
from .session import StreamingSession
from .suggestions import SuggestionApplicator, extract_suggestion, render_preview
from .transcript import ChangeKind, Role, TranscriptChange

HELP_TEXT = """Slash Commands
/help       Show command help
/preview    Show the pending suggestion as a diff
/accept     Apply the pending suggestion
/reject     Discard the pending suggestion
/quit       Leave the chat
"""

_context_option = click.option(
    "--context",
    "context_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File to include as context (repeatable).",
)
_root_option = click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root used to resolve suggestion targets (defaults to the working directory).",
)


def _load_bundle(config: ClientConfig, paths: tuple[Path, ...]) -> ContextBundle:
    try:
        return ContextBundle.from_files(paths, root=config.project_root)
    except (OSError, UnicodeDecodeError) as exc:
        raise click.BadParameter(f"could not read context file: {exc}") from exc


def _echo_rendered(change: TranscriptChange) -> None:
    """Mirror rendered transcript text to the terminal; typed input is already visible."""
    if change.kind is not ChangeKind.INPUT and change.text:
        click.echo(change.text, nl=False)


def _echo_response(change: TranscriptChange) -> None:
    if change.kind is ChangeKind.RESPONSE:
        click.echo(change.text, nl=False)


def _read_line() -> str | None:
    line = sys.stdin.readline()
    if not line:
        return None
    return line.rstrip("\n").rstrip("\r")


async def _await_session(session: StreamingSession, timeout: float | None) -> None:
    """Wait for a session, cancelling it if ``timeout`` elapses first."""
    if timeout is None:
        await session.wait()
        return
    try:
        await asyncio.wait_for(asyncio.shield(session.wait()), timeout)
    except TimeoutError:
        session.cancel()
        await session.wait()
        click.secho(
            f"\nNo complete response after {timeout:.0f}s; request cancelled.", fg="red", err=True
        )


# ── Main group ────────────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="localforge")
@click.option("--host", default=None, help="Model server host (env: LOCALFORGE_HOST).")
@click.option("--port", type=int, default=None, help="Model server port (env: LOCALFORGE_PORT).")
@click.option("-m", "--model", default=None, help="Model name (env: LOCALFORGE_MODEL).")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def cli(
    ctx: click.Context, host: str | None, port: int | None, model: str | None, verbose: bool
) -> None:
    """LocalForge — streaming chat and code suggestions from a local model server."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = ClientConfig.from_env().with_overrides(host=host, port=port, model=model)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc


# ── Chat ──────────────────────────────────────────────────────────────────────


async def _chat_loop(config: ClientConfig, bundle: ContextBundle, timeout: float | None) -> None:
    context = ChatContext(
        config, bundle=bundle, notify=lambda message: click.secho(message, fg="yellow")
    )
    user_label = context.transcript.labels[Role.USER]
    context.transcript.subscribe(_echo_rendered)

    click.secho(
        f"LocalForge chat — {config.model} at {config.endpoint}. Type /help for commands.\n",
        fg="cyan",
        bold=True,
    )
    click.echo(context.transcript.text, nl=False)
    try:
        while True:
            line = await asyncio.to_thread(_read_line)
            if line is None:
                click.echo()
                break

            command = line.strip().lower()
            if not command:
                click.echo(user_label, nl=False)
                continue
            if command in {"/quit", "/exit"}:
                break
            if command.startswith("/"):
                if command == "/help":
                    click.echo(HELP_TEXT)
                elif command == "/preview":
                    click.echo(context.preview_suggestion() or "No suggestion is pending.")
                elif command == "/accept":
                    context.accept_suggestion()
                elif command == "/reject":
                    context.reject_suggestion()
                else:
                    click.secho(f"Unknown command: {command}. Type /help.", fg="red", err=True)
                click.echo(user_label, nl=False)
                continue

            context.transcript.set_input(line)
            try:
                session = context.send()
            except (SessionBusyError, ValueError) as exc:
                click.secho(str(exc), fg="yellow")
                context.transcript.set_input("")
                click.echo(user_label, nl=False)
                continue
            await _await_session(session, timeout)

            if context.pending_suggestion is not None:
                target = context.pending_suggestion.target
                click.echo()
                click.secho(context.preview_suggestion() or "", fg="magenta")
                accepted = await asyncio.to_thread(
                    click.confirm, f"Apply suggestion to {target}?", default=False
                )
                if accepted:
                    context.accept_suggestion()
                else:
                    context.reject_suggestion()
                click.echo(user_label, nl=False)
    finally:
        await context.close()


@cli.command()
@_context_option
@_root_option
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Cancel a reply that has not completed after this many seconds.",
)
@click.pass_obj
def chat(
    config: ClientConfig,
    context_files: tuple[Path, ...],
    root: Path | None,
    timeout: float | None,
) -> None:
    """Start an interactive chat in the terminal.

    \b
    Examples:
        localforge chat
        localforge chat --context app.py --context utils.py
        localforge -m codellama chat --timeout 120
    """
    if timeout is not None and timeout <= 0:
        raise click.BadParameter("--timeout must be > 0")
    config = config.with_overrides(project_root=root)
    bundle = _load_bundle(config, context_files)
    asyncio.run(_chat_loop(config, bundle, timeout))


# ── One-shot ──────────────────────────────────────────────────────────────────


async def _ask_streaming(config: ClientConfig, bundle: ContextBundle, prompt: str) -> ChatContext:
    context = ChatContext(config, bundle=bundle)
    context.transcript.subscribe(_echo_response)
    try:
        await context.ask(prompt)
    finally:
        await context.close()
    click.echo()
    return context


@cli.command()
@click.argument("prompt")
@_context_option
@click.option("--no-stream", is_flag=True, help="Wait for the whole reply in one response.")
@click.pass_obj
def ask(
    config: ClientConfig, prompt: str, context_files: tuple[Path, ...], no_stream: bool
) -> None:
    """Send a single PROMPT and print the reply."""
    bundle = _load_bundle(config, context_files)
    if no_stream:
        full_prompt = build_prompt(prompt, bundle, config.suggestion_delimiters)
        try:
            click.echo(asyncio.run(generate_once(config, full_prompt)))
        except LocalForgeError as exc:
            click.secho(str(exc), fg="red", err=True)
            raise SystemExit(1) from exc
        return

    context = asyncio.run(_ask_streaming(config, bundle, prompt))
    if context.session is None or not context.session.completed:
        raise SystemExit(1)
    if context.pending_suggestion is not None:
        click.secho(f"\nSuggestion for {context.pending_suggestion.target}:", bold=True)
        click.echo(context.preview_suggestion())


# ── Suggestions ───────────────────────────────────────────────────────────────


@cli.command()
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.pass_obj
def extract(config: ClientConfig, source: TextIO) -> None:
    """Show the suggestion contained in saved model output SOURCE ('-' for stdin)."""
    suggestion = extract_suggestion(source.read(), config.suggestion_delimiters)
    if suggestion is None:
        click.secho("No suggestion found.", fg="yellow", err=True)
        raise SystemExit(1)
    click.secho(f"FILE: {suggestion.target}", bold=True)
    click.echo(render_preview(suggestion))


@cli.command(name="apply")
@click.argument("source", type=click.File("r", encoding="utf-8"))
@_root_option
@click.option("-y", "--yes", is_flag=True, help="Apply without asking for confirmation.")
@click.pass_obj
def apply_cmd(
    config: ClientConfig, source: TextIO, root: Path | None, yes: bool
) -> None:
    """Apply the suggestion contained in saved model output SOURCE.

    \b
    Examples:
        localforge apply reply.md
        localforge apply --root ~/src/project --yes reply.md
    """
    suggestion = extract_suggestion(source.read(), config.suggestion_delimiters)
    if suggestion is None:
        click.secho("No suggestion found.", fg="yellow", err=True)
        raise SystemExit(1)

    click.echo(render_preview(suggestion))
    applicator = SuggestionApplicator(ProjectDocuments(root or config.project_root))
    if not yes and not click.confirm(f"Apply suggestion to {suggestion.target}?", default=False):
        applicator.reject(suggestion)
        click.secho("Suggestion discarded.", fg="yellow")
        return

    try:
        applied = applicator.apply(suggestion)
    except SuggestionError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(1) from exc
    click.secho(
        f"Applied suggestion to {suggestion.target} (replaced characters "
        f"{applied.start} to {applied.end}).",
        fg="green",
    )


# ── Entry point ───────────────────────────────────────────────────────────────


def cli_entry() -> None:
    """Entry point for the console_scripts."""
    try:
        cli()
    except LocalForgeError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    cli_entry()
