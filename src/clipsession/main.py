"""CLI handling for clipsession.

This module provides the command-line interface for clipsession, handling
argument parsing via click, logging configuration, and dispatching to the
server or to one of the client operations.

Usage:
    clipsession [--socket PATH | --host HOST --port PORT] serve [--attachments DIR]
    clipsession create | join CODE | leave
    clipsession share [TEXT | --clipboard] [--file PATH]
    clipsession history | delete ID | recall ID | clear
    clipsession watch [--copy]
    clipsession theme [light|dark]
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import click

from clipsession.address import DEFAULT_HOST, DEFAULT_PORT, ServerAddress
from clipsession.client_state import THEMES, PersistedState
from clipsession.errors import ClipSessionError
from clipsession.limits import MAX_CONTENT_CHARS
from clipsession.main_logging import configure_logging
from clipsession.main_options import MutuallyExclusiveOption

T = TypeVar("T")


@dataclass
class CliContext:
    address: ServerAddress
    state_path: Path | None

    def load_state(self) -> PersistedState:
        return PersistedState.load(self.state_path)


pass_cli = click.make_pass_decorator(CliContext)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning failures into a one-line error and exit 1."""
    try:
        return asyncio.run(coro)
    except (ClipSessionError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--socket",
    type=click.Path(dir_okay=False),
    envvar="CLIPSESSION_SOCKET",
    cls=MutuallyExclusiveOption,
    excludes=["host", "port"],
    help="Unix domain socket of the server",
)
@click.option(
    "--host",
    default=DEFAULT_HOST,
    show_default=True,
    envvar="CLIPSESSION_HOST",
    help="Server host when not using a Unix socket",
)
@click.option(
    "--port",
    type=click.IntRange(1, 65535),
    default=DEFAULT_PORT,
    show_default=True,
    envvar="CLIPSESSION_PORT",
    help="Server port when not using a Unix socket",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="CLIPSESSION_STATE",
    help="Where the joined session and theme are remembered",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable DEBUG-level logging",
)
@click.pass_context
def main(
    ctx: click.Context,
    socket: str | None,
    host: str,
    port: int,
    state_file: Path | None,
    verbose: bool,
) -> None:
    """Share clipboard entries between devices through short session codes."""
    configure_logging(verbose)
    ctx.obj = CliContext(ServerAddress(socket, host, port), state_file)


@main.command()
@click.option(
    "--attachments",
    type=click.Path(file_okay=False),
    envvar="CLIPSESSION_ATTACHMENTS",
    help="Directory for uploaded files; uploads are refused without it",
)
@click.option(
    "--base-url",
    default="",
    envvar="CLIPSESSION_BASE_URL",
    help="Public URL prefix under which the attachment directory is served",
)
@click.option(
    "--max-content",
    type=click.IntRange(1),
    default=MAX_CONTENT_CHARS,
    show_default=True,
    help="Largest accepted entry text, in characters",
)
@pass_cli
def serve(cli: CliContext, attachments: str | None, base_url: str, max_content: int) -> None:
    """Run the session server."""
    from clipsession.limits import Limits
    from clipsession.server import run_server

    _run(run_server(cli.address, attachments, base_url, Limits(max_content_chars=max_content)))


@main.command()
@pass_cli
def create(cli: CliContext) -> None:
    """Create a new session and join it."""
    from clipsession.client import with_client

    async def action(client):
        return await client.create_session()

    click.echo(_run(with_client(cli.address, cli.load_state(), action, restore=False)))


@main.command()
@click.argument("code")
@pass_cli
def join(cli: CliContext, code: str) -> None:
    """Join an existing session by CODE (case-insensitive)."""
    from clipsession.client import with_client

    async def action(client):
        await client.join_session(code)
        return client.session_code, len(client.view)

    joined, count = _run(with_client(cli.address, cli.load_state(), action, restore=False))
    click.echo(f"Joined {joined} ({count} entries)")


@main.command()
@pass_cli
def leave(cli: CliContext) -> None:
    """Forget the current session on this device."""
    from clipsession.session_client import SessionClient

    persisted = cli.load_state()
    previous = persisted.session_code
    _run(SessionClient(persisted=persisted).leave_session())
    click.echo(f"Left session {previous}" if previous else "Not in a session")


@main.command()
@click.argument("text", required=False)
@click.option("--clipboard", "from_clipboard", is_flag=True, help="Share the current X11 clipboard text")
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Attach a file or image",
)
@pass_cli
def share(cli: CliContext, text: str | None, from_clipboard: bool, file_path: Path | None) -> None:
    """Share TEXT (or - for stdin) with the session.

    Content is checked before connecting, so an empty or oversized share
    fails without reaching the server.
    """
    from clipsession.attachments import validate_attachment_size
    from clipsession.client import format_entry, with_client
    from clipsession.models import Upload
    from clipsession.store import validate_content

    if text is not None and from_clipboard:
        raise click.UsageError("TEXT and --clipboard are mutually exclusive")
    if text == "-":
        text = click.get_text_stream("stdin").read()

    async def prepare_and_share():
        content = text or ""
        if from_clipboard:
            from clipsession.clipboard import X11Clipboard

            clipboard = X11Clipboard()
            try:
                content = await clipboard.read_text()
            finally:
                clipboard.close()
        upload = None
        if file_path is not None:
            upload = Upload(name=file_path.name, data=file_path.read_bytes())
        validate_content(content, upload is not None)
        if upload is not None:
            validate_attachment_size(upload.data)

        async def action(client):
            return await client.share(content, upload)

        return await with_client(cli.address, cli.load_state(), action)

    click.echo(format_entry(_run(prepare_and_share())))


@main.command()
@pass_cli
def history(cli: CliContext) -> None:
    """List the session's entries, newest first."""
    from clipsession.client import format_entry, with_client

    async def action(client):
        return client.session_code, client.view.entries

    code, entries = _run(with_client(cli.address, cli.load_state(), action))
    click.echo(f"Session {code}: {len(entries)} entries")
    for entry in entries:
        click.echo(format_entry(entry))


@main.command()
@click.argument("entry_id")
@pass_cli
def delete(cli: CliContext, entry_id: str) -> None:
    """Delete one entry by ENTRY_ID (any unique prefix)."""
    from clipsession.client import resolve_entry_id, with_client

    async def action(client):
        full_id = resolve_entry_id(client.view, entry_id)
        await client.delete_entry(full_id)
        return full_id

    click.echo(f"Deleted {_run(with_client(cli.address, cli.load_state(), action))}")


@main.command()
@click.argument("entry_id")
@pass_cli
def recall(cli: CliContext, entry_id: str) -> None:
    """Remove an entry and print its content for editing."""
    from clipsession.client import resolve_entry_id, with_client

    async def action(client):
        return await client.edit_entry(resolve_entry_id(client.view, entry_id))

    click.echo(_run(with_client(cli.address, cli.load_state(), action)))


@main.command()
@pass_cli
def clear(cli: CliContext) -> None:
    """Delete every entry of the session, for all devices."""
    from clipsession.client import with_client

    async def action(client):
        return await client.clear_session()

    removed = _run(with_client(cli.address, cli.load_state(), action))
    click.echo(f"Cleared {removed} entries" if removed else "Nothing to clear")


@main.command()
@click.option("--copy", is_flag=True, help="Put each new text entry on the X11 clipboard")
@pass_cli
def watch(cli: CliContext, copy: bool) -> None:
    """Follow the session live, reconnecting when the connection drops."""
    from clipsession.client import run_watch

    _run(run_watch(cli.address, cli.load_state(), copy))


@main.command()
@click.argument("choice", required=False, type=click.Choice(THEMES))
@pass_cli
def theme(cli: CliContext, choice: str | None) -> None:
    """Set the theme to CHOICE, or toggle it when CHOICE is omitted."""
    persisted = cli.load_state()
    if choice is None:
        persisted.toggle_theme()
    else:
        persisted.set_theme(choice)
    click.echo(persisted.theme)
