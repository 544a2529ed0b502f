"""
chatstream CLI entry point

Talks to a running chatstream backend: start chats, reply on any branch and
read the latest conversation path.
"""

import sys

import typer

from app.core.config import load_project_env

load_project_env()

from app.cli.commands import chat
from app.cli.config import get_config, set_global_config


def config_callback(
    api_base: str = typer.Option(
        None,
        "--api-base",
        help="Backend API base URL (e.g., http://127.0.0.1:8000). Overrides CHATSTREAM_API_BASE.",
        envvar="CHATSTREAM_API_BASE",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print raw JSON instead of rendered text.",
    ),
    timeout: int = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds. Overrides CHATSTREAM_CLI_TIMEOUT.",
        envvar="CHATSTREAM_CLI_TIMEOUT",
    ),
    token: str = typer.Option(
        None,
        "--token",
        help="Bearer token identifying the user. Overrides CHATSTREAM_CLI_TOKEN.",
        envvar="CHATSTREAM_CLI_TOKEN",
    ),
) -> None:
    """Global options shared by every command."""
    set_global_config(
        get_config(
            api_base=api_base,
            timeout=timeout,
            token=token,
            output_format="json" if json_output else None,
        )
    )


app = typer.Typer(
    name="chatstream",
    help="chatstream: branching chat with streamed assistant replies",
    no_args_is_help=True,
    callback=config_callback,
)

app.command()(chat.new)
app.command()(chat.send)
app.command()(chat.show)
app.command()(chat.chats)
app.command()(chat.rename)
app.command()(chat.delete)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        print("\n[ABORTED] Aborted by user.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    main()
