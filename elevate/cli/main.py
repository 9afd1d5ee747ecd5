"""
Elevate CLI Main Entry Point

Streaming chat with the Elevate agent from the terminal, plus the relay
server the CLI talks to.
"""

import logging
import sys

import typer

from elevate.core.env_loader import load_project_env

load_project_env()

from elevate.cli._globals import set_global_config
from elevate.cli.commands import chat, history
from elevate.cli.config import get_config


def config_callback(
    api_base: str = typer.Option(
        None,
        "--api-base",
        help="Relay base URL (e.g., http://127.0.0.1:8000). Overrides ELEVATE_API_BASE env var.",
        envvar="ELEVATE_API_BASE",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output results in JSON format instead of plain text.",
    ),
    timeout: int = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds. Overrides ELEVATE_CLI_TIMEOUT env var.",
        envvar="ELEVATE_CLI_TIMEOUT",
    ),
    stream_timeout: int = typer.Option(
        None,
        "--stream-timeout",
        help="Max seconds between bytes of a streamed reply. Overrides ELEVATE_CLI_STREAM_TIMEOUT.",
        envvar="ELEVATE_CLI_STREAM_TIMEOUT",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
) -> None:
    """Global options callback. Sets configuration for all commands."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    config = get_config(
        api_base=api_base,
        timeout=timeout,
        stream_timeout=stream_timeout,
        output_format="json" if json_output else None,
    )
    set_global_config(config)


app = typer.Typer(
    name="elevate",
    help="Elevate: streaming chat with the Elevate agent",
    no_args_is_help=True,
    callback=config_callback,
)

app.command()(chat.chat)
app.command()(chat.ask)
app.add_typer(history.history_app, name="history")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Flowise relay server."""
    import uvicorn

    uvicorn.run("elevate.main:app", host=host, port=port, reload=reload)


def main() -> None:
    """Main entry point for CLI."""
    try:
        app()
    except KeyboardInterrupt:
        print("\n[ABORTED] Aborted by user.", file=sys.stderr)
        sys.exit(0)
    except Exception as e:
        print(f"\n[ERROR] Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
