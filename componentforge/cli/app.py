"""Main Typer application — imports and registers all CLI commands.

Entry point: ``componentforge`` (configured via pyproject.toml scripts).

Commands: render, resolve, decrypt, fingerprint.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from componentforge.cli.commands.decrypt_cmd import decrypt_cmd
from componentforge.cli.commands.fingerprint import fingerprint_cmd
from componentforge.cli.commands.render import render_cmd
from componentforge.cli.commands.resolve import resolve_cmd
from componentforge.config import config

app = typer.Typer(
    name="componentforge",
    help="componentforge: render Components from versioned, optionally encrypted template archives.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=config.debug, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Log level (default: COMPONENTFORGE_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging(log_level or config.log_level)


# Register subcommands
app.command(name="render", help="Render a Component offline and print its objects.")(render_cmd)
app.command(name="resolve", help="Resolve an HTTP repository URL to its artifact.")(resolve_cmd)
app.command(name="decrypt", help="Decrypt a SOPS-encrypted document.")(decrypt_cmd)
app.command(name="fingerprint", help="Compute a generator cache fingerprint.")(fingerprint_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
