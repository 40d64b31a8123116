"""``componentforge resolve URL`` — probe an HTTP repository."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from componentforge.config import config
from componentforge.core.errors import SourceError
from componentforge.core.hasher import calculate_digest
from componentforge.core.http_repository import get_artifact

console = Console()


def resolve_cmd(
    url: str = typer.Argument(..., help="URL of the archive."),
    digest_header: str = typer.Option(
        "", "--digest-header", help="Header identifying the content (default: ETag)."
    ),
    revision_header: str = typer.Option(
        "", "--revision-header", help="Header carrying the revision (default: digest header)."
    ),
) -> None:
    """Resolve URL to its artifact: final url, digest and revision."""
    try:
        artifact = get_artifact(
            url, digest_header, revision_header, timeout=config.http_timeout_seconds
        )
    except SourceError as exc:
        console.print(f"[bold red]Resolution failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    table = Table(title="Artifact", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("URL", artifact.url)
    table.add_row("Digest", artifact.digest)
    table.add_row("Revision", artifact.revision)
    table.add_row("Source digest", calculate_digest(artifact.url, artifact.digest, artifact.revision))
    console.print(table)
