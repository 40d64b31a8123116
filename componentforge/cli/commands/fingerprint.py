"""``componentforge fingerprint DIGEST`` — print a generator cache key."""

from __future__ import annotations

from pathlib import Path

import typer

from componentforge.cli.commands.decrypt_cmd import load_key_bundle
from componentforge.core.hasher import compute_fingerprint


def fingerprint_cmd(
    digest: str = typer.Argument(..., help="Artifact digest."),
    path: str = typer.Option("", "--path", "-p", help="Path inside the archive."),
    provider: str = typer.Option("", "--provider", help="Decryption provider."),
    keys: Path = typer.Option(None, "--keys", "-k", help="Directory holding the key bundle."),
) -> None:
    """Compute the fingerprint identifying a cached generator."""
    bundle = load_key_bundle(keys) if keys is not None else {}
    typer.echo(compute_fingerprint(digest, path, provider, bundle))
