"""``componentforge decrypt FILE --keys DIR`` — decrypt one SOPS document.

Every file in the key directory is part of the key bundle (``*.asc`` PGP
keys, ``*.agekey`` age identities).  Plain files are printed unchanged.
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.console import Console

from componentforge.core.errors import ComponentForgeError
from componentforge.decrypt import new_decryptor

err_console = Console(stderr=True)


def load_key_bundle(directory: Path) -> dict[str, bytes]:
    return {p.name: p.read_bytes() for p in sorted(directory.iterdir()) if p.is_file()}


def decrypt_cmd(
    file: Path = typer.Argument(..., help="Encrypted document."),
    keys: Path = typer.Option(..., "--keys", "-k", help="Directory holding the key bundle."),
    provider: str = typer.Option("sops", "--provider", help="Decryption provider."),
    output: Path = typer.Option(None, "--output", "-o", help="Write here instead of stdout."),
) -> None:
    """Decrypt FILE with the keys in --keys."""
    if not keys.is_dir():
        err_console.print(f"[bold red]Not a directory:[/bold red] {keys}")
        raise typer.Exit(code=1)

    try:
        decryptor = new_decryptor(provider, load_key_bundle(keys))
        try:
            plaintext = decryptor.decrypt(file.read_bytes(), file.name)
        finally:
            decryptor.cleanup()
    except ComponentForgeError as exc:
        err_console.print(f"[bold red]Decryption failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if output is not None:
        output.write_bytes(plaintext)
    else:
        sys.stdout.buffer.write(plaintext)
        sys.stdout.flush()
