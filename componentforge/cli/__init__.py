"""componentforge CLI — Typer-based command-line interface.

Provides the ``componentforge`` command with subcommands for rendering
components offline, probing HTTP repositories, decrypting SOPS documents
and computing generator fingerprints.

All human-facing output uses Rich.
"""
