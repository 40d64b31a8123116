"""``componentforge render COMPONENT`` — render a component offline.

Loads the component manifest plus an optional store file (a multi-document
YAML with Secrets and flux sources, as they would exist in the cluster),
runs one reconcile attempt and prints the generated objects as YAML.
"""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console

from componentforge.config import config
from componentforge.core.object_store import InMemoryObjectStore
from componentforge.models.component import KIND, Component
from componentforge.operator.operator import ComponentOperator

err_console = Console(stderr=True)


def _load_documents(path: Path) -> list[dict]:
    try:
        return [d for d in yaml.safe_load_all(path.read_text(encoding="utf-8")) if d]
    except (OSError, yaml.YAMLError) as exc:
        err_console.print(f"[bold red]Cannot read {path}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def render_cmd(
    component_file: Path = typer.Argument(
        ...,
        help="Component manifest (YAML).",
    ),
    store_file: Path = typer.Option(
        None,
        "--store",
        "-s",
        help="Multi-document YAML with Secrets and flux sources.",
    ),
    namespace: str = typer.Option(
        "default",
        "--namespace",
        "-n",
        help="Namespace of the component if its manifest sets none.",
    ),
) -> None:
    """Render the objects of a component and print them as YAML."""
    store = InMemoryObjectStore()
    if store_file is not None:
        store.load_manifests(_load_documents(store_file))

    manifests = [d for d in _load_documents(component_file) if d.get("kind") == KIND]
    if len(manifests) != 1:
        err_console.print(f"[bold red]Expected exactly one {KIND} in {component_file}[/bold red]")
        raise typer.Exit(code=1)
    component = Component.from_manifest(manifests[0])
    if not component.metadata.namespace:
        component.metadata.namespace = namespace
    store.put_component(component)

    operator = ComponentOperator(store, config=config)
    outcome = operator.reconcile(component)
    if not outcome.result.ok:
        kind = "Retriable" if outcome.result.retriable else "Fatal"
        err_console.print(f"[bold red]{kind} error:[/bold red] {outcome.result.message}")
        raise typer.Exit(code=2 if outcome.result.retriable else 1)

    typer.echo(yaml.safe_dump_all(outcome.objects, sort_keys=False), nl=False)
