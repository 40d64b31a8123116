"""Manifest generators and the factory that builds them from artifacts.

A generator renders the objects of one template tree for a given
namespace, name and values.  Two engines are supported, both driven
through their command-line binaries:

- **Helm**: selected when ``Chart.yaml`` exists at the root of the
  extracted path; rendered with ``helm template``.
- **Kustomize**: everything else; rendered with ``kustomize build``.

Generators hold an in-memory snapshot of their (already decrypted) tree,
so the temporary extraction directory can be removed as soon as the
generator is built.  Each ``generate`` call materializes the snapshot in
a private scratch directory.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx
import yaml

from componentforge.core.archive import ArtifactFetcher
from componentforge.core.errors import ConfigurationError, GeneratorError
from componentforge.decrypt import SUPPORTED_PROVIDERS, new_decryptor

logger = logging.getLogger(__name__)

CHART_DESCRIPTOR = "Chart.yaml"

Snapshot = dict[str, bytes]


@runtime_checkable
class ManifestGenerator(Protocol):
    def generate(self, namespace: str, name: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        ...


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def snapshot_tree(root: Path) -> Snapshot:
    """Read every regular file below *root* into memory."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def materialize(snapshot: Snapshot, target: Path) -> Path:
    for relative, data in snapshot.items():
        path = target / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return target


def parse_manifests(text: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML stream; empty documents are dropped."""
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise GeneratorError(f"generator produced invalid YAML: {exc}") from exc
    objects = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise GeneratorError(f"generator produced a non-object document: {document!r}")
        objects.append(document)
    return objects


def _run(command: list[str], cwd: Path) -> str:
    logger.debug("Running %s", " ".join(command))
    try:
        result = subprocess.run(command, cwd=cwd, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise GeneratorError(f"unable to run {command[0]}: {exc}") from exc
    if result.returncode != 0:
        raise GeneratorError(
            f"{command[0]} failed with exit code {result.returncode}: {result.stderr.strip()}"
        )
    return result.stdout


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------


class HelmGenerator:
    """Renders a Helm chart with ``helm template``."""

    def __init__(self, snapshot: Snapshot, *, binary: str = "helm") -> None:
        if CHART_DESCRIPTOR not in snapshot:
            raise GeneratorError(f"not a helm chart: {CHART_DESCRIPTOR} missing")
        self._snapshot = dict(snapshot)
        self._binary = binary

    def generate(self, namespace: str, name: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        with tempfile.TemporaryDirectory(prefix="helm-") as scratch:
            chart_dir = materialize(self._snapshot, Path(scratch) / "chart")
            values_file = Path(scratch) / "values.yaml"
            values_file.write_text(yaml.safe_dump(dict(values)), encoding="utf-8")
            output = _run(
                [
                    self._binary,
                    "template",
                    name,
                    str(chart_dir),
                    "--namespace",
                    namespace,
                    "--values",
                    str(values_file),
                ],
                cwd=Path(scratch),
            )
        return parse_manifests(output)


class KustomizeGenerator:
    """Renders a Kustomize tree with ``kustomize build``.

    Values are not used by Kustomize; objects without a namespace are
    placed in the target namespace.
    """

    def __init__(self, snapshot: Snapshot, *, binary: str = "kustomize") -> None:
        self._snapshot = dict(snapshot)
        self._binary = binary

    def generate(self, namespace: str, name: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        with tempfile.TemporaryDirectory(prefix="kustomize-") as scratch:
            tree = materialize(self._snapshot, Path(scratch) / "tree")
            output = _run([self._binary, "build", str(tree)], cwd=Path(scratch))
        objects = parse_manifests(output)
        for obj in objects:
            metadata = obj.setdefault("metadata", {})
            if not metadata.get("namespace"):
                metadata["namespace"] = namespace
        return objects


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


EngineFactory = Callable[[Snapshot], ManifestGenerator]


class GeneratorFactory:
    """Builds generators from remote artifacts.

    Parameters
    ----------
    fetcher:
        Downloads and extracts artifacts.
    helm_factory, kustomize_factory:
        Construct the engine for an in-memory snapshot; tests inject fakes.
    work_dir:
        Parent of the temporary extraction directories (system temp if
        ``None``).
    """

    def __init__(
        self,
        fetcher: ArtifactFetcher | None = None,
        *,
        helm_factory: EngineFactory | None = None,
        kustomize_factory: EngineFactory | None = None,
        work_dir: Path | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._fetcher = fetcher or ArtifactFetcher(http_client)
        self._helm_factory = helm_factory or HelmGenerator
        self._kustomize_factory = kustomize_factory or KustomizeGenerator
        self._work_dir = work_dir

    def build(
        self,
        url: str,
        path: str,
        decryption_provider: str = "",
        decryption_keys: Mapping[str, bytes] | None = None,
    ) -> ManifestGenerator:
        """Download *url*, decrypt and extract *path*, and build its generator.

        Raises
        ------
        ConfigurationError
            Unsupported decryption provider.
        ArchiveError, DecryptionError
            Fetching, extracting or decrypting failed.
        GeneratorError
            *path* is missing or not a directory.
        """
        if decryption_provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(f"unsupported decryption provider: {decryption_provider}")
        work_dir = str(self._work_dir) if self._work_dir else None
        decryptor = None
        if decryption_keys:
            decryptor = new_decryptor(decryption_provider, decryption_keys, self._work_dir)
        try:
            with tempfile.TemporaryDirectory(prefix="componentforge-", dir=work_dir) as tmpdir:
                root = self._fetcher.fetch(url, Path(tmpdir), sub_path=path, decryptor=decryptor)
                if not root.exists():
                    raise GeneratorError(f"no such file or directory: {path}")
                if not root.is_dir():
                    raise GeneratorError(f"not a directory: {path}")
                snapshot = snapshot_tree(root)
        finally:
            if decryptor is not None:
                decryptor.cleanup()

        if CHART_DESCRIPTOR in snapshot:
            logger.info("Building helm generator for %s (path %r)", url, path)
            return self._helm_factory(snapshot)
        logger.info("Building kustomize generator for %s (path %r)", url, path)
        return self._kustomize_factory(snapshot)
