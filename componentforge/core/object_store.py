"""Object store collaborator — components, external sources and secrets.

The controller reads everything it needs (dependency state, flux sources,
secret-held values and keys) live from an ``ObjectStore``.  Production
wiring backs it with the cluster's informer cache; ``InMemoryObjectStore``
backs tests and the offline ``render`` command.

Components are indexed by field, the same way the informer cache indexes
them: by the components they depend on, by the flux source they use, and
by whether they use an HTTP repository.
"""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from componentforge.models.component import CONDITION_READY, KIND, Component
from componentforge.models.source import (
    EXTERNAL_SOURCE_KINDS,
    Artifact,
    ExternalSource,
    NamespacedName,
)

DEPENDENCIES_INDEX_KEY = ".metadata.dependencies"
GIT_REPOSITORY_INDEX_KEY = ".metadata.gitRepository"
OCI_REPOSITORY_INDEX_KEY = ".metadata.ociRepository"
BUCKET_INDEX_KEY = ".metadata.bucket"
HELM_CHART_INDEX_KEY = ".metadata.helmChart"
HTTP_REPOSITORY_INDEX_KEY = ".metadata.httpRepository"

# Every component with an HTTP source is indexed under this one value.
HTTP_REPOSITORY_INDEX_VALUE = "true"

# Source kind -> index key of the components referencing it.
SOURCE_INDEX_KEYS: dict[str, str] = {
    "GitRepository": GIT_REPOSITORY_INDEX_KEY,
    "OCIRepository": OCI_REPOSITORY_INDEX_KEY,
    "Bucket": BUCKET_INDEX_KEY,
    "HelmChart": HELM_CHART_INDEX_KEY,
}

Indexer = Callable[[Component], list[str]]


class ObjectNotFoundError(LookupError):
    """Raised when an object does not exist in the store."""


class KindMismatchError(LookupError):
    """Raised when the requested kind is not served by the store."""


@runtime_checkable
class ObjectStore(Protocol):
    """Read access to the objects the controller depends on."""

    def get_component(self, name: NamespacedName) -> Component:
        """Return the component, or raise ``ObjectNotFoundError``."""
        ...

    def get_source(self, kind: str, name: NamespacedName) -> ExternalSource:
        """Return the external source, or raise ``ObjectNotFoundError``/``KindMismatchError``."""
        ...

    def get_secret(self, name: NamespacedName) -> dict[str, bytes]:
        """Return the secret's data, or raise ``ObjectNotFoundError``."""
        ...

    def list_components(self, index_key: str, value: str) -> list[Component]:
        """Return components whose *index_key* index contains *value*."""
        ...


# ---------------------------------------------------------------------------
# Indexers
# ---------------------------------------------------------------------------


def index_by_dependencies(component: Component) -> list[str]:
    return [
        str(dependency.with_default_namespace(component.namespace))
        for dependency in component.spec.dependencies
    ]


def _source_indexer(attribute: str) -> Indexer:
    def index(component: Component) -> list[str]:
        ref = getattr(component.spec.source_ref, attribute)
        if ref is None:
            return []
        return [str(ref.with_default_namespace(component.namespace))]

    return index


def index_by_http_repository(component: Component) -> list[str]:
    if component.spec.source_ref.http_repository is None:
        return []
    return [HTTP_REPOSITORY_INDEX_VALUE]


DEFAULT_INDEXERS: dict[str, Indexer] = {
    DEPENDENCIES_INDEX_KEY: index_by_dependencies,
    GIT_REPOSITORY_INDEX_KEY: _source_indexer("flux_git_repository"),
    OCI_REPOSITORY_INDEX_KEY: _source_indexer("flux_oci_repository"),
    BUCKET_INDEX_KEY: _source_indexer("flux_bucket"),
    HELM_CHART_INDEX_KEY: _source_indexer("flux_helm_chart"),
    HTTP_REPOSITORY_INDEX_KEY: index_by_http_repository,
}


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryObjectStore:
    """Thread-safe, dictionary-backed ``ObjectStore``.

    Parameters
    ----------
    indexers:
        Field indexers keyed by index key.  Defaults to the dependency and
        flux source indexes.
    """

    def __init__(
        self,
        indexers: dict[str, Indexer] | None = None,
        source_kinds: Iterable[str] = EXTERNAL_SOURCE_KINDS,
    ) -> None:
        self._lock = threading.Lock()
        self._indexers = dict(indexers or DEFAULT_INDEXERS)
        self._source_kinds = frozenset(source_kinds)
        self._components: dict[str, Component] = {}
        self._sources: dict[str, ExternalSource] = {}
        self._secrets: dict[str, dict[str, bytes]] = {}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put_component(self, component: Component) -> None:
        with self._lock:
            self._components[str(component.namespaced_name())] = component

    def delete_component(self, name: NamespacedName) -> None:
        with self._lock:
            self._components.pop(str(name), None)

    def put_source(self, source: ExternalSource) -> None:
        with self._lock:
            self._sources[f"{source.kind}:{source.namespaced_name()}"] = source

    def put_secret(self, name: NamespacedName, data: dict[str, bytes]) -> None:
        with self._lock:
            self._secrets[str(name)] = dict(data)

    def load(
        self,
        components: Iterable[Component] = (),
        sources: Iterable[ExternalSource] = (),
    ) -> None:
        """Bulk-insert components and sources."""
        for component in components:
            self.put_component(component)
        for source in sources:
            self.put_source(source)

    # ------------------------------------------------------------------
    # ObjectStore protocol
    # ------------------------------------------------------------------

    def get_component(self, name: NamespacedName) -> Component:
        with self._lock:
            component = self._components.get(str(name))
        if component is None:
            raise ObjectNotFoundError(f"component {name} not found")
        return component

    def get_source(self, kind: str, name: NamespacedName) -> ExternalSource:
        if kind not in self._source_kinds:
            raise KindMismatchError(f"no matches for kind {kind}")
        with self._lock:
            source = self._sources.get(f"{kind}:{name}")
        if source is None:
            raise ObjectNotFoundError(f"{kind} {name} not found")
        return source

    def get_secret(self, name: NamespacedName) -> dict[str, bytes]:
        with self._lock:
            data = self._secrets.get(str(name))
        if data is None:
            raise ObjectNotFoundError(f"secret {name} not found")
        return dict(data)

    def list_components(self, index_key: str, value: str) -> list[Component]:
        indexer = self._indexers.get(index_key)
        if indexer is None:
            raise KeyError(f"no index registered for {index_key}")
        with self._lock:
            components = list(self._components.values())
        return [c for c in components if value in indexer(c)]

    def load_manifests(self, documents: Iterable[dict[str, Any]]) -> int:
        """Insert Components, Secrets and flux sources given as manifests.

        Other kinds are ignored.  Returns the number of objects loaded.
        """
        loaded = 0
        for document in documents:
            if not document:
                continue
            kind = document.get("kind", "")
            metadata = document.get("metadata") or {}
            name = NamespacedName(
                namespace=metadata.get("namespace", ""), name=metadata.get("name", "")
            )
            if kind == KIND:
                self.put_component(Component.from_manifest(document))
            elif kind == "Secret":
                self.put_secret(name, _secret_data(document))
            elif kind in self._source_kinds:
                self.put_source(_external_source(kind, document))
            else:
                continue
            loaded += 1
        return loaded


def _secret_data(document: dict[str, Any]) -> dict[str, bytes]:
    data = {k: base64.b64decode(v) for k, v in (document.get("data") or {}).items()}
    data.update({k: v.encode("utf-8") for k, v in (document.get("stringData") or {}).items()})
    return data


def _external_source(kind: str, document: dict[str, Any]) -> ExternalSource:
    metadata = document.get("metadata") or {}
    status = document.get("status") or {}
    ready = any(
        c.get("type") == CONDITION_READY and c.get("status") == "True"
        for c in status.get("conditions") or []
    )
    raw_artifact = status.get("artifact")
    artifact = None
    if raw_artifact:
        artifact = Artifact(
            url=raw_artifact.get("url", ""),
            digest=raw_artifact.get("digest", ""),
            revision=raw_artifact.get("revision", ""),
        )
    return ExternalSource(
        kind=kind,
        namespace=metadata.get("namespace", ""),
        name=metadata.get("name", ""),
        uid=metadata.get("uid", ""),
        generation=metadata.get("generation", 1),
        annotations=metadata.get("annotations") or {},
        ready=ready,
        artifact=artifact,
    )
