"""Shared test fixtures for componentforge."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable, Mapping
from typing import Any

import httpx
import pyrage
import pytest

from componentforge.core.object_store import InMemoryObjectStore
from componentforge.models.component import (
    Component,
    ComponentSpec,
    ComponentStatus,
    Condition,
    ObjectMeta,
)
from componentforge.models.source import HttpRepository, SourceReference

ARCHIVE_URL = "https://charts.example.com/app.tgz"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGenerator:
    """Manifest generator returning fixed objects and recording its calls."""

    def __init__(self, objects: list[dict[str, Any]] | None = None, snapshot: Mapping[str, bytes] | None = None):
        self.objects = objects if objects is not None else []
        self.snapshot = dict(snapshot or {})
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def generate(self, namespace: str, name: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        self.calls.append((namespace, name, dict(values)))
        return [dict(obj) for obj in self.objects]


def config_map(name: str, data: dict[str, str], annotations: dict[str, str] | None = None) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name}
    if annotations:
        metadata["annotations"] = annotations
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": metadata, "data": data}


# ---------------------------------------------------------------------------
# Stores and components
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryObjectStore:
    """Provide an empty in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def make_component() -> Callable[..., Component]:
    """Factory fixture: build a Component with an HTTP source by default."""

    def _factory(
        name: str = "app",
        namespace: str = "default",
        source_ref: SourceReference | None = None,
        ready: bool = False,
        generation: int = 1,
        status: dict[str, Any] | None = None,
        **spec: Any,
    ) -> Component:
        source_ref = source_ref or SourceReference(http_repository=HttpRepository(url=ARCHIVE_URL))
        component_status = ComponentStatus(**(status or {}))
        if ready:
            component_status.observed_generation = generation
            component_status.conditions = [
                Condition(type="Ready", status="True", observed_generation=generation)
            ]
        return Component(
            metadata=ObjectMeta(namespace=namespace, name=name, uid=f"uid-{name}", generation=generation),
            spec=ComponentSpec(source_ref=source_ref, **spec),
            status=component_status,
        )

    return _factory


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


def build_tarball(
    files: Mapping[str, bytes],
    *,
    directories: tuple[str, ...] = (),
    symlinks: Mapping[str, str] | None = None,
) -> bytes:
    """Build a gzip(tar) archive in memory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for directory in directories:
            info = tarfile.TarInfo(directory)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            archive.addfile(info)
    return buffer.getvalue()


@pytest.fixture
def make_tarball() -> Callable[..., bytes]:
    """Factory fixture: build a gzip(tar) archive from a name->bytes mapping."""
    return build_tarball


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]:
    """Factory fixture: an ``httpx.Client`` backed by a request handler."""

    def _factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    return _factory


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture
def age_identity() -> Any:
    """A freshly generated age X25519 identity."""
    return pyrage.x25519.Identity.generate()


@pytest.fixture
def age_recipient(age_identity) -> str:
    return str(age_identity.to_public())


@pytest.fixture
def age_key_bundle(age_identity) -> dict[str, bytes]:
    """A key bundle holding only an age identity."""
    return {"k.agekey": f"# test key\n{age_identity}\n".encode("ascii")}


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


@pytest.fixture
def make_generator() -> Callable[..., FakeGenerator]:
    """Factory fixture: a fake manifest generator returning *objects*."""
    return FakeGenerator


@pytest.fixture
def make_config_map() -> Callable[..., dict[str, Any]]:
    """Factory fixture: a ConfigMap manifest."""
    return config_map
