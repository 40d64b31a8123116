"""Tests for the reconciler hooks and hook-result classification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from componentforge.core.dependency_gate import DependencyGate
from componentforge.core.errors import (
    ConfigurationError,
    PreconditionViolation,
    RetriableError,
)
from componentforge.core.hasher import calculate_digest
from componentforge.core.source_resolver import SourceResolver
from componentforge.models.component import Dependency, SourceReferenceStatus
from componentforge.models.source import Artifact, SourceBinding
from componentforge.operator.hooks import ComponentHooks, HookResult, classify, run_hook


ARCHIVE_URL = "https://charts.example.com/app.tgz"
NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class ProbeCounter:
    def __init__(self, etag: str = '"v1"'):
        self.etag = etag
        self.count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.count += 1
        return httpx.Response(200, headers={"etag": self.etag})


@pytest.fixture
def probe() -> ProbeCounter:
    return ProbeCounter()


@pytest.fixture
def hooks(store, mock_client, probe) -> ComponentHooks:
    resolver = SourceResolver(store, http_client=mock_client(probe), clock=lambda: NOW)
    return ComponentHooks(resolver, DependencyGate(store), revision_retry_delay=7.0)


class TestPostRead:
    def test_binds_and_records_source(self, hooks, make_component):
        component = make_component()
        binding = SourceBinding()
        hooks.post_read(component, binding)
        assert binding.artifact.revision == "v1"
        assert binding.digest == calculate_digest(ARCHIVE_URL, "v1", "v1")
        assert component.status.source_ref.digest == binding.digest
        assert component.status.source_ref.artifact.url == ARCHIVE_URL

    def test_skipped_while_deleting(self, hooks, make_component, probe):
        component = make_component()
        component.metadata.deletion_timestamp = NOW
        binding = SourceBinding()
        hooks.post_read(component, binding)
        assert not binding.loaded
        assert probe.count == 0

    def test_pinned_revision_mismatch(self, hooks, make_component):
        component = make_component(revision="v2")
        with pytest.raises(RetriableError, match=r"source revision \(v1\) does not match specified revision \(v2\)") as excinfo:
            hooks.post_read(component, SourceBinding())
        assert excinfo.value.retry_after == 7.0
        assert component.status.source_ref is not None

    def test_pinned_revision_match(self, hooks, make_component):
        hooks.post_read(make_component(revision="v1"), SourceBinding())

    def test_sticky_keeps_previous_artifact(self, hooks, make_component, probe):
        previous = Artifact(url=ARCHIVE_URL, digest="v0", revision="v0")
        component = make_component(
            sticky=True,
            status={
                "processing_since": NOW - timedelta(minutes=1),
                "source_ref": SourceReferenceStatus(artifact=previous, digest="old"),
            },
        )
        binding = SourceBinding()
        hooks.post_read(component, binding)
        assert binding.artifact == previous
        assert binding.digest == "old"
        assert probe.count == 0

    def test_sticky_ignored_when_idle(self, hooks, make_component, probe):
        previous = Artifact(url=ARCHIVE_URL, digest="v0", revision="v0")
        component = make_component(
            sticky=True,
            status={"source_ref": SourceReferenceStatus(artifact=previous, digest="old")},
        )
        binding = SourceBinding()
        hooks.post_read(component, binding)
        assert binding.artifact.revision == "v1"
        assert probe.count == 1


class TestPreReconcile:
    def test_stamps_before_gating(self, hooks, make_component):
        component = make_component(dependencies=[Dependency(name="missing")])
        binding = SourceBinding()
        hooks.post_read(component, binding)
        with pytest.raises(RetriableError, match="not found"):
            hooks.pre_reconcile(component, binding)
        assert component.status.last_attempted_digest == binding.digest
        assert component.status.last_attempted_revision == "v1"

    def test_unbound_source_is_a_precondition_violation(self, hooks, make_component):
        with pytest.raises(PreconditionViolation):
            hooks.pre_reconcile(make_component(), SourceBinding())

    def test_post_reconcile_copies_attempted(self, hooks, make_component):
        component = make_component(status={"last_attempted_digest": "d", "last_attempted_revision": "r"})
        hooks.post_reconcile(component)
        assert (component.status.last_applied_digest, component.status.last_applied_revision) == ("d", "r")


class TestPreDelete:
    def test_blocked(self, hooks, store, make_component):
        target = make_component("db")
        store.put_component(make_component("app", dependencies=[Dependency(name="db")]))
        with pytest.raises(RetriableError, match="deletion blocked"):
            hooks.pre_delete(target)


class TestRunHook:
    def test_ok(self):
        assert run_hook(lambda: None) == HookResult(ok=True)

    def test_retriable(self):
        def hook():
            raise RetriableError("later", 3.0)

        assert run_hook(hook) == HookResult(ok=False, retriable=True, retry_after=3.0, message="later")

    def test_fatal(self):
        def hook():
            raise ConfigurationError("broken")

        assert run_hook(hook) == HookResult(ok=False, retriable=False, message="broken")

    def test_precondition_violation_escapes(self):
        def hook():
            raise PreconditionViolation("bug")

        with pytest.raises(PreconditionViolation):
            run_hook(hook)

    def test_unrelated_errors_escape(self):
        def hook():
            raise KeyError("x")

        with pytest.raises(KeyError):
            run_hook(hook)

    def test_classify_default_delay(self):
        assert classify(RetriableError("x")).retry_after is None
