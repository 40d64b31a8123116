"""Tests for requeue handlers and the HTTP repository checker."""

from __future__ import annotations

import httpx

from componentforge.core.hasher import calculate_digest
from componentforge.models.component import Dependency
from componentforge.models.source import (
    Artifact,
    ExternalSource,
    FluxGitRepository,
    HttpRepository,
    NamespacedName,
    SourceReference,
)
from componentforge.operator.checker import HttpRepositoryChecker
from componentforge.operator.handlers import (
    components_for_component_delete,
    components_for_component_update,
    components_for_source_update,
)

URL = "https://charts.example.com/app.tgz"
GIT_REF = SourceReference(flux_git_repository=FluxGitRepository(name="repo"))


def git_source(ready: bool = True, revision: str = "main@sha1:2") -> ExternalSource:
    return ExternalSource(
        kind="GitRepository",
        namespace="default",
        name="repo",
        ready=ready,
        artifact=Artifact(url="http://src/repo.tgz", digest="sha256:1", revision=revision),
    )


class TestSourceUpdate:
    def test_requeues_users_of_source(self, store, make_component):
        store.put_component(make_component("a", source_ref=GIT_REF))
        store.put_component(make_component("b"))
        assert components_for_source_update(store, git_source()) == [
            NamespacedName(namespace="default", name="a")
        ]

    def test_not_ready_source(self, store, make_component):
        store.put_component(make_component("a", source_ref=GIT_REF))
        assert components_for_source_update(store, git_source(ready=False)) == []

    def test_source_without_artifact(self, store, make_component):
        store.put_component(make_component("a", source_ref=GIT_REF))
        source = git_source().model_copy(update={"artifact": None})
        assert components_for_source_update(store, source) == []

    def test_ready_and_current_component_skipped(self, store, make_component):
        store.put_component(
            make_component("a", source_ref=GIT_REF, ready=True, status={"last_attempted_revision": "main@sha1:2"})
        )
        assert components_for_source_update(store, git_source()) == []

    def test_new_revision_requeues_ready_component(self, store, make_component):
        store.put_component(
            make_component("a", source_ref=GIT_REF, ready=True, status={"last_attempted_revision": "main@sha1:1"})
        )
        assert len(components_for_source_update(store, git_source())) == 1


class TestComponentHandlers:
    def test_ready_component_requeues_dependents(self, store, make_component):
        store.put_component(make_component("app", dependencies=[Dependency(name="db")]))
        assert components_for_component_update(store, make_component("db", ready=True)) == [
            NamespacedName(namespace="default", name="app")
        ]

    def test_unready_component_requeues_nothing(self, store, make_component):
        store.put_component(make_component("app", dependencies=[Dependency(name="db")]))
        assert components_for_component_update(store, make_component("db")) == []

    def test_delete_requeues_dependencies(self, make_component):
        component = make_component(
            namespace="team",
            dependencies=[Dependency(name="db"), Dependency(namespace="infra", name="cache")],
        )
        assert components_for_component_delete(component) == [
            NamespacedName(namespace="team", name="db"),
            NamespacedName(namespace="infra", name="cache"),
        ]


class TestHttpRepositoryChecker:
    def _checker(self, components, client):
        triggered = []
        checker = HttpRepositoryChecker(
            lambda: components, lambda ns, name: triggered.append((ns, name)), http_client=client
        )
        return checker, triggered

    def test_triggers_on_new_content(self, mock_client, make_component):
        client = mock_client(lambda request: httpx.Response(200, headers={"etag": '"v2"'}))
        checker, triggered = self._checker([make_component()], client)
        assert checker.check_once() == 1
        assert triggered == [("default", "app")]

    def test_quiet_when_unchanged(self, mock_client, make_component):
        client = mock_client(lambda request: httpx.Response(200, headers={"etag": '"v1"'}))
        component = make_component(
            status={
                "last_attempted_digest": calculate_digest(URL, "v1", "v1"),
                "last_attempted_revision": "v1",
            }
        )
        checker, triggered = self._checker([component], client)
        assert checker.check_once() == 0
        assert triggered == []

    def test_skips_flux_sources(self, mock_client, make_component):
        def respond(request):
            raise AssertionError("flux sources must not be probed")

        checker, triggered = self._checker([make_component(source_ref=GIT_REF)], mock_client(respond))
        assert checker.check_once() == 0

    def test_probe_errors_do_not_stop_the_pass(self, mock_client, make_component):
        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken.example.com":
                return httpx.Response(500)
            return httpx.Response(200, headers={"etag": '"v2"'})

        broken = make_component(
            "broken",
            source_ref=SourceReference(http_repository=HttpRepository(url="https://broken.example.com/x.tgz")),
        )
        checker, triggered = self._checker([broken, make_component("ok")], mock_client(respond))
        assert checker.check_once() == 1
        assert triggered == [("default", "ok")]

    def test_start_stop(self, mock_client):
        checker, _ = self._checker([], mock_client(lambda r: httpx.Response(200)))
        checker.start()
        checker.start()
        checker.stop(timeout=5)
        checker.stop(timeout=5)
