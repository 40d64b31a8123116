"""HTTP repository checker — polls HTTP sources for new content.

HTTP repositories have no watchable object, so the checker probes each
component's repository periodically and triggers a reconcile when the
digest or revision differs from the last attempted ones.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

import httpx

from componentforge.core.errors import SourceError
from componentforge.core.hasher import calculate_digest
from componentforge.core.http_repository import get_artifact
from componentforge.models.component import Component

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0

Trigger = Callable[[str, str], None]


class HttpRepositoryChecker:
    """Periodic HEAD poll over all components with an HTTP source.

    Parameters
    ----------
    list_components:
        Returns the components to check.
    trigger:
        Called with ``(namespace, name)`` for each component needing a
        reconcile.
    interval:
        Seconds between polls.
    """

    def __init__(
        self,
        list_components: Callable[[], Iterable[Component]],
        trigger: Trigger,
        *,
        interval: float = DEFAULT_INTERVAL,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._list_components = list_components
        self._trigger = trigger
        self._interval = interval
        self._http_client = http_client
        self._timeout = timeout
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def check_once(self) -> int:
        """Probe every HTTP source once; returns the number of triggers."""
        triggered = 0
        for component in self._list_components():
            repository = component.spec.source_ref.http_repository
            if repository is None:
                continue
            try:
                artifact = get_artifact(
                    repository.url,
                    repository.digest_header,
                    repository.revision_header,
                    client=self._http_client,
                    timeout=self._timeout,
                )
            except SourceError as exc:
                logger.warning("Error fetching artifact from http repository %s: %s", repository.url, exc)
                continue
            status = component.status
            digest = calculate_digest(artifact.url, artifact.digest, artifact.revision)
            if (
                digest != status.last_attempted_digest
                or artifact.revision != status.last_attempted_revision
            ):
                logger.info(
                    "New content at %s for component %s", repository.url, component.namespaced_name()
                )
                self._trigger(component.namespace, component.name)
                triggered += 1
        return triggered

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="http-repository-checker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stopped.set()
        thread.join(timeout)

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            self.check_once()
