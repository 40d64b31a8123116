"""Component operator — wires the core services into one reconcile driver.

The operator owns the generator cache (and its sweeper) plus the HTTP
repository checker, and runs the hook sequence for single components::

    post_read -> pre_reconcile -> generate -> post_reconcile

Applying the generated objects to a cluster is left to the caller; the
``render`` CLI command prints them instead.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from componentforge.config import ForgeConfig
from componentforge.core.assembler import ManifestAssembler
from componentforge.core.dependency_gate import DependencyGate
from componentforge.core.errors import ComponentForgeError
from componentforge.core.generator_cache import GeneratorCache
from componentforge.core.generators import (
    GeneratorFactory,
    HelmGenerator,
    KustomizeGenerator,
)
from componentforge.core.object_store import (
    HTTP_REPOSITORY_INDEX_KEY,
    HTTP_REPOSITORY_INDEX_VALUE,
    ObjectStore,
)
from componentforge.core.source_resolver import SourceResolver
from componentforge.models.component import CONDITION_READY, Component, Condition
from componentforge.models.source import NamespacedName, SourceBinding
from componentforge.operator.checker import HttpRepositoryChecker
from componentforge.operator.generator import ComponentGenerator
from componentforge.operator.hooks import ComponentHooks, HookResult, classify

logger = logging.getLogger(__name__)

STATE_READY = "Ready"
STATE_PROCESSING = "Processing"
STATE_ERROR = "Error"
STATE_DELETION_BLOCKED = "DeletionBlocked"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileResult:
    component: Component
    result: HookResult
    objects: list[dict[str, Any]] = field(default_factory=list)


class ComponentOperator:
    """Reconcile driver over an ``ObjectStore``.

    Parameters
    ----------
    store:
        Where components, sources and secrets are read from.
    config:
        Controller settings; a fresh ``ForgeConfig()`` when ``None``.
    factory:
        Generator factory; tests inject one with fake engines.
    http_client:
        Client for source probes and downloads.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        config: ForgeConfig | None = None,
        factory: GeneratorFactory | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or ForgeConfig()
        self.store = store

        self.resolver = SourceResolver(
            store,
            http_client=http_client,
            retry_delay=self.config.source_retry_delay_seconds,
            http_timeout=self.config.http_timeout_seconds,
            default_timeout=timedelta(seconds=self.config.default_timeout_seconds),
        )
        self.gate = DependencyGate(store)
        self.hooks = ComponentHooks(
            self.resolver, self.gate, revision_retry_delay=self.config.source_retry_delay_seconds
        )
        self.cache = GeneratorCache(
            validity=self.config.cache_validity_seconds,
            sweep_interval=self.config.cache_sweep_interval_seconds,
        )
        self.factory = factory or GeneratorFactory(
            helm_factory=functools.partial(HelmGenerator, binary=self.config.helm_binary),
            kustomize_factory=functools.partial(KustomizeGenerator, binary=self.config.kustomize_binary),
            work_dir=self.config.work_dir,
            http_client=http_client,
        )
        self.assembler = ManifestAssembler(self.config.reconciler_name)
        self.generator = ComponentGenerator(store, self.cache, self.factory, self.assembler)

        self._triggered: set[NamespacedName] = set()
        self._trigger_lock = threading.Lock()
        self.checker = HttpRepositoryChecker(
            functools.partial(store.list_components, HTTP_REPOSITORY_INDEX_KEY, HTTP_REPOSITORY_INDEX_VALUE),
            self.trigger,
            interval=self.config.http_checker_interval_seconds,
            http_client=http_client,
            timeout=self.config.http_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cache.start()
        self.checker.start()

    def stop(self) -> None:
        self.checker.stop()
        self.cache.stop()

    def __enter__(self) -> ComponentOperator:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def trigger(self, namespace: str, name: str) -> None:
        with self._trigger_lock:
            self._triggered.add(NamespacedName(namespace=namespace, name=name))

    def drain_triggers(self) -> list[NamespacedName]:
        """Return and clear the components triggered since the last drain."""
        with self._trigger_lock:
            triggered, self._triggered = self._triggered, set()
        return sorted(triggered, key=str)

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(self, component: Component) -> ReconcileResult:
        """Run one attempt for *component* and project the outcome on its status."""
        if component.is_deleting:
            return self._delete(component)

        status = component.status
        if status.processing_since is None:
            status.processing_since = _utcnow()
        binding = SourceBinding()
        try:
            self.hooks.post_read(component, binding)
            self.hooks.pre_reconcile(component, binding)
            objects = self.generator.generate(component, binding)
            self.hooks.post_reconcile(component)
        except ComponentForgeError as exc:
            result = classify(exc)
            logger.warning("Reconcile of %s failed: %s", component.namespaced_name(), result.message)
            self._set_ready(component, False, STATE_PROCESSING if result.retriable else STATE_ERROR, result.message)
            return ReconcileResult(component, result)

        status.processing_since = None
        status.observed_generation = component.metadata.generation
        self._set_ready(component, True, STATE_READY, "")
        logger.info(
            "Reconciled %s at revision %s", component.namespaced_name(), status.last_applied_revision
        )
        return ReconcileResult(component, HookResult(ok=True), objects)

    def _delete(self, component: Component) -> ReconcileResult:
        try:
            self.hooks.pre_delete(component)
        except ComponentForgeError as exc:
            result = classify(exc)
            self._set_ready(component, False, STATE_DELETION_BLOCKED, result.message)
            return ReconcileResult(component, result)
        return ReconcileResult(component, HookResult(ok=True))

    def reconcile_all(self, components: Iterable[Component]) -> list[ReconcileResult]:
        """Reconcile *components* concurrently on a bounded worker pool."""
        with ThreadPoolExecutor(max_workers=self.config.max_concurrent_reconciles) as pool:
            return list(pool.map(self.reconcile, components))

    def _set_ready(self, component: Component, ready: bool, state: str, message: str) -> None:
        status = component.status
        status.state = state
        condition = Condition(
            type=CONDITION_READY,
            status="True" if ready else "False",
            observed_generation=component.metadata.generation,
            reason=state,
            message=message,
        )
        status.conditions = [c for c in status.conditions if c.type != CONDITION_READY] + [condition]
