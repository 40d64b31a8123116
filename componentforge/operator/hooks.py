"""Reconciler hooks — resolve sources, stamp status, gate on dependencies.

The external reconcile loop calls these around each attempt::

    post_read -> pre_reconcile -> (generate + apply) -> post_reconcile
    pre_delete (instead, while the component is being deleted)

Hooks raise domain errors.  ``run_hook`` is the single place that turns
them into a scheduling outcome (``HookResult``); ``PreconditionViolation``
is never classified and escapes to the worker.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from componentforge.core.dependency_gate import DependencyGate
from componentforge.core.errors import ComponentForgeError, RetriableError
from componentforge.core.source_resolver import SourceResolver
from componentforge.models.component import Component, SourceReferenceStatus
from componentforge.models.source import ResolvedSource, SourceBinding

logger = logging.getLogger(__name__)

REVISION_RETRY_DELAY = 10.0


@dataclass(frozen=True)
class HookResult:
    """Outcome of one hook invocation, as seen by the scheduler."""

    ok: bool
    retriable: bool = False
    retry_after: float | None = None
    message: str = ""


def classify(exc: ComponentForgeError) -> HookResult:
    if isinstance(exc, RetriableError):
        return HookResult(ok=False, retriable=True, retry_after=exc.retry_after, message=str(exc))
    return HookResult(ok=False, retriable=False, message=str(exc))


def run_hook(hook: Callable[..., Any], *args: Any) -> HookResult:
    """Invoke *hook* and classify the domain error it raises, if any."""
    try:
        hook(*args)
    except ComponentForgeError as exc:
        result = classify(exc)
        log = logger.info if result.retriable else logger.warning
        log("Hook %s failed: %s", getattr(hook, "__name__", hook), result.message)
        return result
    return HookResult(ok=True)


class ComponentHooks:
    """Hook implementations bound to a resolver and a dependency gate."""

    def __init__(
        self,
        resolver: SourceResolver,
        gate: DependencyGate,
        *,
        revision_retry_delay: float = REVISION_RETRY_DELAY,
    ) -> None:
        self._resolver = resolver
        self._gate = gate
        self._revision_retry_delay = revision_retry_delay

    def post_read(self, component: Component, binding: SourceBinding) -> None:
        """Resolve the source, bind it, and record it on the status.

        Skipped for components being deleted.  When ``spec.revision`` pins a
        revision, a different resolved revision is retriable.
        """
        if component.is_deleting:
            return

        previous = None
        if component.status.source_ref is not None:
            previous = ResolvedSource(
                artifact=component.status.source_ref.artifact,
                digest=component.status.source_ref.digest,
            )
        resolved = self._resolver.resolve(
            component.spec.source_ref,
            namespace=component.namespace,
            sticky=component.spec.sticky,
            processing_since=component.status.processing_since,
            timeout=component.spec.timeout,
            requeue_interval=component.spec.requeue_interval,
            previous=previous,
        )
        binding.bind(resolved)
        component.status.source_ref = SourceReferenceStatus(
            artifact=resolved.artifact, digest=resolved.digest
        )

        pinned = component.spec.revision
        if pinned and resolved.artifact.revision != pinned:
            raise RetriableError(
                f"source revision ({resolved.artifact.revision}) does not match "
                f"specified revision ({pinned})",
                self._revision_retry_delay,
            )

    def pre_reconcile(self, component: Component, binding: SourceBinding) -> None:
        # Generators may read the stamped fields, so stamp before gating.
        component.status.last_attempted_digest = binding.digest
        component.status.last_attempted_revision = binding.artifact.revision
        self._gate.check_reconcile(component)

    def post_reconcile(self, component: Component) -> None:
        component.status.last_applied_digest = component.status.last_attempted_digest
        component.status.last_applied_revision = component.status.last_attempted_revision

    def pre_delete(self, component: Component) -> None:
        self._gate.check_delete(component)
