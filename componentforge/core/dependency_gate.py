"""Dependency gate — ordering between components that depend on each other.

Before a component is reconciled, each of its dependencies must exist, be
ready, and (when it uses the very same source reference) have attempted
the same digest and revision.  The last rule keeps sibling components that
share one source advancing in lock step.  Before a component is deleted,
no other component may still depend on it.

All refusals are ``RetriableError`` without a suggested delay, leaving the
backoff to the scheduler.
"""

from __future__ import annotations

import logging

from componentforge.core.errors import RetriableError
from componentforge.core.object_store import (
    DEPENDENCIES_INDEX_KEY,
    ObjectNotFoundError,
    ObjectStore,
)
from componentforge.models.component import Component

logger = logging.getLogger(__name__)


def _synced(dependency: Component, component: Component) -> bool:
    theirs, ours = dependency.status, component.status
    if not theirs.last_attempted_digest and not theirs.last_attempted_revision:
        return False
    return (
        theirs.last_attempted_digest == ours.last_attempted_digest
        and theirs.last_attempted_revision == ours.last_attempted_revision
    )


class DependencyGate:
    """Checks dependencies against the live state in *store*."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def check_reconcile(self, component: Component) -> None:
        """Raise ``RetriableError`` unless every dependency allows reconciling.

        The component's own ``last_attempted_digest``/``revision`` must
        already be stamped.
        """
        for dependency in component.spec.dependencies:
            name = dependency.with_default_namespace(component.namespace)
            try:
                other = self._store.get_component(name)
            except ObjectNotFoundError as exc:
                raise RetriableError(f"dependent component {dependency} not found: {exc}") from exc

            if other.spec.source_ref.equals(component.spec.source_ref) and not _synced(other, component):
                raise RetriableError(f"dependent component {dependency} not synced")
            if not other.is_ready():
                raise RetriableError(f"dependent component {dependency} not ready")
        logger.debug("Dependencies of %s satisfied", component.namespaced_name())

    def check_delete(self, component: Component) -> None:
        """Raise ``RetriableError`` while other components depend on *component*."""
        dependents = self._store.list_components(
            DEPENDENCIES_INDEX_KEY, str(component.namespaced_name())
        )
        if not dependents:
            return
        first = dependents[0].namespaced_name()
        if len(dependents) == 1:
            raise RetriableError(f"deletion blocked by depending component {first}")
        raise RetriableError(
            f"deletion blocked by depending component {first} (and {len(dependents) - 1} others)"
        )
