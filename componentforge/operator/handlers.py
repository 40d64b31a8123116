"""Requeue handlers — which components to reconcile after a watch event.

Each handler returns the names of the components to enqueue; the caller
owns the work queue.
"""

from __future__ import annotations

import logging

from componentforge.core.object_store import (
    DEPENDENCIES_INDEX_KEY,
    SOURCE_INDEX_KEYS,
    ObjectStore,
)
from componentforge.models.component import Component
from componentforge.models.source import ExternalSource, NamespacedName

logger = logging.getLogger(__name__)


def components_for_source_update(store: ObjectStore, source: ExternalSource) -> list[NamespacedName]:
    """Components to requeue after a flux source changed.

    Only ready sources with an artifact trigger anything.  Components that
    are ready and already attempted the published revision are skipped.
    """
    if not source.ready or source.artifact is None:
        return []
    index_key = SOURCE_INDEX_KEYS.get(source.kind)
    if index_key is None:
        return []
    revision = source.artifact.revision
    requests = []
    for component in store.list_components(index_key, str(source.namespaced_name())):
        if component.is_ready() and component.status.last_attempted_revision == revision:
            continue
        requests.append(component.namespaced_name())
    if requests:
        logger.debug(
            "%s %s published revision %s; requeueing %d component(s)",
            source.kind,
            source.namespaced_name(),
            revision,
            len(requests),
        )
    return requests


def components_for_component_update(store: ObjectStore, component: Component) -> list[NamespacedName]:
    """Dependents to requeue once *component* became ready."""
    if not component.is_ready():
        return []
    return [
        dependent.namespaced_name()
        for dependent in store.list_components(DEPENDENCIES_INDEX_KEY, str(component.namespaced_name()))
    ]


def components_for_component_delete(component: Component) -> list[NamespacedName]:
    """Dependencies to requeue after *component* is gone; one may be waiting to delete."""
    return [
        dependency.with_default_namespace(component.namespace)
        for dependency in component.spec.dependencies
    ]
