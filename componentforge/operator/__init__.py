"""Reconciler integration — hooks, component generator, requeue handlers."""

from componentforge.operator.checker import HttpRepositoryChecker
from componentforge.operator.generator import ComponentGenerator
from componentforge.operator.handlers import (
    components_for_component_delete,
    components_for_component_update,
    components_for_source_update,
)
from componentforge.operator.hooks import ComponentHooks, HookResult, classify, run_hook
from componentforge.operator.operator import ComponentOperator, ReconcileResult

__all__ = [
    "ComponentHooks",
    "HookResult",
    "classify",
    "run_hook",
    "ComponentGenerator",
    "HttpRepositoryChecker",
    "components_for_source_update",
    "components_for_component_update",
    "components_for_component_delete",
    "ComponentOperator",
    "ReconcileResult",
]
