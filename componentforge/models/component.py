"""Component resource models — spec (desired) and status (observed)."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from componentforge.models.source import Artifact, NamespacedName, SourceReference

API_GROUP = "core.cs.sap.com"
API_VERSION = f"{API_GROUP}/v1alpha1"
KIND = "Component"

CONDITION_READY = "Ready"

# Flux notification metadata keys, prefixed with the API group on events.
META_REVISION_KEY = "revision"
META_TOKEN_KEY = "token"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> Any:
    """Accept Kubernetes-style durations such as ``10m`` or ``1h30m``."""
    if not isinstance(value, str) or not value:
        return value
    parts = _DURATION_PART.findall(value)
    if not parts or "".join(n + u for n, u in parts) != value:
        return value
    return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))


class _SpecModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class _StatusModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


# ---------------------------------------------------------------------------
# Spec
# ---------------------------------------------------------------------------


class SecretReference(_SpecModel):
    """Reference to a secret in the component's namespace."""

    name: str


class SecretKeyReference(_SpecModel):
    """Reference to one key of a secret.

    When ``key`` is empty, the first of the fallback keys present in the
    secret is used.
    """

    name: str
    key: str = ""


class Decryption(_SpecModel):
    """Decryption settings.

    ``provider`` may be ``sops`` or empty (which means sops).  The secret
    holds the key bundle, one key file per entry.
    """

    provider: str = ""
    secret_ref: SecretReference


class PostBuild(_SpecModel):
    """Variables substituted into the rendered manifests.

    Later secrets override earlier ones; inline values override secrets.
    """

    substitute: dict[str, str] = {}
    substitute_from: list[SecretReference] = []


class Dependency(NamespacedName):
    """Another Component this one must wait for."""


class ComponentSpec(_SpecModel):
    source_ref: SourceReference
    # Target placement of the rendered objects.
    namespace: str = ""
    name: str = ""
    revision: str = ""
    sticky: bool = False
    path: str = ""
    values: dict[str, Any] | None = None
    values_from: list[SecretKeyReference] = []
    decryption: Decryption | None = None
    post_build: PostBuild | None = None
    dependencies: list[Dependency] = []
    timeout: timedelta | None = None
    requeue_interval: timedelta | None = None

    @field_validator("timeout", "requeue_interval", mode="before")
    @classmethod
    def _duration(cls, value: Any) -> Any:
        return parse_duration(value)


# ---------------------------------------------------------------------------
# Metadata and status
# ---------------------------------------------------------------------------


class ObjectMeta(_StatusModel):
    namespace: str = ""
    name: str
    uid: str = ""
    generation: int = 1
    annotations: dict[str, str] = {}
    labels: dict[str, str] = {}
    deletion_timestamp: datetime | None = None


class Condition(_StatusModel):
    type: str
    status: str = "Unknown"  # True | False | Unknown
    observed_generation: int = 0
    reason: str = ""
    message: str = ""


class SourceReferenceStatus(_StatusModel):
    artifact: Artifact
    digest: str


class ComponentStatus(_StatusModel):
    """Observed state, mutated in place by the reconciler hooks."""

    observed_generation: int = -1
    state: str = ""
    conditions: list[Condition] = []
    processing_since: datetime | None = None
    source_ref: SourceReferenceStatus | None = None
    last_attempted_digest: str = ""
    last_attempted_revision: str = ""
    last_applied_digest: str = ""
    last_applied_revision: str = ""

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class Component(BaseModel):
    """The Component resource."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: ComponentSpec
    status: ComponentStatus = Field(default_factory=ComponentStatus)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def is_ready(self) -> bool:
        """Ready iff the latest generation was observed and reported Ready."""
        if self.status.observed_generation != self.metadata.generation:
            return False
        condition = self.status.get_condition(CONDITION_READY)
        return condition is not None and condition.status == "True"

    def event_annotations(self, component_digest: str) -> dict[str, str]:
        """Annotations attached to events recorded for this component."""
        return {
            f"{API_GROUP}/{META_REVISION_KEY}": self.status.last_attempted_revision,
            f"{API_GROUP}/{META_TOKEN_KEY}": f"{self.metadata.uid}:{component_digest}",
        }

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> Component:
        return cls.model_validate(manifest)
