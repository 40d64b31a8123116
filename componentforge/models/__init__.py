"""componentforge data models — pydantic v2; specs frozen, status mutable."""

from componentforge.models.component import (
    Component,
    ComponentSpec,
    ComponentStatus,
    Condition,
    Decryption,
    Dependency,
    ObjectMeta,
    PostBuild,
    SecretKeyReference,
    SecretReference,
    SourceReferenceStatus,
)
from componentforge.models.source import (
    Artifact,
    ExternalSource,
    FluxBucket,
    FluxGitRepository,
    FluxHelmChart,
    FluxOciRepository,
    HttpRepository,
    NamespacedName,
    ResolvedSource,
    SourceBinding,
    SourceReference,
)

__all__ = [
    # source
    "NamespacedName",
    "HttpRepository",
    "FluxGitRepository",
    "FluxOciRepository",
    "FluxBucket",
    "FluxHelmChart",
    "SourceReference",
    "Artifact",
    "ResolvedSource",
    "SourceBinding",
    "ExternalSource",
    # component
    "SecretReference",
    "SecretKeyReference",
    "Decryption",
    "PostBuild",
    "Dependency",
    "ComponentSpec",
    "ObjectMeta",
    "Condition",
    "SourceReferenceStatus",
    "ComponentStatus",
    "Component",
]
