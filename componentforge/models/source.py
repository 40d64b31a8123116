"""Source reference models — where a component's templates come from."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from componentforge.core.errors import ConfigurationError, PreconditionViolation


class _SpecModel(BaseModel):
    """Frozen model accepting both camelCase (manifest) and snake_case keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class NamespacedName(_SpecModel):
    """A tuple of namespace and name."""

    namespace: str = ""
    name: str

    def with_default_namespace(self, namespace: str) -> NamespacedName:
        """Return a copy using *namespace* if none is set."""
        if self.namespace:
            return self
        return self.model_copy(update={"namespace": namespace})

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"


class HttpRepository(_SpecModel):
    """Reference to a generic http repository.

    The resolver makes HEAD requests to retrieve the digest, the revision
    and the (possibly redirected) location of the archive.  Redirects are
    followed as long as the response does not carry the digest header.
    """

    url: str
    # Header carrying a value that uniquely identifies the archive content.
    # Defaults to ETag.
    digest_header: str = ""
    # Defaults to digest_header.
    revision_header: str = ""


class FluxGitRepository(NamespacedName):
    KIND: ClassVar[str] = "GitRepository"


class FluxOciRepository(NamespacedName):
    KIND: ClassVar[str] = "OCIRepository"


class FluxBucket(NamespacedName):
    KIND: ClassVar[str] = "Bucket"


class FluxHelmChart(NamespacedName):
    KIND: ClassVar[str] = "HelmChart"


ExternalSourceReference = FluxGitRepository | FluxOciRepository | FluxBucket | FluxHelmChart
SourceVariant = HttpRepository | ExternalSourceReference

EXTERNAL_SOURCE_KINDS: tuple[str, ...] = (
    FluxGitRepository.KIND,
    FluxOciRepository.KIND,
    FluxBucket.KIND,
    FluxHelmChart.KIND,
)


class SourceReference(_SpecModel):
    """The source of the templates used to render a component.

    Exactly one of the variants must be set; ``variant()`` enforces that.
    """

    http_repository: HttpRepository | None = None
    flux_git_repository: FluxGitRepository | None = None
    flux_oci_repository: FluxOciRepository | None = None
    flux_bucket: FluxBucket | None = None
    flux_helm_chart: FluxHelmChart | None = None

    def _populated(self) -> list[SourceVariant]:
        candidates = [
            self.http_repository,
            self.flux_git_repository,
            self.flux_oci_repository,
            self.flux_bucket,
            self.flux_helm_chart,
        ]
        return [c for c in candidates if c is not None]

    def variant(self) -> SourceVariant:
        """Return the populated variant.

        Raises
        ------
        ConfigurationError
            If none or more than one variant is set.
        """
        populated = self._populated()
        if len(populated) != 1:
            raise ConfigurationError(
                "unable to get source; exactly one of httpRepository, "
                "fluxGitRepository, fluxOciRepository, fluxBucket, "
                "fluxHelmChart must be defined"
            )
        return populated[0]

    def equals(self, other: SourceReference) -> bool:
        """Check if this reference points at the same source as *other*."""
        return self == other


class Artifact(BaseModel):
    """Identity triple of one snapshot of a template source.

    ``url`` is transport detail; content identity is digest plus revision.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    digest: str
    revision: str

    def same_content(self, other: Artifact) -> bool:
        return self.digest == other.digest and self.revision == other.revision


class ResolvedSource(BaseModel):
    """Result of resolving a source reference.

    ``digest`` is the discriminating hash computed by the resolver, which
    also moves when source metadata changes even if the artifact does not.
    """

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    digest: str


class SourceBinding:
    """Per-attempt holder for the resolved source of one component.

    A binding is written exactly once.  Binding twice, or reading before
    binding, is a caller defect and raises ``PreconditionViolation``.
    """

    def __init__(self) -> None:
        self._resolved: ResolvedSource | None = None

    @property
    def loaded(self) -> bool:
        return self._resolved is not None

    def bind(self, resolved: ResolvedSource) -> None:
        if self._resolved is not None:
            raise PreconditionViolation("reference already initialized")
        self._resolved = resolved

    @property
    def resolved(self) -> ResolvedSource:
        if self._resolved is None:
            raise PreconditionViolation("access to unloaded reference")
        return self._resolved

    @property
    def artifact(self) -> Artifact:
        return self.resolved.artifact

    @property
    def digest(self) -> str:
        return self.resolved.digest


class ExternalSource(BaseModel):
    """A flux-style source object (GitRepository, OCIRepository, ...).

    Only the fields the resolver reads are modelled.  ``artifact`` is
    ``None`` until the source controller has published one.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    namespace: str
    name: str
    uid: str = ""
    generation: int = 1
    annotations: dict[str, str] = {}
    ready: bool = False
    artifact: Artifact | None = None

    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)
