"""Source resolution — turn a source reference into a content-identified artifact.

Two families of sources:

- **HttpRepository**: probed directly with a HEAD request.
- **Flux sources** (GitRepository, OCIRepository, Bucket, HelmChart): looked
  up in the object store; their source controller has already published an
  artifact.

The resolver also computes the discriminating digest that tells the
reconciler whether anything relevant changed.  For flux sources the
object's uid, generation and annotations are part of it, so metadata churn
on the source forces a new attempt even when the artifact is unchanged.

Nothing here sleeps or retries: transient conditions become
``RetriableError`` with a suggested delay.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx

from componentforge.core.errors import RetriableError
from componentforge.core.hasher import calculate_digest
from componentforge.core.http_repository import get_artifact
from componentforge.core.object_store import (
    KindMismatchError,
    ObjectNotFoundError,
    ObjectStore,
)
from componentforge.models.source import (
    Artifact,
    HttpRepository,
    ResolvedSource,
    SourceReference,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = timedelta(minutes=10)
DEFAULT_RETRY_DELAY = 10.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceResolver:
    """Resolves source references against HTTP endpoints and the object store.

    Parameters
    ----------
    store:
        Object store used to look up flux-style sources.
    http_client:
        Optional ``httpx.Client`` for HTTP probes (tests inject a mock
        transport).  When ``None``, a short-lived client is used per probe.
    retry_delay:
        Suggested delay, in seconds, attached to retriable errors.
    http_timeout:
        Timeout, in seconds, of HTTP probes.
    default_timeout:
        Attempt timeout when a component sets neither timeout nor
        requeue interval.
    clock:
        Returns the current aware datetime; used for sticky reuse.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        http_client: httpx.Client | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        http_timeout: float = 30.0,
        default_timeout: timedelta = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._default_timeout = default_timeout
        self._http_client = http_client
        self._retry_delay = retry_delay
        self._http_timeout = http_timeout
        self._clock = clock

    def resolve(
        self,
        ref: SourceReference,
        *,
        namespace: str,
        sticky: bool = False,
        processing_since: datetime | None = None,
        timeout: timedelta | None = None,
        requeue_interval: timedelta | None = None,
        previous: ResolvedSource | None = None,
    ) -> ResolvedSource:
        """Resolve *ref* into an artifact and a discriminating digest.

        Parameters
        ----------
        ref:
            The source reference; exactly one variant must be set.
        namespace:
            Default namespace for flux source references.
        sticky:
            Reuse *previous* while the current attempt is in progress.
        processing_since:
            When the current reconciliation attempt began, if one is running.
        timeout, requeue_interval:
            Attempt timeout is *timeout*, else *requeue_interval*, else
            the resolver default (10 minutes).
        previous:
            Result recorded earlier during the current attempt.

        Raises
        ------
        ConfigurationError
            Not exactly one variant set.
        SourceError
            HTTP probe failed or returned a malformed answer.
        RetriableError
            Flux source missing, not ready, or incomplete.
        """
        if sticky and previous is not None and self._in_flight(
            processing_since, timeout or requeue_interval or self._default_timeout
        ):
            logger.debug(
                "Reusing sticky artifact %s (revision %s)",
                previous.artifact.url,
                previous.artifact.revision,
            )
            return previous

        variant = ref.variant()
        if isinstance(variant, HttpRepository):
            artifact = get_artifact(
                variant.url,
                variant.digest_header,
                variant.revision_header,
                client=self._http_client,
                timeout=self._http_timeout,
            )
            digest = calculate_digest(artifact.url, artifact.digest, artifact.revision)
        else:
            artifact, digest = self._resolve_external(
                variant.KIND, variant.with_default_namespace(namespace)
            )

        logger.info(
            "Resolved source %s to revision %s (digest %s)",
            artifact.url,
            artifact.revision,
            digest[:12],
        )
        return ResolvedSource(artifact=artifact, digest=digest)

    def _in_flight(self, processing_since: datetime | None, timeout: timedelta) -> bool:
        if processing_since is None:
            return False
        return self._clock() - processing_since < timeout

    def _resolve_external(self, kind, name) -> tuple[Artifact, str]:
        try:
            source = self._store.get_source(kind, name)
        except (ObjectNotFoundError, KindMismatchError) as exc:
            raise RetriableError(str(exc), self._retry_delay) from exc

        if not source.ready:
            raise RetriableError("source not ready", self._retry_delay)
        artifact = source.artifact
        if artifact is None or not artifact.url:
            raise RetriableError("source not ready (missing URL)", self._retry_delay)
        if not artifact.digest:
            raise RetriableError("source not ready (missing digest)", self._retry_delay)
        if not artifact.revision:
            raise RetriableError("source not ready (missing revision)", self._retry_delay)

        digest = calculate_digest(
            source.uid,
            source.generation,
            source.annotations,
            artifact.url,
            artifact.digest,
            artifact.revision,
        )
        return Artifact(url=artifact.url, digest=artifact.digest, revision=artifact.revision), digest
