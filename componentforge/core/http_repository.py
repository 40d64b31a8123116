"""HTTP repository probing — digest, revision and location of an archive.

A HEAD request is sent to the configured URL.  Redirects are followed by
hand, and following stops as soon as a response carries the digest header:
a redirecting CDN that already knows the content hash is authoritative, the
final location is then taken from its ``Location`` header.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx

from componentforge.core.errors import SourceError
from componentforge.models.source import Artifact

logger = logging.getLogger(__name__)

DEFAULT_DIGEST_HEADER = "etag"
MAX_REDIRECTS = 10


def _header_value(response: httpx.Response, header: str) -> str:
    # Only surrounding quotes are dropped; a weak ``W/"..."`` tag is kept whole.
    value = response.headers.get(header, "").strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]
    return value


def get_artifact(
    url: str,
    digest_header: str = "",
    revision_header: str = "",
    *,
    client: httpx.Client | None = None,
    timeout: float = 30.0,
) -> Artifact:
    """Probe *url* and return the archive's artifact triple.

    Parameters
    ----------
    url:
        The configured repository URL.
    digest_header:
        Response header holding the content digest; defaults to ``etag``.
    revision_header:
        Response header holding the revision; defaults to *digest_header*.
    client:
        Optional pre-configured client (tests inject a mock transport).

    Raises
    ------
    SourceError
        On transport failure, a 4xx/5xx status, a redirect without
        location, too many redirects, or a missing digest/revision.
    """
    digest_header = digest_header or DEFAULT_DIGEST_HEADER
    revision_header = revision_header or digest_header

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=False)
    try:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            try:
                response = client.head(current, follow_redirects=False)
            except httpx.HTTPError as exc:
                raise SourceError(f"error calling source reference URL {current}: {exc}") from exc

            status = response.status_code
            if status >= 400:
                raise SourceError(
                    f"error calling source reference URL: {status} ({response.reason_phrase})"
                )
            if status >= 300:
                location = response.headers.get("location")
                if not location:
                    raise SourceError(f"redirect from {current} without location")
                location = urljoin(str(response.request.url), location)
                if response.headers.get(digest_header):
                    current = location
                    break
                logger.debug("Following redirect %s -> %s", current, location)
                current = location
                continue
            if status >= 200:
                current = str(response.request.url)
                break
            raise SourceError("referenced source not ready")
        else:
            raise SourceError(f"too many redirects resolving {url}")
    finally:
        if owns_client:
            client.close()

    digest = _header_value(response, digest_header)
    if not digest:
        raise SourceError("missing digest on source reference")
    revision = _header_value(response, revision_header)
    if not revision:
        raise SourceError("missing revision on source reference")

    logger.debug("Probed %s: url=%s digest=%s revision=%s", url, current, digest, revision)
    return Artifact(url=current, digest=digest, revision=revision)
