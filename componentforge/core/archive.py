"""Artifact fetcher — download and safely extract gzip-compressed tarballs.

Extraction rules:

- entries with absolute paths or with a ``..`` segment are rejected;
- every entry header is checked before the first file is written, so a
  rejected archive leaves nothing behind;
- the ``.`` entry is skipped;
- directories are created, regular files are written; every other entry
  type (symlinks, hard links, devices, ...) is rejected;
- with a ``sub_path``, only entries at or below it are materialized;
- with a decryptor, each regular file passes through
  ``decryptor.decrypt(data, relative_path)`` exactly once before it is
  written.
"""

from __future__ import annotations

import io
import logging
import posixpath
import shutil
import tarfile
import tempfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import IO

import httpx

from componentforge.core.errors import ArchiveError
from componentforge.decrypt import Decryptor

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644

# Downloads larger than this are spooled to disk.
SPOOL_MAX_SIZE = 16 * 1024 * 1024


class _IteratorStream(io.RawIOBase):
    """Read-only file object over an iterator of byte chunks."""

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._buffer))
        buffer[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size


def clean_entry_path(name: str) -> str:
    """Validate and normalize a tar entry name.

    Raises
    ------
    ArchiveError
        The name is absolute or has a ``..`` segment.
    """
    if name.startswith("/") or posixpath.isabs(name):
        raise ArchiveError(f"archive must not contain entries with absolute paths ({name})")
    if ".." in PurePosixPath(name).parts:
        raise ArchiveError(f"archive must not contain entries with '..' segments ({name})")
    return posixpath.normpath(name)


def _normalize_sub_path(sub_path: str) -> str:
    cleaned = posixpath.normpath(sub_path.strip("/")) if sub_path else "."
    if cleaned == ".." or cleaned.startswith("../"):
        raise ArchiveError(f"invalid sub path {sub_path!r}")
    return cleaned


def _within(path: str, sub_path: str) -> bool:
    return sub_path == "." or path == sub_path or path.startswith(sub_path + "/")


def _select(member: tarfile.TarInfo, sub_path: str) -> str | None:
    """Return the relative path to materialize *member* at, or ``None`` to skip it."""
    if member.name in (".", "./"):
        return None
    path = clean_entry_path(member.name)
    if path == "." or not _within(path, sub_path):
        return None
    if not (member.isdir() or member.isreg()):
        raise ArchiveError(f"encountered unsupported tar entry type {member.type!r} in {path}")
    return path


def extract_archive(
    stream: IO[bytes],
    target_dir: Path,
    *,
    sub_path: str = "",
    decryptor: Decryptor | None = None,
) -> Path:
    """Extract a gzip(tar) *stream* into *target_dir*.

    The stream is spooled and every entry header is checked before the
    first file is written.  Returns the directory corresponding to
    *sub_path* (or *target_dir*).
    """
    target_dir = Path(target_dir)
    sub_path = _normalize_sub_path(sub_path)
    files = 0

    with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
        try:
            shutil.copyfileobj(stream, spool)
            spool.seek(0)
            with tarfile.open(fileobj=spool, mode="r|gz") as archive:
                for member in archive:
                    _select(member, sub_path)

            target_dir.mkdir(parents=True, exist_ok=True)
            spool.seek(0)
            with tarfile.open(fileobj=spool, mode="r|gz") as archive:
                for member in archive:
                    path = _select(member, sub_path)
                    if path is None:
                        continue
                    full_path = target_dir / path
                    if member.isdir():
                        full_path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
                        continue
                    full_path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
                    source = archive.extractfile(member)
                    data = source.read() if source is not None else b""
                    if decryptor is not None:
                        data = decryptor.decrypt(data, path)
                    full_path.write_bytes(data)
                    full_path.chmod(FILE_MODE)
                    files += 1
        except (tarfile.TarError, EOFError, OSError) as exc:
            raise ArchiveError(f"failed to extract archive: {exc}") from exc

    logger.debug("Extracted %d file(s) into %s", files, target_dir)
    return target_dir if sub_path == "." else target_dir / sub_path


class ArtifactFetcher:
    """Downloads artifacts over HTTP and extracts them.

    Parameters
    ----------
    client:
        Optional ``httpx.Client``; when ``None`` one is created per fetch.
    timeout:
        Timeout, in seconds, of the download.
    """

    def __init__(self, client: httpx.Client | None = None, *, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    def fetch(
        self,
        url: str,
        target_dir: Path,
        *,
        sub_path: str = "",
        decryptor: Decryptor | None = None,
    ) -> Path:
        """Download *url* and extract it below *target_dir*.

        Raises
        ------
        ArchiveError
            Download failed, non-200 response, or the archive is invalid.
        DecryptionError
            A file in the archive could not be decrypted.
        """
        logger.info("Downloading %s", url)
        client = self._client or httpx.Client(timeout=self._timeout, follow_redirects=True)
        try:
            with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise ArchiveError(
                        f"error downloading {url}: {response.status_code} {response.reason_phrase}"
                    )
                stream = io.BufferedReader(_IteratorStream(response.iter_bytes()))
                return extract_archive(stream, target_dir, sub_path=sub_path, decryptor=decryptor)
        except httpx.HTTPError as exc:
            raise ArchiveError(f"error downloading {url}: {exc}") from exc
        finally:
            if self._client is None:
                client.close()
