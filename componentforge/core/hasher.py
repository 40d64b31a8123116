"""Canonical hashing helpers for source digests and generator fingerprints.

Every digest in componentforge is the SHA-256 hex of the canonical JSON
encoding of an ordered list of discriminating values.  Only content
identifying values go in; transport details such as URLs stay out of
cache fingerprints.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Mapping
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def calculate_digest(*values: Any) -> str:
    """SHA-256 of canonical(list of values).

    Order matters: the values form a tuple, not a set.
    """
    return sha256_hex(canonical_json_bytes(list(values)))


def key_bundle_digest(keys: Mapping[str, bytes] | None) -> str:
    """Hash a decryption key bundle without exposing key material.

    Bytes are base64 encoded so the bundle is JSON serializable; an absent
    bundle hashes the same as an empty one.
    """
    encoded = {
        name: base64.b64encode(value).decode("ascii")
        for name, value in (keys or {}).items()
    }
    return sha256_hex(canonical_json_bytes(encoded))


def compute_fingerprint(
    digest: str,
    path: str,
    decryption_provider: str = "",
    decryption_keys: Mapping[str, bytes] | None = None,
) -> str:
    """Cache identity of a generator.

    Built from the artifact digest, the sub-path inside the archive, the
    decryption provider and the hash of the key bundle.  Two components
    with different key bundles never share a generator.
    """
    return calculate_digest(
        digest, path, decryption_provider, key_bundle_digest(decryption_keys)
    )
