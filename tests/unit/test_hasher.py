"""Tests for canonical hashing — digests and generator fingerprints."""

from __future__ import annotations

import hashlib

from componentforge.core.hasher import (
    calculate_digest,
    canonical_json_bytes,
    compute_fingerprint,
    key_bundle_digest,
)


class TestCanonicalJson:
    def test_sorted_and_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_non_ascii_escaped(self):
        assert canonical_json_bytes("ü") == b'"\\u00fc"'


class TestCalculateDigest:
    def test_hash_of_canonical_list(self):
        expected = hashlib.sha256(b'["u","d","r"]').hexdigest()
        assert calculate_digest("u", "d", "r") == expected

    def test_order_matters(self):
        assert calculate_digest("a", "b") != calculate_digest("b", "a")

    def test_mapping_order_does_not_matter(self):
        assert calculate_digest({"x": "1", "y": "2"}) == calculate_digest({"y": "2", "x": "1"})


class TestFingerprint:
    def test_lowercase_hex(self):
        fp = compute_fingerprint("sha256:abc", "charts/app")
        assert len(fp) == 64
        assert fp == fp.lower()

    def test_stable(self):
        keys = {"k.agekey": b"AGE-SECRET-KEY-1XYZ"}
        assert compute_fingerprint("d", "p", "sops", keys) == compute_fingerprint("d", "p", "sops", dict(keys))

    def test_every_field_discriminates(self):
        base = compute_fingerprint("d", "p", "sops", {"a.asc": b"1"})
        assert compute_fingerprint("d2", "p", "sops", {"a.asc": b"1"}) != base
        assert compute_fingerprint("d", "p2", "sops", {"a.asc": b"1"}) != base
        assert compute_fingerprint("d", "p", "", {"a.asc": b"1"}) != base
        assert compute_fingerprint("d", "p", "sops", {"a.asc": b"2"}) != base

    def test_missing_bundle_equals_empty_bundle(self):
        assert key_bundle_digest(None) == key_bundle_digest({})
        assert compute_fingerprint("d", "p") == compute_fingerprint("d", "p", "", {})
