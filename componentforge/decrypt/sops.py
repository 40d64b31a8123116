"""SOPS decryptor — decrypts encrypted dotenv/INI/JSON/YAML documents.

A ``SopsDecryptor`` owns an ephemeral keyring built from a key bundle:

- ``*.asc`` entries are imported into a transient GnuPG home directory;
- ``*.agekey`` entries are parsed into age identities;
- anything else is ignored.

The transient directory is removed by ``cleanup()`` exactly once; use the
decryptor as a context manager so that happens on every path.

Files without a SOPS marker pass through untouched, so mixed plain and
encrypted trees are fine.

Encrypted full-line comments (YAML, dotenv) take part in the MAC in
document order; the decrypted output carries no comments.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from componentforge.core.errors import DecryptionError
from componentforge.decrypt.cipher import decrypt_value, encrypt_value, to_bytes
from componentforge.decrypt.formats import (
    DOTENV_METADATA_PREFIX,
    METADATA_KEY,
    Comment,
    Format,
    detect_format,
    emit,
    flatten,
    format_for_path,
    load_comments,
    load_encrypted,
)
from componentforge.decrypt.keyservice import (
    AgeKey,
    KeyType,
    LocalKeyService,
    OtherKey,
    PgpKey,
    parse_age_identities,
)

logger = logging.getLogger(__name__)

PGP_EXTENSION = ".asc"
AGE_EXTENSION = ".agekey"

DEFAULT_UNENCRYPTED_SUFFIX = "_unencrypted"
SOPS_VERSION = "3.9.0"

# Master key types other than pgp/age, with the field naming the key.
_ONLINE_KEY_FIELDS: dict[str, str] = {
    "kms": "arn",
    "gcp_kms": "resource_id",
    "azure_kv": "vault_url",
    "hc_vault": "vault_address",
}


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MasterKey:
    key: KeyType
    encrypted_key: str

    @property
    def is_offline(self) -> bool:
        return isinstance(self.key, (PgpKey, AgeKey))


@dataclass
class SopsMetadata:
    key_groups: list[list[MasterKey]]
    last_modified: str
    mac: str
    unencrypted_suffix: str = ""
    encrypted_suffix: str = ""
    unencrypted_regex: str = ""
    encrypted_regex: str = ""
    mac_only_encrypted: bool = False
    version: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def should_encrypt(self, path: list[str]) -> bool:
        encrypted = True
        if self.unencrypted_suffix:
            if any(p.endswith(self.unencrypted_suffix) for p in path):
                encrypted = False
        if self.encrypted_suffix:
            encrypted = any(p.endswith(self.encrypted_suffix) for p in path)
        if self.unencrypted_regex:
            if any(re.search(self.unencrypted_regex, p) for p in path):
                encrypted = False
        if self.encrypted_regex:
            encrypted = any(re.search(self.encrypted_regex, p) for p in path)
        return encrypted


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _parse_group(group: Mapping[str, Any]) -> list[MasterKey]:
    keys: list[MasterKey] = []
    for entry in group.get("pgp") or []:
        keys.append(MasterKey(PgpKey(str(entry.get("fp", ""))), str(entry.get("enc", ""))))
    for entry in group.get("age") or []:
        keys.append(MasterKey(AgeKey(str(entry.get("recipient", ""))), str(entry.get("enc", ""))))
    for kind, id_field in _ONLINE_KEY_FIELDS.items():
        for entry in group.get(kind) or []:
            keys.append(MasterKey(OtherKey(kind, str(entry.get(id_field, ""))), str(entry.get("enc", ""))))
    return keys


def parse_metadata(raw: Mapping[str, Any]) -> SopsMetadata:
    """Build ``SopsMetadata`` from the document's ``sops`` mapping."""
    if raw.get("key_groups"):
        groups = [_parse_group(g) for g in raw["key_groups"]]
    else:
        groups = [_parse_group(raw)]
    if not raw.get("mac"):
        raise DecryptionError("sops metadata has no mac")

    metadata = SopsMetadata(
        key_groups=groups,
        last_modified=str(raw.get("lastmodified", "")),
        mac=str(raw["mac"]),
        unencrypted_suffix=str(raw.get("unencrypted_suffix") or ""),
        encrypted_suffix=str(raw.get("encrypted_suffix") or ""),
        unencrypted_regex=str(raw.get("unencrypted_regex") or ""),
        encrypted_regex=str(raw.get("encrypted_regex") or ""),
        mac_only_encrypted=_as_bool(raw.get("mac_only_encrypted", False)),
        version=str(raw.get("version", "")),
    )
    if not (
        metadata.unencrypted_suffix
        or metadata.encrypted_suffix
        or metadata.unencrypted_regex
        or metadata.encrypted_regex
    ):
        metadata.unencrypted_suffix = DEFAULT_UNENCRYPTED_SUFFIX
    return metadata


# ---------------------------------------------------------------------------
# Tree walking
# ---------------------------------------------------------------------------


def _walk(tree: Any, path: list[str], visit) -> Any:
    if isinstance(tree, dict):
        return {k: _walk(v, path + [str(k)], visit) for k, v in tree.items()}
    if isinstance(tree, list):
        return [_walk(item, path, visit) for item in tree]
    return visit(tree, path)


def _aad(path: list[str]) -> str:
    return "".join(f"{p}:" for p in path)


def _comment_aad(path: tuple[str, ...]) -> str:
    return ":".join(path) + ":"


def _decrypt_comment(comment: Comment, data_key: bytes, metadata: SopsMetadata) -> str | None:
    """Plaintext of an encrypted comment; ``None`` for comments outside the MAC."""
    if not metadata.should_encrypt(list(comment.path)):
        return None
    value = comment.value.strip()
    try:
        return decrypt_value(value, data_key, _comment_aad(comment.path))
    except DecryptionError:
        logger.warning("Found possibly unencrypted comment %r; leaving it out of the MAC", value[:40])
        return None


def decrypt_tree(
    branches: dict[str, Any],
    data_key: bytes,
    metadata: SopsMetadata,
    comments: Sequence[Comment] = (),
) -> tuple[dict[str, Any], str]:
    """Decrypt all values; returns the plain tree and its computed MAC.

    Encrypted *comments* are hashed in document order, ahead of the leaf
    value they precede.
    """
    digest = hashlib.sha512()
    pending = list(comments)
    visited = 0

    def hash_comments(up_to: int) -> None:
        while pending and pending[0].position <= up_to:
            text = _decrypt_comment(pending.pop(0), data_key, metadata)
            if text is not None:
                digest.update(to_bytes(text))

    def visit(value: Any, path: list[str]) -> Any:
        nonlocal visited
        hash_comments(visited)
        visited += 1
        encrypted = metadata.should_encrypt(path)
        if encrypted:
            if not isinstance(value, str):
                raise DecryptionError(f"value at {_aad(path)!r} is not encrypted")
            value = decrypt_value(value, data_key, _aad(path))
        if encrypted or not metadata.mac_only_encrypted:
            digest.update(to_bytes(value))
        return value

    plain = _walk(branches, [], visit)
    hash_comments(visited)
    return plain, digest.hexdigest().upper()


def encrypt_tree(
    branches: dict[str, Any], data_key: bytes, metadata: SopsMetadata
) -> tuple[dict[str, Any], str]:
    """Encrypt all values; returns the encrypted tree and the plaintext MAC."""
    digest = hashlib.sha512()

    def visit(value: Any, path: list[str]) -> Any:
        encrypted = metadata.should_encrypt(path)
        if encrypted or not metadata.mac_only_encrypted:
            digest.update(to_bytes(value))
        if encrypted:
            return encrypt_value(value, data_key, _aad(path))
        return value

    encrypted_tree = _walk(branches, [], visit)
    return encrypted_tree, digest.hexdigest().upper()


def seems_binary(branches: dict[str, Any]) -> bool:
    """A tree that is exactly ``{data: <string>}`` is emitted raw."""
    return len(branches) == 1 and isinstance(branches.get("data"), str)


# ---------------------------------------------------------------------------
# Decryptor
# ---------------------------------------------------------------------------


class SopsDecryptor:
    """Decrypts SOPS documents with keys from a key bundle.

    Parameters
    ----------
    keys:
        Key bundle: key-file name to raw key bytes.
    work_dir:
        Parent directory of the transient GnuPG home (system temp if
        ``None``).
    """

    def __init__(self, keys: Mapping[str, bytes], work_dir: Path | None = None) -> None:
        self._gnupg_home: Path | None = Path(
            tempfile.mkdtemp(prefix="gpg-", dir=str(work_dir) if work_dir else None)
        )
        self._gnupg_home.chmod(0o700)
        try:
            self.key_service = LocalKeyService(gnupg_home=self._gnupg_home)
            for name, value in keys.items():
                suffix = PurePosixPath(name).suffix
                if suffix == PGP_EXTENSION:
                    self.key_service.import_pgp(value)
                elif suffix == AGE_EXTENSION:
                    self.key_service.add_age_identities(
                        parse_age_identities(value.decode("utf-8"))
                    )
        except BaseException:
            self.cleanup()
            raise

    def __enter__(self) -> SopsDecryptor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    @property
    def gnupg_home(self) -> Path | None:
        return self._gnupg_home

    def cleanup(self) -> None:
        """Remove the transient GnuPG home.  Safe to call more than once."""
        home, self._gnupg_home = self._gnupg_home, None
        if home is not None:
            shutil.rmtree(home, ignore_errors=True)

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def decrypt(self, data: bytes, path: str) -> bytes:
        """Decrypt *data* if it carries a SOPS marker; else return it as-is.

        The output format follows the extension of *path*.
        """
        input_format = detect_format(data)
        if input_format is None:
            return data
        logger.debug("Decrypting %s (%s)", path, input_format.value)
        return self.decrypt_with_format(data, input_format, format_for_path(path))

    def decrypt_with_format(self, data: bytes, input_format: Format, output_format: Format) -> bytes:
        branches, raw_metadata = load_encrypted(data, input_format)
        comments = load_comments(data, input_format)
        metadata = parse_metadata(raw_metadata)

        # Offline keys first, stable within each class.
        for group in metadata.key_groups:
            group.sort(key=lambda mk: not mk.is_offline)

        data_key = self._data_key(metadata)
        plain, computed_mac = decrypt_tree(branches, data_key, metadata, comments)

        stored_mac = decrypt_value(metadata.mac, data_key, metadata.last_modified)
        if stored_mac != computed_mac:
            raise DecryptionError(
                f"failed to verify data integrity of {input_format.value} document: "
                f"expected mac {stored_mac!r}, got {computed_mac!r}"
            )

        if seems_binary(plain):
            output_format = Format.BINARY
        try:
            return emit(plain, output_format)
        except DecryptionError as exc:
            raise DecryptionError(
                f"failed to emit encrypted {input_format.value} file as decrypted "
                f"{output_format.value}: {exc}"
            ) from exc

    def _data_key(self, metadata: SopsMetadata) -> bytes:
        groups = [g for g in metadata.key_groups if g]
        if not groups:
            raise DecryptionError("cannot get sops data key: no master keys in metadata")
        if len(groups) > 1:
            raise DecryptionError(
                "cannot get sops data key: multiple key groups (shamir secret sharing) are not supported"
            )
        errors = []
        for master_key in groups[0]:
            try:
                return self.key_service.decrypt(master_key.key, master_key.encrypted_key.encode("utf-8"))
            except DecryptionError as exc:
                errors.append(str(exc))
        raise DecryptionError("cannot get sops data key: " + "; ".join(errors))


# ---------------------------------------------------------------------------
# Encryption (fixtures, tooling)
# ---------------------------------------------------------------------------


def encrypt_document(
    branches: dict[str, Any],
    fmt: Format,
    recipients: list[KeyType],
    key_service: LocalKeyService | None = None,
    *,
    data_key: bytes | None = None,
    unencrypted_suffix: str = DEFAULT_UNENCRYPTED_SUFFIX,
    last_modified: str | None = None,
) -> bytes:
    """Encrypt *branches* into a SOPS document of format *fmt*.

    The data key is wrapped for every recipient in *recipients* through
    *key_service*.
    """
    key_service = key_service or LocalKeyService()
    data_key = data_key or os.urandom(32)
    last_modified = last_modified or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    metadata = SopsMetadata(
        key_groups=[],
        last_modified=last_modified,
        mac="",
        unencrypted_suffix=unencrypted_suffix,
    )
    encrypted, mac = encrypt_tree(branches, data_key, metadata)

    raw: dict[str, Any] = {}
    for recipient in recipients:
        wrapped = key_service.encrypt(recipient, data_key).decode("ascii")
        if isinstance(recipient, AgeKey):
            raw.setdefault("age", []).append({"recipient": recipient.recipient, "enc": wrapped})
        elif isinstance(recipient, PgpKey):
            raw.setdefault("pgp", []).append(
                {"created_at": last_modified, "enc": wrapped, "fp": recipient.fingerprint}
            )
        else:
            raise DecryptionError(f"cannot wrap data key for {recipient.kind} keys")
    raw["lastmodified"] = last_modified
    raw["mac"] = encrypt_value(mac, data_key, last_modified)
    raw["unencrypted_suffix"] = unencrypted_suffix
    raw["version"] = SOPS_VERSION

    if fmt is Format.DOTENV:
        return emit({**encrypted, **flatten(raw, prefix=DOTENV_METADATA_PREFIX)}, fmt)
    if fmt is Format.INI:
        return emit({**encrypted, METADATA_KEY: flatten(raw)}, fmt)
    if fmt in (Format.YAML, Format.JSON):
        return emit({**encrypted, METADATA_KEY: raw}, fmt)
    raise DecryptionError(f"cannot encrypt documents in {fmt.value} format")
