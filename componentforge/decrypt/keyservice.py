"""Local key service — encrypts and decrypts SOPS data keys.

Requests are dispatched by key type:

- ``PgpKey`` (fingerprint): GnuPG with a transient home directory,
  driven through ``python-gnupg``.
- ``AgeKey`` (recipient): ``pyrage`` with the identities parsed from the
  key bundle.
- anything else goes to a non-interactive default handler.  No online key
  providers (KMS, Vault, ...) are configured, so it refuses.
- a missing key is an error.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import gnupg
import pyrage

from componentforge.core.errors import DecryptionError

logger = logging.getLogger(__name__)

AGE_ARMOR_HEADER = "-----BEGIN AGE ENCRYPTED FILE-----"
AGE_ARMOR_FOOTER = "-----END AGE ENCRYPTED FILE-----"


@dataclass(frozen=True)
class PgpKey:
    fingerprint: str


@dataclass(frozen=True)
class AgeKey:
    recipient: str


@dataclass(frozen=True)
class OtherKey:
    """A master key type without a local backend (kms, gcp_kms, ...)."""

    kind: str
    identifier: str


KeyType = PgpKey | AgeKey | OtherKey


# ---------------------------------------------------------------------------
# age helpers
# ---------------------------------------------------------------------------


def parse_age_identities(text: str) -> list[Any]:
    """Parse an age key file: one ``AGE-SECRET-KEY-1...`` per line."""
    identities = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            identities.append(pyrage.x25519.Identity.from_str(line))
        except pyrage.IdentityError as exc:
            raise DecryptionError(f"failed to parse age identity: {exc}") from exc
    return identities


def armor_age(ciphertext: bytes) -> str:
    body = base64.b64encode(ciphertext).decode("ascii")
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return "\n".join([AGE_ARMOR_HEADER, *lines, AGE_ARMOR_FOOTER]) + "\n"


def dearmor_age(text: str | bytes) -> bytes:
    if isinstance(text, bytes):
        text = text.decode("ascii", errors="strict")
    stripped = text.strip()
    if not stripped.startswith(AGE_ARMOR_HEADER):
        return stripped.encode("ascii")
    if not stripped.endswith(AGE_ARMOR_FOOTER):
        raise DecryptionError("malformed age armor")
    body = stripped[len(AGE_ARMOR_HEADER):-len(AGE_ARMOR_FOOTER)]
    try:
        return base64.b64decode("".join(body.split()), validate=True)
    except ValueError as exc:
        raise DecryptionError(f"malformed age armor: {exc}") from exc


# ---------------------------------------------------------------------------
# Default handler
# ---------------------------------------------------------------------------


class DefaultKeyHandler:
    """Non-interactive fallback for key types without a local backend."""

    def encrypt(self, key: OtherKey, plaintext: bytes) -> bytes:
        raise DecryptionError(f"no local backend for {key.kind} key {key.identifier}")

    def decrypt(self, key: OtherKey, ciphertext: bytes) -> bytes:
        raise DecryptionError(f"no local backend for {key.kind} key {key.identifier}")


# ---------------------------------------------------------------------------
# Local key service
# ---------------------------------------------------------------------------


class LocalKeyService:
    """Key service backed by a transient GnuPG home and age identities.

    Parameters
    ----------
    gnupg_home:
        GnuPG home directory holding the imported PGP keys.  ``None``
        disables PGP.
    age_identities:
        Parsed ``pyrage.x25519.Identity`` objects.
    default_handler:
        Handler for unrecognised key types.
    """

    def __init__(
        self,
        gnupg_home: Path | None = None,
        age_identities: Iterable[Any] = (),
        default_handler: DefaultKeyHandler | None = None,
    ) -> None:
        self._gnupg_home = gnupg_home
        self._gpg: gnupg.GPG | None = None
        self._age_identities = list(age_identities)
        self._default = default_handler or DefaultKeyHandler()

    # ------------------------------------------------------------------
    # Key loading
    # ------------------------------------------------------------------

    def _gnupg(self) -> gnupg.GPG:
        if self._gnupg_home is None:
            raise DecryptionError("no GnuPG home configured")
        if self._gpg is None:
            try:
                self._gpg = gnupg.GPG(gnupghome=str(self._gnupg_home))
            except (OSError, ValueError) as exc:
                raise DecryptionError(f"unable to start gpg: {exc}") from exc
        return self._gpg

    def import_pgp(self, armored: bytes) -> int:
        """Import PGP key material; returns the number of keys imported."""
        result = self._gnupg().import_keys(armored)
        if not result.count:
            raise DecryptionError(f"failed to import PGP key: {result.stderr.strip()}")
        logger.debug("Imported %d PGP key(s)", result.count)
        return result.count

    def add_age_identities(self, identities: Iterable[Any]) -> None:
        self._age_identities.extend(identities)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def encrypt(self, key: KeyType | None, plaintext: bytes) -> bytes:
        if key is None:
            raise DecryptionError("must provide a key")
        if isinstance(key, PgpKey):
            return self._encrypt_pgp(key, plaintext)
        if isinstance(key, AgeKey):
            return self._encrypt_age(key, plaintext)
        return self._default.encrypt(key, plaintext)

    def decrypt(self, key: KeyType | None, ciphertext: bytes) -> bytes:
        if key is None:
            raise DecryptionError("must provide a key")
        if isinstance(key, PgpKey):
            return self._decrypt_pgp(key, ciphertext)
        if isinstance(key, AgeKey):
            return self._decrypt_age(key, ciphertext)
        return self._default.decrypt(key, ciphertext)

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    def _encrypt_pgp(self, key: PgpKey, plaintext: bytes) -> bytes:
        result = self._gnupg().encrypt(
            plaintext, key.fingerprint, armor=True, always_trust=True
        )
        if not result.ok:
            raise DecryptionError(f"PGP encryption for {key.fingerprint} failed: {result.status}")
        return result.data

    def _decrypt_pgp(self, key: PgpKey, ciphertext: bytes) -> bytes:
        result = self._gnupg().decrypt(ciphertext)
        if not result.ok:
            raise DecryptionError(f"PGP decryption for {key.fingerprint} failed: {result.status}")
        return result.data

    def _encrypt_age(self, key: AgeKey, plaintext: bytes) -> bytes:
        try:
            recipient = pyrage.x25519.Recipient.from_str(key.recipient)
            ciphertext = pyrage.encrypt(plaintext, [recipient])
        except (pyrage.RecipientError, pyrage.EncryptError) as exc:
            raise DecryptionError(f"age encryption for {key.recipient} failed: {exc}") from exc
        return armor_age(ciphertext).encode("ascii")

    def _decrypt_age(self, key: AgeKey, ciphertext: bytes) -> bytes:
        if not self._age_identities:
            raise DecryptionError(f"no age identity available for recipient {key.recipient}")
        try:
            return pyrage.decrypt(dearmor_age(ciphertext), self._age_identities)
        except pyrage.DecryptError as exc:
            raise DecryptionError(f"age decryption for {key.recipient} failed: {exc}") from exc
