"""Decryption of encrypted manifests and values files.

Only one provider exists, ``sops``; an empty provider name selects it.
Decryptors own temporary state (a GnuPG home), so callers must release
them with ``cleanup()`` or use them as context managers.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from componentforge.core.errors import ConfigurationError
from componentforge.decrypt.sops import SopsDecryptor

PROVIDER_SOPS = "sops"
SUPPORTED_PROVIDERS = ("", PROVIDER_SOPS)


@runtime_checkable
class Decryptor(Protocol):
    def decrypt(self, data: bytes, path: str) -> bytes:
        """Return the plaintext of *data*; unencrypted input passes through."""
        ...

    def cleanup(self) -> None:
        ...


def new_decryptor(
    provider: str, keys: Mapping[str, bytes], work_dir: Path | None = None
) -> Decryptor:
    """Construct the decryptor for *provider* from a key bundle."""
    if provider in SUPPORTED_PROVIDERS:
        return SopsDecryptor(keys, work_dir=work_dir)
    raise ConfigurationError(f"unsupported decryption provider: {provider}")


__all__ = [
    "Decryptor",
    "PROVIDER_SOPS",
    "SUPPORTED_PROVIDERS",
    "SopsDecryptor",
    "new_decryptor",
]
