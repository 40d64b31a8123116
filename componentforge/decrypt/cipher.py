"""AES-256-GCM value cipher in the SOPS ``ENC[...]`` envelope format.

Each leaf value of a SOPS document is encrypted on its own::

    ENC[AES256_GCM,data:<b64>,iv:<b64>,tag:<b64>,type:<str|int|float|bool|bytes>]

The additional authenticated data is the path of map keys leading to the
value, each followed by ``:`` (``a:b:`` for ``{a: {b: ...}}``).  Sequence
items share the path of the sequence.  Comments are encrypted with
the path of the branch holding them (``:`` at the top level) and carry
``type:comment``.
"""

from __future__ import annotations

import base64
import os
import re
from decimal import Decimal
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from componentforge.core.errors import DecryptionError

NONCE_SIZE = 32

_ENC_PATTERN = re.compile(
    r"^ENC\[AES256_GCM,data:(?P<data>.*),iv:(?P<iv>.+),tag:(?P<tag>.+),type:(?P<type>.+)\]$",
    re.DOTALL,
)


def is_encrypted_value(value: Any) -> bool:
    return isinstance(value, str) and _ENC_PATTERN.match(value) is not None


def format_float(value: float) -> str:
    """Shortest non-exponent representation, e.g. ``1`` for 1.0, ``0.5``."""
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def to_bytes(value: Any) -> bytes:
    """Canonical byte form of a plaintext value, as fed to the MAC."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, int):
        return str(value).encode()
    if isinstance(value, float):
        return format_float(value).encode()
    if value is None:
        return b""
    return str(value).encode("utf-8")


def _type_name(value: Any) -> str:
    if isinstance(value, bytes):
        return "bytes"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    return "str"


def _parse_bool(text: str) -> bool:
    if text in ("1", "t", "T", "TRUE", "true", "True"):
        return True
    if text in ("0", "f", "F", "FALSE", "false", "False"):
        return False
    raise DecryptionError(f"invalid boolean value {text!r}")


def decrypt_value(ciphertext: str, key: bytes, additional_data: str) -> Any:
    """Decrypt one ``ENC[...]`` value and restore its original type."""
    if ciphertext == "":
        return ""
    match = _ENC_PATTERN.match(ciphertext)
    if match is None:
        raise DecryptionError(f"input string {ciphertext!r} does not match sops' data format")
    try:
        data = base64.b64decode(match["data"])
        iv = base64.b64decode(match["iv"])
        tag = base64.b64decode(match["tag"])
    except ValueError as exc:
        raise DecryptionError(f"error base64-decoding value: {exc}") from exc

    try:
        plaintext = AESGCM(key).decrypt(iv, data + tag, additional_data.encode("utf-8"))
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError(
            f"could not decrypt value with data key (path {additional_data!r})"
        ) from exc

    value_type = match["type"]
    if value_type == "bytes":
        return plaintext
    text = plaintext.decode("utf-8")
    if value_type in ("str", "comment"):
        return text
    try:
        if value_type == "int":
            return int(text)
        if value_type == "float":
            return float(text)
    except ValueError as exc:
        raise DecryptionError(f"invalid {value_type} value {text!r}") from exc
    if value_type == "bool":
        return _parse_bool(text)
    raise DecryptionError(f"unknown data type {value_type!r}")


def encrypt_value(value: Any, key: bytes, additional_data: str, *, value_type: str | None = None) -> str:
    """Encrypt one plaintext value into the ``ENC[...]`` envelope.

    *value_type* overrides the type recorded in the envelope (``comment``).
    """
    if value == "":
        return ""
    iv = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(iv, to_bytes(value), additional_data.encode("utf-8"))
    data, tag = sealed[:-16], sealed[-16:]

    def b64(raw: bytes) -> str:
        return base64.b64encode(raw).decode("ascii")

    return f"ENC[AES256_GCM,data:{b64(data)},iv:{b64(iv)},tag:{b64(tag)},type:{value_type or _type_name(value)}]"
