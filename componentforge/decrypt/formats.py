"""Document formats understood by the SOPS decryptor.

Encrypted documents are recognised by literal marker bytes, never by file
name: a ``.yaml`` file may hold an encrypted dotenv payload.  The output
format, on the other hand, follows the file name.

Trees are plain Python structures.  dotenv documents load as a flat
``dict[str, str]``; INI documents as ``dict[section, dict[str, str]]``.
Flat formats keep SOPS metadata as flattened keys (``sops_mac=...``,
``[sops]`` section) which ``unflatten`` turns back into a nested mapping.
"""

from __future__ import annotations

import configparser
import io
import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

import yaml

from componentforge.core.errors import DecryptionError

METADATA_KEY = "sops"
DOTENV_METADATA_PREFIX = "sops_"

_MAP_SEPARATOR = "__map_"
_LIST_SEPARATOR = "__list_"
_FLAT_TOKEN = re.compile(r"__(map|list)_")


class Format(str, Enum):
    DOTENV = "dotenv"
    INI = "INI"
    JSON = "JSON"
    YAML = "YAML"
    BINARY = "binary"


# Checked in this order; the first marker found wins.
MARKERS: tuple[tuple[Format, bytes], ...] = (
    (Format.DOTENV, b"sops_mac=ENC["),
    (Format.INI, b"[sops]"),
    (Format.JSON, b'"mac": "ENC['),
    (Format.YAML, b"mac: ENC["),
)


def detect_format(data: bytes) -> Format | None:
    """Return the encrypted format of *data*, or ``None`` if it is plain."""
    for fmt, marker in MARKERS:
        if marker in data:
            return fmt
    return None


def format_for_path(path: str) -> Format:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in (".yaml", ".yml"):
        return Format.YAML
    if suffix == ".json":
        return Format.JSON
    if suffix == ".env":
        return Format.DOTENV
    if suffix == ".ini":
        return Format.INI
    return Format.BINARY


# ---------------------------------------------------------------------------
# YAML without timestamp coercion
# ---------------------------------------------------------------------------


class _PlainLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings.

    ``lastmodified`` is MAC-relevant and must round-trip byte for byte.
    """


_PlainLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_yaml(data: bytes | str) -> Any:
    return yaml.load(data, Loader=_PlainLoader)


def dump_yaml(tree: Any) -> str:
    return yaml.safe_dump(tree, sort_keys=False, default_flow_style=False, allow_unicode=True)


# ---------------------------------------------------------------------------
# Flattened metadata (dotenv, INI)
# ---------------------------------------------------------------------------


def flatten(tree: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten a nested mapping into ``a__list_0__map_b`` style keys."""
    flat: dict[str, str] = {}

    def walk(value: Any, key: str) -> None:
        if isinstance(value, dict):
            for k, v in value.items():
                walk(v, f"{key}{_MAP_SEPARATOR}{k}")
        elif isinstance(value, list):
            for i, v in enumerate(value):
                walk(v, f"{key}{_LIST_SEPARATOR}{i}")
        else:
            flat[key] = value if isinstance(value, str) else json.dumps(value)

    for k, v in tree.items():
        walk(v, f"{prefix}{k}")
    return flat


def unflatten(flat: dict[str, str]) -> dict[str, Any]:
    """Inverse of ``flatten`` (values stay strings)."""
    root: dict[Any, Any] = {}
    for key, value in flat.items():
        parts = _FLAT_TOKEN.split(key)
        path: list[tuple[str, str]] = [("map", parts[0])]
        path.extend(zip(parts[1::2], parts[2::2]))
        node = root
        for i, (kind, token) in enumerate(path):
            index: Any = int(token) if kind == "list" else token
            if i == len(path) - 1:
                node[index] = value
            else:
                node = node.setdefault(index, {})
    return _lists_from_int_keys(root)


def _lists_from_int_keys(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    converted = {k: _lists_from_int_keys(v) for k, v in node.items()}
    if converted and all(isinstance(k, int) for k in converted):
        return [converted[k] for k in sorted(converted)]
    return converted


# ---------------------------------------------------------------------------
# Loading encrypted documents
# ---------------------------------------------------------------------------


def load_encrypted(data: bytes, fmt: Format) -> tuple[dict[str, Any], dict[str, Any]]:
    """Parse an encrypted document into ``(branches, metadata)``."""
    try:
        if fmt is Format.YAML:
            tree = load_yaml(data)
            return _split_nested(tree)
        if fmt is Format.JSON:
            tree = json.loads(data)
            return _split_nested(tree)
        if fmt is Format.DOTENV:
            return _load_dotenv(data.decode("utf-8"))
        if fmt is Format.INI:
            return _load_ini(data.decode("utf-8"))
    except (yaml.YAMLError, json.JSONDecodeError, configparser.Error, UnicodeDecodeError) as exc:
        raise DecryptionError(f"failed to load encrypted {fmt.value} data: {exc}") from exc
    raise DecryptionError(f"cannot load encrypted data in {fmt.value} format")


def _split_nested(tree: Any) -> tuple[dict[str, Any], dict[str, Any]]:
    if not isinstance(tree, dict) or not isinstance(tree.get(METADATA_KEY), dict):
        raise DecryptionError("sops metadata not found")
    branches = {k: v for k, v in tree.items() if k != METADATA_KEY}
    return branches, tree[METADATA_KEY]


def _load_dotenv(text: str) -> tuple[dict[str, Any], dict[str, Any]]:
    branches: dict[str, Any] = {}
    flat_metadata: dict[str, str] = {}
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise DecryptionError(f"invalid dotenv input line {line_number}: {line!r}")
        if key.startswith(DOTENV_METADATA_PREFIX):
            flat_metadata[key[len(DOTENV_METADATA_PREFIX):]] = value.replace("\\n", "\n")
        else:
            branches[key] = value
    if not flat_metadata:
        raise DecryptionError("sops metadata not found")
    return branches, unflatten(flat_metadata)


def _new_ini_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None, default_section="\x00")
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    return parser


def _load_ini(text: str) -> tuple[dict[str, Any], dict[str, Any]]:
    parser = _new_ini_parser()
    parser.read_string(text)
    branches: dict[str, Any] = {}
    flat_metadata: dict[str, str] = {}
    for section in parser.sections():
        items = dict(parser.items(section))
        if section == METADATA_KEY:
            flat_metadata = items
        else:
            branches[section] = items
    if not flat_metadata:
        raise DecryptionError("sops metadata not found")
    return branches, unflatten(flat_metadata)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comment:
    """A full-line comment of an encrypted document.

    *path* is the branch holding the comment; *position* is the number of
    leaf values that precede it in walk order.
    """

    value: str
    path: tuple[str, ...]
    position: int


def load_comments(data: bytes, fmt: Format) -> list[Comment]:
    """Return the full-line comments of an encrypted document, in order.

    Only YAML and dotenv carry comments that take part in the MAC.
    """
    try:
        if fmt is Format.YAML:
            return _yaml_comments(data.decode("utf-8"))
        if fmt is Format.DOTENV:
            return _dotenv_comments(data.decode("utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise DecryptionError(f"failed to load encrypted {fmt.value} data: {exc}") from exc
    return []


def _dotenv_comments(text: str) -> list[Comment]:
    comments = []
    position = 0
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            comments.append(Comment(stripped[1:], (), position))
        elif stripped and not stripped.startswith(DOTENV_METADATA_PREFIX):
            position += 1
    return comments


def _yaml_comments(text: str) -> list[Comment]:
    root = yaml.compose(text, Loader=_PlainLoader)
    if not isinstance(root, yaml.MappingNode):
        return []

    # (line, branch path, leaves before) for every map key and sequence item.
    slots: list[tuple[int, tuple[str, ...], int]] = []
    # Lines that look like comments but belong to scalars or metadata.
    covered: set[int] = set()
    leaves = 0

    def cover(start: yaml.Mark, end: yaml.Mark, block: bool) -> None:
        last = end.line + 1
        if block and end.index < len(text):
            last = end.line
        covered.update(range(start.line + 1, last))

    def walk(node: yaml.Node, path: tuple[str, ...]) -> None:
        nonlocal leaves
        if isinstance(node, yaml.MappingNode):
            for key, value in node.value:
                if not path and key.value == METADATA_KEY:
                    end = value.end_mark
                    covered.update(range(key.start_mark.line, end.line + (1 if end.column else 0)))
                    continue
                slots.append((key.start_mark.line, path, leaves))
                walk(value, path + (str(key.value),))
        elif isinstance(node, yaml.SequenceNode):
            for item in node.value:
                slots.append((item.start_mark.line, path, leaves))
                walk(item, path)
        else:
            cover(node.start_mark, node.end_mark, node.style in ("|", ">"))
            leaves += 1

    walk(root, ())

    comments = []
    for number, line in enumerate(text.splitlines()):
        stripped = line.strip()
        if not stripped.startswith("#") or number in covered:
            continue
        following = next((slot for slot in slots if slot[0] > number), None)
        if following is None:
            comments.append(Comment(stripped[1:], (), leaves))
        else:
            comments.append(Comment(stripped[1:], following[1], following[2]))
    return comments


# ---------------------------------------------------------------------------
# Emitting documents
# ---------------------------------------------------------------------------


def emit(branches: dict[str, Any], fmt: Format) -> bytes:
    """Serialize *branches* in *fmt*."""
    if fmt is Format.BINARY:
        value = branches.get("data")
        if len(branches) != 1 or not isinstance(value, (str, bytes)):
            raise DecryptionError("binary output requires a single 'data' field")
        return value if isinstance(value, bytes) else value.encode("utf-8")
    if fmt is Format.YAML:
        return dump_yaml(branches).encode("utf-8")
    if fmt is Format.JSON:
        return (json.dumps(branches, indent=4, ensure_ascii=False) + "\n").encode("utf-8")
    if fmt is Format.DOTENV:
        return _emit_dotenv(branches).encode("utf-8")
    if fmt is Format.INI:
        return _emit_ini(branches).encode("utf-8")
    raise DecryptionError(f"cannot emit {fmt.value} output")


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, (dict, list)):
        raise DecryptionError("nested values cannot be emitted in a flat format")
    return json.dumps(value)


def _emit_dotenv(branches: dict[str, Any]) -> str:
    lines = []
    for key, value in branches.items():
        lines.append(f"{key}={_scalar_text(value).replace(chr(10), chr(92) + 'n')}")
    return "".join(line + "\n" for line in lines)


def _emit_ini(branches: dict[str, Any]) -> str:
    parser = _new_ini_parser()
    for section, items in branches.items():
        if not isinstance(items, dict):
            raise DecryptionError("INI output requires a mapping of sections")
        parser.add_section(section)
        for key, value in items.items():
            parser.set(section, key, _scalar_text(value))
    buffer = io.StringIO()
    parser.write(buffer)
    return buffer.getvalue()
