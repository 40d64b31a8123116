"""Manifest assembler — values merge, rendering, post-build substitution.

Values are merged from secret documents (in declared order) and then the
inline values; substitution variables are merged from secret maps (in
declared order) and then the inline map.  After rendering, every object
not opted out through ``<reconciler-name>/disableSubstitution: "true"`` is
serialized to YAML, its ``${VAR}`` placeholders are expanded, and the text
is parsed back.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

import yaml

from componentforge.core.errors import ConfigurationError, SubstitutionError
from componentforge.core.generators import ManifestGenerator

logger = logging.getLogger(__name__)

DISABLE_SUBSTITUTION_ANNOTATION = "disableSubstitution"

_VARIABLE = re.compile(
    r"\$(?:"
    r"(?P<escaped>\$)"
    r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*)"
    r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?[-=+])(?P<arg>[^}]*))?\}"
    r"|(?P<invalid>\{)"
    r")"
)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Merge *source* into *target* in place and return *target*.

    Mappings present on both sides are merged recursively; in every other
    case the value from *source* wins.
    """
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deep_merge(current, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def shallow_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    target.update(source)
    return target


def _as_text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------


def envsubst(text: str, variables: Mapping[str, str]) -> str:
    """Expand shell-style variables in *text*.

    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:=default}``, ``${VAR=default}``, ``${VAR:+alt}``,
    ``${VAR+alt}`` and ``$$`` for a literal ``$``.  Undefined variables
    expand to the empty string.

    Raises
    ------
    SubstitutionError
        A ``${`` is not followed by a valid variable expression.
    """
    scope = dict(variables)

    def replace(match: re.Match[str]) -> str:
        if match["escaped"]:
            return "$"
        if match["named"]:
            return scope.get(match["named"], "")
        if match["invalid"]:
            raise SubstitutionError(f"bad substitution at offset {match.start()}")
        name, op = match["braced"], match["op"]
        value = scope.get(name)
        if op is None:
            return value or ""
        arg = envsubst(match["arg"], scope)
        unset = value is None or (op.startswith(":") and value == "")
        if op.endswith("-"):
            return arg if unset else value
        if op.endswith("="):
            if unset:
                scope[name] = arg
                return arg
            return value
        return "" if unset else arg

    return _VARIABLE.sub(replace, text)


def substitute_object(obj: Mapping[str, Any], variables: Mapping[str, str]) -> dict[str, Any]:
    text = yaml.safe_dump(dict(obj), sort_keys=False, allow_unicode=True)
    substituted = envsubst(text, variables)
    try:
        result = yaml.safe_load(substituted)
    except yaml.YAMLError as exc:
        raise SubstitutionError(f"object is malformed after substitution: {exc}") from exc
    if not isinstance(result, dict):
        raise SubstitutionError("object is malformed after substitution: not a mapping")
    return result


def _annotations(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = obj.get("metadata") or {}
    return metadata.get("annotations") or {}


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ManifestAssembler:
    """Turns a generator plus component inputs into final objects.

    Parameters
    ----------
    reconciler_name:
        Prefix of the annotation that opts an object out of substitution.
    """

    def __init__(self, reconciler_name: str) -> None:
        self.reconciler_name = reconciler_name

    @property
    def disable_substitution_annotation(self) -> str:
        return f"{self.reconciler_name}/{DISABLE_SUBSTITUTION_ANNOTATION}"

    def merge_values(
        self, values_from: Iterable[str | bytes], values: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for index, document in enumerate(values_from):
            try:
                parsed = yaml.safe_load(_as_text(document))
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"invalid values document #{index}: {exc}") from exc
            if parsed is None:
                continue
            if not isinstance(parsed, dict):
                raise ConfigurationError(f"invalid values document #{index}: not a mapping")
            deep_merge(merged, parsed)
        if values:
            deep_merge(merged, values)
        return merged

    def merge_substitutions(
        self,
        substitute_from: Iterable[Mapping[str, str | bytes]],
        substitute: Mapping[str, str] | None,
    ) -> dict[str, str]:
        merged: dict[str, str] = {}
        for data in substitute_from:
            shallow_merge(merged, {k: _as_text(v) for k, v in data.items()})
        if substitute:
            shallow_merge(merged, substitute)
        return merged

    def assemble(
        self,
        generator: ManifestGenerator,
        values_from: Iterable[str | bytes] = (),
        values: Mapping[str, Any] | None = None,
        substitute_from: Iterable[Mapping[str, str | bytes]] = (),
        substitute: Mapping[str, str] | None = None,
        *,
        namespace: str,
        name: str,
    ) -> list[dict[str, Any]]:
        """Render *generator* and apply post-build substitution.

        Raises
        ------
        ConfigurationError
            A values document is not a YAML mapping.
        SubstitutionError
            An object is malformed after substitution.
        """
        merged_values = self.merge_values(values_from, values)
        objects = generator.generate(namespace, name, merged_values)

        variables = self.merge_substitutions(substitute_from, substitute)
        if not variables:
            return objects

        annotation = self.disable_substitution_annotation
        result = []
        for obj in objects:
            if _annotations(obj).get(annotation) == "true":
                result.append(obj)
                continue
            result.append(substitute_object(obj, variables))
        logger.debug(
            "Substituted %d variable(s) into %d object(s) for %s/%s",
            len(variables),
            len(result),
            namespace,
            name,
        )
        return result
