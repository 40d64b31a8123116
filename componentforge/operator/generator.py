"""Component generator — renders the objects of one component.

Loads secret-held inputs (key bundle, values documents, substitution
maps) from the object store, fetches the cached generator for the bound
artifact, and hands everything to the manifest assembler.
"""

from __future__ import annotations

import logging
from typing import Any

from componentforge.core.assembler import ManifestAssembler
from componentforge.core.errors import ConfigurationError, RetriableError
from componentforge.core.generator_cache import GeneratorCache
from componentforge.core.generators import GeneratorFactory, ManifestGenerator
from componentforge.core.hasher import compute_fingerprint
from componentforge.core.object_store import ObjectNotFoundError, ObjectStore
from componentforge.models.component import Component, SecretKeyReference
from componentforge.models.source import NamespacedName, SourceBinding

logger = logging.getLogger(__name__)

VALUES_FALLBACK_KEYS = ("values", "values.yaml", "values.yml")


class ComponentGenerator:
    """Ties the object store, generator cache and assembler together."""

    def __init__(
        self,
        store: ObjectStore,
        cache: GeneratorCache,
        factory: GeneratorFactory,
        assembler: ManifestAssembler,
    ) -> None:
        self._store = store
        self._cache = cache
        self._factory = factory
        self._assembler = assembler

    def _secret(self, component: Component, name: str) -> dict[str, bytes]:
        ref = NamespacedName(namespace=component.namespace, name=name)
        try:
            return self._store.get_secret(ref)
        except ObjectNotFoundError as exc:
            raise RetriableError(f"secret {ref} not found") from exc

    def _secret_value(self, component: Component, ref: SecretKeyReference) -> bytes:
        data = self._secret(component, ref.name)
        if ref.key:
            if ref.key not in data:
                raise ConfigurationError(f"key {ref.key} not found in secret {ref.name}")
            return data[ref.key]
        for key in VALUES_FALLBACK_KEYS:
            if key in data:
                return data[key]
        raise ConfigurationError(
            f"secret {ref.name} has none of the keys {', '.join(VALUES_FALLBACK_KEYS)}"
        )

    def manifest_generator(self, component: Component, binding: SourceBinding) -> ManifestGenerator:
        """Return the (possibly cached) generator for the bound artifact."""
        spec = component.spec
        provider = ""
        keys: dict[str, bytes] = {}
        if spec.decryption is not None:
            provider = spec.decryption.provider
            keys = self._secret(component, spec.decryption.secret_ref.name)

        artifact = binding.artifact
        fingerprint = compute_fingerprint(artifact.digest, spec.path, provider, keys)
        return self._cache.get_or_build(
            fingerprint,
            lambda: self._factory.build(artifact.url, spec.path, provider, keys),
        )

    def generate(self, component: Component, binding: SourceBinding) -> list[dict[str, Any]]:
        spec = component.spec
        generator = self.manifest_generator(component, binding)

        values_from = [self._secret_value(component, ref) for ref in spec.values_from]
        substitute_from: list[dict[str, bytes]] = []
        substitute: dict[str, str] = {}
        if spec.post_build is not None:
            substitute_from = [self._secret(component, ref.name) for ref in spec.post_build.substitute_from]
            substitute = spec.post_build.substitute

        objects = self._assembler.assemble(
            generator,
            values_from,
            spec.values,
            substitute_from,
            substitute,
            namespace=spec.namespace or component.namespace,
            name=spec.name or component.name,
        )
        logger.info(
            "Generated %d object(s) for component %s (revision %s)",
            len(objects),
            component.namespaced_name(),
            binding.artifact.revision,
        )
        return objects
