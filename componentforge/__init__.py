"""componentforge: Component controller core.

Turns a declarative Component into rendered objects:
  - source resolution (HTTP repositories, flux GitRepository/OCIRepository/
    Bucket/HelmChart) into content-identified artifacts
  - safe archive extraction with in-stream SOPS decryption (PGP, age)
  - fingerprint-keyed generator cache with sliding TTL (Helm, Kustomize)
  - values merge and post-build variable substitution
  - dependency gating before reconcile and delete
"""

__version__ = "0.1.0"
__description__ = "Component controller core: sources, generators, decryption, dependencies"

from componentforge.operator.operator import ComponentOperator
from componentforge.cli.app import app as cli

__all__ = ["ComponentOperator", "cli", "__version__"]
