"""Controller configuration — env-driven.

Centralized config using pydantic-settings.  Reads from a .env file and
COMPONENTFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeConfig(BaseSettings):
    """Controller configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export COMPONENTFORGE_LOG_LEVEL=DEBUG
        export COMPONENTFORGE_CACHE_VALIDITY_SECONDS=600

    Or via .env file::

        COMPONENTFORGE_ENVIRONMENT=production
        COMPONENTFORGE_HELM_BINARY=/usr/local/bin/helm
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="COMPONENTFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Used as the annotation prefix, e.g. <name>/disableSubstitution
    reconciler_name: str = "component-operator.cs.sap.com"

    # Generator cache
    cache_validity_seconds: float = 3600.0
    cache_sweep_interval_seconds: float = 10.0

    # Retry hints and timeouts
    source_retry_delay_seconds: float = 10.0
    default_timeout_seconds: float = 600.0
    http_timeout_seconds: float = 30.0
    http_checker_interval_seconds: float = 30.0

    # Worker pool
    max_concurrent_reconciles: int = 5

    # Scratch space for archive extraction; None means the system temp dir
    work_dir: Path | None = None

    # Template engines
    helm_binary: str = "helm"
    kustomize_binary: str = "kustomize"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton — import as `from componentforge.config import config`
config = ForgeConfig()
