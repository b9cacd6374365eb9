"""Runtime configuration loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from depaudit.models.schemas import ScanStrategy

# Environment variable -> Settings field
ENV_VARS: dict[str, str] = {
    "NPM_REGISTRY_BASE": "registry_url",
    "NPM_PRIMARY_REGISTRY": "primary_registry_url",
    "INSECURE_PACKAGES_URL": "deny_list_url",
    "MAX_RETRIES": "max_retries",
    "REQUEST_TIMEOUT": "request_timeout_ms",
    "NPMJS_CONCURRENT_REQUESTS": "primary_concurrency",
    "DENY_LIST_TTL": "deny_list_ttl",
    "SCAN_STRATEGY": "scan_strategy",
    "SCAN_MAX_DEPTH": "max_depth",
    "SCAN_BATCH_SIZE": "batch_size",
    "INSTALL_TIMEOUT": "install_timeout",
    "PACKAGE_MANAGER": "package_manager",
    "MAX_CONCURRENT_SCANS": "max_concurrent_scans",
}

SUPPORTED_PACKAGE_MANAGERS = ("yarn", "npm", "pnpm")


class Settings(BaseModel):
    """Settings for the analysis engine.

    Every field can be overridden through the environment variable listed in
    ``ENV_VARS``. A ``.env`` file in the working directory is honored.
    """

    # Registry access
    registry_url: str = "https://registry.npmmirror.com"
    primary_registry_url: str = "https://registry.npmjs.org"
    deny_list_url: str | None = None
    max_retries: int = Field(default=3, ge=1)
    request_timeout_ms: int = Field(default=10_000, gt=0)
    primary_concurrency: int = Field(default=5, ge=1)

    # Deny-list refresh
    deny_list_ttl: float = Field(default=3600.0, ge=0)

    # Scanning
    scan_strategy: ScanStrategy = ScanStrategy.METADATA
    max_depth: int = Field(default=3, ge=1)
    batch_size: int = Field(default=10, ge=1)
    install_timeout: float = Field(default=120.0, gt=0)
    package_manager: str = "yarn"
    max_concurrent_scans: int = Field(default=8, ge=1)

    @field_validator("registry_url", "primary_registry_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("deny_list_url")
    @classmethod
    def _empty_is_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("package_manager")
    @classmethod
    def _known_package_manager(cls, value: str) -> str:
        if value not in SUPPORTED_PACKAGE_MANAGERS:
            supported = ", ".join(SUPPORTED_PACKAGE_MANAGERS)
            raise ValueError(f"Unsupported package manager: {value}. Supported: {supported}")
        return value

    @property
    def request_timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self.request_timeout_ms / 1000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> Settings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``. When omitted,
                a ``.env`` file is loaded first.
            **overrides: Field values that take precedence over the environment.

        Returns:
            Validated Settings.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        values: dict = {}
        for var, field_name in ENV_VARS.items():
            raw = environ.get(var)
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
