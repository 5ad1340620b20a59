"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./reconciler.yaml (working directory)
3. ~/.reconciler/config.yaml (user home)

Environment variables override YAML: RECONCILER_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ProviderConfig(BaseModel):
    """Invoicing provider transport settings."""

    base_url: str = "https://www.oblio.eu/api"
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)


class PaymentConfig(BaseModel):
    """Defaults for delivery-manifest payment collection."""

    # "Ramburs" is the provider's cash-on-delivery collection type
    collect_type: str = "Ramburs"


class ProcessingErrorsConfig(BaseModel):
    """Defaults for the processing error tracker."""

    max_retries: int = Field(default=3, ge=1)
    # Error type -> "module:callable" retry handler, e.g.
    # {"invoice": "billing.retry:issue_invoice_for_order"}
    handlers: dict[str, str] = Field(default_factory=dict)


class ApiConfig(BaseModel):
    """Configuration for the HTTP API process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class ReconcilerConfig(BaseModel):
    """Top-level configuration for the reconciler."""

    provider: ProviderConfig = ProviderConfig()
    payment: PaymentConfig = PaymentConfig()
    processing_errors: ProcessingErrorsConfig = ProcessingErrorsConfig()
    api: ApiConfig = ApiConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "reconciler.yaml",
        Path.cwd() / "reconciler.yml",
        Path.home() / ".reconciler" / "config.yaml",
        Path.home() / ".reconciler" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply RECONCILER_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix so multi-word section names
    like ``processing_errors`` are handled correctly. For example,
    ``RECONCILER_PROCESSING_ERRORS_MAX_RETRIES`` maps to section
    ``processing_errors``, field ``max_retries``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "RECONCILER_"
    known_sections = sorted(
        ReconcilerConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Coerce to int, float, bool, or keep as string
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                try:
                    data[matched_section][matched_field] = float(value)
                except ValueError:
                    if value.lower() in ("true", "false"):
                        data[matched_section][matched_field] = value.lower() == "true"
                    else:
                        data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> ReconcilerConfig:
    """Load reconciler configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.reconciler/).

    Returns:
        Parsed and validated ReconcilerConfig. Defaults (plus env
        overrides) when no config file exists.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return ReconcilerConfig(**data)


@lru_cache(maxsize=1)
def get_config() -> ReconcilerConfig:
    """Return the process-wide configuration, loaded once."""
    return load_config()
