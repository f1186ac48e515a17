"""Configuration management for the IdeaVerdict service.

This module handles loading configuration from YAML files and environment
variables, with environment variables taking precedence over file values.

Example:
    >>> from ideaverdict.config import load_config
    >>> config = load_config("ideaverdict.yaml")
    >>> config.capability("evaluate").rate_limit
    15

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ideaverdict.cooldown import DEFAULT_COOLDOWN
from ideaverdict.gateway import DEFAULT_API_BASE, DEFAULT_MODEL, DEFAULT_TIMEOUT
from ideaverdict.security import DEFAULT_ALLOWED_ORIGINS, DEFAULT_ORIGIN_PATTERNS
from ideaverdict.verdict import VerdictBandTable

logger = logging.getLogger(__name__)

DEFAULT_VERDICT_BANDS = "70:BUILD,40:NARROW,0:KILL"


@dataclass
class CapabilityConfig:
    """Per-capability admission and caching settings.

    Attributes:
        rate_limit: Requests allowed per client per window.
        rate_window: Window length in seconds.
        cache_ttl: Seconds a cached response stays fresh.
    """

    rate_limit: int = 15
    rate_window: float = 60.0
    cache_ttl: float = 300.0


@dataclass
class GatewayConfig:
    """Upstream model provider settings.

    Attributes:
        primary_key: Credential tried first on every call.
        secondary_key: Optional fallback credential for quota failures.
        model: Model identifier sent to the provider.
        api_base: Provider REST base URL.
        timeout: Per-request timeout in seconds.
        cooldown_seconds: Breaker cooldown after both credentials hit quota.
    """

    primary_key: str | None = None
    secondary_key: str | None = None
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    timeout: float = DEFAULT_TIMEOUT
    cooldown_seconds: float = DEFAULT_COOLDOWN


@dataclass
class CorsConfig:
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    origin_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGIN_PATTERNS))


@dataclass
class AuthConfig:
    """Identity service used to verify bearer tokens on /evaluate."""

    user_url: str | None = None
    api_key: str | None = None
    timeout: float = 10.0


def _default_capabilities() -> dict[str, CapabilityConfig]:
    return {
        "evaluate": CapabilityConfig(rate_limit=15, rate_window=60.0, cache_ttl=600.0),
        "structure": CapabilityConfig(rate_limit=15, rate_window=60.0, cache_ttl=300.0),
        "chat": CapabilityConfig(rate_limit=30, rate_window=60.0, cache_ttl=300.0),
    }


@dataclass
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        gateway: Upstream provider settings.
        capabilities: Admission and caching settings keyed by capability name.
        cors: Browser origin policy.
        auth: Bearer-token verification settings.
        verdict_bands: Band table as ``"lower:CATEGORY,..."`` thresholds.
        rate_limit_max_keys: Limiter size that triggers an expired-record sweep.
        cache_max_entries: Soft cap per response cache.
    """

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    capabilities: dict[str, CapabilityConfig] = field(default_factory=_default_capabilities)
    cors: CorsConfig = field(default_factory=CorsConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    verdict_bands: str = DEFAULT_VERDICT_BANDS
    rate_limit_max_keys: int = 10000
    cache_max_entries: int = 500

    def capability(self, name: str) -> CapabilityConfig:
        try:
            return self.capabilities[name]
        except KeyError:
            raise KeyError(f"Unknown capability: {name}") from None

    def band_table(self) -> VerdictBandTable:
        """Build the validated band table.

        Raises:
            ValueError: If the bands are not contiguous over [0, 100].
        """
        return VerdictBandTable.parse(self.verdict_bands)


def _parse_yaml(yaml_path: Path) -> dict[str, Any]:
    """Parse a YAML configuration file.

    Args:
        yaml_path: Path to the YAML file.

    Returns:
        Dictionary containing the parsed configuration.

    Raises:
        FileNotFoundError: If the YAML file doesn't exist.
        ValueError: If the YAML file is malformed.
    """
    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path) as f:
        try:
            config_dict = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ValueError(f"Invalid YAML in {yaml_path}: top level must be a mapping")
    return config_dict


def _set_known(target: Any, values: dict[str, Any], section: str) -> None:
    for key, value in values.items():
        if hasattr(target, key):
            setattr(target, key, value)
        else:
            logger.warning(f"Ignoring unknown config key: {section}.{key}")


def _apply_yaml(config: ServiceConfig, config_dict: dict[str, Any]) -> ServiceConfig:
    for key, value in config_dict.items():
        if key == "gateway" and isinstance(value, dict):
            _set_known(config.gateway, value, "gateway")
        elif key == "cors" and isinstance(value, dict):
            _set_known(config.cors, value, "cors")
        elif key == "auth" and isinstance(value, dict):
            _set_known(config.auth, value, "auth")
        elif key == "capabilities" and isinstance(value, dict):
            for name, settings in value.items():
                capability = config.capabilities.setdefault(name, CapabilityConfig())
                if isinstance(settings, dict):
                    _set_known(capability, settings, f"capabilities.{name}")
        elif key == "verdict_bands" and isinstance(value, dict):
            # Mapping form: {BUILD: 70, NARROW: 40, KILL: 0}
            config.verdict_bands = ",".join(f"{lower}:{name}" for name, lower in value.items())
        elif hasattr(config, key):
            setattr(config, key, value)
        else:
            logger.warning(f"Ignoring unknown config key: {key}")
    return config


def _apply_env_overrides(config: ServiceConfig) -> ServiceConfig:
    """Apply environment variable overrides to configuration.

    Environment variables take precedence over file values. The following
    environment variables are supported:

    - GEMINI_API_KEY_PRIMARY (or GEMINI_API_KEY): Primary credential
    - GEMINI_API_KEY_SECONDARY: Fallback credential
    - IDEAVERDICT_MODEL: Model identifier
    - IDEAVERDICT_API_BASE: Provider base URL
    - IDEAVERDICT_GATEWAY_TIMEOUT: Upstream timeout in seconds
    - IDEAVERDICT_COOLDOWN_SECONDS: Quota cooldown length
    - IDEAVERDICT_<CAPABILITY>_RATE_LIMIT / _RATE_WINDOW / _CACHE_TTL
    - IDEAVERDICT_CORS_ORIGINS: Comma-separated allowed origins
    - IDEAVERDICT_AUTH_URL: Identity service user endpoint
    - IDEAVERDICT_AUTH_API_KEY: Identity service API key
    - IDEAVERDICT_VERDICT_BANDS: Band thresholds, e.g. "70:BUILD,40:NARROW,0:KILL"

    Args:
        config: Base configuration to apply overrides to.

    Returns:
        Configuration with environment overrides applied.
    """
    primary = os.environ.get("GEMINI_API_KEY_PRIMARY") or os.environ.get("GEMINI_API_KEY")
    if primary:
        config.gateway.primary_key = primary

    secondary = os.environ.get("GEMINI_API_KEY_SECONDARY")
    if secondary:
        config.gateway.secondary_key = secondary

    env_mappings = {
        "IDEAVERDICT_MODEL": (config.gateway, "model", str),
        "IDEAVERDICT_API_BASE": (config.gateway, "api_base", str),
        "IDEAVERDICT_GATEWAY_TIMEOUT": (config.gateway, "timeout", float),
        "IDEAVERDICT_COOLDOWN_SECONDS": (config.gateway, "cooldown_seconds", float),
        "IDEAVERDICT_AUTH_URL": (config.auth, "user_url", str),
        "IDEAVERDICT_AUTH_API_KEY": (config.auth, "api_key", str),
        "IDEAVERDICT_VERDICT_BANDS": (config, "verdict_bands", str),
    }

    for name, capability in config.capabilities.items():
        prefix = f"IDEAVERDICT_{name.upper()}"
        env_mappings[f"{prefix}_RATE_LIMIT"] = (capability, "rate_limit", int)
        env_mappings[f"{prefix}_RATE_WINDOW"] = (capability, "rate_window", float)
        env_mappings[f"{prefix}_CACHE_TTL"] = (capability, "cache_ttl", float)

    for env_var, (target, attr, type_fn) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                setattr(target, attr, type_fn(value))
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {value!r}") from e
            logger.debug(f"Override from {env_var}: {attr}")

    origins = os.environ.get("IDEAVERDICT_CORS_ORIGINS")
    if origins:
        config.cors.allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

    return config


def load_config(yaml_path: str | Path | None = None) -> ServiceConfig:
    """Load service configuration from YAML file and environment variables.

    Configuration is loaded in the following order of precedence (highest first):
    1. Environment variables
    2. YAML file values
    3. Default values

    The band table is validated before returning, so a gap or overlap in
    ``verdict_bands`` fails at startup rather than on the first request.

    Args:
        yaml_path: Optional path to YAML configuration file. If None,
            ``IDEAVERDICT_CONFIG`` is consulted, then only defaults and
            environment variables are used.

    Returns:
        Complete service configuration.

    Raises:
        ValueError: Malformed YAML, bad environment value or invalid bands.
    """
    config = ServiceConfig()

    if yaml_path is None:
        yaml_path = os.environ.get("IDEAVERDICT_CONFIG")

    if yaml_path is not None:
        yaml_path = Path(yaml_path)
        if yaml_path.exists():
            logger.info(f"Loading config from {yaml_path}")
            config = _apply_yaml(config, _parse_yaml(yaml_path))
        else:
            logger.warning(f"Config file not found: {yaml_path}, using defaults")

    config = _apply_env_overrides(config)
    config.band_table()

    if not config.gateway.primary_key:
        logger.warning("No primary model credential configured; model calls will fail")

    return config


_config: ServiceConfig | None = None
_config_lock = threading.Lock()


def get_config() -> ServiceConfig:
    """Get or lazily load the process-wide configuration."""
    global _config
    with _config_lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config() -> None:
    """Forget the cached configuration. For tests."""
    global _config
    with _config_lock:
        _config = None
