"""Configuration management for the event pipeline.

This module provides configuration loading and validation for routing,
consent, queueing, location enrichment and delivery settings, with support
for environment-specific overrides.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

import yaml
from pydantic import BaseModel, Field, field_validator

from .models.delivery import RoutingStrategy

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_PATTERN = re.compile(r'^[0-9a-fA-F]{64}$')


class EndpointsConfig(BaseModel):
    """Collection endpoint configuration."""

    collection_url: str = Field(
        default="",
        description="Collection endpoint used by the direct strategy"
    )
    relay_url: str = Field(
        default="",
        description="First-party relay endpoint used by the relay strategies"
    )
    relay_nonce: str = Field(
        default="",
        description="Anti-forgery token issued by the host page for relay requests"
    )
    api_key: str = Field(default="", description="API key sent to the relay")
    require_api_key: bool = Field(
        default=False,
        description="Block relay requests when no API key is configured"
    )
    encryption_key: str = Field(
        default="",
        description="64 hex character key for payload encryption"
    )
    require_https: bool = Field(
        default=True,
        description="Reject endpoints that are not https"
    )


class RoutingConfig(BaseModel):
    """Routing strategy selection."""

    strategy: RoutingStrategy = Field(
        default=RoutingStrategy.RELAY_SECURE,
        description="Primary routing strategy"
    )
    fallbacks: List[RoutingStrategy] = Field(
        default_factory=list,
        description="Strategies tried in order when the primary fails"
    )
    bot_check_enabled: bool = Field(
        default=True,
        description="Run the bot pre-check on relay strategies"
    )

    def ordered_strategies(self) -> List[RoutingStrategy]:
        """Primary strategy first, then fallbacks without duplicates."""
        ordered = [self.strategy]
        for strategy in self.fallbacks:
            if strategy not in ordered:
                ordered.append(strategy)
        return ordered


class ConsentConfig(BaseModel):
    """Consent gating configuration."""

    enabled: bool = Field(
        default=True,
        description="When disabled every event is treated as consented"
    )
    default_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Seconds until an implicit decision is taken; unset disables the timeout"
    )
    timeout_action: str = Field(
        default="grant",
        description="Decision taken when the timeout fires (grant or deny)"
    )
    record_max_age_days: int = Field(
        default=365,
        description="Age after which a stored consent record is discarded"
    )

    @field_validator('timeout_action')
    @classmethod
    def validate_timeout_action(cls, v):
        value = v.lower()
        if value not in ('grant', 'deny'):
            raise ValueError("timeout_action must be 'grant' or 'deny'")
        return value


class QueueConfig(BaseModel):
    """Pre-consent event queue configuration."""

    max_events: int = Field(default=50, ge=1, description="Maximum queued events")
    max_bytes: int = Field(default=51200, ge=1, description="Maximum serialized queue size")
    ttl_hours: float = Field(default=24, gt=0, description="Queued event lifetime")
    batch_size: int = Field(default=35, ge=1, description="Queue size that triggers a flush")
    sweep_interval_seconds: float = Field(
        default=300,
        gt=0,
        description="Interval of the background eviction sweep"
    )


class LocationConfig(BaseModel):
    """Location enrichment configuration."""

    disable_precise: bool = Field(
        default=False,
        description="Admin kill switch for IP-based geolocation"
    )
    provider_timeout_seconds: float = Field(
        default=5.0,
        description="Per-provider HTTP timeout used by the HTTP geolocation chain"
    )
    provider_urls: List[str] = Field(
        default_factory=lambda: [
            "https://ipapi.co/json/",
            "https://ipinfo.io/json",
            "https://json.geoiplookup.io/",
        ],
        description="Geolocation services tried in order"
    )


class DeliveryConfig(BaseModel):
    """Network delivery configuration."""

    beacon_enabled: bool = Field(default=True, description="Allow beacon transport")
    beacon_max_bytes: int = Field(default=65536, description="Largest payload a beacon accepts")
    request_timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")
    max_payload_bytes: int = Field(default=50000, description="Largest payload the guard accepts")
    rate_limit_requests: int = Field(default=100, description="Requests allowed per window and endpoint")
    rate_limit_window_seconds: float = Field(default=60.0, description="Rate limit window")
    jwt_expiry_seconds: int = Field(default=300, description="Lifetime of encrypted payload tokens")


class SessionConfig(BaseModel):
    """Session and user data configuration."""

    timeout_minutes: float = Field(default=30, gt=0, description="Inactivity timeout")
    user_data_expiration_hours: float = Field(
        default=24,
        gt=0,
        description="Lifetime of persisted user data"
    )


class PipelineConfiguration(BaseModel):
    """Complete pipeline configuration.

    Loads and validates pipeline configuration from YAML files,
    with support for environment-specific overrides.
    """

    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    debug_mode: bool = Field(default=False, description="Verbose pipeline logging")
    environment: str = Field(default="development", description="Current environment")

    def endpoint_for(self, strategy: RoutingStrategy) -> str:
        """Get the endpoint URL a strategy posts to."""
        if strategy.uses_relay:
            return self.endpoints.relay_url
        return self.endpoints.collection_url

    def has_valid_encryption_key(self) -> bool:
        return bool(ENCRYPTION_KEY_PATTERN.match(self.endpoints.encryption_key or ""))

    def validate_config(self) -> List[str]:
        """Validate cross-section settings and return issues."""
        issues = []

        for strategy in self.routing.ordered_strategies():
            if strategy.uses_relay and not self.endpoints.relay_url:
                issues.append(f"Strategy {strategy.value} requires endpoints.relay_url")
            if strategy is RoutingStrategy.DIRECT and not self.endpoints.collection_url:
                issues.append("Strategy direct requires endpoints.collection_url")
            if strategy.encrypts and not self.has_valid_encryption_key():
                issues.append("Strategy relay_secure requires a 64 hex character encryption key")

        if self.queue.batch_size > self.queue.max_events:
            issues.append(
                f"queue.batch_size ({self.queue.batch_size}) exceeds "
                f"queue.max_events ({self.queue.max_events}); flush would never trigger"
            )

        if self.consent.default_timeout_seconds is not None and self.consent.default_timeout_seconds < 0:
            issues.append("consent.default_timeout_seconds cannot be negative")

        return issues


class PipelineConfigLoader:
    """Loads pipeline configuration from YAML files with environment support."""

    def __init__(self, config_dir: Optional[Path] = None, base_name: str = "pipeline.yaml"):
        """Initialize config loader.

        Args:
            config_dir: Directory containing config files. Defaults to project config/ dir.
            base_name: Base config file name; environment files sit beside it
                as <stem>.<env><suffix>.
        """
        if config_dir is None:
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        self.base_name = base_name
        self.environment = os.getenv('TAGPIPE_ENV', 'development')

    def load_config(self, environment: Optional[str] = None) -> PipelineConfiguration:
        """Load pipeline configuration for specified environment.

        Args:
            environment: Environment name. Defaults to TAGPIPE_ENV or 'development'.

        Returns:
            Loaded and validated pipeline configuration.

        Raises:
            FileNotFoundError: If the base config file is not found.
            ValueError: If configuration is invalid.
        """
        env = environment or self.environment

        base_config_path = self.config_dir / self.base_name
        if not base_config_path.exists():
            raise FileNotFoundError(f"Base pipeline config not found: {base_config_path}")

        with open(base_config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        env_config_path = base_config_path.with_name(f"{base_config_path.stem}.{env}{base_config_path.suffix}")
        if env_config_path.exists():
            logger.info(f"Loading environment config: {env_config_path}")
            with open(env_config_path, 'r', encoding='utf-8') as f:
                env_config = yaml.safe_load(f) or {}
            config_data = self._deep_merge(config_data, env_config)

        # Extract environment-specific defaults if present
        environments = config_data.pop('environments', {}) or {}
        if env in environments:
            config_data = self._deep_merge(config_data, environments[env] or {})

        config_data['environment'] = env

        try:
            config = PipelineConfiguration(**config_data)
        except Exception as e:
            raise ValueError(f"Invalid pipeline configuration: {e}")

        issues = config.validate_config()
        if issues:
            logger.warning(f"Configuration validation issues: {issues}")

        logger.info(f"Loaded pipeline configuration for environment: {env}")
        logger.debug(f"Routing order: {[s.value for s in config.routing.ordered_strategies()]}")
        return config

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def create_default_config(self) -> PipelineConfiguration:
        """Create a default pipeline configuration."""
        return PipelineConfiguration(environment=self.environment)


# Global configuration instance
_config_loader = PipelineConfigLoader()
_config_cache: Optional[PipelineConfiguration] = None


def get_pipeline_config(environment: Optional[str] = None, force_reload: bool = False) -> PipelineConfiguration:
    """Get pipeline configuration for the specified environment.

    Args:
        environment: Environment name. If None, uses TAGPIPE_ENV or 'development'.
        force_reload: Force reload from files, ignoring cache.

    Returns:
        Pipeline configuration instance.
    """
    global _config_cache

    if force_reload or _config_cache is None:
        try:
            _config_cache = _config_loader.load_config(environment)
        except FileNotFoundError:
            logger.warning("Pipeline config file not found, using default configuration")
            _config_cache = _config_loader.create_default_config()
        except Exception as e:
            logger.error(f"Failed to load pipeline config: {e}")
            logger.warning("Using default configuration")
            _config_cache = _config_loader.create_default_config()

    return _config_cache


def load_pipeline_config_from_file(config_path: Path, environment: Optional[str] = None) -> PipelineConfiguration:
    """Load pipeline configuration from a specific base file."""
    config_path = Path(config_path)
    loader = PipelineConfigLoader(config_path.parent, base_name=config_path.name)
    return loader.load_config(environment)


def validate_pipeline_config(config_path: Path) -> List[str]:
    """Validate a pipeline configuration file.

    Returns:
        List of validation issues (empty if valid).
    """
    try:
        config = load_pipeline_config_from_file(config_path)
        return config.validate_config()
    except Exception as e:
        return [f"Configuration error: {e}"]
