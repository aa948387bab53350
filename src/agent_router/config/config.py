"""Configuration management for the agent router.

Configuration is assembled from defaults, an optional YAML file and
environment variables, validated with pydantic.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

DEFAULT_TOKEN = "default-token"


class ConfigError(Exception):
    """Configuration-related errors."""

    pass


class ServerConfig(BaseModel):
    """HTTP/WebSocket listener configuration."""

    host: str = "0.0.0.0"
    port: int = 8787
    token: str = DEFAULT_TOKEN
    token_header: str = "X-AgentHUD-Token"
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])


class HubConfig(BaseModel):
    """Broadcast hub configuration."""

    max_queue_depth: int = 256
    send_timeout_seconds: float = 5.0


class SimulatorConfig(BaseModel):
    """Synthetic load generator configuration."""

    enabled: bool = False
    initial_delay_seconds: float = 5.0
    min_interval_seconds: float = 3.0
    max_interval_seconds: float = 10.0
    seed: int | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "json"
    enable_redaction: bool = True


class MetricsConfig(BaseModel):
    """Metrics configuration."""

    enabled: bool = False
    port: int = 9090


class TracingConfig(BaseModel):
    """Tracing configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None
    instrument_fastapi: bool = True


class HealthConfig(BaseModel):
    """Health and readiness probe configuration."""

    max_memory_usage_percent: float = 90.0


class Config(BaseModel):
    """Main configuration class for the agent router."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    environment: Literal["development", "staging", "production"] = "development"


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {value}") from e


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {value}") from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config_from_file(config_path: Path) -> dict[str, Any]:
    """Read raw configuration data from a YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration mapping as written in the file

    Raises:
        ConfigError: If the file cannot be read or is not valid YAML
    """
    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")
    return config_data


def load_config_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Read configuration overrides from environment variables.

    Environment variables are mapped as follows:
    - AGENT_ROUTER_HOST / AGENT_ROUTER_PORT (fallback: PORT)
    - AGENT_ROUTER_TOKEN (fallback: TOKEN)
    - AGENT_ROUTER_TOKEN_HEADER
    - AGENT_ROUTER_SIMULATOR (fallback: SIMULATOR_MODE)
    - AGENT_ROUTER_SIMULATOR_SEED
    - AGENT_ROUTER_MAX_QUEUE_DEPTH, AGENT_ROUTER_SEND_TIMEOUT
    - AGENT_ROUTER_LOG_LEVEL, AGENT_ROUTER_LOG_FORMAT
    - AGENT_ROUTER_METRICS_ENABLED, AGENT_ROUTER_METRICS_PORT
    - AGENT_ROUTER_OTLP_ENDPOINT (enables tracing)
    - AGENT_ROUTER_ENVIRONMENT

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Nested mapping containing only the values that were set
    """
    env = os.environ if environ is None else environ
    config_data: dict[str, Any] = {}

    def get(name: str, fallback: str | None = None) -> str | None:
        value = env.get(name)
        if value is None and fallback is not None:
            value = env.get(fallback)
        return value

    server: dict[str, Any] = {}
    if env_val := get("AGENT_ROUTER_HOST"):
        server["host"] = env_val
    if env_val := get("AGENT_ROUTER_PORT", "PORT"):
        server["port"] = _parse_int("AGENT_ROUTER_PORT", env_val)
    if env_val := get("AGENT_ROUTER_TOKEN", "TOKEN"):
        server["token"] = env_val
    if env_val := get("AGENT_ROUTER_TOKEN_HEADER"):
        server["token_header"] = env_val
    if server:
        config_data["server"] = server

    simulator: dict[str, Any] = {}
    if env_val := get("AGENT_ROUTER_SIMULATOR", "SIMULATOR_MODE"):
        simulator["enabled"] = _parse_bool(env_val)
    if env_val := get("AGENT_ROUTER_SIMULATOR_SEED"):
        simulator["seed"] = _parse_int("AGENT_ROUTER_SIMULATOR_SEED", env_val)
    if simulator:
        config_data["simulator"] = simulator

    hub: dict[str, Any] = {}
    if env_val := get("AGENT_ROUTER_MAX_QUEUE_DEPTH"):
        hub["max_queue_depth"] = _parse_int("AGENT_ROUTER_MAX_QUEUE_DEPTH", env_val)
    if env_val := get("AGENT_ROUTER_SEND_TIMEOUT"):
        hub["send_timeout_seconds"] = _parse_float("AGENT_ROUTER_SEND_TIMEOUT", env_val)
    if hub:
        config_data["hub"] = hub

    logging_config: dict[str, Any] = {}
    if env_val := get("AGENT_ROUTER_LOG_LEVEL"):
        logging_config["level"] = env_val.upper()
    if env_val := get("AGENT_ROUTER_LOG_FORMAT"):
        logging_config["format"] = env_val.lower()
    if logging_config:
        config_data["logging"] = logging_config

    metrics: dict[str, Any] = {}
    if env_val := get("AGENT_ROUTER_METRICS_ENABLED"):
        metrics["enabled"] = _parse_bool(env_val)
    if env_val := get("AGENT_ROUTER_METRICS_PORT"):
        metrics["port"] = _parse_int("AGENT_ROUTER_METRICS_PORT", env_val)
    if metrics:
        config_data["metrics"] = metrics

    if env_val := get("AGENT_ROUTER_OTLP_ENDPOINT"):
        config_data["tracing"] = {"enabled": True, "otlp_endpoint": env_val}

    if env_val := get("AGENT_ROUTER_ENVIRONMENT"):
        config_data["environment"] = env_val.lower()

    return config_data


def load_config(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded in the following order (later sources override earlier):
    1. Default values
    2. Configuration file (if provided)
    3. Environment variables

    Args:
        config_path: Optional path to a YAML configuration file
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Merged configuration

    Raises:
        ConfigError: If any source is unreadable or the result is invalid
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        data = load_config_from_file(config_path)

    data = _deep_merge(data, load_config_from_env(environ))

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def validate_config(config: Config) -> None:
    """Validate configuration for consistency and correctness.

    Args:
        config: Configuration to validate

    Raises:
        ConfigError: If configuration is invalid
    """
    if config.server.port <= 0 or config.server.port > 65535:
        raise ConfigError("server.port must be between 1 and 65535")

    if not config.server.token:
        raise ConfigError("server.token must not be empty")

    if not config.server.token_header:
        raise ConfigError("server.token_header must not be empty")

    if config.hub.max_queue_depth <= 0:
        raise ConfigError("hub.max_queue_depth must be positive")

    if config.hub.send_timeout_seconds <= 0:
        raise ConfigError("hub.send_timeout_seconds must be positive")

    sim = config.simulator
    if sim.initial_delay_seconds < 0:
        raise ConfigError("simulator.initial_delay_seconds must be non-negative")
    if sim.min_interval_seconds < 0:
        raise ConfigError("simulator.min_interval_seconds must be non-negative")
    if sim.min_interval_seconds > sim.max_interval_seconds:
        raise ConfigError(
            "simulator.min_interval_seconds must not exceed max_interval_seconds"
        )

    if config.metrics.enabled:
        if config.metrics.port <= 0 or config.metrics.port > 65535:
            raise ConfigError("metrics.port must be between 1 and 65535")
        if config.metrics.port == config.server.port:
            raise ConfigError("metrics.port must differ from server.port")

    if config.environment == "production":
        if config.server.token == DEFAULT_TOKEN:
            raise ConfigError("The default token must not be used in production")

        if config.logging.level == "DEBUG":
            raise ConfigError("DEBUG logging should not be used in production")

        if not config.logging.enable_redaction:
            raise ConfigError("Log redaction should be enabled in production")
