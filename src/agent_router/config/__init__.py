"""Configuration management for the agent router.

This module provides configuration loading and validation.
"""

from .config import (
    DEFAULT_TOKEN,
    Config,
    ConfigError,
    HealthConfig,
    HubConfig,
    LoggingConfig,
    MetricsConfig,
    ServerConfig,
    SimulatorConfig,
    TracingConfig,
    load_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)

__all__ = [
    "DEFAULT_TOKEN",
    "Config",
    "ConfigError",
    "HealthConfig",
    "HubConfig",
    "LoggingConfig",
    "MetricsConfig",
    "ServerConfig",
    "SimulatorConfig",
    "TracingConfig",
    "load_config",
    "load_config_from_env",
    "load_config_from_file",
    "validate_config",
]
