# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the metric drain.
"""

from core.config.defaults import (
    ConfigurationError,
    PostgresConfig,
    RetryDefaults,
    MetricsConfig,
    DrainConfig,
    Settings,
    env_bool,
    env_name,
    parse_attributes,
)

__all__ = [
    "ConfigurationError",
    "PostgresConfig",
    "RetryDefaults",
    "MetricsConfig",
    "DrainConfig",
    "Settings",
    "env_bool",
    "env_name",
    "parse_attributes",
]
