# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for store access, retries, metrics, draining
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Defaults

Every setting has a default here, an environment variable override, and a
matching command-line flag (see main.py). Environment variables are the
flag name upper-cased with a CONCOURSE_ prefix:

    --postgres-host        -> CONCOURSE_POSTGRES_HOST
    --metrics-host-name    -> CONCOURSE_METRICS_HOST_NAME
    --metrics-attribute    -> CONCOURSE_METRICS_ATTRIBUTE ("a:b,c:d")

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
import socket
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

from psycopg.conninfo import make_conninfo

ENV_PREFIX = "CONCOURSE_"


class ConfigurationError(ValueError):
    """Raised for invalid flags or environment values. Fatal to the run."""


def env_name(flag: str) -> str:
    """Environment variable bound to a command-line flag."""
    return ENV_PREFIX + flag.lstrip("-").upper().replace("-", "_")


def env_value(flag: str, default: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Read the environment variable bound to `flag`."""
    environ = os.environ if environ is None else environ
    value = environ.get(env_name(flag))
    if value is None or value == "":
        return default
    return value


TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def env_bool(flag: str, default: bool, environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Read a boolean environment variable.

    Raises:
        ConfigurationError: value is not one of the true/false spellings
    """
    value = env_value(flag, environ=environ)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{env_name(flag)} must be one of {', '.join(TRUE_VALUES + FALSE_VALUES)}, got {value!r}"
    )


def env_int(flag: str, default: int, environ: Optional[Mapping[str, str]] = None) -> int:
    value = env_value(flag, environ=environ)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{env_name(flag)} must be an integer, got {value!r}") from None


def env_float(flag: str, default: float, environ: Optional[Mapping[str, str]] = None) -> float:
    value = env_value(flag, environ=environ)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{env_name(flag)} must be a number, got {value!r}") from None


def parse_attributes(values: Iterable[str]) -> Dict[str, str]:
    """
    Parse NAME:VALUE pairs into a dict.

    Each item may itself hold several comma-separated pairs, which is how
    the environment variable form carries more than one attribute.

    Raises:
        ConfigurationError: a pair has no ':' or an empty name
    """
    attributes: Dict[str, str] = {}
    for item in values:
        for pair in item.split(","):
            pair = pair.strip()
            if not pair:
                continue
            name, sep, value = pair.partition(":")
            if not sep or not name.strip():
                raise ConfigurationError(
                    f"invalid metrics attribute {pair!r}, expected NAME:VALUE"
                )
            attributes[name.strip()] = value.strip()
    return attributes


@dataclass(frozen=True)
class PostgresConfig:
    """
    PostgreSQL connection settings for the build store.

    A full connection URL (--postgres-url, else DATABASE_URL), when set,
    overrides all individual fields.
    """
    host: str = "127.0.0.1"
    port: int = 5432
    socket: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "atc"
    sslmode: str = "disable"
    ca_cert: Optional[str] = None
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    connect_timeout: int = 300  # seconds
    url: Optional[str] = None

    def connection_string(self) -> str:
        """Build a libpq connection string."""
        if self.url:
            return self.url

        params: Dict[str, object] = {
            "dbname": self.database,
            "sslmode": self.sslmode,
            "connect_timeout": self.connect_timeout,
        }
        if self.socket:
            params["host"] = self.socket
        else:
            params["host"] = self.host
            params["port"] = self.port
        if self.user:
            params["user"] = self.user
        if self.password:
            params["password"] = self.password
        if self.ca_cert:
            params["sslrootcert"] = self.ca_cert
        if self.client_cert:
            params["sslcert"] = self.client_cert
        if self.client_key:
            params["sslkey"] = self.client_key

        return make_conninfo(**params)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PostgresConfig":
        """Create from environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            host=env_value("postgres-host", "127.0.0.1", environ),
            port=env_int("postgres-port", 5432, environ),
            socket=env_value("postgres-socket", environ=environ),
            user=env_value("postgres-user", environ=environ),
            password=env_value("postgres-password", environ=environ),
            database=env_value("postgres-database", "atc", environ),
            sslmode=env_value("postgres-sslmode", "disable", environ),
            ca_cert=env_value("postgres-ca-cert", environ=environ),
            client_cert=env_value("postgres-client-cert", environ=environ),
            client_key=env_value("postgres-client-key", environ=environ),
            connect_timeout=env_int("postgres-connect-timeout", 300, environ),
            url=env_value("postgres-url", environ=environ) or environ.get("DATABASE_URL") or None,
        )


@dataclass(frozen=True)
class RetryDefaults:
    """
    Connection retry settings.

    Applied when opening database connections only; a failed drain is
    never retried in-process.
    """
    max_attempts: int = 5
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff for a zero-based attempt number."""
        return min(self.base_delay_seconds * (2 ** attempt), self.max_delay_seconds)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RetryDefaults":
        """Create from environment variables."""
        return cls(
            max_attempts=env_int("postgres-retry-attempts", 5, environ),
            base_delay_seconds=env_float("postgres-retry-delay", 0.5, environ),
            max_delay_seconds=env_float("postgres-retry-max-delay", 10.0, environ),
        )


@dataclass(frozen=True)
class MetricsConfig:
    """
    Metrics sink settings.

    attributes are a static overlay attached to every emitted metric.
    """
    host_name: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    emit_to_logs: bool = False
    http_url: Optional[str] = None
    http_timeout_seconds: float = 10.0

    def resolved_host(self) -> str:
        """Configured host label, falling back to this machine's hostname."""
        return self.host_name or socket.gethostname()

    @property
    def has_sink(self) -> bool:
        return self.emit_to_logs or bool(self.http_url)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MetricsConfig":
        """Create from environment variables."""
        raw_attributes = env_value("metrics-attribute", "", environ)
        return cls(
            host_name=env_value("metrics-host-name", environ=environ),
            attributes=parse_attributes([raw_attributes]) if raw_attributes else {},
            emit_to_logs=env_bool("emit-to-logs", False, environ),
            http_url=env_value("metrics-http-url", environ=environ),
            http_timeout_seconds=env_float("metrics-http-timeout", 10.0, environ),
        )


@dataclass(frozen=True)
class DrainConfig:
    """
    Drain behavior.

    mark_drained: persist the drained flag after a build completes
    continue_on_error: keep draining other builds after one fails
    claim_builds: take a per-build advisory lock before streaming
    """
    mark_drained: bool = True
    continue_on_error: bool = False
    claim_builds: bool = True
    page_size: int = 500
    log_level: str = "info"
    log_format: str = "human"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DrainConfig":
        """Create from environment variables."""
        return cls(
            mark_drained=env_bool("mark-drained", True, environ),
            continue_on_error=env_bool("continue-on-error", False, environ),
            claim_builds=env_bool("claim-builds", True, environ),
            page_size=env_int("event-page-size", 500, environ),
            log_level=env_value("log-level", "info", environ),
            log_format=env_value("log-format", "human", environ),
        )


# ============================================================================
# GLOBAL SETTINGS
# ============================================================================

@dataclass
class Settings:
    """Container for all configuration sections."""
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    retry: RetryDefaults = field(default_factory=RetryDefaults)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    drain: DrainConfig = field(default_factory=DrainConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Create all sections from environment variables."""
        return cls(
            postgres=PostgresConfig.from_env(environ),
            retry=RetryDefaults.from_env(environ),
            metrics=MetricsConfig.from_env(environ),
            drain=DrainConfig.from_env(environ),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ENV_PREFIX",
    "ConfigurationError",
    "env_name",
    "env_value",
    "env_bool",
    "env_int",
    "env_float",
    "parse_attributes",
    "PostgresConfig",
    "RetryDefaults",
    "MetricsConfig",
    "DrainConfig",
    "Settings",
]
