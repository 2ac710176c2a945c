# ============================================================================
# METRIC DRAIN - MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Command-line entry point
# PURPOSE: Parse flags, open the build store, run one drain pass
# CREATED: 17 OCT 2026
# ============================================================================
"""
Metric Drain Main Entry Point

One-shot batch worker:
1. Parses flags (each bound to a CONCOURSE_* environment variable)
2. Opens the query pool and the dedicated lock pool
3. Drains every finished, undrained build into the metrics sink
4. Closes pools and emitters, exits 0 on success, 1 on any error

Usage:
    python main.py --postgres-host db.internal --metrics-host-name web-1 \\
        --metrics-attribute env:prod --emit-to-logs

    CONCOURSE_POSTGRES_HOST=db.internal metricdrain
"""

import argparse
import asyncio
import sys
from typing import Mapping, Optional, Sequence

from __version__ import __version__, BUILD_DATE, EPOCH
from core.config import (
    ConfigurationError,
    DrainConfig,
    MetricsConfig,
    PostgresConfig,
    RetryDefaults,
    Settings,
    parse_attributes,
)
from core.logging import configure_logging, get_logger, ComponentType, log_context
from core.observability import build_emitter, log_lock_acquired, log_lock_released
from infrastructure.locking import LockService
from repositories import BuildRepository, DatabasePools
from services import DrainCoordinator, EventTranslator

logger = get_logger(__name__, ComponentType.DRAIN)


class DrainArgumentParser(argparse.ArgumentParser):
    """Reports bad flags as ConfigurationError instead of exiting with 2."""

    def error(self, message):
        raise ConfigurationError(message)


def build_parser(environ: Optional[Mapping[str, str]] = None) -> argparse.ArgumentParser:
    """
    Build the flag parser.

    Defaults come from Settings.from_env(), so each flag falls back to its
    CONCOURSE_* environment variable and then to the built-in default.

    Raises:
        ConfigurationError: an environment variable holds a bad value
    """
    defaults = Settings.from_env(environ)
    postgres, retry, metrics_config, drain_config = (
        defaults.postgres, defaults.retry, defaults.metrics, defaults.drain,
    )

    parser = DrainArgumentParser(
        prog="metricdrain",
        description="Drain finished build events into metric events.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    pg = parser.add_argument_group("postgres")
    pg.add_argument("--postgres-host", default=postgres.host)
    pg.add_argument("--postgres-port", type=int, default=postgres.port)
    pg.add_argument("--postgres-socket", default=postgres.socket)
    pg.add_argument("--postgres-user", default=postgres.user)
    pg.add_argument("--postgres-password", default=postgres.password)
    pg.add_argument("--postgres-database", default=postgres.database)
    pg.add_argument("--postgres-sslmode", default=postgres.sslmode)
    pg.add_argument("--postgres-ca-cert", default=postgres.ca_cert)
    pg.add_argument("--postgres-client-cert", default=postgres.client_cert)
    pg.add_argument("--postgres-client-key", default=postgres.client_key)
    pg.add_argument("--postgres-connect-timeout", type=int, default=postgres.connect_timeout,
                    help="Seconds to wait for a connection (default: 300)")
    pg.add_argument("--postgres-url", default=postgres.url,
                    help="Full libpq connection string, overrides the other postgres flags "
                         "(default: DATABASE_URL)")
    pg.add_argument("--postgres-retry-attempts", type=int, default=retry.max_attempts)
    pg.add_argument("--postgres-retry-delay", type=float, default=retry.base_delay_seconds)
    pg.add_argument("--postgres-retry-max-delay", type=float, default=retry.max_delay_seconds)

    metrics = parser.add_argument_group("metrics")
    metrics.add_argument("--metrics-host-name", default=metrics_config.host_name,
                         help="Host label on emitted metrics (default: this machine's hostname)")
    metrics.add_argument("--metrics-attribute", action="append", metavar="NAME:VALUE",
                         help="Attribute added to every metric, may be repeated")
    metrics.add_argument("--emit-to-logs", action=argparse.BooleanOptionalAction,
                         default=metrics_config.emit_to_logs)
    metrics.add_argument("--metrics-http-url", default=metrics_config.http_url)
    metrics.add_argument("--metrics-http-timeout", type=float,
                         default=metrics_config.http_timeout_seconds)

    drain = parser.add_argument_group("drain")
    drain.add_argument("--mark-drained", action=argparse.BooleanOptionalAction,
                       default=drain_config.mark_drained,
                       help="Set each build's drained flag once its events are emitted")
    drain.add_argument("--continue-on-error", action=argparse.BooleanOptionalAction,
                       default=drain_config.continue_on_error)
    drain.add_argument("--claim-builds", action=argparse.BooleanOptionalAction,
                       default=drain_config.claim_builds,
                       help="Take a per-build advisory lock before draining it")
    drain.add_argument("--event-page-size", type=int, default=drain_config.page_size)
    drain.add_argument("--log-level", default=drain_config.log_level,
                       choices=["debug", "info", "warning", "error"])
    drain.add_argument("--log-format", default=drain_config.log_format,
                       choices=["human", "json"])

    parser.set_defaults(_env_attributes=metrics_config.attributes)
    return parser


def parse_args(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> argparse.Namespace:
    """
    Parse command-line flags.

    Raises:
        ConfigurationError: unknown flag or bad value
        SystemExit: --help or --version (code 0)
    """
    return build_parser(environ).parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """
    Assemble Settings from parsed flags.

    Attributes given on the command line replace the environment value.

    Raises:
        ConfigurationError: malformed attribute or out-of-range value
    """
    if args.metrics_attribute:
        attributes = parse_attributes(args.metrics_attribute)
    else:
        attributes = dict(args._env_attributes)

    if args.event_page_size < 1:
        raise ConfigurationError(f"--event-page-size must be positive, got {args.event_page_size}")
    if args.postgres_retry_attempts < 1:
        raise ConfigurationError(
            f"--postgres-retry-attempts must be positive, got {args.postgres_retry_attempts}"
        )

    return Settings(
        postgres=PostgresConfig(
            host=args.postgres_host,
            port=args.postgres_port,
            socket=args.postgres_socket,
            user=args.postgres_user,
            password=args.postgres_password,
            database=args.postgres_database,
            sslmode=args.postgres_sslmode,
            ca_cert=args.postgres_ca_cert,
            client_cert=args.postgres_client_cert,
            client_key=args.postgres_client_key,
            connect_timeout=args.postgres_connect_timeout,
            url=args.postgres_url,
        ),
        retry=RetryDefaults(
            max_attempts=args.postgres_retry_attempts,
            base_delay_seconds=args.postgres_retry_delay,
            max_delay_seconds=args.postgres_retry_max_delay,
        ),
        metrics=MetricsConfig(
            host_name=args.metrics_host_name,
            attributes=attributes,
            emit_to_logs=args.emit_to_logs,
            http_url=args.metrics_http_url,
            http_timeout_seconds=args.metrics_http_timeout,
        ),
        drain=DrainConfig(
            mark_drained=args.mark_drained,
            continue_on_error=args.continue_on_error,
            claim_builds=args.claim_builds,
            page_size=args.event_page_size,
            log_level=args.log_level,
            log_format=args.log_format,
        ),
    )


async def drain(settings: Settings) -> int:
    """Run one drain pass. Returns the process exit code."""
    emitter = build_emitter(settings.metrics)
    try:
        async with DatabasePools(
            settings.postgres.connection_string(),
            retry=settings.retry,
        ) as pools:
            lock_service = None
            if settings.drain.claim_builds:
                lock_service = LockService(
                    pools.lock_pool,
                    on_acquired=log_lock_acquired,
                    on_released=log_lock_released,
                )

            coordinator = DrainCoordinator(
                BuildRepository(pools.pool, page_size=settings.drain.page_size),
                EventTranslator(
                    static_attributes=settings.metrics.attributes,
                    host=settings.metrics.resolved_host(),
                ),
                emitter,
                lock_service=lock_service,
                mark_drained=settings.drain.mark_drained,
                continue_on_error=settings.drain.continue_on_error,
            )
            await coordinator.run()
    except Exception as e:
        logger.error(f"Metric drain failed: {e}")
        return 1
    finally:
        await emitter.close()

    return 0


async def main(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    """Parse flags and run one drain pass. Returns the process exit code."""
    try:
        args = parse_args(argv, environ)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except ConfigurationError as e:
        print(f"metricdrain: {e}", file=sys.stderr)
        return 1

    try:
        settings = settings_from_args(args)
    except (ConfigurationError, ValueError) as e:
        print(f"metricdrain: configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(
        level=settings.drain.log_level,
        json_output=settings.drain.log_format == "json",
    )
    logger.info(f"Starting Metric Drain v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    with log_context(session="metric-drain", operation="drain"):
        return await drain(settings)


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    run()
