"""sitewatch - Scheduled website uptime, performance and certificate monitoring."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Exit codes for `sitewatch run`.
EXIT_ALL_UP = 0
EXIT_SITES_DOWN = 1
EXIT_CONFIG_ERROR = 2

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load_config_or_exit(path: str):
    from .config import ConfigError, load_config

    try:
        config = load_config(path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)
    logger.info("Configuration loaded from %s", path)
    return config


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - check every enabled site once."""
    _setup_logging(args.verbose)

    logger.info("sitewatch %s starting...", __version__)

    # Import here to allow logging setup first
    from .alerter import Alerter
    from .monitor import Monitor
    from .storage import StatusStore

    config = _load_config_or_exit(args.config)
    if args.results_dir:
        from dataclasses import replace

        config = replace(config, storage=replace(config.storage, results_dir=args.results_dir))

    logger.info(
        "Checking %d site(s) with %d worker(s), results in %s",
        len(config.enabled_sites),
        config.monitor.max_workers,
        config.storage.results_dir,
    )

    # SIGTERM stops like Ctrl+C: queued checks are cancelled, running ones finish.
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    store = StatusStore(config.storage.results_dir)
    alerter = None if args.no_notify else Alerter.from_config(config)
    monitor = Monitor(config, store, alerter)

    try:
        summary = monitor.run_once()
    except KeyboardInterrupt:
        logger.warning("Run interrupted, queued checks cancelled after running checks finished")
        sys.exit(130)

    for name, message in summary.down_sites:
        logger.warning("DOWN: %s - %s", name, message or "Unknown error")

    sys.exit(EXIT_SITES_DOWN if summary.down else EXIT_ALL_UP)


def _cmd_serve(args: argparse.Namespace) -> None:
    """Execute the serve command - expose stored results over HTTP."""
    global _shutdown_event

    _setup_logging(args.verbose)

    from dataclasses import replace

    from .api import ApiError, ApiServer
    from .storage import StatusStore

    config = _load_config_or_exit(args.config)
    api_config = config.api
    if args.port is not None:
        from .config import ConfigError

        try:
            api_config = replace(api_config, port=args.port)
        except ConfigError as e:
            logger.error("Configuration error: %s", e)
            sys.exit(EXIT_CONFIG_ERROR)

    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    server = ApiServer(api_config, StatusStore(config.storage.results_dir), tz=config.monitor.tz, host=args.host)
    try:
        server.start()
    except ApiError as e:
        logger.error("Failed to start API server: %s", e)
        sys.exit(1)

    if api_config.api_key is None:
        logger.warning("No API key configured, /api/* endpoints are open")

    try:
        logger.info("Serving results from %s, waiting for shutdown signal...", config.storage.results_dir)
        _shutdown_event.wait()
    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        server.stop()
        logger.info("Shutdown complete")


def _cmd_validate_config(args: argparse.Namespace) -> None:
    """Execute the validate-config command - parse the file and report problems."""
    from .config import ConfigError, load_config

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    enabled = config.enabled_sites
    print(f"Configuration OK: {len(config.sites)} site(s), {len(enabled)} enabled")
    for site in config.sites:
        marker = "✓" if site.enabled else "-"
        print(f"  {marker} {site.name}: {site.url} (threshold {site.performance_threshold_ms}ms)")
    print(f"Slack: {'configured' if config.slack.configured else 'not configured'}")
    print(f"GitHub issues: {'enabled' if config.github.enabled else 'disabled'}")


def _cmd_test_alert(args: argparse.Namespace) -> None:
    """Execute the test-alert command - verify Slack configuration."""
    from .alerter import SlackNotifier

    config = _load_config_or_exit(args.config)

    if not config.slack.configured:
        print("Error: No Slack bot token/channel or webhook_url configured")
        sys.exit(1)

    channel = "bot token API" if config.slack.bot_enabled else "incoming webhook"
    print(f"Sending test notification via {channel}...")

    success = SlackNotifier(config.slack, tz=config.monitor.tz).test_notification()
    print("✓ SUCCESS" if success else "✗ FAILED")

    if not success:
        sys.exit(1)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main() -> None:
    """Main entry point for the sitewatch package."""
    parser = argparse.ArgumentParser(
        description="sitewatch - Website uptime, performance and certificate monitoring"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"sitewatch {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Check every enabled site once (default)",
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--results-dir",
        help="Directory for status, metrics and reports (overrides config)",
    )
    run_parser.add_argument(
        "--no-notify",
        action="store_true",
        help="Skip Slack and GitHub notifications",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Serve subcommand
    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve stored results over the status API",
    )
    _add_common_arguments(serve_parser)
    serve_parser.add_argument(
        "--host",
        default="",
        help="Interface to bind (default: all interfaces)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (overrides config)",
    )
    serve_parser.set_defaults(func=_cmd_serve)

    # Validate-config subcommand
    validate_parser = subparsers.add_parser(
        "validate-config",
        help="Validate the configuration file and exit",
    )
    _add_common_arguments(validate_parser)
    validate_parser.set_defaults(func=_cmd_validate_config)

    # Test-alert subcommand
    test_alert_parser = subparsers.add_parser(
        "test-alert",
        help="Send a test Slack notification",
    )
    _add_common_arguments(test_alert_parser)
    test_alert_parser.set_defaults(func=_cmd_test_alert)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.results_dir = None
        args.no_notify = False
        args.func = _cmd_run

    args.func(args)
