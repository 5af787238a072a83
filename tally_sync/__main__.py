"""
Command line entry point.

Usage:
    # Interactive configuration + connection test
    python -m tally_sync --setup

    # Interactive OTP login (backend URL defaults to the configured one)
    python -m tally_sync --login [http://localhost:8080]

    # Run a single sync cycle
    python -m tally_sync --once

    # Diagnostics
    python -m tally_sync --test-connection
    python -m tally_sync --fetch Vouchers --from-date 2024-04-01 --to-date 2024-04-30

    # Start the background worker (default)
    python -m tally_sync
"""
from __future__ import annotations
import argparse
import signal
import sys
import threading
from datetime import date
from loguru import logger

from .auth import AuthManager
from .client import TallyClient
from .config import DEFAULT_CONFIG_FILE, SyncConfig
from .debug import TallyDebugger
from .errors import TallySyncError
from .logging_setup import configure_logging
from .login import interactive_login
from .setup_wizard import run_setup
from .worker import SyncWorker

DEFAULT_LOGIN_URL = "http://localhost:8080"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tally_sync",
        description="Export Tally data on a schedule and relay it to the backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to the config file (default: {DEFAULT_CONFIG_FILE})",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--setup", action="store_true", help="Run the interactive setup")
    mode.add_argument(
        "--login",
        nargs="?",
        const="",
        metavar="BACKEND_URL",
        help="Interactive OTP login",
    )
    mode.add_argument("--logout", action="store_true", help="Forget the stored session")
    mode.add_argument("--test-connection", action="store_true", help="Test Tally connection and exit")
    mode.add_argument("--fetch", metavar="TABLE", help="Fetch one table and print its size")
    mode.add_argument("--once", action="store_true", help="Run a single sync cycle and exit")

    parser.add_argument(
        "--from-date",
        type=lambda s: date.fromisoformat(s),
        help="Start date for --fetch (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--to-date",
        type=lambda s: date.fromisoformat(s),
        help="End date for --fetch (YYYY-MM-DD)",
    )
    parser.add_argument("--save", metavar="FILE", help="Save the --fetch response to FILE")

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress output except errors")
    return parser


def remember_backend(config: SyncConfig, backend_url: str, path: str) -> None:
    """Store the backend a login succeeded against so the worker delivers to it."""
    backend_url = backend_url.rstrip("/")
    if config.backend_url == backend_url:
        return
    config.backend_url = backend_url
    try:
        config.save(path)
    except OSError as e:
        logger.error(f"Logged in, but could not save backend URL to {path}: {e}")
        return
    logger.info(f"Backend URL {backend_url} saved to {path}")


def _make_auth(config: SyncConfig) -> AuthManager | None:
    if not config.backend_url:
        logger.warning("No backend configured; exports are written to disk only")
        return None
    return AuthManager.from_config(config)


def run_worker(config: SyncConfig, once: bool = False) -> int:
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return 1

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    with TallyClient(config) as client:
        worker = SyncWorker(config, client, _make_auth(config))
        if once:
            report = worker.run_once(stop_event)
            return 0 if report.skipped is None and report.failed == 0 else 1
        worker.run_forever(stop_event)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = SyncConfig.load(args.config)

    level = config.log_level
    if args.quiet:
        level = "ERROR"
    elif args.verbose:
        level = "DEBUG"
    configure_logging(level, config.log_file)

    try:
        if args.setup:
            run_setup(args.config)
            return 0

        if args.login is not None:
            backend_url = args.login or config.backend_url or DEFAULT_LOGIN_URL
            auth = AuthManager.from_config(config, backend_url)
            if not interactive_login(auth):
                return 1
            remember_backend(config, backend_url, args.config)
            return 0

        if args.logout:
            AuthManager.from_config(config, config.backend_url or DEFAULT_LOGIN_URL).logout()
            return 0

        if args.test_connection:
            result = TallyDebugger(config).test_connection()
            return 0 if result["connected"] else 1

        if args.fetch:
            TallyDebugger(config).fetch_raw_xml(
                args.fetch, args.save, args.from_date, args.to_date
            )
            return 0

        return run_worker(config, once=args.once)

    except TallySyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
