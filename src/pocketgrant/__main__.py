"""PocketGrant entry point.

Changes:
  - 2026-10-17: Added --config to point at a JSON settings file.
  - 2026-10-17: Rich logging, level taken from settings.
"""

import argparse
import logging
import os
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from pocketgrant.config import CONFIG_ENV_VAR, get_settings, reset_settings
from pocketgrant.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("pocketgrant")
    except PackageNotFoundError:
        return "unknown"


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PocketGrant - embeddable OAuth2 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m pocketgrant                          Serve on 127.0.0.1:8890
  python -m pocketgrant --config clients.json    Load clients and users from a file
  python -m pocketgrant --dev                    Serve with auto-reload
""",
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind")
    parser.add_argument("--port", "-p", type=int, default=8890, help="Port to bind")
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help=f"JSON settings file (also read from ${CONFIG_ENV_VAR})",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode with auto-reload",
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"%(prog)s {_package_version()}"
    )
    args = parser.parse_args()

    if args.config:
        # The reloader re-imports the app in a child process; the env var survives that.
        os.environ[CONFIG_ENV_VAR] = args.config
        reset_settings()

    settings = get_settings()
    setup_logging(level="DEBUG" if args.dev else settings.log_level)

    from pocketgrant.api.serve import run_api_server

    try:
        run_api_server(host=args.host, port=args.port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("PocketGrant stopped.")


if __name__ == "__main__":
    main()
