"""ohmage OAuth entry point.

Changes:
  - 2026-10-19: ``serve`` subcommand runs the API server; ``--version`` reads package metadata.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from ohmage_oauth.config import get_settings
from ohmage_oauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("ohmage-oauth")
    except PackageNotFoundError:
        from ohmage_oauth import __version__

        return __version__


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="ohmage OAuth - authorization server for ohmage data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ohmage-oauth serve                     Start the server on the configured host/port
  ohmage-oauth serve --port 9000         Start on another port
  ohmage-oauth serve --dev               Start with auto-reload
""",
    )
    parser.add_argument("--version", "-v", action="version", version=_package_version())

    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Run the authorization server")
    serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from settings)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on source changes")

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level)

    if args.command != "serve":
        parser.print_help()
        return

    from ohmage_oauth.api.serve import run_api_server

    try:
        run_api_server(
            host=args.host or settings.host,
            port=args.port or settings.port,
            dev=args.dev,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
