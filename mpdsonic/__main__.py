"""
mpdsonic - Entry Point

Run with: python -m mpdsonic
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from mpdsonic import __version__
from mpdsonic.config import ConfigError, Settings, load_settings, parse_address
from mpdsonic.server import MpdsonicServer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="mpdsonic",
        description="mpdsonic - A Subsonic-compatible REST gateway for MPD",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML config file",
    )

    parser.add_argument(
        "-a",
        "--address",
        type=str,
        default=None,
        help="Host address to bind to (default: 127.0.0.1)",
    )

    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: 3000)",
    )

    parser.add_argument(
        "-u",
        "--username",
        type=str,
        default=None,
        help="Username clients authenticate with",
    )

    parser.add_argument(
        "--password",
        type=str,
        default=None,
        help="Password clients authenticate with",
    )

    parser.add_argument(
        "--mpd-address",
        type=str,
        default=None,
        help="MPD address as host[:port] (default: localhost:6600)",
    )

    parser.add_argument(
        "--mpd-password",
        type=str,
        default=None,
        help="MPD password",
    )

    parser.add_argument(
        "--mpd-library",
        type=str,
        default=None,
        help="Location of the MPD music directory (path or http(s):// URL)",
    )

    parser.add_argument(
        "--ffmpeg",
        type=str,
        default=None,
        help="ffmpeg binary used for transcoding (default: ffmpeg)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def apply_args(settings: Settings, args: argparse.Namespace) -> None:
    """Apply command line overrides on top of file and environment settings."""
    if args.address is not None:
        settings.address = args.address
    if args.port is not None:
        settings.port = args.port
    if args.username is not None:
        settings.username = args.username
    if args.password is not None:
        settings.password = args.password
    if args.mpd_address is not None:
        settings.mpd_host, settings.mpd_port = parse_address(args.mpd_address)
    if args.mpd_password is not None:
        settings.mpd_password = args.mpd_password
    if args.mpd_library is not None:
        settings.library = args.mpd_library
    if args.ffmpeg is not None:
        settings.ffmpeg = args.ffmpeg


async def run_server(settings: Settings) -> None:
    """Start and run the mpdsonic server."""
    server = MpdsonicServer(settings)
    await server.run()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        settings = load_settings(args.config)
        apply_args(settings, args)
        settings.validate()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    logger.info("Starting mpdsonic %s...", __version__)

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
