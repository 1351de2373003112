"""
StreaMan - Main entry point.

Parses command line flags, loads configuration, and serves the web front
end until SIGINT/SIGTERM. Running recordings are interrupted on shutdown.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from aiohttp import web

from .config import Config, load_config, parse_listen_address
from .launcher import ProcessLauncher
from .logger import get_logger, setup_logging
from .registry import RecordingRegistry
from .web import build_app


class StreaManApp:
    """
    Main application: owns the registry and the HTTP server.
    """

    def __init__(self, config: Config):
        """Initialize application with configuration."""
        self.config = config
        self._logger = get_logger('app')

        self.registry = RecordingRegistry(
            data_dir=config.server.data_dir,
            launcher=ProcessLauncher(config.recording),
        )
        self.app = build_app(config, self.registry)

    async def start(self) -> None:
        """Serve until a shutdown signal arrives."""
        server = self.config.server
        self._logger.info(
            f"Starting StreaMan on {server.listen_address} "
            f"(prefix='{server.prefix}', data_dir={server.data_dir}, "
            f"transcode={'off' if server.no_encode else 'available'})"
        )

        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host=server.host, port=server.port)
        await site.start()

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            await stop_event.wait()
        finally:
            self._logger.info("Shutdown signal received...")
            await runner.cleanup()
            await self.registry.close(timeout=self.config.recording.shutdown_timeout)
            self._logger.info("Stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamman",
        description="Record live streams through a small web interface.",
    )
    parser.add_argument("--config", help="YAML configuration file.")
    parser.add_argument("--prefix", help="HTTP path prefix.")
    parser.add_argument("--data-dir", help="Data directory.")
    parser.add_argument("--listen-address", help="Listen address (host:port).")
    parser.add_argument(
        "--no-encode",
        action="store_true",
        default=None,
        help="Disable encoding to x265.",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR.")
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags take precedence over the configuration file."""
    if args.prefix is not None:
        config.server.prefix = args.prefix.rstrip('/')
    if args.data_dir is not None:
        config.server.data_dir = args.data_dir
    if args.listen_address is not None:
        parse_listen_address(args.listen_address)
        config.server.listen_address = args.listen_address
    if args.no_encode:
        config.server.no_encode = True
    if args.log_level is not None:
        config.logging.level = args.log_level
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
        config.ensure_directories()
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"Configuration error: {e}")
        return 1

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file or None,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count
    )

    app = StreaManApp(config)

    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        get_logger('app').error(f"Fatal error: {e}")
        raise

    return 0


if __name__ == '__main__':
    sys.exit(main())
