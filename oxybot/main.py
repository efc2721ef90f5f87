"""
Main entry point for the oxybot application.

Restores the saved Matrix session (or logs in), skips the message backlog
with a catch-up sync and then answers messages until interrupted or until
an unrecoverable error surfaces.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from nio import AsyncClient
from pydantic import ValidationError

from oxybot.config import AppConfig, create_settings
from oxybot.exceptions import OxybotBaseException, SessionLoadError
from oxybot.integrations.matrix.components.auth import MatrixAuthHandler
from oxybot.integrations.matrix.components.events import MatrixMessageHandler
from oxybot.integrations.matrix.components.sync import MatrixSyncDriver
from oxybot.integrations.matrix.session_store import SessionStore
from oxybot.utils.logging_config import get_logger, setup_logging

CLIENT_NAME = "oxybot"


class OxybotApp:
    """Wires the session store, auth handler, message handler and sync driver."""

    def __init__(self, settings: AppConfig, app_logger: logging.Logger):
        self.settings = settings
        self.logger = app_logger
        self.log = get_logger(app_logger.name).bind(data_dir=str(settings.data_dir))
        self.session_store = SessionStore(settings.session_file)
        self.auth_handler = MatrixAuthHandler(settings, self.session_store, app_logger)
        self.client: Optional[AsyncClient] = None

    async def bootstrap(self) -> Tuple[AsyncClient, Optional[str]]:
        """Return an authenticated client and the stored sync cursor."""
        if not self.session_store.exists():
            return await self.auth_handler.login(), None

        try:
            return await self.auth_handler.restore_session()
        except SessionLoadError as e:
            if not self.settings.bot.relogin_on_session_error:
                raise
            self.logger.warning(f"{e}; logging in again")
            return await self.auth_handler.login(), None

    async def run(self) -> None:
        self.log.info("oxybot.starting")

        client, sync_token = await self.bootstrap()
        self.client = client

        try:
            await self.auth_handler.setup_verification(client)

            handler = MatrixMessageHandler(client, self.settings.bot, self.logger)
            driver = MatrixSyncDriver(
                client, self.auth_handler, handler, self.settings.sync, self.logger
            )

            # Wait for the first sync response
            print("Wait for the first sync")
            sync_token = await driver.catch_up(sync_token)

            # This loops until we kill the program or an error happens
            await driver.run_forever(sync_token)
        finally:
            await client.close()
            self.log.info("oxybot.stopped")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Oxybot - a minimal Matrix bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m oxybot                          # Restore the session or log in
  python -m oxybot --log-level DEBUG        # Verbose logging
  python -m oxybot --data-dir ./data        # Keep the session in ./data
        """
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Override log format from configuration"
    )

    parser.add_argument(
        "--data-dir",
        help="Directory holding the session file and encryption store"
    )

    parser.add_argument(
        "--relogin-on-corrupt-session",
        action="store_true",
        help="Log in again instead of aborting when the session file cannot be restored"
    )

    return parser.parse_args(argv)


def apply_arguments(settings: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command line overrides to the settings."""
    if args.log_level:
        settings.log_level = args.log_level
    if args.log_format:
        settings.log_format = args.log_format
    if args.data_dir:
        settings.data_dir = Path(args.data_dir).expanduser()
    if args.relogin_on_corrupt_session:
        settings.bot.relogin_on_session_error = True
    return settings


async def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point. Returns the process exit status."""
    args = parse_arguments(argv)

    try:
        settings = apply_arguments(create_settings(), args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    app_logger = setup_logging(settings.log_level, settings.log_format, settings.log_file)
    app_logger.info(f"Starting {CLIENT_NAME}")

    app = OxybotApp(settings, app_logger)
    try:
        await app.run()
    except OxybotBaseException as e:
        app_logger.error(f"Fatal error: {e}")
        return 1

    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
