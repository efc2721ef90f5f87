"""
Matrix Authentication Handler

Handles Matrix client authentication and session persistence: a fresh
password login, restoring a saved session, and saving the sync cursor
after every sync round.
"""

import asyncio
import getpass
import logging
from typing import Callable, Optional, Tuple

import aiohttp
from nio import AsyncClient, AsyncClientConfig, LoginResponse
from nio.crypto import ENCRYPTION_ENABLED

from ....config import AppConfig
from ....exceptions import LoginError, PersistError, SessionLoadError
from ..session_store import SessionRecord, SessionStore
from .verification import MatrixVerificationHandler

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def normalize_homeserver(homeserver: str) -> str:
    """Add a scheme to bare homeserver names."""
    homeserver = homeserver.strip().rstrip("/")
    if not homeserver.startswith(("http://", "https://")):
        homeserver = f"https://{homeserver}"
    return homeserver


class MatrixAuthHandler:
    """Creates authenticated clients and keeps the session file current."""

    def __init__(
        self,
        config: AppConfig,
        session_store: SessionStore,
        app_logger: Optional[logging.Logger] = None,
        prompt: Callable[[str], str] = input,
        password_prompt: Callable[[str], str] = getpass.getpass,
    ):
        self.config = config
        self.session_store = session_store
        self.logger = app_logger or logger
        self.prompt = prompt
        self.password_prompt = password_prompt
        self.verification_handler: Optional[MatrixVerificationHandler] = None

    def create_client(
        self, homeserver: str, user_id: str, device_id: Optional[str] = None
    ) -> AsyncClient:
        """Build a client whose encryption store lives in the data directory."""
        store_path = self.config.store_path
        store_path.mkdir(parents=True, exist_ok=True)

        client_config = AsyncClientConfig(
            # The cursor lives in our session file, not in the nio store
            store_sync_tokens=False,
            encryption_enabled=ENCRYPTION_ENABLED,
            max_timeouts=self.config.matrix.max_timeouts,
        )
        return AsyncClient(
            homeserver,
            user_id,
            device_id=device_id,
            store_path=str(store_path),
            config=client_config,
        )

    async def restore_session(self) -> Tuple[AsyncClient, Optional[str]]:
        """Restore the client from the session file.

        Returns the client and the last persisted sync cursor, if any.
        """
        record = self.session_store.load()
        self.logger.info(f"Restoring session for {record.user_id}…")

        try:
            client = self.create_client(record.homeserver, record.user_id, record.device_id)
        except OSError as e:
            raise SessionLoadError(
                self.session_store.path, f"could not open the encryption store: {e}", e
            ) from e

        try:
            client.restore_login(
                user_id=record.user_id,
                device_id=record.device_id,
                access_token=record.access_token,
            )
        except Exception as e:
            await client.close()
            raise SessionLoadError(
                self.session_store.path, f"could not restore login: {e}", e
            ) from e

        self.logger.info(f"Session restored for {record.user_id} on device {record.device_id}")
        return client, record.sync_token

    def _resolve_credentials(self) -> Tuple[str, str, str]:
        matrix = self.config.matrix

        homeserver = matrix.homeserver or self.prompt("Homeserver URL: ")
        user_id = matrix.user_id or self.prompt("Username: ")
        password = matrix.password or self.password_prompt("Password: ")
        return normalize_homeserver(homeserver), user_id.strip(), password

    async def login(self) -> AsyncClient:
        """Log in with a password and persist the new session.

        Credentials come from the configuration; anything missing is asked
        for interactively. Failures are not retried.
        """
        homeserver, user_id, password = self._resolve_credentials()
        if not user_id or not password:
            raise LoginError(homeserver, user_id or "<unknown>", "username and password are required")

        try:
            self.config.data_dir.mkdir(parents=True, exist_ok=True)
            client = self.create_client(homeserver, user_id)
        except OSError as e:
            raise PersistError(
                self.config.data_dir, f"could not create data directory: {e}", e
            ) from e

        self.logger.info(f"Logging in as {user_id} on {homeserver}…")
        try:
            response = await client.login(password, device_name=self.config.matrix.device_name)
        except TRANSPORT_ERRORS as e:
            await client.close()
            raise LoginError(homeserver, user_id, f"homeserver unreachable: {e}", e) from e

        if not isinstance(response, LoginResponse):
            await client.close()
            raise LoginError(homeserver, user_id, getattr(response, "message", str(response)))

        record = SessionRecord(
            homeserver=homeserver,
            user_id=response.user_id,
            device_id=response.device_id,
            access_token=response.access_token,
            sync_token=None,
        )
        try:
            self.session_store.save(record)
        except Exception:
            await client.close()
            raise

        self.logger.info(f"Logged in as {response.user_id}, session saved to {self.session_store.path}")
        return client

    async def persist_sync_token(self, sync_token: str) -> None:
        """Persist the sync cursor. PersistError propagates to the caller."""
        self.session_store.update_sync_token(sync_token)
        self.logger.debug(f"Persisted sync token {sync_token}")

    async def setup_verification(self, client: AsyncClient) -> None:
        """Accept verification requests from our other devices automatically."""
        self.verification_handler = MatrixVerificationHandler(client, self.logger)
        self.verification_handler.register()
