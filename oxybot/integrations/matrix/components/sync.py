"""
Matrix Sync Driver

Runs a one-shot catch-up sync to skip the backlog, then loops over sync
rounds. Each round's room messages are drained into an ordered list and
handed to the message handler one at a time; the round's cursor is only
persisted after every event has been handled.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

import aiohttp
from nio import AsyncClient, MatrixRoom, RoomMessage, SyncResponse

from ....config import SyncConfig
from ....exceptions import HandlerError, SyncTransportError
from .auth import MatrixAuthHandler
from .events import MatrixMessageHandler, RoomMembership

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)

# https://spec.matrix.org/v1.6/client-server-api/#lazy-loading-room-members
LAZY_LOADING_FILTER: Dict[str, Any] = {"room": {"state": {"lazy_load_members": True}}}

# Keeps 2 ** attempt within float range
MAX_BACKOFF_EXPONENT = 32


@dataclass
class RoomMessageItem:
    """One room message from a sync round, with the room it arrived in."""

    room: MatrixRoom
    event: RoomMessage
    membership: RoomMembership


def iter_room_messages(client: AsyncClient, response: SyncResponse) -> Iterator[RoomMessageItem]:
    """Yield the round's room messages in server order, room by room."""
    # Invited rooms only carry stripped state in nio, never a timeline
    sections = (
        (RoomMembership.JOINED, response.rooms.join),
        (RoomMembership.LEFT, response.rooms.leave),
    )
    for membership, rooms in sections:
        for room_id, info in rooms.items():
            # nio drops rooms we left from client.rooms
            room = client.rooms.get(room_id) or MatrixRoom(room_id, client.user_id)
            for event in info.timeline.events:
                if isinstance(event, RoomMessage):
                    yield RoomMessageItem(room, event, membership)


class MatrixSyncDriver:
    """Drives the catch-up and steady-state sync phases."""

    def __init__(
        self,
        client: AsyncClient,
        auth_handler: MatrixAuthHandler,
        message_handler: MatrixMessageHandler,
        config: SyncConfig,
        app_logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.auth_handler = auth_handler
        self.message_handler = message_handler
        self.config = config
        self.logger = app_logger or logger
        self._sleep = sleep
        self.rounds_completed = 0

    @property
    def sync_filter(self) -> Optional[Dict[str, Any]]:
        return LAZY_LOADING_FILTER if self.config.lazy_load_members else None

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` of the catch-up sync."""
        exponent = min(attempt, MAX_BACKOFF_EXPONENT)
        return min(self.config.retry_base_delay * (2 ** exponent), self.config.retry_max_delay)

    async def _sync_once(self, since: Optional[str], timeout: int) -> SyncResponse:
        try:
            response = await self.client.sync(
                timeout=timeout,
                sync_filter=self.sync_filter,
                since=since,
            )
        except TRANSPORT_ERRORS as e:
            raise SyncTransportError(f"sync request failed: {e}", e) from e

        if not isinstance(response, SyncResponse):
            raise SyncTransportError(f"sync failed: {getattr(response, 'message', response)}")

        return response

    async def catch_up(self, initial_token: Optional[str] = None) -> str:
        """Sync once, without handling events, to skip past messages.

        Retries until a round succeeds, with bounded exponential backoff
        between attempts. Returns the persisted cursor.
        """
        print("Launching a first sync to ignore past messages…")

        attempt = 0
        while True:
            try:
                response = await self._sync_once(initial_token, timeout=0)
                break
            except SyncTransportError as error:
                delay = self.backoff_delay(attempt)
                attempt += 1
                print(f"An error occurred during initial sync: {error}")
                print("Trying again…")
                self.logger.warning(
                    f"Initial sync attempt {attempt} failed: {error}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        self.logger.info(f"Initial sync complete after {attempt + 1} attempt(s)")
        await self.auth_handler.persist_sync_token(response.next_batch)
        return response.next_batch

    async def _maintain_keys(self) -> None:
        """Upload, query and claim E2EE keys the way nio's sync_forever does."""
        if getattr(self.client, "olm", None) is None:
            return

        try:
            if self.client.should_upload_keys:
                await self.client.keys_upload()
            if self.client.should_query_keys:
                await self.client.keys_query()
            if self.client.should_claim_keys:
                await self.client.keys_claim(self.client.get_users_for_key_claiming())
            await self.client.send_to_device_messages()
        except TRANSPORT_ERRORS as e:
            raise SyncTransportError(f"key maintenance failed: {e}", e) from e

    async def _dispatch(self, item: RoomMessageItem) -> None:
        try:
            await self.message_handler.handle(item.room, item.event, item.membership)
        except HandlerError as e:
            self.logger.warning(str(e))
        except Exception as e:
            self.logger.error(
                f"Unexpected error handling event {getattr(item.event, 'event_id', '?')} "
                f"in {item.room.room_id}: {e}",
                exc_info=True,
            )

    async def sync_round(self, since: Optional[str]) -> str:
        """Run one steady-state round and return the new persisted cursor."""
        response = await self._sync_once(since, timeout=self.config.timeout_ms)
        await self._maintain_keys()

        items: List[RoomMessageItem] = list(iter_room_messages(self.client, response))
        for item in items:
            await self._dispatch(item)

        # We persist the token each time to be able to restore our session
        await self.auth_handler.persist_sync_token(response.next_batch)
        self.rounds_completed += 1
        return response.next_batch

    async def run_forever(self, since: Optional[str]) -> None:
        """Loop until an error propagates or the task is cancelled."""
        print("The client is ready! Listening to new messages…")

        token = since
        while True:
            token = await self.sync_round(token)
