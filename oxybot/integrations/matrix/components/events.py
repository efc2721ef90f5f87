"""
Matrix Message Handler

Inspects each incoming room message and replies to the command prefix.
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Optional

import aiohttp
from nio import (
    AsyncClient,
    MatrixRoom,
    ProfileGetResponse,
    RoomMessageText,
    RoomSendResponse,
)
from nio.exceptions import LocalProtocolError

from ....config import BotConfig
from ....exceptions import HandlerError

logger = logging.getLogger(__name__)

FOOL_QUOTES = (
    "A fool thinks himself to be wise, but a wise man knows himself to be a fool.",
    "The first principle is that you must not fool yourself and you are the easiest person to fool.",
)

REQUEST_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, LocalProtocolError)


class RoomMembership(Enum):
    """Our membership in the room an event was delivered for."""

    JOINED = "join"
    # Not produced by iter_room_messages: nio gives invites no timeline
    INVITED = "invite"
    LEFT = "leave"


class MatrixMessageHandler:
    """Handles room messages, one event at a time."""

    def __init__(
        self,
        client: AsyncClient,
        config: BotConfig,
        app_logger: Optional[logging.Logger] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.config = config
        self.logger = app_logger or logger
        self.rng = rng or random.Random()

    def get_fool_quote(self) -> str:
        return self.rng.choice(FOOL_QUOTES)

    async def handle(self, room: MatrixRoom, event, membership: RoomMembership) -> None:
        """Handle one room message.

        Raises HandlerError when a profile lookup or a reply fails; the
        caller is expected to contain it to this event.
        """
        # We only want to log text messages in joined rooms
        if membership is not RoomMembership.JOINED:
            return

        if not isinstance(event, RoomMessageText):
            return

        room_name = self._room_name(room)
        sent_by_me = event.sender == self.client.user_id

        if not sent_by_me or self.config.log_own_messages:
            self.logger.info(f"[{room_name}] {event.sender}: {event.body}")

        if sent_by_me:
            return

        if event.body.startswith(self.config.command_prefix):
            display_name = await self._sender_display_name(room, event)
            await self._send_text(room, event, self.config.greeting + display_name)

        if self.config.fool_quote_user_id and event.sender == self.config.fool_quote_user_id:
            await self._send_text(room, event, self.get_fool_quote())

    def _room_name(self, room: MatrixRoom) -> str:
        try:
            room_name = room.display_name
        except Exception as e:
            print(f"Error getting room display name: {e}")
            room_name = None

        # Fall back to the room ID
        return room_name or room.room_id

    async def _sender_display_name(self, room: MatrixRoom, event: RoomMessageText) -> str:
        try:
            response = await self.client.get_profile(event.sender)
        except REQUEST_ERRORS as e:
            raise HandlerError(room.room_id, event.event_id, f"profile lookup failed: {e}", e) from e

        if not isinstance(response, ProfileGetResponse):
            raise HandlerError(
                room.room_id,
                event.event_id,
                f"profile lookup for {event.sender} failed: {getattr(response, 'message', response)}",
            )

        return response.displayname or self.config.fallback_display_name

    async def _send_text(self, room: MatrixRoom, event: RoomMessageText, body: str) -> str:
        content = {"msgtype": "m.text", "body": body}
        try:
            response = await self.client.room_send(
                room_id=room.room_id,
                message_type="m.room.message",
                content=content,
                ignore_unverified_devices=True,
            )
        except REQUEST_ERRORS as e:
            raise HandlerError(room.room_id, event.event_id, f"sending reply failed: {e}", e) from e

        if not isinstance(response, RoomSendResponse):
            raise HandlerError(
                room.room_id,
                event.event_id,
                f"sending reply failed: {getattr(response, 'message', response)}",
            )

        self.logger.debug(f"Replied in {room.room_id} with event {response.event_id}")
        return response.event_id
