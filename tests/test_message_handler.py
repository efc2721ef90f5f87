"""
Tests for the room message handler.
"""

import logging
import random
from unittest.mock import Mock

import aiohttp
import pytest
from nio import ProfileGetError, ProfileGetResponse, RoomMessageImage, RoomSendError, RoomSendResponse

from oxybot.config import BotConfig
from oxybot.exceptions import HandlerError
from oxybot.integrations.matrix.components.events import (
    FOOL_QUOTES,
    MatrixMessageHandler,
    RoomMembership,
)

BOT_ID = "@bot:example.com"
ALICE = "@alice:example.com"
LOGGER_NAME = "oxybot.test.events"


def profile(displayname):
    response = Mock(spec=ProfileGetResponse)
    response.displayname = displayname
    return response


def sent_ok(event_id="$reply"):
    response = Mock(spec=RoomSendResponse)
    response.event_id = event_id
    return response


def sent_bodies(client):
    return [call.kwargs["content"]["body"] for call in client.room_send.await_args_list]


class TestMatrixMessageHandler:
    """Test suite for MatrixMessageHandler."""

    @pytest.fixture
    def handler_factory(self, mock_client):
        def make(**overrides):
            return MatrixMessageHandler(
                mock_client,
                BotConfig(**overrides),
                logging.getLogger(LOGGER_NAME),
                rng=random.Random(1234),
            )

        mock_client.get_profile.return_value = profile("Alice")
        mock_client.room_send.return_value = sent_ok()
        return make

    @pytest.mark.asyncio
    async def test_greets_sender_by_display_name(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()

        await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), RoomMembership.JOINED)

        mock_client.get_profile.assert_awaited_once_with(ALICE)
        mock_client.room_send.assert_awaited_once_with(
            room_id="!test:example.com",
            message_type="m.room.message",
            content={"msgtype": "m.text", "body": "Well hello there Alice"},
            ignore_unverified_devices=True,
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_stranger(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()
        mock_client.get_profile.return_value = profile(None)

        await handler.handle(mock_room, text_event(ALICE, "!oxy"), RoomMembership.JOINED)

        assert sent_bodies(mock_client) == ["Well hello there Stranger"]

    @pytest.mark.asyncio
    async def test_prefix_from_self_is_ignored(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()

        await handler.handle(mock_room, text_event(BOT_ID, "!oxy hi"), RoomMembership.JOINED)

        mock_client.get_profile.assert_not_awaited()
        mock_client.room_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_message_without_prefix_gets_no_reply(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()

        await handler.handle(mock_room, text_event(ALICE, "hello !oxy"), RoomMembership.JOINED)

        mock_client.room_send.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("membership", [RoomMembership.INVITED, RoomMembership.LEFT])
    async def test_rooms_not_joined_are_ignored(
        self, handler_factory, mock_client, mock_room, text_event, caplog, membership
    ):
        caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
        handler = handler_factory()

        await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), membership)

        mock_client.get_profile.assert_not_awaited()
        mock_client.room_send.assert_not_awaited()
        assert [r for r in caplog.records if r.name == LOGGER_NAME] == []

    @pytest.mark.asyncio
    async def test_non_text_messages_are_ignored(self, handler_factory, mock_client, mock_room, caplog):
        caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
        handler = handler_factory()
        image = Mock(spec=RoomMessageImage)
        image.sender = ALICE
        image.body = "!oxy.jpg"

        await handler.handle(mock_room, image, RoomMembership.JOINED)

        mock_client.get_profile.assert_not_awaited()
        mock_client.room_send.assert_not_awaited()
        assert [r for r in caplog.records if r.name == LOGGER_NAME] == []

    @pytest.mark.asyncio
    async def test_logs_room_sender_and_body(self, handler_factory, mock_room, text_event, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER_NAME)
        handler = handler_factory()

        await handler.handle(mock_room, text_event(ALICE, "just chatting"), RoomMembership.JOINED)

        assert f"[Test Room] {ALICE}: just chatting" in caplog.messages

    @pytest.mark.asyncio
    async def test_room_id_used_when_display_name_is_empty(self, handler_factory, mock_room, text_event, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER_NAME)
        handler = handler_factory()
        mock_room.display_name = ""

        await handler.handle(mock_room, text_event(ALICE, "hi"), RoomMembership.JOINED)

        assert f"[!test:example.com] {ALICE}: hi" in caplog.messages

    @pytest.mark.asyncio
    async def test_own_messages_logged_by_default(self, handler_factory, mock_room, text_event, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER_NAME)
        handler = handler_factory()

        await handler.handle(mock_room, text_event(BOT_ID, "beep"), RoomMembership.JOINED)

        assert f"[Test Room] {BOT_ID}: beep" in caplog.messages

    @pytest.mark.asyncio
    async def test_own_messages_not_logged_when_disabled(self, handler_factory, mock_room, text_event, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER_NAME)
        handler = handler_factory(log_own_messages=False)

        await handler.handle(mock_room, text_event(BOT_ID, "beep"), RoomMembership.JOINED)

        assert caplog.messages == []

    @pytest.mark.asyncio
    async def test_custom_command_prefix(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory(command_prefix="!hey")

        await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), RoomMembership.JOINED)
        mock_client.room_send.assert_not_awaited()

        await handler.handle(mock_room, text_event(ALICE, "!hey you"), RoomMembership.JOINED)
        assert sent_bodies(mock_client) == ["Well hello there Alice"]

    @pytest.mark.asyncio
    async def test_fool_quote_for_configured_user(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory(fool_quote_user_id=ALICE)

        await handler.handle(mock_room, text_event(ALICE, "I am very clever"), RoomMembership.JOINED)

        bodies = sent_bodies(mock_client)
        assert len(bodies) == 1
        assert bodies[0] in FOOL_QUOTES
        mock_client.get_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fool_quote_after_greeting(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory(fool_quote_user_id=ALICE)

        await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), RoomMembership.JOINED)

        bodies = sent_bodies(mock_client)
        assert bodies[0] == "Well hello there Alice"
        assert bodies[1] in FOOL_QUOTES

    @pytest.mark.asyncio
    async def test_fool_quote_disabled_by_default(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()

        await handler.handle(mock_room, text_event(ALICE, "I am very clever"), RoomMembership.JOINED)

        mock_client.room_send.assert_not_awaited()

    def test_fool_quotes_cover_both_quotes(self, handler_factory):
        handler = handler_factory()

        seen = {handler.get_fool_quote() for _ in range(200)}

        assert seen == set(FOOL_QUOTES)

    @pytest.mark.asyncio
    async def test_profile_error_raises_handler_error(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()
        error = Mock(spec=ProfileGetError)
        error.message = "Profile not found"
        mock_client.get_profile.return_value = error

        with pytest.raises(HandlerError) as exc_info:
            await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), RoomMembership.JOINED)

        assert "Profile not found" in str(exc_info.value)
        assert exc_info.value.room_id == "!test:example.com"
        mock_client.room_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profile_transport_error_raises_handler_error(
        self, handler_factory, mock_client, mock_room, text_event
    ):
        handler = handler_factory()
        mock_client.get_profile.side_effect = aiohttp.ClientConnectionError("connection reset")

        with pytest.raises(HandlerError) as exc_info:
            await handler.handle(mock_room, text_event(ALICE, "!oxy hi"), RoomMembership.JOINED)

        assert isinstance(exc_info.value.original_error, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_send_error_raises_handler_error(self, handler_factory, mock_client, mock_room, text_event):
        handler = handler_factory()
        error = Mock(spec=RoomSendError)
        error.message = "M_FORBIDDEN"
        mock_client.room_send.return_value = error

        with pytest.raises(HandlerError) as exc_info:
            await handler.handle(mock_room, text_event(ALICE, "!oxy hi", "$evt"), RoomMembership.JOINED)

        assert exc_info.value.event_id == "$evt"
        assert "M_FORBIDDEN" in str(exc_info.value)
