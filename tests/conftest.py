"""
Global test configuration and fixtures.
"""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from nio import AsyncClient, MatrixRoom, RoomMessageText, SyncResponse

from oxybot.config import AppConfig, BotConfig, MatrixConfig, SyncConfig
from oxybot.integrations.matrix.session_store import SessionRecord, SessionStore

BOT_ID = "@bot:example.com"


@pytest.fixture
def data_dir(tmp_path) -> Path:
    """Data directory that does not exist yet."""
    return tmp_path / "oxybot"


@pytest.fixture
def app_config(data_dir) -> AppConfig:
    """Configuration with credentials and a temporary data directory."""
    return AppConfig(
        data_dir=data_dir,
        matrix=MatrixConfig(
            homeserver="https://matrix.example.com",
            user_id=BOT_ID,
            password="test_password",
        ),
        bot=BotConfig(),
        sync=SyncConfig(retry_base_delay=1.0, retry_max_delay=8.0),
    )


@pytest.fixture
def session_store(app_config) -> SessionStore:
    return SessionStore(app_config.session_file)


@pytest.fixture
def session_record() -> SessionRecord:
    return SessionRecord(
        homeserver="https://matrix.example.com",
        user_id=BOT_ID,
        device_id="TESTDEVICE",
        access_token="syt_test_token",
        sync_token=None,
    )


@pytest.fixture
def mock_client() -> Mock:
    """Create a mock Matrix client."""
    client = Mock(spec=AsyncClient)
    client.user_id = BOT_ID
    client.device_id = "TESTDEVICE"
    client.rooms = {}
    client.olm = None
    client.key_verifications = {}

    client.sync = AsyncMock()
    client.login = AsyncMock()
    client.close = AsyncMock()
    client.get_profile = AsyncMock()
    client.room_send = AsyncMock()
    client.to_device = AsyncMock()
    client.accept_key_verification = AsyncMock()
    client.confirm_short_auth_string = AsyncMock()
    client.keys_upload = AsyncMock()
    client.keys_query = AsyncMock()
    client.keys_claim = AsyncMock()
    client.send_to_device_messages = AsyncMock()
    client.add_to_device_callback = Mock()
    return client


@pytest.fixture
def mock_room() -> Mock:
    """Create a mock Matrix room."""
    room = Mock(spec=MatrixRoom)
    room.room_id = "!test:example.com"
    room.display_name = "Test Room"
    return room


@pytest.fixture
def text_event():
    """Factory for mock text message events."""

    def make_text_event(sender: str, body: str, event_id: str = "$event123") -> Mock:
        event = Mock(spec=RoomMessageText)
        event.event_id = event_id
        event.sender = sender
        event.body = body
        event.server_timestamp = 1234567890
        return event

    return make_text_event


@pytest.fixture
def sync_response():
    """Factory for stand-in sync responses; rooms map room_id -> list of events."""

    def section(rooms):
        return {
            room_id: SimpleNamespace(timeline=SimpleNamespace(events=list(events)))
            for room_id, events in (rooms or {}).items()
        }

    def make_sync_response(next_batch: str, join=None, leave=None) -> Mock:
        response = Mock(spec=SyncResponse)
        response.next_batch = next_batch
        response.rooms = SimpleNamespace(join=section(join), leave=section(leave), invite={})
        return response

    return make_sync_response
