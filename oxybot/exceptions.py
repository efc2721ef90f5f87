"""
Custom Exception Classes

This module defines the exceptions raised while bootstrapping the session,
driving the sync loop and handling room messages.
"""

from pathlib import Path
from typing import Optional, Union


class OxybotBaseException(Exception):
    """Base exception for the oxybot application."""

    pass


class ConfigurationError(OxybotBaseException):
    """Raised for configuration problems."""

    pass


class SessionLoadError(OxybotBaseException):
    """Raised when the persisted session is missing, unreadable or invalid."""

    def __init__(
        self,
        path: Union[str, Path],
        reason: str,
        original_error: Optional[Exception] = None,
    ):
        self.path = Path(path)
        self.reason = reason
        self.original_error = original_error
        super().__init__(f"Could not load session from '{self.path}': {reason}")


class LoginError(OxybotBaseException):
    """Raised on invalid credentials or an unreachable homeserver."""

    def __init__(
        self,
        homeserver: str,
        user_id: str,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.homeserver = homeserver
        self.user_id = user_id
        self.original_error = original_error
        super().__init__(f"Login of {user_id} on {homeserver} failed: {message}")


class SyncTransportError(OxybotBaseException):
    """Raised when a sync round fails on the network or server side."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)


class PersistError(OxybotBaseException):
    """Raised when the session record cannot be written."""

    def __init__(
        self,
        path: Union[str, Path],
        reason: str,
        original_error: Optional[Exception] = None,
    ):
        self.path = Path(path)
        self.reason = reason
        self.original_error = original_error
        super().__init__(f"Could not persist session to '{self.path}': {reason}")


class HandlerError(OxybotBaseException):
    """Raised when handling a single room message fails."""

    def __init__(
        self,
        room_id: str,
        event_id: Optional[str],
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.room_id = room_id
        self.event_id = event_id
        self.original_error = original_error
        super().__init__(f"Error handling event {event_id} in {room_id}: {message}")
