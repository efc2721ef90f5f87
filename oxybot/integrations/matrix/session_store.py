"""
Matrix Session Store

Persists the session record (credentials plus the last sync cursor) to a
single JSON file under the application data directory.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from ...exceptions import PersistError, SessionLoadError

logger = logging.getLogger(__name__)


class SessionRecord(BaseModel):
    """Credentials needed to restore a login, plus the last sync cursor."""

    homeserver: str
    user_id: str
    device_id: str
    access_token: str
    sync_token: Optional[str] = None

    @field_validator("homeserver", "user_id", "device_id", "access_token")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class SessionStore:
    """Reads and writes the session record at a fixed path."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> SessionRecord:
        """Load the session record, raising SessionLoadError on any failure."""
        if not self.exists():
            raise SessionLoadError(self.path, "file does not exist")

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SessionLoadError(self.path, f"file is unreadable: {e}", e) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SessionLoadError(self.path, f"invalid JSON: {e}", e) from e

        if not isinstance(data, dict):
            raise SessionLoadError(self.path, "expected a JSON object")

        try:
            record = SessionRecord.model_validate(data)
        except ValidationError as e:
            raise SessionLoadError(self.path, f"invalid session record: {e}", e) from e

        logger.debug(f"SessionStore: Loaded session for {record.user_id} from {self.path}")
        return record

    def save(self, record: SessionRecord) -> None:
        """Write the whole record, replacing the file atomically."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(record.model_dump(), indent=2)

            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".session-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                # Credentials: owner read/write only
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistError(self.path, str(e), e) from e

        logger.debug(f"SessionStore: Saved session for {record.user_id} to {self.path}")

    def update_sync_token(self, sync_token: str) -> None:
        """Overwrite the cursor field of the on-disk record."""
        try:
            record = self.load()
        except SessionLoadError as e:
            raise PersistError(self.path, f"cannot read current session: {e.reason}", e) from e

        record.sync_token = sync_token
        self.save(record)
