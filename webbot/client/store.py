"""JSON-file persistence of the client's session list and usage counters.

File layout::

    {
        "chatSessions": [ {id, title, messages: [...], created_at, updated_at}, ... ],
        "lastSessionId": "…",
        "chatUsage": {"promptTokens": 0, "completionTokens": 0, "totalCost": 0.0}
    }

Every key is validated on load. A malformed value is logged and replaced
by its empty default instead of failing the whole load.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from webbot.models.messages import Usage
from webbot.models.sessions import Session

logger = logging.getLogger(__name__)

SESSIONS_KEY = "chatSessions"
LAST_SESSION_KEY = "lastSessionId"
USAGE_KEY = "chatUsage"

_sessions_adapter = TypeAdapter(list[Session])


class SessionStore:
    """Key-value store backed by a single JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Discarding unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Discarding state file %s: not a JSON object", self.path)
            return {}
        return data

    def load_sessions(self) -> list[Session]:
        raw = self._read().get(SESSIONS_KEY)
        if raw is None:
            return []
        try:
            return _sessions_adapter.validate_python(raw)
        except ValidationError as exc:
            logger.warning("Resetting stored sessions (%d errors)", exc.error_count())
            return []

    def load_last_session_id(self) -> Optional[str]:
        value = self._read().get(LAST_SESSION_KEY)
        return value if isinstance(value, str) else None

    def load_usage(self) -> Usage:
        raw = self._read().get(USAGE_KEY)
        if raw is None:
            return Usage()
        try:
            return Usage.model_validate(raw)
        except ValidationError:
            logger.warning("Resetting stored usage counters")
            return Usage()

    def save(
        self,
        sessions: list[Session],
        last_session_id: Optional[str],
        usage: Usage,
    ) -> None:
        data = {
            SESSIONS_KEY: _sessions_adapter.dump_python(sessions, mode="json"),
            LAST_SESSION_KEY: last_session_id,
            USAGE_KEY: usage.model_dump(mode="json", by_alias=True),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)
