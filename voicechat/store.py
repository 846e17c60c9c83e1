"""JSON-file persistence for configuration and chat sessions."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .interfaces import KeyValueStore
from .models import ChatMessage, Role, Session, generate_message_id

logger = logging.getLogger(__name__)

CONFIG_KEY = "app_config_v1"
SESSIONS_KEY = "sessions_v1"
CURRENT_SESSION_KEY = "current_session_v1"


class JsonFileStore:
    """
    Key-value store backed by a single JSON object on disk.

    A missing or unreadable file behaves like an empty store.

    Usage:
        >>> store = JsonFileStore("~/.voicechat/state.json")
        >>> store.set_item("greeting", "hi")
        >>> store.get_item("greeting")
        'hi'
    """

    def __init__(self, path: str) -> None:
        self._path = os.path.expanduser(path)

    @property
    def path(self) -> str:
        return self._path

    def get_item(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_path, self._path)


class MemoryStore:
    """In-process key-value store."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


def load_config(store: KeyValueStore, defaults: AppConfig) -> AppConfig:
    """Overlay persisted settings on `defaults`; malformed data yields the defaults."""
    raw = store.get_item(CONFIG_KEY)
    if not raw:
        return defaults
    try:
        stored = json.loads(raw)
    except ValueError:
        logger.warning("Stored config is not valid JSON; using defaults")
        return defaults
    if not isinstance(stored, dict):
        return defaults
    try:
        return defaults.merged(stored)
    except ValueError as exc:
        logger.warning("Stored config rejected (%s); using defaults", exc)
        return defaults


def save_config(store: KeyValueStore, config: AppConfig) -> None:
    store.set_item(CONFIG_KEY, json.dumps(config.persisted()))


class SessionStore:
    """
    Manages the list of chat sessions and the currently selected one.

    Every mutation is written straight back to the underlying store.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._sessions: List[Session] = []
        self._current_id: Optional[str] = None
        self.load()

    def load(self) -> None:
        self._sessions = self._load_sessions()
        saved_current = self._store.get_item(CURRENT_SESSION_KEY)
        if saved_current and any(s.id == saved_current for s in self._sessions):
            self._current_id = saved_current
        else:
            self._current_id = None

    @property
    def sessions(self) -> List[Session]:
        return list(self._sessions)

    @property
    def current_session_id(self) -> Optional[str]:
        return self._current_id

    def current_session(self) -> Optional[Session]:
        if self._current_id is None:
            return None
        return self.get(self._current_id)

    def get(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def set_current_session(self, session_id: Optional[str]) -> None:
        self._current_id = session_id
        if session_id:
            self._store.set_item(CURRENT_SESSION_KEY, session_id)
        else:
            self._store.remove_item(CURRENT_SESSION_KEY)

    def create_session(self, first_message: Optional[str] = None) -> Session:
        session = Session.create(first_message)
        self._sessions.insert(0, session)
        self._persist()
        self.set_current_session(session.id)
        return session

    def add_message(self, session_id: str, role: Role, content: str) -> Optional[ChatMessage]:
        session = self.get(session_id)
        if session is None:
            return None
        message = ChatMessage(role=role, content=content, id=generate_message_id())
        session.messages.append(message)
        session.updated_at = _now_ms()
        self._persist()
        return message

    def update_messages(self, session_id: str, messages: List[ChatMessage]) -> None:
        session = self.get(session_id)
        if session is None:
            return
        session.messages = list(messages)
        session.updated_at = _now_ms()
        self._persist()

    def set_server_conversation_id(self, session_id: str, conversation_id: str) -> None:
        session = self.get(session_id)
        if session is None or not conversation_id:
            return
        logger.debug("Session %s bound to server conversation %s", session_id, conversation_id)
        session.server_conversation_id = conversation_id
        self._persist()

    def delete_session(self, session_id: str) -> None:
        self._sessions = [s for s in self._sessions if s.id != session_id]
        self._persist()
        if self._current_id == session_id:
            self.set_current_session(None)

    def clear(self) -> None:
        self._sessions = []
        self._persist()
        self.set_current_session(None)

    def session_list(self) -> List[Session]:
        """Sessions ordered by most recent activity."""
        return sorted(self._sessions, key=lambda s: s.updated_at, reverse=True)

    def _load_sessions(self) -> List[Session]:
        raw = self._store.get_item(SESSIONS_KEY)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.error("Failed to load sessions: stored value is not JSON")
            return []
        if not isinstance(parsed, list):
            return []

        sessions = []
        for item in parsed:
            try:
                sessions.append(Session.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed session entry: %s", exc)
        return sessions

    def _persist(self) -> None:
        try:
            self._store.set_item(SESSIONS_KEY, json.dumps([s.to_dict() for s in self._sessions]))
        except OSError as exc:
            logger.error("Failed to save sessions: %s", exc)


def _now_ms() -> int:
    return int(time.time() * 1000)
