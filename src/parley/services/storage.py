"""Durable storage for project-scoped chat sessions and settings."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Protocol, Sequence

from ..chat.message_model import ChatSession

LOGGER = logging.getLogger(__name__)

_STORAGE_VERSION = 1
_SESSIONS_FILE = "chat_sessions.json"
_SETTINGS_FILE = "chat_settings.json"
_DEFAULT_ROOT = Path.home() / ".parley" / "projects"
_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")

# Keys written by earlier releases and the field they now map to.
_LEGACY_KEYS: Mapping[str, str] = {
    "translatorPersona": "persona",
    "translationRules": "rules",
    "projectContext": "project_context",
    "projectContextMemory": "project_context",
    "composerText": "composer_draft",
    "webSearchEnabled": "web_search_enabled",
    "translationContextSessionId": "translation_context_session_id",
}


@dataclass(slots=True)
class PersistedSettings:
    """Project-scoped chat settings saved alongside the sessions."""

    persona: str = ""
    rules: str = ""
    project_context: str = ""
    composer_draft: str = ""
    web_search_enabled: bool = False
    translation_context_session_id: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> PersistedSettings:
        """Build settings from a stored payload, migrating legacy keys.

        The retired ``systemPromptOverlay`` field becomes the persona when no
        persona is stored.
        """
        if not isinstance(payload, Mapping):
            return cls()
        data: Dict[str, Any] = {}
        for key, value in payload.items():
            data.setdefault(_LEGACY_KEYS.get(key, key), value)
        overlay = data.pop("systemPromptOverlay", None)
        if overlay and not str(data.get("persona") or "").strip():
            data["persona"] = overlay
        allowed = {item.name for item in fields(cls)}
        filtered = {key: value for key, value in data.items() if key in allowed and value is not None}
        for key in ("persona", "rules", "project_context", "composer_draft"):
            if key in filtered:
                filtered[key] = str(filtered[key])
        if "web_search_enabled" in filtered:
            filtered["web_search_enabled"] = bool(filtered["web_search_enabled"])
        return cls(**filtered)


class ChatStorage(Protocol):
    """Async storage collaborator keyed by project id; every save is an idempotent upsert."""

    async def load_sessions(self, project_id: str) -> list[ChatSession]:
        ...

    async def save_sessions(self, project_id: str, sessions: Sequence[ChatSession]) -> None:
        ...

    async def load_settings(self, project_id: str) -> PersistedSettings | None:
        ...

    async def save_settings(self, project_id: str, settings: PersistedSettings) -> None:
        ...


class JsonChatStorage:
    """Stores each project's sessions and settings as JSON files under ``root``.

    Payloads are serialized on the calling (event-loop) thread and written
    from a worker thread with atomic temp-file replacement.
    """

    def __init__(self, root: Path | str | None = None) -> None:
        self._root = Path(root).expanduser() if root is not None else _DEFAULT_ROOT

    @property
    def root(self) -> Path:
        return self._root

    def project_dir(self, project_id: str) -> Path:
        safe = _UNSAFE_PATH_CHARS.sub("_", project_id.strip()) or "_"
        return self._root / safe

    async def load_sessions(self, project_id: str) -> list[ChatSession]:
        payload = await asyncio.to_thread(self._read_json, self.project_dir(project_id) / _SESSIONS_FILE)
        sessions: list[ChatSession] = []
        for raw in payload.get("sessions") or ():
            if isinstance(raw, Mapping):
                sessions.append(ChatSession.from_dict(raw))
        return sessions

    async def save_sessions(self, project_id: str, sessions: Sequence[ChatSession]) -> None:
        payload = {
            "version": _STORAGE_VERSION,
            "project_id": project_id,
            "sessions": [session.to_dict() for session in sessions],
        }
        await asyncio.to_thread(self._write_json, self.project_dir(project_id) / _SESSIONS_FILE, payload)

    async def load_settings(self, project_id: str) -> PersistedSettings | None:
        payload = await asyncio.to_thread(self._read_json, self.project_dir(project_id) / _SETTINGS_FILE)
        if not payload:
            return None
        return PersistedSettings.from_dict(payload.get("settings", payload))

    async def save_settings(self, project_id: str, settings: PersistedSettings) -> None:
        payload = {"version": _STORAGE_VERSION, "project_id": project_id, "settings": settings.to_dict()}
        await asyncio.to_thread(self._write_json, self.project_dir(project_id) / _SETTINGS_FILE, payload)

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Chat storage file %s is not valid JSON: %s", path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _write_json(path: Path, payload: Mapping[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        body = json.dumps(payload, ensure_ascii=False, indent=2)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(path)
        LOGGER.debug("Wrote %s (%d bytes)", path, len(body))


__all__ = ["ChatStorage", "JsonChatStorage", "PersistedSettings"]
