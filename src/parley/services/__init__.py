"""Service layer: settings, durable storage, persistence scheduling and glossary lookup."""

from .glossary import GlossaryEntry, GlossaryLookup, search_glossary
from .persistence import AsyncioTimer, PersistenceScheduler, PersistSnapshot
from .settings import EngineSettings, SecretVault, SettingsStore
from .storage import ChatStorage, JsonChatStorage, PersistedSettings

__all__ = [
    "AsyncioTimer",
    "ChatStorage",
    "EngineSettings",
    "GlossaryEntry",
    "GlossaryLookup",
    "JsonChatStorage",
    "PersistSnapshot",
    "PersistedSettings",
    "PersistenceScheduler",
    "SecretVault",
    "SettingsStore",
    "search_glossary",
]
