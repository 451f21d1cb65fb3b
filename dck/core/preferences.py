"""
User preferences for dck.

Recent study folders, saved decks (named groups of documents) and the
active AI provider live in one JSON file, ~/.dck/preferences.json by
default. The store is an explicit object: ``load()`` reads the file,
mutators change the in-memory copy, ``save()`` writes it back.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable

from loguru import logger

MAX_RECENT_FOLDERS = 5
MAX_SAVED_DECKS = 10


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RecentFolder:
    path: str
    name: str
    last_accessed: int  # epoch milliseconds


@dataclass
class SavedDeck:
    """A named group of documents to study together."""

    id: str
    name: str
    file_paths: list[str]
    created_at: int
    last_used: int


@dataclass
class AIProviderSettings:
    provider_id: str = "claude"
    api_key: str | None = None
    enabled: bool = False


@dataclass
class Preferences:
    recent_folders: list[RecentFolder] = field(default_factory=list)
    saved_decks: list[SavedDeck] = field(default_factory=list)
    ai: AIProviderSettings = field(default_factory=AIProviderSettings)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Preferences:
        """Create from dictionary."""
        return cls(
            recent_folders=[RecentFolder(**f) for f in data.get("recent_folders", [])],
            saved_decks=[SavedDeck(**d) for d in data.get("saved_decks", [])],
            ai=AIProviderSettings(**data.get("ai", {})),
        )


def folder_name(path: str) -> str:
    """Last segment of a Windows or POSIX path."""
    parts = path.replace("\\", "/").rstrip("/").split("/")
    return parts[-1] or "Unknown"


def format_timestamp(timestamp_ms: int, current_ms: int | None = None) -> str:
    """Relative label such as 'Just now', '5m ago', '3h ago', '2d ago'."""
    current_ms = now_ms() if current_ms is None else current_ms
    diff = current_ms - timestamp_ms
    minutes = diff // 60000
    hours = diff // 3600000
    days = diff // 86400000

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return time.strftime("%Y-%m-%d", time.localtime(timestamp_ms / 1000))


class PreferencesStore:
    """
    Manages preference persistence.

    Nothing is read or written implicitly; call ``load()`` before use and
    ``save()`` after changes.
    """

    def __init__(self, path: Path, clock: Callable[[], int] | None = None):
        self.path = Path(path)
        self.clock = clock or now_ms
        self.preferences = Preferences()

    def load(self) -> Preferences:
        """Read preferences; a missing or corrupt file yields defaults."""
        if not self.path.exists():
            self.preferences = Preferences()
            return self.preferences

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.preferences = Preferences.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load preferences from {self.path}: {e}")
            self.preferences = Preferences()
        return self.preferences

    def save(self) -> bool:
        """Write preferences to disk."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.preferences.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save preferences to {self.path}: {e}")
            return False
        return True

    # =========================================================================
    # Recent folders
    # =========================================================================

    @property
    def recent_folders(self) -> list[RecentFolder]:
        return list(self.preferences.recent_folders)

    @property
    def last_folder(self) -> RecentFolder | None:
        folders = self.preferences.recent_folders
        return folders[0] if folders else None

    def add_folder(self, path: str) -> RecentFolder:
        """Move (or add) a folder to the front of the recent list."""
        entry = RecentFolder(path=path, name=folder_name(path), last_accessed=self.clock())
        others = [f for f in self.preferences.recent_folders if f.path != path]
        self.preferences.recent_folders = [entry, *others][:MAX_RECENT_FOLDERS]
        return entry

    def remove_folder(self, path: str) -> None:
        self.preferences.recent_folders = [
            f for f in self.preferences.recent_folders if f.path != path
        ]

    def clear_folders(self) -> None:
        self.preferences.recent_folders = []

    # =========================================================================
    # Saved decks
    # =========================================================================

    @property
    def saved_decks(self) -> list[SavedDeck]:
        """Decks, most recently used first."""
        return sorted(self.preferences.saved_decks, key=lambda d: d.last_used, reverse=True)

    def get_deck(self, deck_id: str) -> SavedDeck | None:
        return next((d for d in self.preferences.saved_decks if d.id == deck_id), None)

    def find_deck(self, name: str) -> SavedDeck | None:
        return next((d for d in self.saved_decks if d.name == name), None)

    def save_deck(self, name: str, file_paths: list[str]) -> SavedDeck:
        """Create a deck; only the most recent ten decks are kept."""
        stamp = self.clock()
        deck_id = f"deck-{stamp}"
        suffix = 1
        while self.get_deck(deck_id) is not None:
            deck_id = f"deck-{stamp}-{suffix}"
            suffix += 1

        deck = SavedDeck(
            id=deck_id,
            name=name,
            file_paths=list(file_paths),
            created_at=stamp,
            last_used=stamp,
        )
        self.preferences.saved_decks = [deck, *self.saved_decks][:MAX_SAVED_DECKS]
        return deck

    def touch_deck(self, deck_id: str) -> None:
        deck = self.get_deck(deck_id)
        if deck:
            deck.last_used = self.clock()

    def rename_deck(self, deck_id: str, name: str) -> None:
        deck = self.get_deck(deck_id)
        if deck:
            deck.name = name

    def delete_deck(self, deck_id: str) -> None:
        self.preferences.saved_decks = [
            d for d in self.preferences.saved_decks if d.id != deck_id
        ]

    def clear_decks(self) -> None:
        self.preferences.saved_decks = []

    # =========================================================================
    # AI provider
    # =========================================================================

    @property
    def ai(self) -> AIProviderSettings:
        return self.preferences.ai

    def set_ai_provider(self, provider_id: str, api_key: str | None, enabled: bool = True) -> None:
        self.preferences.ai = AIProviderSettings(
            provider_id=provider_id, api_key=api_key, enabled=enabled
        )

    def clear_ai_provider(self) -> None:
        self.preferences.ai = AIProviderSettings()

    def is_ai_configured(self) -> bool:
        return self.ai.enabled and bool(self.ai.api_key)
