"""Core: user preferences shared by the CLI commands."""

from dck.core.preferences import Preferences, PreferencesStore, RecentFolder, SavedDeck

__all__ = ["Preferences", "PreferencesStore", "RecentFolder", "SavedDeck"]
