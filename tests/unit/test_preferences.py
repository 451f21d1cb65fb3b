"""
Unit tests for PreferencesStore.
"""
import json

import pytest

from dck.core.preferences import (
    MAX_RECENT_FOLDERS,
    MAX_SAVED_DECKS,
    PreferencesStore,
    folder_name,
    format_timestamp,
)


class Ticker:
    """Millisecond clock advancing by one second per call."""

    def __init__(self, start=1_700_000_000_000):
        self.value = start

    def __call__(self):
        self.value += 1000
        return self.value


@pytest.fixture
def store(tmp_path):
    store = PreferencesStore(tmp_path / "dck" / "preferences.json", clock=Ticker())
    store.load()
    return store


class TestLoadSave:

    def test_missing_file_gives_defaults(self, store):
        assert store.recent_folders == []
        assert store.saved_decks == []
        assert store.ai.provider_id == "claude"
        assert not store.is_ai_configured()

    def test_round_trip(self, store):
        store.add_folder("/notes/net")
        store.save_deck("Networking", ["/notes/net/tcp.md"])
        store.set_ai_provider("claude", "sk-test")

        assert store.save()

        reloaded = PreferencesStore(store.path)
        reloaded.load()
        assert [f.path for f in reloaded.recent_folders] == ["/notes/net"]
        assert reloaded.saved_decks[0].name == "Networking"
        assert reloaded.is_ai_configured()

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text("{broken", encoding="utf-8")

        store = PreferencesStore(path)
        store.load()

        assert store.recent_folders == []

    def test_wrong_shape_gives_defaults(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text(json.dumps({"recent_folders": [{"unexpected": 1}]}), encoding="utf-8")

        store = PreferencesStore(path)
        store.load()

        assert store.recent_folders == []

    def test_nothing_written_before_save(self, store):
        store.add_folder("/notes")
        assert not store.path.exists()


class TestRecentFolders:

    def test_most_recent_first(self, store):
        store.add_folder("/a")
        store.add_folder("/b")
        assert [f.path for f in store.recent_folders] == ["/b", "/a"]
        assert store.last_folder.path == "/b"

    def test_re_adding_moves_to_front(self, store):
        store.add_folder("/a")
        store.add_folder("/b")
        store.add_folder("/a")
        assert [f.path for f in store.recent_folders] == ["/a", "/b"]

    def test_limit(self, store):
        for i in range(MAX_RECENT_FOLDERS + 2):
            store.add_folder(f"/folder{i}")
        assert len(store.recent_folders) == MAX_RECENT_FOLDERS
        assert store.recent_folders[0].path == f"/folder{MAX_RECENT_FOLDERS + 1}"

    def test_remove_and_clear(self, store):
        store.add_folder("/a")
        store.add_folder("/b")
        store.remove_folder("/a")
        assert [f.path for f in store.recent_folders] == ["/b"]

        store.clear_folders()
        assert store.last_folder is None

    @pytest.mark.parametrize("path,name", [
        ("/home/me/notes", "notes"),
        ("C:\\Users\\me\\notes", "notes"),
        ("/home/me/notes/", "notes"),
        ("", "Unknown"),
    ])
    def test_folder_name(self, path, name):
        assert folder_name(path) == name


class TestSavedDecks:

    def test_save_deck(self, store):
        deck = store.save_deck("Networking", ["/a.md", "/b.md"])

        assert deck.id.startswith("deck-")
        assert deck.file_paths == ["/a.md", "/b.md"]
        assert store.get_deck(deck.id) is deck
        assert store.find_deck("Networking") is deck

    def test_ids_are_unique_within_a_millisecond(self, tmp_path):
        store = PreferencesStore(tmp_path / "p.json", clock=lambda: 42)
        first = store.save_deck("One", [])
        second = store.save_deck("Two", [])
        assert first.id != second.id

    def test_sorted_by_last_used(self, store):
        older = store.save_deck("Older", [])
        store.save_deck("Newer", [])

        store.touch_deck(older.id)

        assert [d.name for d in store.saved_decks] == ["Older", "Newer"]

    def test_limit(self, store):
        for i in range(MAX_SAVED_DECKS + 3):
            store.save_deck(f"Deck {i}", [])
        assert len(store.saved_decks) == MAX_SAVED_DECKS
        assert store.find_deck("Deck 0") is None

    def test_rename_and_delete(self, store):
        deck = store.save_deck("Old", [])
        store.rename_deck(deck.id, "New")
        assert store.find_deck("New") is deck

        store.delete_deck(deck.id)
        assert store.saved_decks == []

    def test_clear_decks(self, store):
        store.save_deck("A", [])
        store.clear_decks()
        assert store.saved_decks == []


class TestAIProvider:

    def test_enabled_without_key_is_not_configured(self, store):
        store.set_ai_provider("claude", None)
        assert not store.is_ai_configured()

    def test_clear(self, store):
        store.set_ai_provider("claude", "sk-test")
        store.clear_ai_provider()
        assert not store.is_ai_configured()
        assert store.ai.api_key is None


class TestFormatTimestamp:

    @pytest.mark.parametrize("ago_ms,label", [
        (10_000, "Just now"),
        (5 * 60_000, "5m ago"),
        (3 * 3_600_000, "3h ago"),
        (2 * 86_400_000, "2d ago"),
    ])
    def test_relative_labels(self, ago_ms, label):
        current = 1_700_000_000_000
        assert format_timestamp(current - ago_ms, current) == label

    def test_old_dates(self):
        current = 1_700_000_000_000
        label = format_timestamp(current - 30 * 86_400_000, current)
        assert len(label) == 10 and label[4] == "-"
