from mangarec.errors import PersistenceError
from mangarec.schemas import UserPreferences
from mangarec.services.profile_builder import ProfileBuilder, recurring_genres
from mangarec.services.sources.sql import SqlPreferencesStore


def test_recurring_genres_keeps_only_repeated_tags_in_first_seen_order():
    genres = ["Action", "Romance", "Horror", "Romance", "Action", "Comedy"]
    assert recurring_genres(genres, limit=5) == ["Action", "Romance"]


def test_recurring_genres_is_capped():
    genres = [g for g in ["A", "B", "C", "D", "E", "F", "G"] for _ in range(2)]
    assert recurring_genres(genres, limit=5) == ["A", "B", "C", "D", "E"]


def test_empty_history_and_preferences_give_empty_profile():
    profile = ProfileBuilder().build("nobody")
    assert profile.genres == []
    assert profile.avoid_genres == []
    assert profile.themes == [] and profile.tropes == [] and profile.characters == []
    assert profile.tone is None and profile.pace is None


def test_profile_combines_history_favorites_and_preferences(add_manga, add_history):
    add_manga("a1", 10, ["Action", "Fantasy"])
    add_manga("a2", 9, ["Action", "Horror"])
    add_manga("a3", 8, ["Romance"])
    add_history("u1", read=["a1", "a2"], favorites=["a3"])
    SqlPreferencesStore().save_preferences(
        "u1",
        UserPreferences(favorite_genres=["Slice of Life", "Horror"], exclude_genres=["Horror"]),
    )

    profile = ProfileBuilder().build("u1")

    # Action appears twice; Fantasy/Horror/Romance once; Horror is excluded.
    assert profile.genres == ["Action", "Slice of Life"]
    assert profile.avoid_genres == ["Horror"]
    assert not set(profile.genres) & set(profile.avoid_genres)


def test_history_window_uses_most_recent_reads(add_manga, add_history, monkeypatch):
    add_manga("old", 10, ["Mystery"])
    add_manga("new", 9, ["Sports"])
    add_history("u1", read=["old", "old", "new", "new"])
    monkeypatch.setenv("MANGAREC_HISTORY_LIMIT", "2")
    from mangarec.config import clear_settings_cache

    clear_settings_cache()
    profile = ProfileBuilder().build("u1")
    assert profile.genres == ["Sports"]


def test_store_failure_yields_empty_profile():
    class BrokenHistory:
        def list_recent_genres(self, user_id, limit):
            raise PersistenceError("db down")

        def list_favorite_genres(self, user_id):
            return []

    builder = ProfileBuilder(history_store=BrokenHistory(), favorites_store=BrokenHistory())
    assert builder.build("u1").genres == []
