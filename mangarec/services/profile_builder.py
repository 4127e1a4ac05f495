import logging
from collections import Counter
from typing import List, Optional, Sequence

from mangarec.config import get_settings
from mangarec.errors import PersistenceError
from mangarec.schemas import UserPreferences, UserProfile
from mangarec.services import sources
from mangarec.services.sources.base import FavoritesStore, HistoryStore, PreferencesStore

logger = logging.getLogger(__name__)


def _unique(values: Sequence[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        compact = (value or "").strip()
        if not compact or compact in seen:
            continue
        seen.add(compact)
        result.append(compact)
    return result


def recurring_genres(genres: Sequence[str], limit: int) -> List[str]:
    """Genres seen more than once, in first-seen order, capped at ``limit``."""
    compact = [genre.strip() for genre in genres if genre and genre.strip()]
    counts = Counter(compact)
    recurring = [genre for genre in _unique(compact) if counts[genre] > 1]
    return recurring[:limit]


class ProfileBuilder:
    def __init__(
        self,
        history_store: Optional[HistoryStore] = None,
        favorites_store: Optional[FavoritesStore] = None,
        preferences_store: Optional[PreferencesStore] = None,
    ):
        self.settings = get_settings()
        self.history_store = history_store or sources.get_history_store()
        self.favorites_store = favorites_store or self.history_store
        self.preferences_store = preferences_store or sources.get_preferences_store()

    def build(self, user_id: str) -> UserProfile:
        try:
            read_genres = self.history_store.list_recent_genres(user_id, self.settings.history_limit)
            favorite_genres = self.favorites_store.list_favorite_genres(user_id)
            preferences = self.preferences_store.get_preferences(user_id)
        except PersistenceError as exc:
            logger.warning("Could not load signals for user %s, using an empty profile: %s", user_id, exc)
            return UserProfile()

        return self.combine(read_genres, favorite_genres, preferences)

    def combine(
        self,
        read_genres: Sequence[str],
        favorite_genres: Sequence[str],
        preferences: UserPreferences,
    ) -> UserProfile:
        top_genres = recurring_genres(list(read_genres) + list(favorite_genres), self.settings.profile_top_genre_limit)
        avoid_genres = _unique(preferences.exclude_genres)
        avoid = set(avoid_genres)
        genres = [genre for genre in _unique(top_genres + list(preferences.favorite_genres)) if genre not in avoid]
        return UserProfile(genres=genres, avoid_genres=avoid_genres)
