import logging
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from mangarec.errors import RecommendationError
from mangarec.schemas import UserPreferences
from mangarec.services import sources
from mangarec.services.sources.base import PreferencesStore

if TYPE_CHECKING:
    from mangarec.tasks.scheduler import RecommendationScheduler

logger = logging.getLogger(__name__)


def _clean(values: Sequence[str]) -> List[str]:
    seen = set()
    cleaned: List[str] = []
    for value in values or []:
        compact = (value or "").strip()
        if not compact or compact in seen:
            continue
        seen.add(compact)
        cleaned.append(compact)
    return cleaned


def normalize_preferences(favorite_genres: Sequence[str], exclude_genres: Sequence[str]) -> UserPreferences:
    """Dedupe both lists; a genre in both is treated as excluded."""
    exclude = _clean(exclude_genres)
    excluded = set(exclude)
    favorite = [genre for genre in _clean(favorite_genres) if genre not in excluded]
    return UserPreferences(favorite_genres=favorite, exclude_genres=exclude)


def toggle_genre(preferences: UserPreferences, genre: str, target: str) -> UserPreferences:
    genre = (genre or "").strip()
    if not genre:
        raise ValueError("Genre must not be empty")
    if target not in {"favorites", "excluded"}:
        raise ValueError(f"Unsupported toggle target: {target}")

    favorite = list(preferences.favorite_genres)
    exclude = list(preferences.exclude_genres)
    selected, other = (favorite, exclude) if target == "favorites" else (exclude, favorite)
    if genre in selected:
        selected.remove(genre)
    else:
        selected.append(genre)
        if genre in other:
            other.remove(genre)
    return UserPreferences(favorite_genres=favorite, exclude_genres=exclude)


def save_onboarding_preferences(
    user_id: str,
    favorite_genres: Sequence[str],
    exclude_genres: Sequence[str],
    scheduler: "RecommendationScheduler",
    store: Optional[PreferencesStore] = None,
) -> Tuple[UserPreferences, bool]:
    """Persist preferences, then generate the first recommendations.

    Returns the saved preferences and whether generation succeeded; a failed
    generation does not undo the save.
    """
    store = store or sources.get_preferences_store()
    preferences = store.save_preferences(user_id, normalize_preferences(favorite_genres, exclude_genres))

    try:
        scheduler.refresh(user_id)
    except RecommendationError as exc:
        logger.warning("Saved preferences for user %s but failed to update recommendations: %s", user_id, exc)
        return preferences, False
    return preferences, True
