from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Set

from mangarec.schemas import UserPreferences

NO_DESCRIPTION = "No description available"


@dataclass
class CandidateItem:
    id: str
    title: str
    genres: List[str] = field(default_factory=list)
    description: Optional[str] = None
    cover_image: Optional[str] = None
    popularity: float = 0.0

    def description_snippet(self, limit: int) -> str:
        if not self.description:
            return NO_DESCRIPTION
        return self.description[:limit] + "..."


class CandidateSource(ABC):
    @abstractmethod
    def list_candidates(self, exclude_ids: Set[str], limit: int) -> List[CandidateItem]:
        """Return up to ``limit`` catalog items, most popular first, skipping ``exclude_ids``."""
        raise NotImplementedError


class HistoryStore(ABC):
    @abstractmethod
    def list_recent_genres(self, user_id: str, limit: int) -> List[str]:
        """Genre tags of the user's last ``limit`` reads, most recent first."""
        raise NotImplementedError

    @abstractmethod
    def list_reading_list_ids(self, user_id: str) -> Set[str]:
        raise NotImplementedError


class FavoritesStore(ABC):
    @abstractmethod
    def list_favorite_genres(self, user_id: str) -> List[str]:
        raise NotImplementedError


class PreferencesStore(ABC):
    @abstractmethod
    def get_preferences(self, user_id: str) -> UserPreferences:
        raise NotImplementedError

    @abstractmethod
    def save_preferences(self, user_id: str, preferences: UserPreferences) -> UserPreferences:
        raise NotImplementedError
