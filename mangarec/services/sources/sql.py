import json
import logging
from typing import List, Set

from sqlmodel import Session, col, select

from mangarec.db import session_scope
from mangarec.models import MangaEntry, ReadingHistory, ReadingListEntry, UserFavorite, UserPreferencesRow, utcnow
from mangarec.schemas import UserPreferences
from mangarec.services.sources.base import (
    CandidateItem,
    CandidateSource,
    FavoritesStore,
    HistoryStore,
    PreferencesStore,
)

logger = logging.getLogger(__name__)


def parse_genres(raw: str) -> List[str]:
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [str(value).strip() for value in data if value is not None and str(value).strip()]


def entry_to_candidate(entry: MangaEntry) -> CandidateItem:
    return CandidateItem(
        id=entry.id,
        title=entry.title,
        genres=parse_genres(entry.genres_json),
        description=entry.description,
        cover_image=entry.cover_image,
        popularity=float(entry.popularity or 0.0),
    )


class SqlCatalogSource(CandidateSource):
    def list_candidates(self, exclude_ids: Set[str], limit: int) -> List[CandidateItem]:
        statement = select(MangaEntry).order_by(col(MangaEntry.popularity).desc(), col(MangaEntry.created_at).asc())
        if exclude_ids:
            statement = statement.where(col(MangaEntry.id).not_in(list(exclude_ids)))
        statement = statement.limit(limit)
        with session_scope("catalog query") as session:
            entries = session.exec(statement).all()
        return [entry_to_candidate(entry) for entry in entries]


class SqlHistoryStore(HistoryStore, FavoritesStore):
    def list_recent_genres(self, user_id: str, limit: int) -> List[str]:
        statement = (
            select(MangaEntry.genres_json)
            .join(ReadingHistory, ReadingHistory.manga_id == MangaEntry.id)
            .where(ReadingHistory.user_id == user_id)
            .order_by(col(ReadingHistory.read_at).desc(), col(ReadingHistory.id).desc())
            .limit(limit)
        )
        return self._collect_genres(statement)

    def list_favorite_genres(self, user_id: str) -> List[str]:
        statement = (
            select(MangaEntry.genres_json)
            .join(UserFavorite, UserFavorite.manga_id == MangaEntry.id)
            .where(UserFavorite.user_id == user_id)
            .order_by(col(UserFavorite.created_at).desc())
        )
        return self._collect_genres(statement)

    def list_reading_list_ids(self, user_id: str) -> Set[str]:
        statement = select(ReadingListEntry.manga_id).where(ReadingListEntry.user_id == user_id)
        with session_scope("reading list query") as session:
            return set(session.exec(statement).all())

    def _collect_genres(self, statement) -> List[str]:
        with session_scope("genre query") as session:
            rows = session.exec(statement).all()
        genres: List[str] = []
        for genres_json in rows:
            genres.extend(parse_genres(genres_json))
        return genres


class SqlPreferencesStore(PreferencesStore):
    def get_preferences(self, user_id: str) -> UserPreferences:
        with session_scope("preferences query") as session:
            row = self._find(session, user_id)
            if row is None:
                return UserPreferences()
            return UserPreferences(
                favorite_genres=parse_genres(row.favorite_genres_json),
                exclude_genres=parse_genres(row.exclude_genres_json),
            )

    def save_preferences(self, user_id: str, preferences: UserPreferences) -> UserPreferences:
        with session_scope("saving preferences") as session:
            row = self._find(session, user_id)
            if row is None:
                row = UserPreferencesRow(user_id=user_id)
            row.favorite_genres_json = json.dumps(preferences.favorite_genres, ensure_ascii=False)
            row.exclude_genres_json = json.dumps(preferences.exclude_genres, ensure_ascii=False)
            row.updated_at = utcnow()
            session.add(row)
            session.commit()
        logger.info("Saved preferences for user %s", user_id)
        return preferences

    @staticmethod
    def _find(session: Session, user_id: str):
        return session.exec(select(UserPreferencesRow).where(UserPreferencesRow.user_id == user_id)).first()
