from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    # SQLite drops tzinfo, so timestamps are stored as naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MangaEntry(SQLModel, table=True):
    __tablename__ = "manga_entries"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    description: Optional[str] = Field(default=None)
    cover_image: Optional[str] = Field(default=None)
    popularity: float = Field(default=0.0, index=True)
    genres_json: str = Field(default="[]")
    created_at: datetime = Field(default_factory=utcnow)


class ReadingHistory(SQLModel, table=True):
    __tablename__ = "reading_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    manga_id: str = Field(foreign_key="manga_entries.id", index=True)
    chapter_id: Optional[str] = Field(default=None)
    read_at: datetime = Field(default_factory=utcnow, index=True)


class UserFavorite(SQLModel, table=True):
    __tablename__ = "user_favorites"
    __table_args__ = (UniqueConstraint("user_id", "manga_id", name="uq_user_favorites_user_manga"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    manga_id: str = Field(foreign_key="manga_entries.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)


class ReadingListEntry(SQLModel, table=True):
    __tablename__ = "user_reading_lists"
    __table_args__ = (UniqueConstraint("user_id", "manga_id", name="uq_user_reading_lists_user_manga"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    manga_id: str = Field(foreign_key="manga_entries.id", index=True)
    status: str = Field(default="plan_to_read")
    current_chapter: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserPreferencesRow(SQLModel, table=True):
    __tablename__ = "user_preferences"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    favorite_genres_json: str = Field(default="[]")
    exclude_genres_json: str = Field(default="[]")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserRecommendation(SQLModel, table=True):
    __tablename__ = "user_recommendations"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    recommendations_json: str = Field(default="[]")
    profile_json: str = Field(default="{}")
    last_updated: datetime = Field(default_factory=utcnow)
    next_update: datetime = Field(default_factory=utcnow, index=True)
