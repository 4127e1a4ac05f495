from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

FALLBACK_REASON = "Recommended based on popularity (emergency fallback)"


class UserProfile(BaseModel):
    genres: List[str] = Field(default_factory=list)
    avoid_genres: List[str] = Field(default_factory=list)
    # Reserved for future signal types; always empty for now.
    themes: List[str] = Field(default_factory=list)
    tropes: List[str] = Field(default_factory=list)
    characters: List[str] = Field(default_factory=list)
    tone: Optional[str] = None
    pace: Optional[str] = None


class Recommendation(BaseModel):
    id: str
    title: str
    cover_image: str
    reason: str
    match_percentage: int = Field(ge=1, le=100)
    genres: List[str] = Field(default_factory=list)
    generated_at: datetime


class RecommendationRecord(BaseModel):
    user_id: str
    recommendations: List[Recommendation] = Field(default_factory=list)
    profile: UserProfile = Field(default_factory=UserProfile)
    last_updated: datetime
    next_update: datetime

    @property
    def is_fallback(self) -> bool:
        return bool(self.recommendations) and all(rec.reason == FALLBACK_REASON for rec in self.recommendations)


class RecommendationStatus(BaseModel):
    needs_update: bool
    last_updated: Optional[datetime] = None
    next_update: Optional[datetime] = None


class UserPreferences(BaseModel):
    favorite_genres: List[str] = Field(default_factory=list)
    exclude_genres: List[str] = Field(default_factory=list)


class PreferencesRequest(BaseModel):
    favorite_genres: List[str] = Field(default_factory=list)
    exclude_genres: List[str] = Field(default_factory=list)


class PreferencesResponse(BaseModel):
    user_id: str
    favorite_genres: List[str] = Field(default_factory=list)
    exclude_genres: List[str] = Field(default_factory=list)
    recommendations_updated: Optional[bool] = None


class GenreToggleRequest(BaseModel):
    genre: str
    target: Literal["favorites", "excluded"]


class RecommendationsResponse(BaseModel):
    status: Literal["ok", "fallback", "empty"]
    user_id: str
    message: str = ""
    profile: Optional[UserProfile] = None
    last_updated: Optional[datetime] = None
    next_update: Optional[datetime] = None
    items: List[Recommendation] = Field(default_factory=list)
