from fastapi import APIRouter, HTTPException

from mangarec.errors import PersistenceError
from mangarec.schemas import GenreToggleRequest, PreferencesRequest, PreferencesResponse
from mangarec.services import sources
from mangarec.services.preferences import save_onboarding_preferences, toggle_genre
from mangarec.tasks.scheduler import recommendation_scheduler

router = APIRouter(tags=["preferences"])


@router.get("/preferences/{user_id}", response_model=PreferencesResponse)
def get_preferences(user_id: str) -> PreferencesResponse:
    try:
        preferences = sources.get_preferences_store().get_preferences(user_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Preferences storage is unavailable") from exc
    return PreferencesResponse(
        user_id=user_id,
        favorite_genres=preferences.favorite_genres,
        exclude_genres=preferences.exclude_genres,
    )


@router.put("/preferences/{user_id}", response_model=PreferencesResponse)
def save_preferences(user_id: str, request: PreferencesRequest) -> PreferencesResponse:
    try:
        preferences, updated = save_onboarding_preferences(
            user_id,
            favorite_genres=request.favorite_genres,
            exclude_genres=request.exclude_genres,
            scheduler=recommendation_scheduler,
        )
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Preferences storage is unavailable") from exc
    return PreferencesResponse(
        user_id=user_id,
        favorite_genres=preferences.favorite_genres,
        exclude_genres=preferences.exclude_genres,
        recommendations_updated=updated,
    )


@router.post("/preferences/{user_id}/toggle", response_model=PreferencesResponse)
def toggle_preference(user_id: str, request: GenreToggleRequest) -> PreferencesResponse:
    store = sources.get_preferences_store()
    try:
        current = store.get_preferences(user_id)
        preferences = store.save_preferences(user_id, toggle_genre(current, request.genre, request.target))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Preferences storage is unavailable") from exc
    return PreferencesResponse(
        user_id=user_id,
        favorite_genres=preferences.favorite_genres,
        exclude_genres=preferences.exclude_genres,
    )
