import logging

from fastapi import APIRouter, HTTPException

from mangarec.errors import EmptyCandidateSetError, PersistenceError
from mangarec.schemas import RecommendationRecord, RecommendationsResponse, RecommendationStatus
from mangarec.tasks.scheduler import recommendation_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


def _to_response(record: RecommendationRecord) -> RecommendationsResponse:
    return RecommendationsResponse(
        status="fallback" if record.is_fallback else "ok",
        user_id=record.user_id,
        profile=record.profile,
        last_updated=record.last_updated,
        next_update=record.next_update,
        items=record.recommendations,
    )


def _empty_response(user_id: str, exc: EmptyCandidateSetError) -> RecommendationsResponse:
    return RecommendationsResponse(status="empty", user_id=user_id, message=str(exc))


@router.get("/recommendations/{user_id}", response_model=RecommendationsResponse)
def get_recommendations(user_id: str) -> RecommendationsResponse:
    try:
        recommendation_scheduler.check_and_update(user_id)
        record = recommendation_scheduler.store.read(user_id)
    except EmptyCandidateSetError as exc:
        return _empty_response(user_id, exc)
    except PersistenceError as exc:
        logger.error("Recommendation storage unavailable for user %s: %s", user_id, exc)
        raise HTTPException(status_code=503, detail="Recommendation storage is unavailable") from exc

    if record is None:
        raise HTTPException(status_code=404, detail="No recommendations found for this user")
    return _to_response(record)


@router.get("/recommendations/{user_id}/status", response_model=RecommendationStatus)
def get_recommendation_status(user_id: str) -> RecommendationStatus:
    try:
        return recommendation_scheduler.store.status(user_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Recommendation storage is unavailable") from exc


@router.post("/recommendations/{user_id}/refresh", response_model=RecommendationsResponse)
def refresh_recommendations(user_id: str) -> RecommendationsResponse:
    try:
        record = recommendation_scheduler.refresh(user_id)
    except EmptyCandidateSetError as exc:
        return _empty_response(user_id, exc)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Recommendation storage is unavailable") from exc
    return _to_response(record)
