import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlmodel import Session, col, select

from mangarec.config import get_settings
from mangarec.db import session_scope
from mangarec.models import UserRecommendation, utcnow
from mangarec.schemas import Recommendation, RecommendationRecord, RecommendationStatus, UserProfile

logger = logging.getLogger(__name__)


def _to_record(row: UserRecommendation) -> RecommendationRecord:
    return RecommendationRecord(
        user_id=row.user_id,
        recommendations=[Recommendation.model_validate(item) for item in json.loads(row.recommendations_json or "[]")],
        profile=UserProfile.model_validate(json.loads(row.profile_json or "{}")),
        last_updated=row.last_updated,
        next_update=row.next_update,
    )


class RecommendationStore:
    """One ``user_recommendations`` row per user, always replaced as a whole."""

    def __init__(self):
        self.settings = get_settings()

    def upsert(
        self,
        user_id: str,
        recommendations: Sequence[Recommendation],
        profile: UserProfile,
        now: Optional[datetime] = None,
    ) -> RecommendationRecord:
        now = now or utcnow()
        recommendations_json = json.dumps(
            [item.model_dump(mode="json") for item in recommendations],
            ensure_ascii=False,
        )
        profile_json = json.dumps(profile.model_dump(mode="json"), ensure_ascii=False)

        with session_scope(f"storing recommendations for user {user_id}") as session:
            row = self._find(session, user_id)
            if row is None:
                row = UserRecommendation(user_id=user_id)
            row.recommendations_json = recommendations_json
            row.profile_json = profile_json
            row.last_updated = now
            row.next_update = now + timedelta(days=self.settings.refresh_interval_days)
            session.add(row)
            session.commit()
            session.refresh(row)
            record = _to_record(row)

        logger.info("Stored %d recommendations for user %s", len(recommendations), user_id)
        return record

    def read(self, user_id: str) -> Optional[RecommendationRecord]:
        with session_scope(f"reading recommendations for user {user_id}") as session:
            row = self._find(session, user_id)
            return _to_record(row) if row is not None else None

    def list_stale(self, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        statement = (
            select(UserRecommendation.user_id)
            .where(UserRecommendation.next_update <= now)
            .order_by(col(UserRecommendation.next_update).asc())
        )
        with session_scope("listing stale recommendations") as session:
            return list(session.exec(statement).all())

    def status(self, user_id: str, now: Optional[datetime] = None) -> RecommendationStatus:
        now = now or utcnow()
        record = self.read(user_id)
        if record is None:
            return RecommendationStatus(needs_update=True)
        return RecommendationStatus(
            needs_update=record.next_update <= now,
            last_updated=record.last_updated,
            next_update=record.next_update,
        )

    @staticmethod
    def _find(session: Session, user_id: str) -> Optional[UserRecommendation]:
        return session.exec(select(UserRecommendation).where(UserRecommendation.user_id == user_id)).first()
