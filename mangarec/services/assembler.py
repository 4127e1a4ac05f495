import logging
import re
from datetime import datetime
from typing import List, Optional, Sequence

from mangarec.config import get_settings
from mangarec.errors import NoValidRecommendationsError
from mangarec.models import utcnow
from mangarec.schemas import Recommendation
from mangarec.services.response_extractor import ExtractedRecommendation
from mangarec.services.sources.base import CandidateItem

logger = logging.getLogger(__name__)

_IMAGE_EXTENSION_RE = re.compile(r"\.(jpg|jpeg|png|webp|avif|gif|svg)$", re.IGNORECASE)


def normalize_cover_image(cover_image: Optional[str], placeholder: str) -> str:
    value = (cover_image or "").strip() or placeholder
    if not value.startswith("/") and not value.startswith("http"):
        value = "/" + value
    if not _IMAGE_EXTENSION_RE.search(value) and "placeholder" not in value:
        logger.warning("Cover image %r has no recognizable image extension, using placeholder", value)
        return placeholder
    return value


def clamp_match_percentage(value: float) -> int:
    return int(min(max(round(value), 1), 100))


class RecommendationAssembler:
    def __init__(self):
        self.settings = get_settings()

    def assemble(
        self,
        entries: Sequence[ExtractedRecommendation],
        candidates: Sequence[CandidateItem],
        generated_at: Optional[datetime] = None,
    ) -> List[Recommendation]:
        generated_at = generated_at or utcnow()
        candidate_map = {candidate.id: candidate for candidate in candidates}
        used_ids = set()
        recommendations: List[Recommendation] = []

        for entry in entries:
            candidate = candidate_map.get(entry.id)
            if candidate is None:
                logger.warning("Model cited unknown item %s, skipping", entry.id)
                continue
            if candidate.id in used_ids:
                continue
            used_ids.add(candidate.id)
            recommendations.append(
                Recommendation(
                    id=candidate.id,
                    title=candidate.title,
                    cover_image=normalize_cover_image(candidate.cover_image, self.settings.placeholder_cover),
                    reason=entry.reason,
                    match_percentage=clamp_match_percentage(entry.match_percentage),
                    genres=list(candidate.genres),
                    generated_at=generated_at,
                )
            )
            if len(recommendations) >= self.settings.recommendation_count:
                break

        if not recommendations:
            raise NoValidRecommendationsError("No model recommendation referenced a known candidate")
        return recommendations
