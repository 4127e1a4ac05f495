import logging
from datetime import datetime
from typing import List, Optional

from mangarec.config import get_settings
from mangarec.errors import EmptyCandidateSetError
from mangarec.models import utcnow
from mangarec.schemas import FALLBACK_REASON, Recommendation
from mangarec.services import sources
from mangarec.services.assembler import normalize_cover_image
from mangarec.services.sources.base import CandidateSource

logger = logging.getLogger(__name__)

FALLBACK_TOP_MATCH = 70
FALLBACK_MATCH_STEP = 5


class FallbackProvider:
    """Popularity list used when the AI-backed path cannot produce a result."""

    def __init__(self, catalog: Optional[CandidateSource] = None):
        self.settings = get_settings()
        self.catalog = catalog or sources.get_catalog_source()

    def recommend(self, generated_at: Optional[datetime] = None) -> List[Recommendation]:
        generated_at = generated_at or utcnow()
        # Catalog failures propagate: there is nothing left to fall back to.
        popular = self.catalog.list_candidates(exclude_ids=set(), limit=self.settings.fallback_count)
        if not popular:
            raise EmptyCandidateSetError("Catalog is empty, no fallback recommendations available")

        logger.info("Using popularity fallback with %d items", len(popular))
        return [
            Recommendation(
                id=candidate.id,
                title=candidate.title,
                cover_image=normalize_cover_image(candidate.cover_image, self.settings.placeholder_cover),
                reason=FALLBACK_REASON,
                match_percentage=max(1, FALLBACK_TOP_MATCH - index * FALLBACK_MATCH_STEP),
                genres=list(candidate.genres),
                generated_at=generated_at,
            )
            for index, candidate in enumerate(popular[: self.settings.fallback_count])
        ]
