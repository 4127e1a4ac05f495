import logging
from dataclasses import dataclass, field
from typing import List, Optional

from mangarec.config import get_settings
from mangarec.errors import EmptyCandidateSetError
from mangarec.schemas import UserProfile
from mangarec.services import sources
from mangarec.services.sources.base import CandidateItem, CandidateSource, HistoryStore

logger = logging.getLogger(__name__)


@dataclass
class CandidateSet:
    pool: List[CandidateItem]
    for_inference: List[CandidateItem] = field(default_factory=list)


class CandidateSelector:
    def __init__(
        self,
        catalog: Optional[CandidateSource] = None,
        history_store: Optional[HistoryStore] = None,
    ):
        self.settings = get_settings()
        self.catalog = catalog or sources.get_catalog_source()
        self.history_store = history_store or sources.get_history_store()

    def select(self, user_id: str, profile: UserProfile) -> CandidateSet:
        listed_ids = self.history_store.list_reading_list_ids(user_id)
        pool = self.catalog.list_candidates(exclude_ids=listed_ids, limit=self.settings.candidate_pool_limit)
        # Sources are not trusted to honor the exclusion set.
        pool = [candidate for candidate in pool if candidate.id not in listed_ids]
        logger.info("Found %d potential candidates for user %s", len(pool), user_id)

        if self.settings.avoid_genre_policy == "filter" and profile.avoid_genres:
            avoid = set(profile.avoid_genres)
            pool = [candidate for candidate in pool if not avoid.intersection(candidate.genres)]
            logger.info("%d candidates left after removing avoided genres", len(pool))

        if not pool:
            raise EmptyCandidateSetError(f"No candidates left to recommend for user {user_id}")

        return CandidateSet(pool=pool, for_inference=pool[: self.settings.inference_candidate_limit])
