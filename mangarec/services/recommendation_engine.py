import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from mangarec.config import get_settings
from mangarec.errors import DEGRADABLE_ERRORS, RecommendationError
from mangarec.models import utcnow
from mangarec.schemas import Recommendation, RecommendationRecord, UserProfile
from mangarec.services.assembler import RecommendationAssembler
from mangarec.services.candidates import CandidateSelector
from mangarec.services.fallback import FallbackProvider
from mangarec.services.llm_gemini import GeminiClient
from mangarec.services.profile_builder import ProfileBuilder
from mangarec.services.recommendation_store import RecommendationStore
from mangarec.services.response_extractor import ResponseExtractor

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    profile: UserProfile
    recommendations: List[Recommendation]
    used_fallback: bool = False
    failure: Optional[str] = None


class RecommendationEngine:
    def __init__(
        self,
        profile_builder: Optional[ProfileBuilder] = None,
        candidate_selector: Optional[CandidateSelector] = None,
        llm_client: Optional[GeminiClient] = None,
        extractor: Optional[ResponseExtractor] = None,
        assembler: Optional[RecommendationAssembler] = None,
        fallback: Optional[FallbackProvider] = None,
        store: Optional[RecommendationStore] = None,
    ):
        self.settings = get_settings()
        self.profile_builder = profile_builder or ProfileBuilder()
        self.candidate_selector = candidate_selector or CandidateSelector()
        self.llm_client = llm_client or GeminiClient()
        self.extractor = extractor or ResponseExtractor()
        self.assembler = assembler or RecommendationAssembler()
        self.fallback = fallback or FallbackProvider()
        self.store = store or RecommendationStore()

    def generate(self, user_id: str, cancel_event: Optional[threading.Event] = None) -> GenerationResult:
        logger.info("Starting recommendation generation for user %s", user_id)
        profile = self.profile_builder.build(user_id)
        # EmptyCandidateSetError and PersistenceError leave here untouched.
        candidates = self.candidate_selector.select(user_id, profile)
        logger.info("Using top %d candidates for inference", len(candidates.for_inference))

        try:
            raw_text = self.llm_client.recommend(profile, candidates.for_inference, cancel_event=cancel_event)
            extraction = self.extractor.extract(raw_text)
            recommendations = self.assembler.assemble(extraction.entries, candidates.for_inference, utcnow())
        except DEGRADABLE_ERRORS as exc:
            logger.warning("AI recommendations failed for user %s (%s), using fallback", user_id, exc)
            return self._fallback_result(profile, exc)
        except RecommendationError:
            raise
        except Exception as exc:
            if not self.settings.fallback_on_unexpected_errors:
                raise
            logger.exception("Unexpected error while generating recommendations for user %s", user_id)
            return self._fallback_result(profile, exc)

        return GenerationResult(profile=profile, recommendations=recommendations)

    def update_user_recommendations(
        self,
        user_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> RecommendationRecord:
        result = self.generate(user_id, cancel_event=cancel_event)
        record = self.store.upsert(user_id, result.recommendations, result.profile)
        logger.info(
            "Updated recommendations for user %s (%s, %d items)",
            user_id,
            "fallback" if result.used_fallback else "ai",
            len(record.recommendations),
        )
        return record

    def _fallback_result(self, profile: UserProfile, exc: Exception) -> GenerationResult:
        recommendations = self.fallback.recommend(utcnow())
        return GenerationResult(
            profile=profile,
            recommendations=recommendations,
            used_fallback=True,
            failure=f"{type(exc).__name__}: {exc}",
        )
