from typing import Optional


class RecommendationError(Exception):
    """Base class for every failure raised by the recommendation pipeline."""


class InferenceTimeoutError(RecommendationError, TimeoutError):
    pass


class ExternalServiceError(RecommendationError):
    def __init__(self, message: str, status_code: Optional[int] = None, upstream_message: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.upstream_message = upstream_message


class InferenceNotConfiguredError(ExternalServiceError):
    pass


class MalformedResponseError(RecommendationError):
    pass


class NoValidRecommendationsError(RecommendationError):
    pass


class EmptyCandidateSetError(RecommendationError):
    """Nothing is left to recommend once the user's own items are excluded."""


class PersistenceError(RecommendationError):
    pass


class GenerationCancelledError(RecommendationError):
    pass


# Failures of the inference/extraction/assembly stages that degrade to the
# popularity fallback instead of propagating.
DEGRADABLE_ERRORS = (
    InferenceTimeoutError,
    ExternalServiceError,
    MalformedResponseError,
    NoValidRecommendationsError,
)
