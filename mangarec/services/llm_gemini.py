import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from mangarec.config import get_settings
from mangarec.errors import (
    ExternalServiceError,
    GenerationCancelledError,
    InferenceNotConfiguredError,
    InferenceTimeoutError,
    MalformedResponseError,
)
from mangarec.schemas import UserProfile
from mangarec.services.sources.base import CandidateItem

logger = logging.getLogger(__name__)

# Granularity at which a blocked call notices its deadline or a cancel request.
POLL_INTERVAL = 0.05


def _upstream_error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body or "Unknown error"
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        message = data["error"].get("message")
        if message:
            return str(message)
    return body or "Unknown error"


class GeminiClient:
    """Single-shot ranking call against the Gemini ``generateContent`` endpoint.

    The request runs on a worker thread. The caller waits at most
    ``inference_timeout`` seconds in total, headers and body included, and stops
    waiting as soon as the ``threading.Event`` passed as ``cancel_event`` is set.
    An abandoned worker closes its stream at the next chunk.
    """

    def __init__(self, client: Optional[httpx.Client] = None):
        self.settings = get_settings()
        self.client = client or httpx.Client(timeout=self.settings.inference_timeout)

    def configured(self) -> bool:
        return bool(self.settings.gemini_api_key)

    def build_prompt(self, profile: UserProfile, candidates: Sequence[CandidateItem]) -> str:
        prompt_candidates: List[Dict[str, object]] = []
        for candidate in candidates:
            prompt_candidates.append(
                {
                    "id": candidate.id,
                    "title": candidate.title,
                    "genres": list(candidate.genres),
                    "description": candidate.description_snippet(self.settings.description_max_chars),
                }
            )

        lines = [
            "You are a manga/manhwa recommendation engine. Rank titles for the user profile below.",
            "",
            "USER PROFILE:",
            f"- Favorite Genres: {', '.join(profile.genres)}",
        ]
        if profile.avoid_genres:
            lines.append(f"- Genres to Avoid: {', '.join(profile.avoid_genres)}")
        lines.extend(
            [
                "",
                "AVAILABLE MANGA/MANHWA:",
                json.dumps(prompt_candidates, ensure_ascii=False, indent=2),
                "",
                "INSTRUCTIONS:",
                "1. Only recommend items from the list above.",
                f"2. Provide exactly {self.settings.recommendation_count} recommendations.",
                "3. Each recommendation must use the id of an item from the list.",
                "4. Answer with a valid JSON array and nothing else.",
                "",
                "RESPONSE FORMAT:",
                '[{"id": "manga_id", "reason": "Why this fits the user (15-20 words)", "match_percentage": 95}]',
            ]
        )
        return "\n".join(lines)

    def build_payload(self, profile: UserProfile, candidates: Sequence[CandidateItem]) -> dict:
        return {"contents": [{"parts": [{"text": self.build_prompt(profile, candidates)}]}]}

    def recommend(
        self,
        profile: UserProfile,
        candidates: Sequence[CandidateItem],
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        if not self.configured():
            raise InferenceNotConfiguredError("Gemini API key is not configured")
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelledError("inference call cancelled before it started")

        url = f"{self.settings.gemini_base_url.rstrip('/')}/models/{self.settings.gemini_model}:generateContent"
        payload = self.build_payload(profile, candidates)
        timeout = self.settings.inference_timeout
        started = time.monotonic()
        abandoned = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gemini-call")

        try:
            future = executor.submit(self._post, url, payload, timeout, abandoned)
            status_code, success, body = self._await(future, started + timeout, cancel_event)
        except httpx.TimeoutException as exc:
            raise InferenceTimeoutError(f"inference call exceeded {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"inference request failed: {exc}") from exc
        finally:
            # A call given up on closes its stream at the next chunk and never blocks the caller.
            abandoned.set()
            executor.shutdown(wait=False)

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info("Inference service responded in %.0fms with status %d", elapsed_ms, status_code)

        if not success:
            message = _upstream_error_message(body)
            logger.warning("Inference service error (%d): %s", status_code, message)
            raise ExternalServiceError(
                f"inference service error: {message}",
                status_code=status_code,
                upstream_message=message,
            )

        return self._extract_text(body)

    def _post(
        self,
        url: str,
        payload: dict,
        timeout: float,
        abandoned: threading.Event,
    ) -> Optional[Tuple[int, bool, str]]:
        with self.client.stream(
            "POST",
            url,
            params={"key": self.settings.gemini_api_key},
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=httpx.Timeout(timeout),
        ) as response:
            chunks: List[bytes] = []
            for chunk in response.iter_bytes():
                if abandoned.is_set():
                    return None
                chunks.append(chunk)
            body = b"".join(chunks).decode("utf-8", errors="replace")
            return response.status_code, response.is_success, body

    @staticmethod
    def _await(
        future: Future,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[int, bool, str]:
        """Wait for the worker in short slices so the deadline and cancellation hold while it blocks."""
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError("inference call cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise InferenceTimeoutError("inference call exceeded its deadline")
            done, _ = wait([future], timeout=min(POLL_INTERVAL, remaining))
            if done:
                break

        result = future.result()
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelledError("inference call cancelled")
        if time.monotonic() > deadline or result is None:
            raise InferenceTimeoutError("inference call exceeded its deadline")
        return result

    @staticmethod
    def _extract_text(body: str) -> str:
        try:
            data = json.loads(body)
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError("Invalid response format from inference service") from exc
        if not isinstance(text, str):
            raise MalformedResponseError("Inference service returned a non-text part")
        return text
