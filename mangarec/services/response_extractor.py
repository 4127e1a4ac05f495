"""Recover a recommendation list from free-form model output.

Model replies are untrusted text: they may be clean JSON, JSON wrapped in a
markdown fence, JSON surrounded by prose, or garbage. Strategies run in order
and the first one whose text parses as a JSON array wins. Entries are then
validated one at a time, so a single bad element never sinks the whole list.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from mangarec.errors import MalformedResponseError, NoValidRecommendationsError

logger = logging.getLogger(__name__)

_ARRAY_OF_OBJECTS_RE = re.compile(r"\[\s*\{.*\}\s*\]", re.DOTALL)
_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass
class ExtractedRecommendation:
    id: str
    reason: str
    match_percentage: float


@dataclass
class ExtractionResult:
    strategy: str
    entries: List[ExtractedRecommendation]
    dropped: int = 0


def _json_array(text: str) -> Optional[str]:
    match = _ARRAY_OF_OBJECTS_RE.search(text)
    return match.group(0) if match else None


def _code_fence(text: str) -> Optional[str]:
    match = _CODE_FENCE_RE.search(text)
    if not match or not match.group(1).strip():
        return None
    body = match.group(1).strip()
    if not body.startswith("["):
        body = "[" + body
    if not body.endswith("]"):
        body = body + "]"
    return body


def _bracket_span(text: str) -> Optional[str]:
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


STRATEGIES: Sequence[Tuple[str, Callable[[str], Optional[str]]]] = (
    ("json_array", _json_array),
    ("code_fence", _code_fence),
    ("bracket_span", _bracket_span),
)


def parse_array(text: str) -> Tuple[str, list]:
    """Return ``(strategy_name, parsed_list)`` for the first strategy that yields a JSON array."""
    for name, strategy in STRATEGIES:
        snippet = strategy(text)
        if snippet is None:
            continue
        try:
            data = json.loads(snippet)
        except ValueError:
            logger.debug("Extraction strategy %s matched but did not parse", name)
            continue
        if isinstance(data, list):
            return name, data
    raise MalformedResponseError("No JSON array could be extracted from the model response")


def _match_value(entry: dict):
    if "match_percentage" in entry:
        return entry["match_percentage"]
    return entry.get("matchPercentage")


def validate_entry(entry) -> Optional[ExtractedRecommendation]:
    if not isinstance(entry, dict):
        return None

    raw_id = entry.get("id")
    if raw_id is None or isinstance(raw_id, (bool, dict, list)):
        return None
    item_id = str(raw_id).strip()
    if not item_id:
        return None

    reason = entry.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        return None

    match = _match_value(entry)
    if isinstance(match, bool) or not isinstance(match, (int, float)):
        return None
    try:
        score = float(match)
    except OverflowError:
        # JSON integers are unbounded.
        return None
    if not math.isfinite(score):
        return None

    return ExtractedRecommendation(id=item_id, reason=reason.strip(), match_percentage=score)


class ResponseExtractor:
    def extract(self, text: str) -> ExtractionResult:
        if not text or not text.strip():
            raise MalformedResponseError("Model response was empty")

        strategy, data = parse_array(text)
        entries: List[ExtractedRecommendation] = []
        for raw in data:
            entry = validate_entry(raw)
            if entry is not None:
                entries.append(entry)

        dropped = len(data) - len(entries)
        if dropped:
            logger.warning("Dropped %d invalid entries from model response", dropped)
        if not entries:
            raise NoValidRecommendationsError("Model response contained no valid recommendations")

        logger.info("Extracted %d recommendations via %s strategy", len(entries), strategy)
        return ExtractionResult(strategy=strategy, entries=entries, dropped=dropped)
