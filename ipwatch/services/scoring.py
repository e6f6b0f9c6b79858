from typing import Any

from ipwatch.schemas.monitoring import RawCandidate

SCAN_BASE_SCORE = 60
SCAN_KEYWORD_STEP = 10
SCAN_MAX_SCORE = 90
DEFAULT_SCORE = 50

# Used when a feed entry carries no confidence of its own
FEED_SCORES = {
    "alert_feed": 85,
    "brand_mentions": 90
}


def _clamp(value: Any) -> int:
    try:
        score = int(value)
    except (TypeError, ValueError):
        return DEFAULT_SCORE
    return max(0, min(100, score))


def keyword_score(matched_count: int) -> int:
    extra = max(0, int(matched_count) - 1)
    return min(SCAN_BASE_SCORE + SCAN_KEYWORD_STEP * extra, SCAN_MAX_SCORE)


def score_candidate(candidate: RawCandidate) -> int:
    if candidate.source == "active_scan":
        unique_keywords = {k.strip().lower() for k in candidate.matched_keywords if k and k.strip()}
        return _clamp(keyword_score(len(unique_keywords)))
    if candidate.confidence is not None:
        return _clamp(candidate.confidence)
    if candidate.source in FEED_SCORES:
        return FEED_SCORES[candidate.source]
    return DEFAULT_SCORE
