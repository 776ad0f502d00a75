"""Parse a reviewer reply into critique text and a 0.0-1.0 quality score."""

import json
import logging
import re

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_SCORE_PATTERN = re.compile(
    r"score\W{0,3}\s*[:=]?\s*(-?\d+(?:\.\d+)?)\s*(?:/\s*(100|10)\b)?",
    re.IGNORECASE,
)


def clamp_score(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_score(value: float, scale: float | None = None) -> float:
    """Bring a score onto 0..1, accepting out-of-10 and out-of-100 scales."""
    if scale:
        return clamp_score(value / scale)
    if value > 1.0:
        if value <= 10.0:
            return clamp_score(value / 10.0)
        return clamp_score(value / 100.0)
    return clamp_score(value)


def parse_critique(text: str) -> tuple[str, float]:
    """Extract (critique, score) from a reviewer reply.

    Accepts the requested JSON object, JSON wrapped in prose or code
    fences, or a free-form "Score: 7/10" line. Replies with no score
    count as 0.0.
    """
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict) and "score" in payload:
            try:
                score = normalize_score(float(payload["score"]))
            except (TypeError, ValueError):
                score = None
            if score is not None:
                critique = str(payload.get("critique", "")).strip()
                return critique, score

    match = _SCORE_PATTERN.search(text)
    if match:
        scale = float(match.group(2)) if match.group(2) else None
        critique = (text[: match.start()] + text[match.end() :]).strip()
        return critique, normalize_score(float(match.group(1)), scale)

    logger.warning("Reviewer reply had no parseable score; treating as 0.0")
    return text.strip(), 0.0
