"""Near-duplicate detection for outbound text using character shingles."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from outreach_engine.logging_config import get_logger

logger = get_logger("similarity_service")

DEFAULT_SHINGLE_SIZE = 3
DEFAULT_THRESHOLD = 0.7

_CLEAN_PATTERN = re.compile(r"[^a-z0-9 äöüß]")


@dataclass
class SimilarityResult:
    similar: bool
    similarity: float = 0.0
    matched_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "similar": self.similar,
            "similarity": round(self.similarity, 4),
            "matched_message": self.matched_message,
        }


def get_shingles(text: str, n: int = DEFAULT_SHINGLE_SIZE) -> set[str]:
    clean = _CLEAN_PATTERN.sub("", (text or "").lower()).strip()
    return {clean[i : i + n] for i in range(len(clean) - n + 1)}


def jaccard_similarity(set_a: set[str], set_b: set[str]) -> float:
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def check_similarity(
    message: str,
    previous_messages: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
    n: int = DEFAULT_SHINGLE_SIZE,
) -> SimilarityResult:
    """Compare a candidate against earlier outbound texts; the first match above threshold wins."""
    candidate = get_shingles(message, n)
    for previous in previous_messages:
        similarity = jaccard_similarity(candidate, get_shingles(previous, n))
        if similarity > threshold:
            logger.info(
                "Similar outbound message detected",
                extra={
                    "context": {
                        "similarity": round(similarity, 4),
                        "threshold": threshold,
                        "matched_message": previous[:120],
                    }
                },
            )
            return SimilarityResult(similar=True, similarity=similarity, matched_message=previous)
    return SimilarityResult(similar=False)
