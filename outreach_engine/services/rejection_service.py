from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from outreach_engine.services.conversation_service import get_incoming_texts
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy, normalize_for_matching


@dataclass
class RejectionTally:
    soft_count: int = 0
    hard: bool = False
    limit: int = 3
    matched: list[str] = field(default_factory=list)

    @property
    def give_up(self) -> bool:
        return self.hard or self.soft_count >= self.limit


def count_rejections(incoming_texts: Iterable[str], policy: Optional[PhrasePolicy] = None) -> RejectionTally:
    """One hard rejection ends it; soft ones count once per message."""
    policy = policy or get_phrase_policy()
    tally = RejectionTally(limit=policy.soft_rejection_limit)
    for text in incoming_texts:
        normalized = normalize_for_matching(text)
        hard_hits = policy.hard_rejections.find_all(normalized)
        if hard_hits:
            tally.hard = True
            tally.matched.extend(hard_hits)
            return tally
        soft_hits = policy.soft_rejections.find_all(normalized)
        if soft_hits:
            tally.soft_count += 1
            tally.matched.extend(soft_hits)
    return tally


def evaluate_rejections(db: Session, phone: str, policy: Optional[PhrasePolicy] = None) -> RejectionTally:
    return count_rejections(get_incoming_texts(db, phone, 50), policy)
