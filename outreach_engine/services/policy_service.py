"""Loads the phrase/keyword policy that drives consent, escalation and validation."""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import yaml

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger

logger = get_logger("policy_service")

_DEFAULT_POLICY_PATH = Path(__file__).resolve().parents[1] / "policies" / "phrases.yaml"


def normalize_for_matching(text: str) -> str:
    """Casefold, unify apostrophes and collapse whitespace."""
    if not text:
        return ""
    normalized = text.strip().casefold()
    normalized = normalized.replace("’", "'").replace("‘", "'")
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized


def _term_pattern(term: str, prefix: bool = False) -> re.Pattern:
    # Single tokens must stand alone: "block" must not fire on "blockchain".
    # A trailing "*" relaxes that to a word prefix: "stop*" covers "stopp", "stoppen".
    if prefix:
        return re.compile(rf"(?<!\w){re.escape(term)}")
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)")


@dataclass
class TermMatcher:
    terms: list[str] = field(default_factory=list)
    _token_patterns: dict[str, re.Pattern] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        raw_terms = [normalize_for_matching(str(t)) for t in self.terms if t and str(t).strip()]
        self.terms = []
        self._token_patterns = {}
        for raw in raw_terms:
            prefix = raw.endswith("*")
            term = raw.rstrip("*").strip()
            if not term or term in self.terms:
                continue
            self.terms.append(term)
            if " " not in term:
                self._token_patterns[term] = _term_pattern(term, prefix=prefix)

    def find_all(self, normalized: str) -> list[str]:
        hits = []
        for term in self.terms:
            pattern = self._token_patterns.get(term)
            if pattern is not None:
                if pattern.search(normalized):
                    hits.append(term)
            elif term in normalized:
                hits.append(term)
        return hits

    def matches(self, normalized: str) -> bool:
        return bool(self.find_all(normalized))


@dataclass
class PhrasePolicy:
    version: int
    opt_out: TermMatcher
    rejection_override_enabled: bool
    rejection_override_intent: str
    rejection_override_phrases: list[str]
    escalation_categories: dict[str, TermMatcher]
    repeated_terms: list[str]
    repeat_threshold: int
    soft_rejections: TermMatcher
    hard_rejections: TermMatcher
    soft_rejection_limit: int
    forbidden_claims: list[str]
    forbidden_patterns: list[re.Pattern]
    link_patterns: list[re.Pattern]
    identity_patterns: list[re.Pattern]
    cta_patterns: list[re.Pattern]

    def rejection_override_hit(self, normalized: str) -> Optional[str]:
        if not self.rejection_override_enabled:
            return None
        for phrase in self.rejection_override_phrases:
            if phrase in normalized:
                return phrase
        return None


def _compile_all(patterns: Iterable[str]) -> list[re.Pattern]:
    compiled = []
    for raw in patterns or []:
        try:
            compiled.append(re.compile(str(raw), re.IGNORECASE))
        except re.error as exc:
            logger.error(f"Invalid policy pattern {raw!r}: {exc}")
    return compiled


def _as_list(value) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    if isinstance(value, str):
        return [value]
    return []


def build_policy(data: dict) -> PhrasePolicy:
    rejection_override = data.get("rejection_override") or {}
    escalation = data.get("escalation") or {}
    tracker = data.get("rejection_tracker") or {}
    categories = escalation.get("categories") or {}

    return PhrasePolicy(
        version=int(data.get("version", 1)),
        opt_out=TermMatcher(_as_list(data.get("opt_out"))),
        rejection_override_enabled=bool(rejection_override.get("enabled", True)),
        rejection_override_intent=str(rejection_override.get("intent", "not_interested")),
        rejection_override_phrases=[
            normalize_for_matching(p) for p in _as_list(rejection_override.get("phrases")) if p.strip()
        ],
        escalation_categories={
            str(name): TermMatcher(_as_list(terms)) for name, terms in categories.items()
        },
        repeated_terms=[normalize_for_matching(t) for t in _as_list(escalation.get("repeated_terms"))],
        repeat_threshold=int(escalation.get("repeat_threshold", 2)),
        soft_rejections=TermMatcher(_as_list(tracker.get("soft"))),
        hard_rejections=TermMatcher(_as_list(tracker.get("hard"))),
        soft_rejection_limit=int(tracker.get("soft_limit", 3)),
        forbidden_claims=[normalize_for_matching(c) for c in _as_list(data.get("forbidden_claims"))],
        forbidden_patterns=_compile_all(_as_list(data.get("forbidden_patterns"))),
        link_patterns=_compile_all(_as_list(data.get("link_patterns"))),
        identity_patterns=_compile_all(_as_list(data.get("identity_patterns"))),
        cta_patterns=_compile_all(_as_list(data.get("cta_patterns"))),
    )


@lru_cache(maxsize=4)
def _load_policy(path: str) -> PhrasePolicy:
    policy_path = Path(path)
    data: dict = {}
    if policy_path.exists():
        with policy_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        data = loaded if isinstance(loaded, dict) else {}
    else:
        logger.warning(f"Phrase policy not found at {policy_path}, using empty policy")
    policy = build_policy(data)
    logger.info(
        "Phrase policy loaded",
        extra={"context": {"path": str(policy_path), "version": policy.version}},
    )
    return policy


def get_phrase_policy(path: Optional[str] = None) -> PhrasePolicy:
    return _load_policy(str(path or settings.phrase_policy_path or _DEFAULT_POLICY_PATH))


def reload_phrase_policy() -> None:
    _load_policy.cache_clear()
