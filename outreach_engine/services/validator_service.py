"""Outbound firewall: every candidate message passes here before transport."""

from dataclasses import dataclass, field
from typing import Optional

from outreach_engine.logging_config import get_logger
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy, normalize_for_matching
from outreach_engine.services.settings_service import LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT, SettingsProvider
from outreach_engine.services.state_machine import EARLY_STAGES, PipelineStage

logger = get_logger("validator_service")


@dataclass
class Violation:
    rule: str  # length, forbidden_claim, forbidden_pattern, link_policy, identity
    detail: str

    def to_dict(self) -> dict:
        return {"rule": self.rule, "detail": self.detail}


@dataclass
class ValidationResult:
    violations: list[Violation] = field(default_factory=list)
    has_cta: bool = False
    length: int = 0

    @property
    def valid(self) -> bool:
        return not self.violations

    @property
    def rules(self) -> list[str]:
        return [v.rule for v in self.violations]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "violations": [v.to_dict() for v in self.violations],
            "has_cta": self.has_cta,
            "length": self.length,
        }


def validate_message(
    message: str,
    stage: Optional[PipelineStage],
    settings_provider: SettingsProvider,
    policy: Optional[PhrasePolicy] = None,
) -> ValidationResult:
    """Run every rule independently; a message may fail several at once."""
    policy = policy or get_phrase_policy()
    message = message or ""
    stage = stage or PipelineStage.INTRO
    result = ValidationResult(length=len(message))

    max_chars = settings_provider.max_chars_per_message()
    if len(message) > max_chars:
        result.violations.append(Violation("length", f"Message exceeds {max_chars} chars ({len(message)})"))

    lowered = normalize_for_matching(message)
    for claim in policy.forbidden_claims:
        if claim and claim in lowered:
            result.violations.append(Violation("forbidden_claim", f'Contains: "{claim}"'))

    for pattern in policy.forbidden_patterns:
        if pattern.search(message):
            result.violations.append(Violation("forbidden_pattern", f"Matches pattern: {pattern.pattern}"))

    has_link = any(pattern.search(message) for pattern in policy.link_patterns)
    if has_link and settings_provider.link_policy() == LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT and stage in EARLY_STAGES:
        result.violations.append(Violation("link_policy", f"Links not allowed before engagement (stage {stage.value})"))

    for pattern in policy.identity_patterns:
        if pattern.search(message):
            result.violations.append(Violation("identity", "Message discloses bot identity"))
            break

    result.has_cta = any(pattern.search(message) for pattern in policy.cta_patterns)

    if result.violations:
        logger.info(
            "Outbound message failed validation",
            extra={"context": {"rules": result.rules, "stage": stage.value, "length": len(message)}},
        )
    return result
