"""Shapes for the two CCB passes. Lenient on input, strict on output."""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _to_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        return [str(value)]
    if isinstance(value, list):
        items = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, dict):
                text = item.get("text") or item.get("description") or item.get("action") or ", ".join(
                    f"{k}: {v}" for k, v in item.items()
                )
                items.append(str(text))
            else:
                items.append(str(item))
        return items
    raise ValueError("expected a list of strings")


class _LenientModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ProfileFacts(_LenientModel):
    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    location: Optional[str] = None
    language: Optional[str] = None


class InterestFacts(_LenientModel):
    primary_product: Optional[str] = None
    secondary_interest: Optional[str] = None
    use_case: Optional[str] = None


class BudgetFacts(_LenientModel):
    mentioned: bool = False
    range: Optional[str] = None
    currency: Optional[str] = None


class TimelineFacts(_LenientModel):
    mentioned: bool = False
    urgency: Optional[str] = None
    specific_date: Optional[str] = None


class CCBFacts(_LenientModel):
    profile: ProfileFacts = Field(default_factory=ProfileFacts)
    interest: InterestFacts = Field(default_factory=InterestFacts)
    budget: BudgetFacts = Field(default_factory=BudgetFacts)
    timeline: TimelineFacts = Field(default_factory=TimelineFacts)
    objections: list[str] = Field(default_factory=list)
    questions_asked: list[str] = Field(default_factory=list)
    sentiment: str = "neutral"
    engagement_level: str = "none"
    key_facts: list[str] = Field(default_factory=list)

    @field_validator("objections", "questions_asked", "key_facts", mode="before")
    @classmethod
    def _string_lists(cls, value: Any) -> list[str]:
        return _to_string_list(value)


class StageRecommendation(_LenientModel):
    current: Optional[str] = None
    recommended: Optional[str] = None
    reason: Optional[str] = None
    next_condition: Optional[str] = None


class NextBestAction(_LenientModel):
    priority: int = 1
    action: str
    needs_human: bool = False


class FollowUpPolicy(_LenientModel):
    max_followups: int = 1
    if_no_reply_hours: Optional[float] = None
    timing_class: Optional[str] = None
    message_type: Optional[str] = None


class CCBStrategy(_LenientModel):
    stage: StageRecommendation = Field(default_factory=StageRecommendation)
    conclusion: str = ""
    next_best_actions: list[NextBestAction] = Field(default_factory=list)
    follow_up: FollowUpPolicy = Field(default_factory=FollowUpPolicy)
    risk_delta: int = Field(default=0, validation_alias=AliasChoices("risk_delta", "risk_score"))
    risk_factors: list[str] = Field(default_factory=list)
    do_not: list[str] = Field(default_factory=list)

    @field_validator("risk_factors", "do_not", mode="before")
    @classmethod
    def _string_lists(cls, value: Any) -> list[str]:
        return _to_string_list(value)

    @field_validator("risk_delta", mode="before")
    @classmethod
    def _whole_number(cls, value: Any) -> int:
        try:
            return int(round(float(value)))
        except (TypeError, ValueError):
            return 0

    @field_validator("next_best_actions", mode="after")
    @classmethod
    def _rank_actions(cls, value: list[NextBestAction]) -> list[NextBestAction]:
        return sorted(value, key=lambda action: action.priority)
