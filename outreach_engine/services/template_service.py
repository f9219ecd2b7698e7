import random
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import yaml

from outreach_engine.models import Contact
from outreach_engine.services.similarity_service import check_similarity

_TEMPLATES_PATH = Path(__file__).resolve().parents[1] / "policies" / "templates.yaml"


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_templates() -> dict:
    return _load_yaml(_TEMPLATES_PATH)


def _first_name(contact: Optional[Contact]) -> str:
    if contact is None or not contact.name:
        return ""
    return contact.name.strip().split(" ")[0]


def render(template: str, contact: Optional[Contact] = None, **values) -> str:
    first_name = _first_name(contact)
    return template.format(
        name_suffix=f" {first_name}" if first_name else "",
        comma_name=f", {first_name}" if first_name else "",
        **values,
    )


def followup_variants(archetype: str) -> list[str]:
    followups = load_templates().get("followups") or {}
    variants = followups.get(archetype)
    if not variants and archetype.startswith("nudge_"):
        # Ceilings above three reuse the last nudge tier.
        variants = followups.get("nudge_3")
    return [str(v) for v in variants or []]


def pick_followup(
    archetype: str,
    contact: Optional[Contact],
    recent_outbound: Iterable[str] = (),
    rng: Optional[random.Random] = None,
) -> Optional[str]:
    """Pick a variant, preferring ones not too close to what was already sent."""
    rng = rng or random
    recent = list(recent_outbound)
    rendered = [render(v, contact) for v in followup_variants(archetype)]
    if not rendered:
        return None
    fresh = [text for text in rendered if not check_similarity(text, recent).similar and text not in recent]
    return rng.choice(fresh or rendered)


def opener_fallbacks() -> list[str]:
    return [str(v) for v in load_templates().get("openers") or []]


def booking_text(key: str, contact: Optional[Contact] = None, **values) -> str:
    booking = load_templates().get("booking") or {}
    return render(str(booking.get(key, "")), contact, **values)
