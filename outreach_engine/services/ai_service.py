"""LLM collaborator boundary.

Every call here degrades to ``None`` on timeout, transport error or unparseable
output; callers pick their own safe default.
"""

import json
import re
import time
from typing import Optional

import httpx

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.services.llm import LLMProvider, OpenAIProvider

logger = get_logger("ai_service")

_llm_provider: Optional[LLMProvider] = None


def get_llm_provider() -> LLMProvider:
    """Get or create LLM provider instance."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.fast_model,
            base_url=settings.openai_base_url,
            max_retries=settings.openai_max_retries,
        )
    return _llm_provider


def set_llm_provider(provider: Optional[LLMProvider]) -> None:
    global _llm_provider
    _llm_provider = provider


def _log_timing(stage: str, elapsed_ms: float, *, extra: dict | None = None) -> None:
    context: dict = dict(extra or {})
    context["stage"] = stage
    context["elapsed_ms"] = round(elapsed_ms, 2)
    logger.info("Timing", extra={"context": context})


def parse_json_object(content: str | None) -> dict | None:
    """Parse a JSON object, tolerating prose or code fences around it."""
    content = (content or "").strip()
    if not content:
        return None
    payload = None
    try:
        payload = json.loads(content)
    except ValueError:
        match = re.search(r"\{.*\}", content, re.DOTALL)
        if match:
            try:
                payload = json.loads(match.group(0))
            except ValueError:
                payload = None
    return payload if isinstance(payload, dict) else None


def parse_json_array(content: str | None) -> list | None:
    """Parse a JSON array; repairs trailing commas and smart quotes, then tries numbered lines."""
    content = (content or "").strip()
    if not content:
        return None

    match = re.search(r"\[.*\]", content, re.DOTALL)
    if match:
        raw = match.group(0)
        for candidate in (
            raw,
            re.sub(r",\s*\]", "]", raw).replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'"),
        ):
            try:
                payload = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(payload, list):
                return payload

    extracted = []
    for line in content.splitlines():
        line_match = re.match(r"^[\d\-.)]+\s*[\"“]?(.+?)[\"”]?\s*$", line.strip())
        if line_match and 20 < len(line_match.group(1)) < 200:
            extracted.append(line_match.group(1))
    return extracted if len(extracted) >= 3 else None


def _generate(
    messages: list[dict],
    *,
    stage: str,
    model: str,
    timeout_seconds: float,
    max_tokens: int,
    temperature: float,
    json_mode: bool,
) -> str | None:
    llm = get_llm_provider()
    started = time.monotonic()
    try:
        response = llm.generate(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
            json_mode=json_mode,
        )
    except httpx.TimeoutException as exc:
        _log_timing(
            stage,
            (time.monotonic() - started) * 1000,
            extra={"model_name": model, "timeout": True, "timeout_seconds": timeout_seconds},
        )
        logger.warning(f"LLM {stage} timeout after {timeout_seconds}s: {exc}")
        return None
    except Exception as exc:
        logger.error(f"LLM {stage} failed: {exc}")
        return None

    _log_timing(
        stage,
        (time.monotonic() - started) * 1000,
        extra={"model_name": model, "provider": llm.name, "timeout": False},
    )
    if response.truncated:
        logger.warning(f"LLM {stage} output truncated at {max_tokens} tokens")
    return (response.content or "").strip() or None


def request_json(
    messages: list[dict],
    *,
    stage: str,
    model: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_tokens: int = 600,
    temperature: float = 0.0,
) -> dict | None:
    """Ask for a JSON object. Returns None on any failure."""
    content = _generate(
        messages,
        stage=stage,
        model=model or settings.fast_model,
        timeout_seconds=timeout_seconds or settings.ccb_timeout_seconds,
        max_tokens=max_tokens,
        temperature=temperature,
        json_mode=True,
    )
    if content is None:
        return None
    payload = parse_json_object(content)
    if payload is None:
        logger.warning(f"LLM {stage} returned unparseable JSON: {content[:200]}")
    return payload


def request_text(
    messages: list[dict],
    *,
    stage: str,
    model: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_tokens: int = 600,
    temperature: float = 0.7,
) -> str | None:
    return _generate(
        messages,
        stage=stage,
        model=model or settings.fast_model,
        timeout_seconds=timeout_seconds or settings.ccb_timeout_seconds,
        max_tokens=max_tokens,
        temperature=temperature,
        json_mode=False,
    )
