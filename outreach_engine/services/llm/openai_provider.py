import time
from typing import Callable, Optional

import httpx

from outreach_engine.logging_config import get_logger
from outreach_engine.services.llm.base import ChatMessage, LLMProvider, LLMResponse

logger = get_logger("llm.openai")

DEFAULT_TIMEOUT_SECONDS = 60.0


class OpenAIProviderError(Exception):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"OpenAI API error: {status_code} - {body[:300]}")

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class OpenAIProvider(LLMProvider):
    """Chat completions over plain HTTP.

    Rate limits and server errors are retried ``max_retries`` times with a
    linear backoff. Timeouts are not retried; callers run on tight budgets.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str = "gpt-5-mini",
        base_url: str = "https://api.openai.com/v1",
        max_retries: int = 1,
        retry_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.sleep = sleep

    def _post(self, payload: dict, timeout: float) -> dict:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
        if response.status_code != 200:
            raise OpenAIProviderError(response.status_code, response.text)
        return response.json()

    def generate(
        self,
        messages: list[ChatMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured")

        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        attempt = 0
        while True:
            try:
                data = self._post(payload, timeout_seconds or DEFAULT_TIMEOUT_SECONDS)
                break
            except OpenAIProviderError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning(f"OpenAI {exc.status_code}, retry {attempt}/{self.max_retries}")
                self.sleep(self.retry_delay_seconds * attempt)

        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        return LLMResponse(
            content=message.get("content") or "",
            model=data.get("model", model),
            finish_reason=choice.get("finish_reason"),
            usage=data.get("usage") or {},
        )
