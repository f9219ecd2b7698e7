"""Operator alerts to a Telegram chat.

The same alert for the same contact is sent at most once per cooldown window,
so a flapping gateway or an escalation burst does not flood the chat.
"""

import threading
import time
from typing import Optional

import httpx

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token
ALERT_CHAT_ID = settings.alert_chat_id
ALERT_COOLDOWN_SECONDS = settings.alert_cooldown_seconds

LEVEL_MARKERS = {"WARNING": "⚠️", "CRITICAL": "🔥"}

_last_sent: dict[tuple, float] = {}
_last_sent_lock = threading.Lock()


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    # Plain text: underscores in values like global_send_disabled break Telegram Markdown.
    lines = [f"{LEVEL_MARKERS.get(level, '📢')} {level}: {message}"]
    lines.extend(f"{key}: {value}" for key, value in (context or {}).items())
    return "\n".join(lines)


def _in_cooldown(level: str, message: str, context: Optional[dict]) -> bool:
    key = (level, message, (context or {}).get("phone"))
    now = time.monotonic()
    with _last_sent_lock:
        last = _last_sent.get(key)
        if last is not None and now - last < ALERT_COOLDOWN_SECONDS:
            return True
        _last_sent[key] = now
    return False


def reset_alert_cooldown() -> None:
    with _last_sent_lock:
        _last_sent.clear()


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send an alert. Returns True if Telegram accepted it."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False
    if _in_cooldown(level, message, context):
        logger.info(f"Alert suppressed during cooldown: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=settings.alert_timeout_seconds) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context)},
            )
    except httpx.HTTPError as exc:
        logger.error(f"Failed to send alert: {exc}")
        return False

    if response.status_code != 200:
        logger.error(f"Telegram rejected alert: {response.status_code}")
        return False
    return True


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)
