from outreach_engine.models.contact import Contact
from outreach_engine.models.conversation_turn import ConversationTurn
from outreach_engine.models.event import Event
from outreach_engine.models.queued_message import QueuedMessage
from outreach_engine.models.setting_entry import SettingEntry

__all__ = [
    "Contact",
    "ConversationTurn",
    "Event",
    "QueuedMessage",
    "SettingEntry",
]
