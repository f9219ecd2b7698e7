from outreach_engine.schemas.ccb import CCBFacts, CCBStrategy
from outreach_engine.schemas.message import InboundMessageRequest, InboundMessageResponse

__all__ = ["CCBFacts", "CCBStrategy", "InboundMessageRequest", "InboundMessageResponse"]
