from outreach_engine.services.contact_service import (
    ConsentStatus,
    get_contact,
    get_or_create_contact,
    set_dnd,
    set_stage,
)
from outreach_engine.services.result import ErrorCode, Result
from outreach_engine.services.state_machine import (
    Intent,
    PipelineStage,
    next_stage,
    parse_intent,
    parse_stage,
)
