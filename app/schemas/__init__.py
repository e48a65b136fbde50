"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.admin import (
    FunnelDeployResponse,
    JobRunRequest,
    ResetConversationRequest,
    SystemEventResponse,
    TriggerFirstDmRequest,
)
from app.schemas.funnels import FlowBlock, FlowDocument, FlowOption, FlowStage
from app.schemas.webhooks import JoinEvent, MessageEvent

__all__ = [
    "FunnelDeployResponse",
    "JobRunRequest",
    "ResetConversationRequest",
    "SystemEventResponse",
    "TriggerFirstDmRequest",
    "FlowBlock",
    "FlowDocument",
    "FlowOption",
    "FlowStage",
    "JoinEvent",
    "MessageEvent",
]
