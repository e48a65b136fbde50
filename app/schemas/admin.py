"""
Admin API request/response schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TriggerFirstDmRequest(BaseModel):
    """Start (or restart) a conversation for a user and send the welcome DM."""

    scope: str = Field(min_length=1, max_length=64)
    user_ref: str = Field(min_length=1, max_length=64)
    funnel_id: int | None = None  # Defaults to the scope's deployed funnel


class ResetConversationRequest(BaseModel):
    send_welcome: bool = False


class JobRunRequest(BaseModel):
    """Optional reference time for a manual job run (defaults to now)."""

    now: datetime | None = None


class FunnelDeployResponse(BaseModel):
    funnel_id: int
    version: int
    is_deployed: bool
    block_count: int
    stage_count: int


class SystemEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime | None = None
    level: str
    event_type: str
    conversation_id: int | None = None
    payload: dict[str, Any] | None = None
