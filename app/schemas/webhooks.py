"""
Inbound webhook payload schemas.
"""

from pydantic import BaseModel, Field, model_validator


class JoinEvent(BaseModel):
    """A user joined a scope (experience) - start the funnel."""

    event_id: str = Field(min_length=1, max_length=255)
    scope: str = Field(min_length=1, max_length=64)
    user_ref: str = Field(min_length=1, max_length=64)


class MessageEvent(BaseModel):
    """
    A user replied. Addressed either by conversation_id or by (scope, user_ref),
    in which case the user's active conversation in that scope is used.
    """

    event_id: str = Field(min_length=1, max_length=255)
    conversation_id: int | None = None
    scope: str | None = None
    user_ref: str | None = None
    text: str = ""

    @model_validator(mode="after")
    def _require_target(self) -> "MessageEvent":
        if self.conversation_id is None and not (self.scope and self.user_ref):
            raise ValueError("Provide conversation_id or both scope and user_ref")
        return self
