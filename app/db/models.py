from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.clock import utc_now


class Funnel(Base):
    __tablename__ = "funnels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    scope: Mapped[str] = mapped_column(String(64), index=True)  # Owning experience / tenant
    version: Mapped[int] = mapped_column(Integer, default=1)  # Bump on every flow edit
    flow: Mapped[dict] = mapped_column(JSON)  # {startBlockId, stages[], blocks{}}
    is_deployed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    funnel_id: Mapped[int] = mapped_column(Integer, ForeignKey("funnels.id"), index=True)
    scope: Mapped[str] = mapped_column(String(64), index=True)
    user_ref: Mapped[str] = mapped_column(String(64), index=True)  # Platform user id DMs go to
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)

    # Position in the funnel graph
    current_block_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_path: Mapped[list] = mapped_column(JSON, default=list)
    phase_start_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # Anchor for PHASE2 re-prompts

    # One-time side effect (offer DM) claim
    one_time_action_claimed: Mapped[bool] = mapped_column(Boolean, default=False)
    one_time_action_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Cached attribution link (never regenerated mid-conversation)
    resolved_affiliate_link: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    resolved_resource_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Last re-prompt fired, so a scheduler tick within the same minute doesn't resend
    last_reprompt_phase: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    last_reprompt_offset: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    close_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    funnel: Mapped["Funnel"] = relationship("Funnel")
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )
    interactions: Mapped[list["FunnelInteraction"]] = relationship(
        "FunnelInteraction", back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id"), index=True
    )
    type: Mapped[str] = mapped_column(String(16))  # user, bot, system
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, index=True
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class FunnelInteraction(Base):
    __tablename__ = "funnel_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id"), index=True
    )
    block_id: Mapped[str] = mapped_column(String(64))
    option_text: Mapped[str] = mapped_column(Text)
    next_block_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="interactions"
    )


class Resource(Base):
    """Directory of linkable resources, looked up by (name, scope)."""

    __tablename__ = "resources"
    __table_args__ = (UniqueConstraint("name", "scope", name="uq_resources_name_scope"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    scope: Mapped[str] = mapped_column(String(64), index=True)
    link: Mapped[str] = mapped_column(String(1000))
    category: Mapped[str] = mapped_column(String(20), default="AFFILIATE")  # AFFILIATE, MY_PRODUCTS
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ProcessedMessage(Base):
    """Idempotency table - stores processed webhook event IDs to prevent duplicates."""

    __tablename__ = "processed_messages"
    __table_args__ = (
        UniqueConstraint(
            "provider", "message_id", name="ix_processed_messages_provider_message_id"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String(32), default="whop")
    message_id: Mapped[str] = mapped_column(String(255), index=True)
    event_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    conversation_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("conversations.id"), nullable=True, index=True
    )
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SystemEvent(Base):
    """Structured audit log of notable events and failures."""

    __tablename__ = "system_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, index=True
    )
    level: Mapped[str] = mapped_column(String(10), index=True)  # INFO, WARN, ERROR
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    conversation_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("conversations.id"), nullable=True, index=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
