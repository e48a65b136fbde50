"""FastAPI dependencies for API routes."""

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.deps import get_db
from app.db.models import Conversation, Funnel


def get_conversation_or_404(conversation_id: int, db: Session = Depends(get_db)) -> Conversation:
    """Resolve path parameter {conversation_id}; 404 if not found."""
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def get_funnel_or_404(funnel_id: int, db: Session = Depends(get_db)) -> Funnel:
    """Resolve path parameter {funnel_id}; 404 if not found."""
    funnel = db.get(Funnel, funnel_id)
    if not funnel:
        raise HTTPException(status_code=404, detail="Funnel not found")
    return funnel
