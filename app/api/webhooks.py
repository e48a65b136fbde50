import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_WEBHOOK_SIGNATURE_FAILURE,
    EVENT_WHOP_JOIN,
    EVENT_WHOP_MESSAGE,
)
from app.db.deps import get_db
from app.schemas.webhooks import JoinEvent, MessageEvent
from app.services.conversation import handle_inbound_message, start_conversation
from app.services.conversations_repo import find_active_conversation, load_conversation
from app.services.funnel.errors import (
    ConversationClosedError,
    ConversationNotFoundError,
    FunnelNotDeployedError,
    GraphIntegrityError,
    OrphanedConversationError,
    StaleTransitionError,
)
from app.services.integrations.webhook_verification import (
    SIGNATURE_HEADER,
    verify_webhook_signature,
)
from app.services.safety import check_processed_event, record_processed_event
from app.services.system_event_service import warn

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_response(status_code: int, error: str, **content_extras) -> JSONResponse:
    """Webhook error body: {"received": False, "error": ...}."""
    content: dict = {"received": False, "error": error, **content_extras}
    return JSONResponse(status_code=status_code, content=content)


async def _read_event(
    request: Request, db: Session, schema: type[BaseModel]
) -> tuple[BaseModel | None, JSONResponse | None]:
    """
    Verify the signature over the raw body, then parse it.
    Returns (event, None) on success; (None, error_response) on failure.
    """
    raw_body = await request.body()
    signature_header = request.headers.get(SIGNATURE_HEADER)
    if not verify_webhook_signature(raw_body, signature_header):
        warn(
            db=db,
            event_type=EVENT_WEBHOOK_SIGNATURE_FAILURE,
            payload={"path": request.url.path, "has_signature_header": signature_header is not None},
        )
        return None, _error_response(403, "Invalid webhook signature")
    try:
        return schema.model_validate_json(raw_body), None
    except ValidationError as e:
        return None, _error_response(
            422, "Invalid payload", detail=e.errors(include_url=False, include_context=False)
        )


@router.post("/join")
async def whop_join(request: Request, db: Session = Depends(get_db)):
    """
    A user joined a scope: start a conversation on its deployed funnel and send the welcome DM.
    Idempotent per event_id.
    """
    event, err_response = await _read_event(request, db, JoinEvent)
    if err_response is not None:
        return err_response

    is_duplicate, processed = check_processed_event(db, event.event_id)
    if is_duplicate:
        return {
            "received": True,
            "type": "duplicate",
            "event_id": event.event_id,
            "conversation_id": processed.conversation_id if processed else None,
        }

    try:
        result = await start_conversation(db, event.scope, event.user_ref)
    except FunnelNotDeployedError as e:
        return _error_response(404, str(e), scope=event.scope)
    except GraphIntegrityError as e:
        return _error_response(409, "Deployed funnel is invalid", problems=e.problems)

    record_processed_event(db, event.event_id, EVENT_WHOP_JOIN, result["conversation_id"])
    return {"received": True, "event_id": event.event_id, **result}


@router.post("/message")
async def whop_message(request: Request, db: Session = Depends(get_db)):
    """
    A user replied: run the funnel engine for their conversation.

    409 when the conversation is orphaned (its block left the graph) or a concurrent
    message already moved it; 200 with type=closed when it is already closed.
    Idempotent per event_id.
    """
    event, err_response = await _read_event(request, db, MessageEvent)
    if err_response is not None:
        return err_response

    is_duplicate, processed = check_processed_event(db, event.event_id)
    if is_duplicate:
        return {
            "received": True,
            "type": "duplicate",
            "event_id": event.event_id,
            "conversation_id": processed.conversation_id if processed else None,
        }

    if event.conversation_id is not None:
        conversation = load_conversation(db, event.conversation_id)
    else:
        conversation = find_active_conversation(db, event.scope, event.user_ref)
    if conversation is None:
        return _error_response(404, "Conversation not found")
    conversation_id = conversation.id

    try:
        result = await handle_inbound_message(db, conversation_id, event.text)
    except ConversationNotFoundError:
        return _error_response(404, "Conversation not found")
    except OrphanedConversationError as e:
        logger.warning(str(e))
        return _error_response(
            409, "orphaned_conversation", conversation_id=conversation_id, block_id=e.block_id
        )
    except StaleTransitionError as e:
        record_processed_event(db, event.event_id, EVENT_WHOP_MESSAGE, conversation_id)
        return _error_response(
            409,
            "stale_transition",
            conversation_id=conversation_id,
            expected_block_id=e.expected_block_id,
            actual_block_id=e.actual_block_id,
        )
    except ConversationClosedError:
        record_processed_event(db, event.event_id, EVENT_WHOP_MESSAGE, conversation_id)
        return {"received": True, "type": "closed", "conversation_id": conversation_id}
    except GraphIntegrityError as e:
        return _error_response(409, "Funnel is invalid", problems=e.problems)

    record_processed_event(db, event.event_id, EVENT_WHOP_MESSAGE, conversation_id)
    return {"received": True, "event_id": event.event_id, **result}
