import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from pydantic import BaseModel, Field
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.api.auth import get_admin_auth
from app.api.dependencies import get_conversation_or_404, get_funnel_or_404
from app.api.errors import graph_integrity_detail
from app.constants.event_types import EVENT_GRAPH_INTEGRITY_FAILURE
from app.db.deps import get_db
from app.db.models import Conversation, Funnel
from app.schemas.admin import (
    FunnelDeployResponse,
    JobRunRequest,
    ResetConversationRequest,
    SystemEventResponse,
    TriggerFirstDmRequest,
)
from app.services.conversation import (
    get_conversation_summary,
    reset_conversation,
    start_conversation,
)
from app.services.funnel.errors import (
    FunnelNotDeployedError,
    GraphIntegrityError,
    RePromptConfigError,
)
from app.services.funnel.graph import FunnelGraph
from app.services.offer_dm import sweep_offer_conversations
from app.services.reaper import close_inactive_conversations
from app.services.reprompts import send_due_reprompts
from app.services.resources import CATEGORY_AFFILIATE, CATEGORY_MY_PRODUCTS, upsert_resource
from app.services.system_event_service import cleanup_old_events, error, list_events
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


class FunnelCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    scope: str = Field(min_length=1, max_length=64)
    flow: dict


class FunnelFlowUpdateRequest(BaseModel):
    flow: dict


class ResourceUpsertRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    scope: str = Field(min_length=1, max_length=64)
    link: str = Field(min_length=1, max_length=1000)
    category: str = Field(
        default=CATEGORY_AFFILIATE, pattern=f"^({CATEGORY_AFFILIATE}|{CATEGORY_MY_PRODUCTS})$"
    )


def _funnel_dict(funnel: Funnel) -> dict:
    return {
        "id": funnel.id,
        "name": funnel.name,
        "scope": funnel.scope,
        "version": funnel.version,
        "is_deployed": funnel.is_deployed,
    }


@router.post("/funnels")
def create_funnel(
    payload: FunnelCreateRequest,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Store a funnel draft. The flow is validated on deploy, not here."""
    now = utc_now()
    funnel = Funnel(
        name=payload.name,
        scope=payload.scope,
        flow=payload.flow,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.add(funnel)
    db.commit()
    db.refresh(funnel)
    return _funnel_dict(funnel)


@router.put("/funnels/{funnel_id}/flow")
def update_funnel_flow(
    payload: FunnelFlowUpdateRequest,
    funnel: Funnel = Depends(get_funnel_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """
    Replace a funnel's flow and bump its version. A deployed funnel is validated
    first, since live conversations would read the new graph straight away.
    """
    if funnel.is_deployed:
        try:
            FunnelGraph.from_flow(payload.flow)
        except GraphIntegrityError as e:
            raise HTTPException(status_code=422, detail=graph_integrity_detail(funnel.id, e))
    funnel.flow = payload.flow
    funnel.version = (funnel.version or 1) + 1
    funnel.updated_at = utc_now()
    db.commit()
    db.refresh(funnel)
    return _funnel_dict(funnel)


@router.post("/funnels/{funnel_id}/deploy", response_model=FunnelDeployResponse)
def deploy_funnel(
    funnel: Funnel = Depends(get_funnel_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """
    Validate the funnel graph and make it the scope's live funnel.
    422 with every structural problem if the graph is invalid.
    """
    try:
        graph = FunnelGraph.from_flow(funnel.flow)
    except GraphIntegrityError as e:
        error(
            db=db,
            event_type=EVENT_GRAPH_INTEGRITY_FAILURE,
            payload={"funnel_id": funnel.id, "version": funnel.version, "problems": e.problems},
        )
        raise HTTPException(status_code=422, detail=graph_integrity_detail(funnel.id, e))

    now = utc_now()
    db.execute(
        update(Funnel)
        .where(Funnel.scope == funnel.scope)
        .where(Funnel.id != funnel.id)
        .where(Funnel.is_deployed.is_(True))
        .values(is_deployed=False, updated_at=now)
    )
    funnel.is_deployed = True
    funnel.updated_at = now
    db.commit()
    db.refresh(funnel)
    logger.info(f"Funnel {funnel.id} v{funnel.version} deployed for scope {funnel.scope}")
    return FunnelDeployResponse(
        funnel_id=funnel.id,
        version=funnel.version,
        is_deployed=funnel.is_deployed,
        block_count=len(graph.blocks),
        stage_count=len(graph.stages),
    )


@router.post("/resources")
def save_resource(
    payload: ResourceUpsertRequest,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    resource = upsert_resource(db, payload.name, payload.scope, payload.link, payload.category)
    return {
        "id": resource.id,
        "name": resource.name,
        "scope": resource.scope,
        "link": resource.link,
        "category": resource.category,
    }


@router.post("/conversations/trigger-first-dm")
async def trigger_first_dm(
    payload: TriggerFirstDmRequest,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Start a conversation for a user (closing any active one in the scope) and send the welcome DM."""
    funnel = None
    if payload.funnel_id is not None:
        funnel = db.get(Funnel, payload.funnel_id)
        if funnel is None or funnel.scope != payload.scope:
            raise HTTPException(status_code=404, detail="Funnel not found for scope")
    try:
        return await start_conversation(db, payload.scope, payload.user_ref, funnel=funnel)
    except FunnelNotDeployedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GraphIntegrityError as e:
        raise HTTPException(status_code=422, detail=graph_integrity_detail(funnel.id if funnel else 0, e))


@router.post("/conversations/{conversation_id}/reset")
async def reset_conversation_endpoint(
    payload: ResetConversationRequest | None = None,
    conversation: Conversation = Depends(get_conversation_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Back to the start block, active, with the one-time claim released."""
    send_welcome = payload.send_welcome if payload else False
    try:
        return await reset_conversation(db, conversation.id, send_welcome=send_welcome)
    except GraphIntegrityError as e:
        raise HTTPException(
            status_code=422, detail=graph_integrity_detail(conversation.funnel_id, e)
        )


@router.get("/conversations/{conversation_id}")
def get_conversation_detail(
    conversation: Conversation = Depends(get_conversation_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    return get_conversation_summary(db, conversation.id)


@router.post("/jobs/reaper")
def run_reaper(
    payload: JobRunRequest | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Close conversations idle past the inactivity threshold."""
    report = close_inactive_conversations(db, now=payload.now if payload else None)
    return report.as_dict()


@router.post("/jobs/reprompts")
async def run_reprompts(
    payload: JobRunRequest | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Send every re-prompt due now (or at payload.now)."""
    try:
        return await send_due_reprompts(db, now=payload.now if payload else None)
    except RePromptConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/jobs/offer-dms")
async def run_offer_dm_sweep(
    payload: JobRunRequest | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Send the offer DM to conversations waiting in OFFER without one."""
    return await sweep_offer_conversations(db, now=payload.now if payload else None)


@router.post("/events/retention-cleanup")
def cleanup_system_events_retention(
    retention_days: int = 90,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Delete SystemEvents older than retention_days (default 90)."""
    deleted = cleanup_old_events(db, retention_days=retention_days)
    return {"deleted": deleted, "retention_days": retention_days}


@router.get("/events", response_model=list[SystemEventResponse])
def get_events(
    limit: int = 100,
    level: str | None = None,
    event_type: str | None = None,
    conversation_id: int | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """System events, newest first, optionally filtered."""
    return list_events(
        db,
        level=level,
        event_type=event_type,
        conversation_id=conversation_id,
        limit=limit,
    )
