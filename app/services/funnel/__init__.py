"""
Funnel engine: graph model, pure transition engine, link resolver and errors.

Re-exports for a stable public API: from app.services.funnel import advance, FunnelGraph, ...
"""

from app.services.funnel.engine import (
    LINK_PLACEHOLDER,
    OUTCOME_ADVANCED,
    OUTCOME_CLOSED,
    OUTCOME_INVALID_INPUT,
    SIDE_EFFECT_OFFER_DM,
    AdvanceResult,
    ConversationState,
    InteractionRecord,
    SideEffectRequest,
    advance,
    match_option,
    normalize_input,
    render_block,
)
from app.services.funnel.errors import (
    BlockNotFound,
    ConversationClosedError,
    ConversationNotFoundError,
    DeliveryFailure,
    FunnelError,
    FunnelNotDeployedError,
    GraphIntegrityError,
    OrphanedConversationError,
    RePromptConfigError,
    StaleTransitionError,
)
from app.services.funnel.graph import (
    Block,
    FunnelGraph,
    Option,
    Stage,
    detect_phase,
    is_in_stage_named,
    load_funnel_graph,
    resolve_block,
    stage_of,
    welcome_message,
)

__all__ = [
    "LINK_PLACEHOLDER",
    "OUTCOME_ADVANCED",
    "OUTCOME_CLOSED",
    "OUTCOME_INVALID_INPUT",
    "SIDE_EFFECT_OFFER_DM",
    "AdvanceResult",
    "ConversationState",
    "InteractionRecord",
    "SideEffectRequest",
    "advance",
    "match_option",
    "normalize_input",
    "render_block",
    "BlockNotFound",
    "ConversationClosedError",
    "ConversationNotFoundError",
    "DeliveryFailure",
    "FunnelError",
    "FunnelNotDeployedError",
    "GraphIntegrityError",
    "OrphanedConversationError",
    "RePromptConfigError",
    "StaleTransitionError",
    "Block",
    "FunnelGraph",
    "Option",
    "Stage",
    "detect_phase",
    "is_in_stage_named",
    "load_funnel_graph",
    "resolve_block",
    "stage_of",
    "welcome_message",
]
