"""
State transition engine - pure computation of the next conversation state.

advance() takes a snapshot of the conversation, the raw user input and the
validated graph, and returns the next snapshot, the bot output and any
side-effect requests. It does no I/O of its own: persistence, delivery and the
side-effect guard are the caller's job (see app.services.conversation).

Input matching policy:
    normalize = strip, collapse internal whitespace to one space, casefold.
    An option matches if the normalized input equals its 1-based display
    index or its normalized text. Options are tried top to bottom; first wins.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime

from app.constants.statuses import PHASE_2, STATUS_ACTIVE, STATUS_CLOSED
from app.services.funnel.errors import (
    BlockNotFound,
    ConversationClosedError,
    OrphanedConversationError,
)
from app.services.funnel.graph import (
    Block,
    FunnelGraph,
    Option,
    detect_phase,
    format_options,
    resolve_block,
    stage_of,
)

LINK_PLACEHOLDER = "[LINK]"
DEFAULT_TRIGGER_STAGES = ("OFFER",)

OUTCOME_ADVANCED = "advanced"
OUTCOME_INVALID_INPUT = "invalid_input"
OUTCOME_CLOSED = "closed"

SIDE_EFFECT_OFFER_DM = "offer_dm"

LinkResolver = Callable[[str], str]


@dataclass(frozen=True)
class InteractionRecord:
    block_id: str
    option_text: str
    next_block_id: str | None
    timestamp: datetime


@dataclass(frozen=True)
class ConversationState:
    """Snapshot of the fields of a conversation the engine reads and writes."""

    id: int | None
    current_block_id: str | None
    user_path: tuple[str, ...] = ()
    interactions: tuple[InteractionRecord, ...] = ()
    status: str = STATUS_ACTIVE
    created_at: datetime | None = None
    phase_start_time: datetime | None = None
    one_time_action_claimed: bool = False
    resolved_affiliate_link: str | None = None


@dataclass(frozen=True)
class SideEffectRequest:
    kind: str
    conversation_id: int | None
    block_id: str
    resource_name: str | None = None


@dataclass(frozen=True)
class AdvanceResult:
    conversation: ConversationState
    outcome: str
    bot_output: str | None
    previous_block_id: str | None
    matched_option: Option | None = None
    side_effects: tuple[SideEffectRequest, ...] = field(default_factory=tuple)

    @property
    def interaction(self) -> InteractionRecord | None:
        """The interaction appended by this step, if any."""
        if self.matched_option is None or not self.conversation.interactions:
            return None
        return self.conversation.interactions[-1]


def normalize_input(text: str | None) -> str:
    """Strip, collapse whitespace runs, casefold."""
    if not text:
        return ""
    return " ".join(text.split()).casefold()


def match_option(block: Block, raw_input: str | None) -> Option | None:
    """First option (top to bottom) whose index or text equals the normalized input."""
    needle = normalize_input(raw_input)
    if not needle:
        return None
    for index, option in enumerate(block.options, start=1):
        if needle == str(index) or needle == normalize_input(option.text):
            return option
    return None


def render_block(
    block: Block,
    resolve_link: LinkResolver | None = None,
    placeholder: str = LINK_PLACEHOLDER,
) -> str:
    """Block message with the link placeholder resolved and options listed."""
    message = block.message
    if block.resource_name and resolve_link is not None and placeholder in message:
        message = message.replace(placeholder, resolve_link(block.resource_name))
    if block.options:
        message = f"{message}\n\n{format_options(block)}"
    return message


def advance(
    graph: FunnelGraph,
    state: ConversationState,
    raw_input: str | None,
    *,
    at: datetime,
    resolve_link: LinkResolver | None = None,
    trigger_stages: Iterable[str] = DEFAULT_TRIGGER_STAGES,
    placeholder: str = LINK_PLACEHOLDER,
) -> AdvanceResult:
    """
    Compute the next conversation state for one user input.

    Args:
        graph: Validated funnel graph
        state: Current conversation snapshot
        raw_input: Text the user sent
        at: Timestamp recorded on the interaction (never affects branching)
        resolve_link: Called with a block's resource_name to fill the link placeholder
        trigger_stages: Stage names whose entry requests the one-time side effect
        placeholder: Token in block messages replaced by the resolved link

    Returns:
        AdvanceResult (outcome: advanced, invalid_input or closed)

    Raises:
        OrphanedConversationError: current block isn't in the graph
        ConversationClosedError: conversation already closed
    """
    try:
        current = resolve_block(graph, state.current_block_id)
    except BlockNotFound:
        raise OrphanedConversationError(state.id, state.current_block_id) from None

    if state.status == STATUS_CLOSED:
        raise ConversationClosedError(state.id)

    if not current.options:
        # Terminal block: whatever the user says ends the funnel here
        return AdvanceResult(
            conversation=replace(state, status=STATUS_CLOSED),
            outcome=OUTCOME_CLOSED,
            bot_output=None,
            previous_block_id=current.id,
        )

    option = match_option(current, raw_input)
    if option is None:
        return AdvanceResult(
            conversation=state,
            outcome=OUTCOME_INVALID_INPUT,
            bot_output=render_block(current, resolve_link, placeholder),
            previous_block_id=current.id,
        )

    interaction = InteractionRecord(
        block_id=current.id,
        option_text=option.text,
        next_block_id=option.next_block_id,
        timestamp=at,
    )
    interactions = state.interactions + (interaction,)

    if option.next_block_id is None:
        return AdvanceResult(
            conversation=replace(state, interactions=interactions, status=STATUS_CLOSED),
            outcome=OUTCOME_CLOSED,
            bot_output=None,
            previous_block_id=current.id,
            matched_option=option,
        )

    # Edges were validated at load time, so the target exists
    next_block = resolve_block(graph, option.next_block_id)

    phase_start_time = state.phase_start_time
    if detect_phase(graph, next_block.id) == PHASE_2 and detect_phase(graph, current.id) != PHASE_2:
        phase_start_time = at

    new_state = replace(
        state,
        current_block_id=next_block.id,
        user_path=state.user_path + (current.id,),
        interactions=interactions,
        phase_start_time=phase_start_time,
    )

    side_effects: tuple[SideEffectRequest, ...] = ()
    trigger_names = {name.upper() for name in trigger_stages}
    if stage_of(graph, next_block.id).name.upper() in trigger_names:
        side_effects = (
            SideEffectRequest(
                kind=SIDE_EFFECT_OFFER_DM,
                conversation_id=state.id,
                block_id=next_block.id,
                resource_name=next_block.resource_name,
            ),
        )

    return AdvanceResult(
        conversation=new_state,
        outcome=OUTCOME_ADVANCED,
        bot_output=render_block(next_block, resolve_link, placeholder),
        previous_block_id=current.id,
        matched_option=option,
        side_effects=side_effects,
    )
