"""
Tests for the pure transition engine (no database).
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from app.constants.statuses import STATUS_ACTIVE, STATUS_CLOSED
from app.services.funnel.engine import (
    OUTCOME_ADVANCED,
    OUTCOME_CLOSED,
    OUTCOME_INVALID_INPUT,
    SIDE_EFFECT_OFFER_DM,
    ConversationState,
    advance,
    match_option,
    normalize_input,
    render_block,
)
from app.services.funnel.errors import ConversationClosedError, OrphanedConversationError
from app.services.funnel.graph import FunnelGraph
from tests.helpers.funnel_flows import T0, standard_flow


def ab_graph() -> FunnelGraph:
    """Start block A (1 -> B, 2 -> C); B and C have no options."""
    return FunnelGraph.from_flow(
        {
            "startBlockId": "A",
            "stages": [
                {"id": "s1", "name": "WELCOME", "blockIds": ["A"]},
                {"id": "s2", "name": "VALUE_DELIVERY", "blockIds": ["B", "C"]},
            ],
            "blocks": {
                "A": {
                    "id": "A",
                    "message": "Pick one",
                    "options": [
                        {"text": "1", "nextBlockId": "B"},
                        {"text": "2", "nextBlockId": "C"},
                    ],
                },
                "B": {"id": "B", "message": "You picked B", "options": []},
                "C": {"id": "C", "message": "You picked C", "options": []},
            },
        }
    )


def state_at(block_id: str, **kwargs) -> ConversationState:
    return ConversationState(id=1, current_block_id=block_id, created_at=T0, **kwargs)


def test_a_to_b_then_any_input_closes():
    """Input "1" at A moves to B (still active); anything at option-less B closes."""
    graph = ab_graph()

    first = advance(graph, state_at("A"), "1", at=T0)
    assert first.outcome == OUTCOME_ADVANCED
    assert first.conversation.current_block_id == "B"
    assert first.conversation.status == STATUS_ACTIVE
    assert first.conversation.user_path == ("A",)

    second = advance(graph, first.conversation, "whatever", at=T0 + timedelta(minutes=1))
    assert second.outcome == OUTCOME_CLOSED
    assert second.conversation.status == STATUS_CLOSED
    assert second.conversation.current_block_id == "B"


def test_every_option_is_deterministic():
    """For each block with options, option i's index and text both lead to options[i].next."""
    graph = FunnelGraph.from_flow(standard_flow())

    for block in graph.blocks.values():
        for index, option in enumerate(block.options, start=1):
            for raw in (str(index), option.text):
                results = {
                    advance(graph, state_at(block.id), raw, at=T0 + timedelta(hours=h)).conversation
                    for h in (0, 5)
                }
                next_ids = {(s.current_block_id, s.status) for s in results}
                if option.next_block_id is None:
                    assert next_ids == {(block.id, STATUS_CLOSED)}
                else:
                    assert next_ids == {(option.next_block_id, STATUS_ACTIVE)}


@pytest.mark.parametrize("raw", ["", "   ", "3", "0", "-1", "E commerce", "done", None])
def test_invalid_input_is_a_no_op(raw):
    graph = FunnelGraph.from_flow(standard_flow())
    state = state_at("welcome")

    result = advance(graph, state, raw, at=T0)

    assert result.outcome == OUTCOME_INVALID_INPUT
    assert result.conversation == state
    assert result.conversation.user_path == ()
    assert result.conversation.interactions == ()
    assert result.side_effects == ()
    # Current block is shown again with its options
    assert result.bot_output.startswith("Hi! What brings you here?")
    assert "1. E-commerce" in result.bot_output


def test_normalization_policy():
    assert normalize_input("  E-Commerce  ") == "e-commerce"
    assert normalize_input("No \t  THANKS") == "no thanks"
    assert normalize_input(None) == ""


@pytest.mark.parametrize("raw", ["2", " 2 ", "trading", "TRADING", "  Trading\n"])
def test_matching_by_index_or_text(raw):
    graph = FunnelGraph.from_flow(standard_flow())
    assert match_option(graph.blocks["welcome"], raw).next_block_id == "trade_value"


def test_first_match_wins_top_to_bottom():
    """An option whose text is another option's index loses to the earlier option."""
    graph = FunnelGraph.from_flow(
        {
            "startBlockId": "A",
            "stages": [{"id": "s", "name": "WELCOME", "blockIds": ["A", "X", "Y"]}],
            "blocks": {
                "A": {
                    "id": "A",
                    "message": "?",
                    "options": [
                        {"text": "2", "nextBlockId": "X"},
                        {"text": "second", "nextBlockId": "Y"},
                    ],
                },
                "X": {"id": "X", "message": "x"},
                "Y": {"id": "Y", "message": "y"},
            },
        }
    )
    assert match_option(graph.blocks["A"], "2").next_block_id == "X"


def test_advance_records_interaction_with_timestamp():
    graph = FunnelGraph.from_flow(standard_flow())
    at = T0 + timedelta(minutes=3)

    result = advance(graph, state_at("welcome"), "1", at=at)

    interaction = result.interaction
    assert interaction.block_id == "welcome"
    assert interaction.option_text == "E-commerce"
    assert interaction.next_block_id == "ecom_value"
    assert interaction.timestamp == at


def test_entering_value_delivery_sets_phase_start_time():
    graph = FunnelGraph.from_flow(standard_flow())
    at = T0 + timedelta(minutes=4)

    result = advance(graph, state_at("welcome"), "1", at=at)

    assert result.conversation.phase_start_time == at


def test_phase_start_time_kept_when_leaving_value_delivery():
    graph = FunnelGraph.from_flow(standard_flow())
    state = state_at("ecom_value", phase_start_time=T0)

    result = advance(graph, state, "done", at=T0 + timedelta(hours=1))

    assert result.conversation.current_block_id == "transition"
    assert result.conversation.phase_start_time == T0


def test_terminal_option_closes_and_records_interaction():
    graph = FunnelGraph.from_flow(standard_flow())

    result = advance(graph, state_at("transition"), "no thanks", at=T0)

    assert result.outcome == OUTCOME_CLOSED
    assert result.conversation.status == STATUS_CLOSED
    assert result.bot_output is None
    assert result.interaction.option_text == "No thanks"
    assert result.interaction.next_block_id is None


def test_entering_offer_requests_side_effect():
    graph = FunnelGraph.from_flow(standard_flow())

    result = advance(graph, state_at("transition"), "yes", at=T0)

    assert result.conversation.current_block_id == "offer"
    assert len(result.side_effects) == 1
    request = result.side_effects[0]
    assert request.kind == SIDE_EFFECT_OFFER_DM
    assert request.block_id == "offer"
    assert request.resource_name == "Playbook"
    assert request.conversation_id == 1


def test_trigger_stages_are_configurable():
    graph = FunnelGraph.from_flow(standard_flow())

    result = advance(graph, state_at("welcome"), "1", at=T0, trigger_stages=("value_delivery",))
    assert result.side_effects[0].block_id == "ecom_value"

    none = advance(graph, state_at("transition"), "yes", at=T0, trigger_stages=())
    assert none.side_effects == ()


def test_link_placeholder_resolved_on_render():
    graph = FunnelGraph.from_flow(standard_flow())
    seen = []

    def resolve(name):
        seen.append(name)
        return "https://x/y?app=ID"

    result = advance(graph, state_at("welcome"), "1", at=T0, resolve_link=resolve)

    assert seen == ["Guide"]
    assert "Here's your free guide: https://x/y?app=ID" in result.bot_output
    assert "[LINK]" not in result.bot_output
    assert result.bot_output.endswith("1. done")


def test_render_without_resolver_leaves_placeholder():
    graph = FunnelGraph.from_flow(standard_flow())
    assert "[LINK]" in render_block(graph.blocks["ecom_value"])


def test_orphaned_conversation_raises():
    graph = FunnelGraph.from_flow(standard_flow())

    with pytest.raises(OrphanedConversationError) as exc_info:
        advance(graph, state_at("deleted_block"), "1", at=T0)

    assert exc_info.value.block_id == "deleted_block"


def test_closed_conversation_raises():
    graph = FunnelGraph.from_flow(standard_flow())
    state = replace(state_at("welcome"), status=STATUS_CLOSED)

    with pytest.raises(ConversationClosedError):
        advance(graph, state, "1", at=T0)


def test_advance_does_not_mutate_input_state():
    graph = FunnelGraph.from_flow(standard_flow())
    state = state_at("welcome")

    advance(graph, state, "1", at=T0)

    assert state.current_block_id == "welcome"
    assert state.user_path == ()
