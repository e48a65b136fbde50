"""
Funnel graph model - static, validated, in-memory representation of a funnel flow.

Blocks and options are plain records in a keyed table (O(1) lookup). The graph
may contain cycles; nothing here walks it recursively.

Flow JSON shape (as stored on Funnel.flow):

    {
      "startBlockId": "welcome",
      "stages": [{"id": "s1", "name": "WELCOME", "explanation": "...", "blockIds": ["welcome"]}],
      "blocks": {
        "welcome": {
          "id": "welcome",
          "message": "Hi! What brings you here?",
          "options": [{"text": "E-commerce", "nextBlockId": "ecom"}],
          "resourceName": null
        }
      }
    }
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import ValidationError

from app.constants.statuses import (
    PHASE_1,
    PHASE_2,
    PHASE_COMPLETED,
    STAGE_VALUE_DELIVERY,
    STAGE_WELCOME,
)
from app.schemas.funnels import FlowDocument, validation_problems
from app.services.funnel.errors import BlockNotFound, GraphIntegrityError

logger = logging.getLogger(__name__)

WELCOME_OPTIONS_HEADER = "Answer by pasting one of those numbers"


@dataclass(frozen=True)
class Option:
    text: str
    next_block_id: str | None = None  # None = terminal option


@dataclass(frozen=True)
class Block:
    id: str
    message: str
    options: tuple[Option, ...] = ()
    resource_name: str | None = None


@dataclass(frozen=True)
class Stage:
    id: str
    name: str
    explanation: str = ""
    block_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class FunnelGraph:
    """Immutable funnel graph. Build with from_flow() so it is validated."""

    start_block_id: str
    stages: tuple[Stage, ...]
    blocks: Mapping[str, Block]
    _stage_by_block: Mapping[str, Stage] = field(repr=False, compare=False, default_factory=dict)

    @classmethod
    def from_flow(cls, flow: dict[str, Any]) -> "FunnelGraph":
        """
        Parse and validate a stored flow.

        Raises:
            GraphIntegrityError: listing every structural problem found
        """
        if not isinstance(flow, dict):
            raise GraphIntegrityError(["flow must be an object"])
        try:
            document = FlowDocument.model_validate(flow)
        except ValidationError as e:
            raise GraphIntegrityError(validation_problems(e)) from None

        problems: list[str] = []
        blocks: dict[str, Block] = {}
        for key, raw in (document.blocks or {}).items():
            block_id = raw.id if raw.id is not None else key
            if block_id != key:
                problems.append(f"block key '{key}' does not match block id '{block_id}'")
            options = tuple(
                Option(text=opt.text or "", next_block_id=opt.next_block_id)
                for opt in (raw.options or [])
            )
            blocks[key] = Block(
                id=key,
                message=raw.message or "",
                options=options,
                resource_name=raw.resource_name or None,
            )

        stages = tuple(
            Stage(
                id="" if raw.id is None else str(raw.id),
                name=raw.name or "",
                explanation=raw.explanation or "",
                block_ids=tuple(raw.block_ids or ()),
            )
            for raw in (document.stages or [])
        )

        start_block_id = document.start_block_id
        graph = cls(
            start_block_id=start_block_id,
            stages=stages,
            blocks=MappingProxyType(blocks),
            _stage_by_block=MappingProxyType(_index_stages(stages, problems)),
        )
        problems.extend(graph._edge_problems())
        if problems:
            raise GraphIntegrityError(problems)
        return graph

    def _edge_problems(self) -> list[str]:
        problems: list[str] = []
        if not self.start_block_id or self.start_block_id not in self.blocks:
            problems.append(f"startBlockId '{self.start_block_id}' is not a block")
        for block in self.blocks.values():
            for index, option in enumerate(block.options, start=1):
                if option.next_block_id is not None and option.next_block_id not in self.blocks:
                    problems.append(
                        f"block '{block.id}' option {index} points at missing block "
                        f"'{option.next_block_id}'"
                    )
            if block.id not in self._stage_by_block:
                problems.append(f"block '{block.id}' belongs to no stage")
        for stage in self.stages:
            for block_id in stage.block_ids:
                if block_id not in self.blocks:
                    problems.append(f"stage '{stage.name}' lists missing block '{block_id}'")
        return problems


def _index_stages(stages: tuple[Stage, ...], problems: list[str]) -> dict[str, Stage]:
    index: dict[str, Stage] = {}
    for stage in stages:
        for block_id in stage.block_ids:
            if block_id in index:
                problems.append(
                    f"block '{block_id}' is in both stage '{index[block_id].name}' "
                    f"and stage '{stage.name}'"
                )
                continue
            index[block_id] = stage
    return index


def resolve_block(graph: FunnelGraph, block_id: str | None) -> Block:
    """Return the block with this id. Raises BlockNotFound."""
    block = graph.blocks.get(block_id) if block_id is not None else None
    if block is None:
        raise BlockNotFound(block_id)
    return block


def stage_of(graph: FunnelGraph, block_id: str | None) -> Stage:
    """Return the stage containing this block. Raises BlockNotFound."""
    stage = graph._stage_by_block.get(block_id) if block_id is not None else None
    if stage is None:
        raise BlockNotFound(block_id)
    return stage


def is_in_stage_named(graph: FunnelGraph, block_id: str | None, stage_name: str) -> bool:
    if block_id is None:
        return False
    stage = graph._stage_by_block.get(block_id)
    return stage is not None and stage.name == stage_name


def detect_phase(graph: FunnelGraph, block_id: str | None) -> str:
    """WELCOME -> PHASE1, VALUE_DELIVERY -> PHASE2, anything else -> COMPLETED."""
    if block_id is None:
        return PHASE_COMPLETED
    stage = graph._stage_by_block.get(block_id)
    if stage is None:
        return PHASE_COMPLETED
    if stage.name == STAGE_WELCOME:
        return PHASE_1
    if stage.name == STAGE_VALUE_DELIVERY:
        return PHASE_2
    return PHASE_COMPLETED


def format_options(block: Block) -> str:
    """Numbered option list, 1-based, one per line."""
    return "\n".join(f"{index}. {option.text}" for index, option in enumerate(block.options, 1))


def welcome_message(graph: FunnelGraph) -> str:
    """Opening DM: start block message plus the numbered options."""
    block = resolve_block(graph, graph.start_block_id)
    message = block.message
    if block.options:
        message += f"\n\n{WELCOME_OPTIONS_HEADER}\n{format_options(block)}"
    return message


# Newest validated graph per funnel id, tagged with its version. A flow edit
# bumps the version and the older graph is dropped.
_graph_cache: dict[int, tuple[int, FunnelGraph]] = {}


def load_funnel_graph(funnel: Any) -> FunnelGraph:
    """
    Load (and validate once) the graph for a Funnel row.

    Raises:
        GraphIntegrityError: if the stored flow is malformed
    """
    version = funnel.version or 1
    cached = _graph_cache.get(funnel.id)
    if cached is not None and cached[0] == version:
        return cached[1]
    try:
        graph = FunnelGraph.from_flow(funnel.flow)
    except GraphIntegrityError as e:
        logger.error(f"Funnel {funnel.id} v{funnel.version} failed validation: {e}")
        raise
    _graph_cache[funnel.id] = (version, graph)
    return graph


def clear_graph_cache() -> None:
    _graph_cache.clear()
