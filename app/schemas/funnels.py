"""
Funnel flow document schemas.

Shape check only: FunnelGraph.from_flow() runs these first, then checks the
graph itself (edges, stage membership, start block).
"""

from pydantic import BaseModel, Field, ValidationError, field_validator


class FlowOption(BaseModel):
    text: str | None = None
    next_block_id: str | None = Field(default=None, alias="nextBlockId")


class FlowBlock(BaseModel):
    id: str | None = None
    message: str | None = None
    options: list[FlowOption] | None = None
    resource_name: str | None = Field(default=None, alias="resourceName")


class FlowStage(BaseModel):
    id: str | int | None = None
    name: str | None = None
    explanation: str | None = None
    block_ids: list[str] | None = Field(default=None, alias="blockIds")


class FlowDocument(BaseModel):
    start_block_id: str | None = Field(default=None, alias="startBlockId")
    stages: list[FlowStage] | None = None
    blocks: dict[str, FlowBlock] | None = None

    @field_validator("blocks", mode="before")
    @classmethod
    def _null_blocks_are_empty(cls, value):
        if isinstance(value, dict):
            return {key: ({} if raw is None else raw) for key, raw in value.items()}
        return value


def validation_problems(exc: ValidationError) -> list[str]:
    """One readable line per pydantic error, prefixed with its location in the flow."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "flow"
        problems.append(f"{location}: {err['msg']}")
    return problems
