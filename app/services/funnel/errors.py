"""
Funnel engine error taxonomy.

Invalid input and a lost claim are not errors: they are ordinary outcomes
(see AdvanceResult.outcome and GuardResult.status).
"""


class FunnelError(Exception):
    """Base class for funnel engine errors."""


class GraphIntegrityError(FunnelError):
    """A funnel flow is malformed (dangling edge, missing start block, ...). Load-time only."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid funnel graph: " + "; ".join(problems))


class BlockNotFound(FunnelError, LookupError):
    """Lookup of a block id that isn't in the graph."""

    def __init__(self, block_id: str | None):
        self.block_id = block_id
        super().__init__(f"Block '{block_id}' not found in funnel graph")


class OrphanedConversationError(FunnelError):
    """Conversation points at a block that no longer exists. Surfaced, never auto-repaired."""

    def __init__(self, conversation_id: int | None, block_id: str | None):
        self.conversation_id = conversation_id
        self.block_id = block_id
        super().__init__(
            f"Conversation {conversation_id} is at block '{block_id}', "
            "which is not in its funnel graph"
        )


class ConversationClosedError(FunnelError):
    """Input arrived for a conversation that is already closed."""

    def __init__(self, conversation_id: int | None):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} is closed")


class StaleTransitionError(FunnelError):
    """Conditional advance lost: the conversation moved since it was read."""

    def __init__(self, conversation_id: int, expected_block_id: str | None, actual_block_id: str | None):
        self.conversation_id = conversation_id
        self.expected_block_id = expected_block_id
        self.actual_block_id = actual_block_id
        super().__init__(
            f"Conversation {conversation_id} moved during transition: "
            f"expected block '{expected_block_id}', found '{actual_block_id}'"
        )


class DeliveryFailure(FunnelError):
    """An outbound message could not be delivered or recorded."""


class RePromptConfigError(FunnelError):
    """Re-prompt message table is missing an entry for a configured (phase, offset)."""


class ConversationNotFoundError(FunnelError, LookupError):
    def __init__(self, conversation_id: int | None):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class FunnelNotDeployedError(FunnelError, LookupError):
    """No deployed funnel for the scope a user joined."""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"No deployed funnel for scope '{scope}'")
