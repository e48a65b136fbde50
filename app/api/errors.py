"""
Shared API error detail helpers, so admin endpoints word funnel errors the same way.
"""

from app.services.funnel.errors import GraphIntegrityError


def graph_integrity_detail(funnel_id: int, exc: GraphIntegrityError) -> dict:
    """422 detail for a funnel whose flow failed validation."""
    return {
        "error": "invalid_funnel_graph",
        "funnel_id": funnel_id,
        "problems": exc.problems,
    }
