"""
Shared funnel test data.

- T0: fixed reference time every conversation in the tests starts at
- SCOPE: the experience the test funnels are deployed to
- standard_flow: a small four-stage funnel with branches, links and terminal options
"""

from datetime import UTC, datetime

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
SCOPE = "exp_test"


def standard_flow() -> dict:
    """Four-stage funnel: WELCOME -> VALUE_DELIVERY -> TRANSITION -> OFFER."""
    return {
        "startBlockId": "welcome",
        "stages": [
            {"id": "s1", "name": "WELCOME", "explanation": "Qualify", "blockIds": ["welcome"]},
            {
                "id": "s2",
                "name": "VALUE_DELIVERY",
                "explanation": "Free value",
                "blockIds": ["ecom_value", "trade_value"],
            },
            {"id": "s3", "name": "TRANSITION", "explanation": "Bridge", "blockIds": ["transition"]},
            {"id": "s4", "name": "OFFER", "explanation": "Paid offer", "blockIds": ["offer"]},
        ],
        "blocks": {
            "welcome": {
                "id": "welcome",
                "message": "Hi! What brings you here?",
                "options": [
                    {"text": "E-commerce", "nextBlockId": "ecom_value"},
                    {"text": "Trading", "nextBlockId": "trade_value"},
                ],
            },
            "ecom_value": {
                "id": "ecom_value",
                "message": "Here's your free guide: [LINK]",
                "resourceName": "Guide",
                "options": [{"text": "done", "nextBlockId": "transition"}],
            },
            "trade_value": {
                "id": "trade_value",
                "message": "Here's a trading checklist: [LINK]",
                "resourceName": "Checklist",
                "options": [{"text": "done", "nextBlockId": "transition"}],
            },
            "transition": {
                "id": "transition",
                "message": "Want the full playbook?",
                "options": [
                    {"text": "Yes", "nextBlockId": "offer"},
                    {"text": "No thanks", "nextBlockId": None},
                ],
            },
            "offer": {
                "id": "offer",
                "message": "Grab it here: [LINK]",
                "resourceName": "Playbook",
                "options": [{"text": "Thanks", "nextBlockId": None}],
            },
        },
    }
