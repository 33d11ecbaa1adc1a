"""
Outbox event types.
"""


class EventTypes:
    """Event types written to the outbox by core operations."""

    # Tasks
    TASK_STATE_CHANGED = "task.state_changed"
    TASK_UNAUTHORIZED_MOVEMENT = "task.unauthorized_movement"

    # Reviews
    REVIEW_APPROVED = "review.approved"
    REVIEW_OBJECTED = "review.objected"

    # Ledger
    COOK_ISSUED = "cook.issued"
    ATTESTATION_CREATED = "attestation.created"

    # Governance
    PROPOSAL_CREATED = "proposal.created"
    VOTING_STARTED = "voting.started"
    COMMITTEE_SELECTED = "committee.selected"

    ALL = (
        TASK_STATE_CHANGED,
        TASK_UNAUTHORIZED_MOVEMENT,
        REVIEW_APPROVED,
        REVIEW_OBJECTED,
        COOK_ISSUED,
        ATTESTATION_CREATED,
        PROPOSAL_CREATED,
        VOTING_STARTED,
        COMMITTEE_SELECTED,
    )
