"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Teams, tasks, reviews, the append-only COOK ledger, attestations, governance
(weights, proposals, objections, votings, votes, change history), the event
outbox, the board sync retry queue and the audit log.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("cook_cap", sa.Float, nullable=True),
        sa.Column("cook_decay_rate", sa.Float, nullable=True),
        sa.Column("default_objection_window_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("default_objection_threshold", sa.Float, nullable=False, server_default="0"),
        sa.Column("default_voting_period_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("constitutional_voting_period_days", sa.Integer, nullable=False, server_default="14"),
        sa.Column("constitutional_approval_threshold", sa.Float, nullable=False, server_default="50"),
        sa.Column(
            "equity_model",
            sa.Enum("slicing", "proportional", name="equity_model"),
            nullable=False,
            server_default="slicing",
        ),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "team_memberships",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "role",
            sa.Enum("Contributor", "Reviewer", "Steward", "Admin", name="team_role"),
            nullable=False,
        ),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("team_id", "user_id", name="uq_membership_team_user"),
    )
    op.create_index("ix_team_memberships_team_id", "team_memberships", ["team_id"])
    op.create_index("ix_team_memberships_user_id", "team_memberships", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "state",
            sa.Enum("Backlog", "Ready", "In Progress", "Review", "Done", name="task_state"),
            nullable=False,
            server_default="Backlog",
        ),
        sa.Column("contributors", sa.JSON, nullable=False),
        sa.Column("reviewers", sa.JSON, nullable=False),
        sa.Column("cook_value", sa.Float, nullable=True),
        sa.Column(
            "cook_state",
            sa.Enum("Draft", "Provisional", "Locked", "Final", name="cook_state"),
            nullable=False,
            server_default="Draft",
        ),
        sa.Column(
            "cook_attribution",
            sa.Enum("self", "spend", name="cook_attribution"),
            nullable=False,
            server_default="self",
        ),
        sa.Column("archived", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.Column("external_project_id", sa.String(length=128), nullable=True),
        sa.Column("external_item_id", sa.String(length=128), nullable=True),
        sa.Column("external_column_id", sa.String(length=128), nullable=True),
        sa.Column("external_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unauthorized_movement", sa.JSON, nullable=True),
    )
    op.create_index("ix_tasks_team_id", "tasks", ["team_id"])
    op.create_index("ix_tasks_state", "tasks", ["state"])
    op.create_index("ix_tasks_archived", "tasks", ["archived"])
    op.create_index("ix_tasks_external_item_id", "tasks", ["external_item_id"])
    op.create_index("ix_tasks_team_state", "tasks", ["team_id", "state"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("task_id", sa.String(length=36), sa.ForeignKey("tasks.id"), nullable=False, unique=True),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "objected", "escalated", name="review_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("approvals", sa.JSON, nullable=False),
        sa.Column("objections", sa.JSON, nullable=False),
        sa.Column("comments", sa.JSON, nullable=False),
        sa.Column("required_reviewers", sa.Integer, nullable=False, server_default="1"),
        sa.Column("objection_window_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("objection_window_closes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("escalated_by", sa.String(length=128), nullable=True),
        sa.Column("escalated_to", sa.String(length=128), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_reason", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_reviews_team_id", "reviews", ["team_id"])
    op.create_index("ix_reviews_status", "reviews", ["status"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("task_id", sa.String(length=36), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("contributor_id", sa.String(length=128), nullable=False),
        sa.Column("cook_value", sa.Float, nullable=False),
        sa.Column("attribution", sa.Enum("self", "spend", name="cook_attribution"), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("task_id", "contributor_id", name="uq_ledger_task_contributor"),
    )
    op.create_index("ix_ledger_entries_team_id", "ledger_entries", ["team_id"])
    op.create_index("ix_ledger_entries_task_id", "ledger_entries", ["task_id"])
    op.create_index("ix_ledger_entries_contributor_id", "ledger_entries", ["contributor_id"])
    op.create_index("ix_ledger_team_contributor", "ledger_entries", ["team_id", "contributor_id"])

    op.create_table(
        "attestations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ledger_entry_id",
            sa.String(length=36),
            sa.ForeignKey("ledger_entries.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("team_id", sa.String(length=36), nullable=False),
        sa.Column("team_name", sa.String(length=200), nullable=True),
        sa.Column("task_id", sa.String(length=36), nullable=False),
        sa.Column("task_title", sa.String(length=500), nullable=True),
        sa.Column("contributor_id", sa.String(length=128), nullable=False),
        sa.Column("cook_value", sa.Float, nullable=False),
        sa.Column("attribution", sa.Enum("self", "spend", name="cook_attribution"), nullable=False),
        sa.Column("reviewers", sa.JSON, nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("merkle_root", sa.String(length=64), nullable=True),
        sa.Column("parent_hash", sa.String(length=64), nullable=True),
        sa.Column("chain_seq", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("contributor_id", "chain_seq", name="uq_attestation_chain_seq"),
    )
    op.create_index("ix_attestations_team_id", "attestations", ["team_id"])
    op.create_index("ix_attestations_contributor_id", "attestations", ["contributor_id"])
    op.create_index(
        "ix_attestations_contributor_issued", "attestations", ["contributor_id", "issued_at"]
    )

    op.create_table(
        "governance_weights",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("contributor_id", sa.String(length=128), nullable=False),
        sa.Column("raw_cook", sa.Float, nullable=False, server_default="0"),
        sa.Column("weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("team_id", "contributor_id", name="uq_weight_team_contributor"),
    )
    op.create_index("ix_governance_weights_team_id", "governance_weights", ["team_id"])

    op.create_table(
        "governance_proposals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "policy_change", "constitutional_challenge", "binding_decision",
                "committee_selection", "other",
                name="proposal_type",
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("proposed_by", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "draft", "objection_window_open", "objection_window_closed",
                "voting_triggered", "approved", "rejected", "withdrawn",
                name="proposal_status",
            ),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("objection_window_days", sa.Integer, nullable=True),
        sa.Column("objection_window_closes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("objection_threshold", sa.Float, nullable=False, server_default="0"),
        sa.Column("objection_weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("objection_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("voting_id", sa.String(length=36), nullable=True),
        sa.Column("related_review_id", sa.String(length=36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_governance_proposals_team_id", "governance_proposals", ["team_id"])
    op.create_index("ix_governance_proposals_status", "governance_proposals", ["status"])

    op.create_table(
        "proposal_objections",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "proposal_id",
            sa.String(length=36),
            sa.ForeignKey("governance_proposals.id"),
            nullable=False,
        ),
        sa.Column("objector_id", sa.String(length=128), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("proposal_id", "objector_id", name="uq_objection_proposal_objector"),
    )
    op.create_index("ix_proposal_objections_proposal_id", "proposal_objections", ["proposal_id"])

    op.create_table(
        "votings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("options", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("open", "closed", "completed", name="voting_status"),
            nullable=False,
            server_default="open",
        ),
        sa.Column("voting_period_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("closes_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("results", sa.JSON, nullable=True),
        sa.Column("total_weight", sa.Float, nullable=True),
        sa.Column("winning_option", sa.String(length=200), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_votings_team_id", "votings", ["team_id"])
    op.create_index("ix_votings_proposal_id", "votings", ["proposal_id"])
    op.create_index("ix_votings_status", "votings", ["status"])

    op.create_table(
        "votes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("voting_id", sa.String(length=36), sa.ForeignKey("votings.id"), nullable=False),
        sa.Column("voter_id", sa.String(length=128), nullable=False),
        sa.Column("option", sa.String(length=200), nullable=False),
        sa.Column("weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("cast_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("voting_id", "voter_id", name="uq_vote_voting_voter"),
    )
    op.create_index("ix_votes_voting_id", "votes", ["voting_id"])

    for table, constraint in (
        ("policy_changes", "uq_policy_change_version"),
        ("constitutional_changes", "uq_constitutional_change_version"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("team_id", sa.String(length=36), nullable=False),
            sa.Column("proposal_id", sa.String(length=36), nullable=False),
            sa.Column("voting_id", sa.String(length=36), nullable=True),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("version", sa.Integer, nullable=False),
            sa.Column("previous_version", sa.Integer, nullable=True),
            sa.Column("approval_percentage", sa.Float, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("team_id", "version", name=constraint),
        )
        op.create_index(f"ix_{table}_team_id", table, ["team_id"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), nullable=True),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "processing", "completed", "failed", name="outbox_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_events_team_id", "outbox_events", ["team_id"])
    op.create_index("ix_outbox_events_type", "outbox_events", ["type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])
    op.create_index("ix_outbox_status_created", "outbox_events", ["status", "created_at"])

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), nullable=False),
        sa.Column("task_id", sa.String(length=36), nullable=False),
        sa.Column("operation", sa.String(length=50), nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="10"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sync_queue_team_id", "sync_queue", ["team_id"])
    op.create_index("ix_sync_queue_task_id", "sync_queue", ["task_id"])
    op.create_index("ix_sync_queue_next_retry_at", "sync_queue", ["next_retry_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("team_id", sa.String(length=36), nullable=True),
        sa.Column(
            "actor_kind",
            sa.Enum("human", "system", name="audit_actor_kind"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "created", "updated", "status_changed", "deleted", "linked", "unlinked",
                name="audit_action",
            ),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("trace_id", sa.String(length=36), nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_team_id", "audit_log", ["team_id"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_trace_id", "audit_log", ["trace_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_team_ts", "audit_log", ["team_id", "ts"])
    op.create_index("ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("sync_queue")
    op.drop_table("outbox_events")
    op.drop_table("constitutional_changes")
    op.drop_table("policy_changes")
    op.drop_table("votes")
    op.drop_table("votings")
    op.drop_table("proposal_objections")
    op.drop_table("governance_proposals")
    op.drop_table("governance_weights")
    op.drop_table("attestations")
    op.drop_table("ledger_entries")
    op.drop_table("reviews")
    op.drop_table("tasks")
    op.drop_table("team_memberships")
    op.drop_table("teams")
