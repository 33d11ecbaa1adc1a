"""Committees and service terms

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

Lottery-seated committees, their members' service terms and the team
settings that drive committee eligibility.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("teams") as batch_op:
        batch_op.add_column(
            sa.Column("committee_eligibility_window_months", sa.Integer, nullable=False, server_default="6")
        )
        batch_op.add_column(
            sa.Column("committee_minimum_active_cook", sa.Float, nullable=False, server_default="0")
        )
        batch_op.add_column(
            sa.Column("committee_cooling_off_period_days", sa.Integer, nullable=False, server_default="0")
        )

    op.create_table(
        "committees",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("committee_name", sa.String(length=200), nullable=False),
        sa.Column("number_of_seats", sa.Integer, nullable=False),
        sa.Column("selected_members", sa.JSON, nullable=False),
        sa.Column("eligible_members", sa.JSON, nullable=False),
        sa.Column("lottery_seed", sa.String(length=200), nullable=False),
        sa.Column("total_weight", sa.Float, nullable=False),
        sa.Column("selection_details", sa.JSON, nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_committees_team_id", "committees", ["team_id"])

    op.create_table(
        "service_terms",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("committee_id", sa.String(length=36), sa.ForeignKey("committees.id"), nullable=False),
        sa.Column("committee_name", sa.String(length=200), nullable=False),
        sa.Column("contributor_id", sa.String(length=128), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_days", sa.Integer, nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "completed", "terminated", name="service_term_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_service_terms_team_id", "service_terms", ["team_id"])
    op.create_index("ix_service_terms_committee_id", "service_terms", ["committee_id"])
    op.create_index("ix_service_terms_contributor_id", "service_terms", ["contributor_id"])
    op.create_index("ix_service_terms_status", "service_terms", ["status"])


def downgrade() -> None:
    op.drop_table("service_terms")
    op.drop_table("committees")
    with op.batch_alter_table("teams") as batch_op:
        batch_op.drop_column("committee_cooling_off_period_days")
        batch_op.drop_column("committee_minimum_active_cook")
        batch_op.drop_column("committee_eligibility_window_months")
