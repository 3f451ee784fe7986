"""Create risk, trust and job lock tables

Revision ID: 20261019_000002
Revises: 20261019_000001
Create Date: 2026-10-19

Per-store risk and trust state with their append-only event logs, the
single-flight job lock table and the rate limiter's hit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_000002"
down_revision: Union[str, None] = "20261019_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RISK_LEVELS = ("NORMAL", "WATCH", "HIGH", "FROZEN")
TRUST_TIERS = ("RESTRICTED", "WATCH", "STANDARD", "TRUSTED", "ELITE")


def upgrade() -> None:
    op.create_table(
        "store_risk_state",
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("risk_level", sa.Enum(*RISK_LEVELS, name="risk_level", create_constraint=True), nullable=False),
        sa.Column("payouts_frozen", sa.Boolean(), nullable=False),
        sa.Column("freeze_source", sa.Enum("AUTO", "MANUAL", name="freeze_source", create_constraint=True), nullable=True),
        sa.Column("freeze_expires_at", sa.DateTime(), nullable=True),
        sa.Column("manual_flag", sa.Boolean(), nullable=False),
        sa.Column("last_score", sa.Integer(), nullable=False),
        sa.Column("last_risk_evaluated", sa.DateTime(), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("store_id"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], name="fk_store_risk_state_store_id", ondelete="CASCADE"),
    )
    op.create_index("ix_store_risk_state_risk_level", "store_risk_state", ["risk_level"])
    op.create_index("ix_store_risk_state_payouts_frozen", "store_risk_state", ["payouts_frozen"])
    op.create_index("ix_store_risk_state_freeze_expires_at", "store_risk_state", ["freeze_expires_at"])

    op.create_table(
        "risk_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("severity", sa.Enum("INFO", "WARNING", "CRITICAL", name="risk_severity", create_constraint=True), nullable=False),
        sa.Column("prev_level", sa.Enum(*RISK_LEVELS, name="risk_level"), nullable=False),
        sa.Column("next_level", sa.Enum(*RISK_LEVELS, name="risk_level"), nullable=False),
        sa.Column("prev_frozen", sa.Boolean(), nullable=False),
        sa.Column("next_frozen", sa.Boolean(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], name="fk_risk_events_store_id", ondelete="CASCADE"),
    )
    op.create_index("ix_risk_events_store_id", "risk_events", ["store_id"])
    op.create_index("ix_risk_events_type", "risk_events", ["type"])
    op.create_index("ix_risk_events_created_at", "risk_events", ["created_at"])

    op.create_table(
        "store_trust_state",
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("trust_score", sa.Integer(), nullable=False),
        sa.Column("trust_tier", sa.Enum(*TRUST_TIERS, name="trust_tier", create_constraint=True), nullable=False),
        sa.Column("listing_boost_factor", sa.Float(), nullable=False),
        sa.Column("payout_delay_hours", sa.Integer(), nullable=False),
        sa.Column("trust_reason_summary", sa.JSON(), nullable=True),
        sa.Column("score_stable_days", sa.Integer(), nullable=False),
        sa.Column("trust_updated_at", sa.DateTime(), nullable=True),
        sa.Column("last_tier_change_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("store_id"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], name="fk_store_trust_state_store_id", ondelete="CASCADE"),
    )
    op.create_index("ix_store_trust_state_trust_tier", "store_trust_state", ["trust_tier"])

    op.create_table(
        "trust_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("prev_tier", sa.Enum(*TRUST_TIERS, name="trust_tier"), nullable=False),
        sa.Column("next_tier", sa.Enum(*TRUST_TIERS, name="trust_tier"), nullable=False),
        sa.Column("prev_score", sa.Integer(), nullable=False),
        sa.Column("next_score", sa.Integer(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], name="fk_trust_events_store_id", ondelete="CASCADE"),
    )
    op.create_index("ix_trust_events_store_id", "trust_events", ["store_id"])
    op.create_index("ix_trust_events_kind", "trust_events", ["kind"])
    op.create_index("ix_trust_events_created_at", "trust_events", ["created_at"])

    op.create_table(
        "job_run_state",
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("locked_by", sa.String(64), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_report", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "rate_limit_hits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rate_limit_hits_key", "rate_limit_hits", ["key"])
    op.create_index("ix_rate_limit_hits_created_at", "rate_limit_hits", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_rate_limit_hits_created_at", table_name="rate_limit_hits")
    op.drop_index("ix_rate_limit_hits_key", table_name="rate_limit_hits")
    op.drop_table("rate_limit_hits")
    op.drop_table("job_run_state")
    op.drop_index("ix_trust_events_created_at", table_name="trust_events")
    op.drop_index("ix_trust_events_kind", table_name="trust_events")
    op.drop_index("ix_trust_events_store_id", table_name="trust_events")
    op.drop_table("trust_events")
    op.drop_index("ix_store_trust_state_trust_tier", table_name="store_trust_state")
    op.drop_table("store_trust_state")
    op.drop_index("ix_risk_events_created_at", table_name="risk_events")
    op.drop_index("ix_risk_events_type", table_name="risk_events")
    op.drop_index("ix_risk_events_store_id", table_name="risk_events")
    op.drop_table("risk_events")
    op.drop_index("ix_store_risk_state_freeze_expires_at", table_name="store_risk_state")
    op.drop_index("ix_store_risk_state_payouts_frozen", table_name="store_risk_state")
    op.drop_index("ix_store_risk_state_risk_level", table_name="store_risk_state")
    op.drop_table("store_risk_state")
