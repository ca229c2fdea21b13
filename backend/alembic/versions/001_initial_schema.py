"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Discovered venues (review queue)
    op.create_table(
        "discovered_venues",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("street", sa.String(300)),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("country", sa.String(2), nullable=False),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        sa.Column("is_chain", sa.Boolean(), server_default=sa.false()),
        sa.Column("chain_id", sa.String(64)),
        sa.Column("chain_name", sa.String(200)),
        sa.Column("chain_confidence", sa.Float()),
        sa.Column("planted_products", sa.JSON(), server_default="[]"),
        sa.Column("dishes", sa.JSON(), server_default="[]"),
        sa.Column("confidence_score", sa.Integer(), server_default="0"),
        sa.Column("confidence_factors", sa.JSON(), server_default="[]"),
        sa.Column("status", sa.String(20), server_default="discovered"),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("production_venue_id", postgresql.UUID(as_uuid=True)),
        sa.Column("discovered_by_strategy_id", sa.String(100)),
        sa.Column("discovered_by_query", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("promoted_at", sa.DateTime(timezone=True)),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "status IN ('discovered', 'verified', 'rejected', 'promoted', 'stale')",
            name="ck_discovered_venues_status",
        ),
        sa.CheckConstraint(
            "(status = 'rejected') = (rejection_reason IS NOT NULL AND rejection_reason <> '')",
            name="ck_discovered_venues_rejection_reason",
        ),
        sa.CheckConstraint(
            "status <> 'promoted' OR production_venue_id IS NOT NULL",
            name="ck_discovered_venues_promoted_link",
        ),
        sa.CheckConstraint(
            "chain_id IS NULL OR is_chain",
            name="ck_discovered_venues_chain",
        ),
    )
    op.create_index("idx_discovered_venues_country", "discovered_venues", ["country"])
    op.create_index("idx_discovered_venues_status", "discovered_venues", ["status"])
    op.create_index("idx_discovered_venues_chain", "discovered_venues", ["chain_id"])
    op.create_index(
        "idx_discovered_venues_review_order",
        "discovered_venues",
        ["confidence_score", "created_at"],
    )
    op.create_index("idx_discovered_venues_last_seen", "discovered_venues", ["last_seen_at"])

    # Platform links of discovered venues
    op.create_table(
        "discovered_venue_platforms",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("venue_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("discovered_venues.id"), nullable=False),
        sa.Column("position", sa.Integer(), server_default="0"),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("rating", sa.Float()),
        sa.Column("review_count", sa.Integer()),
        sa.UniqueConstraint("venue_id", "platform", name="uq_discovered_venue_platform"),
    )
    op.create_index("idx_discovered_venue_platforms_venue", "discovered_venue_platforms", ["venue_id"])
    op.create_index("idx_discovered_venue_platforms_platform", "discovered_venue_platforms", ["platform"])

    # Production venues
    op.create_table(
        "venues",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("type", sa.String(30), server_default="restaurant"),
        sa.Column("chain_id", sa.String(64)),
        sa.Column("street", sa.String(300)),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("country", sa.String(2), nullable=False),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        sa.Column("delivery_platforms", sa.JSON(), server_default="[]"),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("source", sa.String(30), server_default="discovered"),
        sa.Column("last_verified", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_venues_country", "venues", ["country"])
    op.create_index("idx_venues_chain", "venues", ["chain_id"])

    # Production dishes
    op.create_table(
        "dishes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("venue_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("venues.id"), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("planted_products", sa.JSON(), server_default="[]"),
        sa.Column("price", sa.String(50)),
        sa.Column("image_url", sa.Text()),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_dishes_venue", "dishes", ["venue_id"])

    # Audit trail
    op.create_table(
        "changelog",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("collection", sa.String(50), nullable=False),
        sa.Column("document_id", sa.String(64), nullable=False),
        sa.Column("changes", sa.JSON(), server_default="[]"),
        sa.Column("source_type", sa.String(20), server_default="system"),
        sa.Column("source_user", sa.String(200)),
        sa.Column("reason", sa.Text()),
    )
    op.create_index("idx_changelog_document", "changelog", ["collection", "document_id"])
    op.create_index("idx_changelog_timestamp", "changelog", ["timestamp"])

    # Discovery strategies
    op.create_table(
        "discovery_strategies",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("platform", sa.String(30)),
        sa.Column("country", sa.String(2)),
        sa.Column("query_template", sa.Text()),
        sa.Column("total_uses", sa.Integer(), server_default="0"),
        sa.Column("successful_discoveries", sa.Integer(), server_default="0"),
        sa.Column("false_positives", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_used", sa.DateTime(timezone=True)),
    )


def downgrade() -> None:
    op.drop_table("discovery_strategies")
    op.drop_table("changelog")
    op.drop_table("dishes")
    op.drop_table("venues")
    op.drop_table("discovered_venue_platforms")
    op.drop_table("discovered_venues")
