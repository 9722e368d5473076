"""Initial sync schema: integrations, stores, channels, configurations, executions, products.

Revision ID: 001_initial_sync
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON

# revision identifiers, used by Alembic.
revision: str = "001_initial_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "integrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("config", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("registration", sa.String(50), unique=True, nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "notification_channels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("config", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("on_start", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("on_success", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("on_failure", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    )

    op.create_table(
        "sync_configurations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("source_integration_id", sa.Integer(), sa.ForeignKey("integrations.id"), nullable=False),
        sa.Column("target_integration_id", sa.Integer(), sa.ForeignKey("integrations.id"), nullable=False),
        sa.Column(
            "notification_channel_id",
            sa.Integer(),
            sa.ForeignKey("notification_channels.id"),
            nullable=True,
        ),
        sa.Column("store_ids", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("schedule", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("options", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    )

    op.create_table(
        "sync_executions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "configuration_id",
            sa.Integer(),
            sa.ForeignKey("sync_configurations.id"),
            nullable=True,
        ),
        sa.Column("source_integration_id", sa.Integer(), nullable=False),
        sa.Column("target_integration_id", sa.Integer(), nullable=False),
        sa.Column("notification_channel_id", sa.Integer(), nullable=True),
        sa.Column("trigger", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("results", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("summary", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_sync_executions_status", "sync_executions", ["status"])
    op.create_index("ix_sync_executions_started_at", "sync_executions", ["started_at"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_registration", sa.String(50), nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("final_price", sa.Float(), nullable=False),
        sa.Column("limit", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("store_registration", "code", name="uq_product_store_code"),
    )
    op.create_index("ix_products_store_registration", "products", ["store_registration"])


def downgrade() -> None:
    op.drop_index("ix_products_store_registration", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_sync_executions_started_at", table_name="sync_executions")
    op.drop_index("ix_sync_executions_status", table_name="sync_executions")
    op.drop_table("sync_executions")
    op.drop_table("sync_configurations")
    op.drop_table("notification_channels")
    op.drop_table("stores")
    op.drop_table("integrations")
