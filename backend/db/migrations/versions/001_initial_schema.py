"""
Initial schema - locations, kanbans, kanban links, products, transfer logs

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Locations
    op.create_table(
        "locations",
        sa.Column("location_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), unique=True),
        sa.Column("area", sa.String(255)),
        sa.Column("building", sa.String(255)),
        sa.Column("floor", sa.String(50)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # 2. Kanbans
    op.create_table(
        "kanbans",
        sa.Column("kanban_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column(
            "linked_kanban_id",
            UUID(as_uuid=True),
            sa.ForeignKey("kanbans.kanban_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("threshold_rules", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("kind IN ('order', 'receive')", name="ck_kanban_kind"),
    )
    op.create_index("ix_kanbans_kind", "kanbans", ["kind"])

    # 3. Kanban links (order board -> receive boards)
    op.create_table(
        "kanban_links",
        sa.Column("link_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "order_kanban_id",
            UUID(as_uuid=True),
            sa.ForeignKey("kanbans.kanban_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "receive_kanban_id",
            UUID(as_uuid=True),
            sa.ForeignKey("kanbans.kanban_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("order_kanban_id", "receive_kanban_id", name="uq_kanban_link_pair"),
    )
    op.create_index("ix_kanban_links_order", "kanban_links", ["order_kanban_id"])

    # 4. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "kanban_id",
            UUID(as_uuid=True),
            sa.ForeignKey("kanbans.kanban_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("column_status", sa.String(50), nullable=False),
        sa.Column("column_entered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("sku", sa.String(100)),
        sa.Column("quantity", sa.Integer),
        sa.Column("unit", sa.String(50)),
        sa.Column("supplier", sa.String(255)),
        sa.Column("category", sa.String(100)),
        sa.Column("tags", JSONB),
        sa.Column("priority", sa.String(20)),
        sa.Column("unit_price", sa.Numeric(12, 2)),
        sa.Column(
            "location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("locations.location_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_person_id", UUID(as_uuid=True), nullable=True),
        sa.Column(
            "preferred_receive_kanban_id",
            UUID(as_uuid=True),
            sa.ForeignKey("kanbans.kanban_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("stock_level", sa.Integer),
        sa.Column("notes", sa.Text),
        sa.Column("is_draft", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_rejected", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("version_id", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'transferred')", name="ck_product_status"),
    )
    op.create_index("ix_products_kanban_column", "products", ["kanban_id", "column_status"])
    op.create_index("ix_products_sku", "products", ["sku"])

    # 5. Transfer logs (append-only)
    op.create_table(
        "transfer_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("to_product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=True),
        sa.Column("from_kanban_id", UUID(as_uuid=True), sa.ForeignKey("kanbans.kanban_id"), nullable=False),
        sa.Column("to_kanban_id", UUID(as_uuid=True), sa.ForeignKey("kanbans.kanban_id"), nullable=False),
        sa.Column("from_column", sa.String(50), nullable=False),
        sa.Column("to_column", sa.String(50), nullable=False),
        sa.Column(
            "from_location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("locations.location_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "to_location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("locations.location_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("transfer_type", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("transferred_by", sa.String(255)),
        sa.Column("request_id", sa.String(128), unique=True, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("transfer_type IN ('automatic', 'manual')", name="ck_transfer_log_type"),
    )
    op.create_index("ix_transfer_logs_product", "transfer_logs", ["product_id"])
    op.create_index("ix_transfer_logs_from_kanban", "transfer_logs", ["from_kanban_id"])
    op.create_index("ix_transfer_logs_to_kanban", "transfer_logs", ["to_kanban_id"])
    op.create_index("ix_transfer_logs_created", "transfer_logs", ["created_at"])

    # Audit rows are written once; block edits at the database as well
    op.execute(
        """
        CREATE OR REPLACE FUNCTION transfer_logs_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'transfer_logs is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        "CREATE TRIGGER transfer_logs_no_update BEFORE UPDATE OR DELETE ON transfer_logs "
        "FOR EACH ROW EXECUTE FUNCTION transfer_logs_append_only()"
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS transfer_logs_no_update ON transfer_logs")
    op.execute("DROP FUNCTION IF EXISTS transfer_logs_append_only()")
    tables = [
        "transfer_logs",
        "products",
        "kanban_links",
        "kanbans",
        "locations",
    ]
    for table in tables:
        op.drop_table(table)
