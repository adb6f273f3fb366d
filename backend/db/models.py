"""
InvenFlow Database Models

Tables:
  1. locations       - Physical storage locations (managed elsewhere, read here)
  2. kanbans         - Order / receive boards with threshold rule config
  3. kanban_links    - Order board -> receive board hand-off targets
  4. products        - Items sitting in a board column
  5. transfer_logs   - Append-only audit ledger of every column/board move
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def UUID(as_uuid=True):
    return GUID()


from db.session import Base

KANBAN_KINDS = ("order", "receive")
PRODUCT_STATUSES = ("active", "transferred")
TRANSFER_TYPES = ("automatic", "manual")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to modify or delete an audit row."""


# ─── 1. Locations ──────────────────────────────────────────────────────────


class Location(Base):
    __tablename__ = "locations"

    location_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True)
    area = Column(String(255))
    building = Column(String(255))
    floor = Column(String(50))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# ─── 2. Kanbans ────────────────────────────────────────────────────────────


class Kanban(Base):
    __tablename__ = "kanbans"

    kanban_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    kind = Column(String(20), nullable=False)
    linked_kanban_id = Column(
        UUID(as_uuid=True),
        ForeignKey("kanbans.kanban_id", ondelete="SET NULL"),
        nullable=True,
    )
    threshold_rules = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("kind IN ('order', 'receive')", name="ck_kanban_kind"),
        Index("ix_kanbans_kind", "kind"),
    )


# ─── 3. Kanban Links ───────────────────────────────────────────────────────


class KanbanLink(Base):
    __tablename__ = "kanban_links"

    link_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_kanban_id = Column(
        UUID(as_uuid=True), ForeignKey("kanbans.kanban_id", ondelete="CASCADE"), nullable=False
    )
    receive_kanban_id = Column(
        UUID(as_uuid=True), ForeignKey("kanbans.kanban_id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("order_kanban_id", "receive_kanban_id", name="uq_kanban_link_pair"),
        Index("ix_kanban_links_order", "order_kanban_id"),
    )


# ─── 4. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kanban_id = Column(UUID(as_uuid=True), ForeignKey("kanbans.kanban_id", ondelete="CASCADE"), nullable=False)
    column_status = Column(String(50), nullable=False)
    column_entered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    status = Column(String(20), nullable=False, default="active")

    # Copied to the receive board on hand-off
    name = Column(Text, nullable=False)
    sku = Column(String(100))
    quantity = Column(Integer)
    unit = Column(String(50))
    supplier = Column(String(255))
    category = Column(String(100))
    tags = Column(JSON)
    priority = Column(String(20))
    unit_price = Column(Numeric(12, 2))

    # Board-specific, never copied
    location_id = Column(
        UUID(as_uuid=True), ForeignKey("locations.location_id", ondelete="SET NULL"), nullable=True
    )
    assigned_person_id = Column(UUID(as_uuid=True), nullable=True)
    preferred_receive_kanban_id = Column(
        UUID(as_uuid=True), ForeignKey("kanbans.kanban_id", ondelete="SET NULL"), nullable=True
    )
    stock_level = Column(Integer)
    notes = Column(Text)

    is_draft = Column(Boolean, nullable=False, default=False)
    is_rejected = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text)
    rejected_at = Column(DateTime(timezone=True))

    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("status IN ('active', 'transferred')", name="ck_product_status"),
        Index("ix_products_kanban_column", "kanban_id", "column_status"),
        Index("ix_products_sku", "sku"),
    )


# ─── 5. Transfer Logs ──────────────────────────────────────────────────────


class TransferLog(Base):
    """Audit ledger entry. Rows are inserted once and never updated or deleted."""

    __tablename__ = "transfer_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    to_product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=True)
    from_kanban_id = Column(UUID(as_uuid=True), ForeignKey("kanbans.kanban_id"), nullable=False)
    to_kanban_id = Column(UUID(as_uuid=True), ForeignKey("kanbans.kanban_id"), nullable=False)
    from_column = Column(String(50), nullable=False)
    to_column = Column(String(50), nullable=False)
    from_location_id = Column(
        UUID(as_uuid=True), ForeignKey("locations.location_id", ondelete="SET NULL"), nullable=True
    )
    to_location_id = Column(
        UUID(as_uuid=True), ForeignKey("locations.location_id", ondelete="SET NULL"), nullable=True
    )
    transfer_type = Column(String(20), nullable=False)
    notes = Column(Text)
    transferred_by = Column(String(255))
    request_id = Column(String(128), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("transfer_type IN ('automatic', 'manual')", name="ck_transfer_log_type"),
        Index("ix_transfer_logs_product", "product_id"),
        Index("ix_transfer_logs_from_kanban", "from_kanban_id"),
        Index("ix_transfer_logs_to_kanban", "to_kanban_id"),
        Index("ix_transfer_logs_created", "created_at"),
    )


@event.listens_for(TransferLog, "before_update")
def _reject_transfer_log_update(mapper, connection, target):
    raise ImmutableRecordError(f"transfer log {target.id} is append-only")


@event.listens_for(TransferLog, "before_delete")
def _reject_transfer_log_delete(mapper, connection, target):
    raise ImmutableRecordError(f"transfer log {target.id} is append-only")
