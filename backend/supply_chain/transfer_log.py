"""
Transfer Log — append-only audit ledger of column and board moves.

Every transition that changes an item's column (or board) writes exactly one
entry. Automatic hand-offs link the closed order-board item to the new
receive-board item through `product_id` / `to_product_id`; transfer history
views reconstruct an item's journey by following those links, never through
a foreign key on the items themselves.

Writes flush immediately so a failure surfaces inside the caller's
transaction and aborts the whole transition.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Kanban, TransferLog
from supply_chain.errors import DuplicateRequestError

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransferLogEntry:
    """Fields of a new ledger row."""

    product_id: uuid.UUID
    from_kanban_id: uuid.UUID
    to_kanban_id: uuid.UUID
    from_column: str
    to_column: str
    transfer_type: str
    created_at: datetime
    to_product_id: uuid.UUID | None = None
    from_location_id: uuid.UUID | None = None
    to_location_id: uuid.UUID | None = None
    notes: str | None = None
    transferred_by: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class TransferLogFilters:
    product_id: uuid.UUID | None = None
    from_kanban_id: uuid.UUID | None = None
    to_kanban_id: uuid.UUID | None = None
    kanban_id: uuid.UUID | None = None  # either side
    transfer_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


async def find_request(db: AsyncSession, request_id: str) -> TransferLog | None:
    """The entry already recorded under `request_id`, if any."""
    result = await db.execute(select(TransferLog).where(TransferLog.request_id == request_id))
    return result.scalar_one_or_none()


async def record_transfer(db: AsyncSession, entry: TransferLogEntry) -> uuid.UUID:
    """
    Append one entry and return its id.

    With a `request_id` that was already recorded for the same item, move
    type and destination, the existing id is returned instead of writing a
    duplicate. A `request_id` recorded for any other move raises
    DuplicateRequestError. Without one, retries can legitimately produce
    duplicates.
    """
    if entry.transfer_type not in ("automatic", "manual"):
        raise ValueError(f"Unknown transfer type '{entry.transfer_type}'")

    if entry.request_id:
        existing = await find_request(db, entry.request_id)
        if existing is not None:
            if (
                existing.product_id != entry.product_id
                or existing.transfer_type != entry.transfer_type
                or existing.to_kanban_id != entry.to_kanban_id
                or existing.to_column != entry.to_column
            ):
                raise DuplicateRequestError(entry.request_id, existing.id)
            logger.info("transfer_log.duplicate_request", request_id=entry.request_id, log_id=str(existing.id))
            return existing.id

    log = TransferLog(
        product_id=entry.product_id,
        to_product_id=entry.to_product_id,
        from_kanban_id=entry.from_kanban_id,
        to_kanban_id=entry.to_kanban_id,
        from_column=entry.from_column,
        to_column=entry.to_column,
        from_location_id=entry.from_location_id,
        to_location_id=entry.to_location_id,
        transfer_type=entry.transfer_type,
        notes=entry.notes,
        transferred_by=entry.transferred_by,
        request_id=entry.request_id,
        created_at=entry.created_at,
    )
    db.add(log)
    await db.flush()

    logger.info(
        "transfer_log.recorded",
        log_id=str(log.id),
        product_id=str(entry.product_id),
        transfer_type=entry.transfer_type,
        from_kanban=str(entry.from_kanban_id),
        to_kanban=str(entry.to_kanban_id),
        from_column=entry.from_column,
        to_column=entry.to_column,
    )
    return log.id


def _apply_filters(query, filters: TransferLogFilters):
    if filters.product_id:
        query = query.where(
            or_(TransferLog.product_id == filters.product_id, TransferLog.to_product_id == filters.product_id)
        )
    if filters.from_kanban_id:
        query = query.where(TransferLog.from_kanban_id == filters.from_kanban_id)
    if filters.to_kanban_id:
        query = query.where(TransferLog.to_kanban_id == filters.to_kanban_id)
    if filters.kanban_id:
        query = query.where(
            or_(TransferLog.from_kanban_id == filters.kanban_id, TransferLog.to_kanban_id == filters.kanban_id)
        )
    if filters.transfer_type:
        query = query.where(TransferLog.transfer_type == filters.transfer_type)
    if filters.start_date:
        query = query.where(TransferLog.created_at >= filters.start_date)
    if filters.end_date:
        query = query.where(TransferLog.created_at <= filters.end_date)
    return query


async def list_transfer_logs(
    db: AsyncSession,
    filters: TransferLogFilters | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[TransferLog]:
    """Filtered ledger page, newest first."""
    query = _apply_filters(select(TransferLog), filters or TransferLogFilters())
    query = query.order_by(TransferLog.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def transfer_history_for_product(db: AsyncSession, product_id: uuid.UUID) -> list[TransferLog]:
    """
    Full journey of an item across boards, newest first.

    Walks automatic hand-off links in both directions so the receive-board
    item shows its order-board history and vice versa.
    """
    seen: set[uuid.UUID] = set()
    frontier = {product_id}
    entries: dict[uuid.UUID, TransferLog] = {}

    while frontier:
        seen |= frontier
        result = await db.execute(
            select(TransferLog).where(
                or_(TransferLog.product_id.in_(list(frontier)), TransferLog.to_product_id.in_(list(frontier)))
            )
        )
        next_frontier: set[uuid.UUID] = set()
        for log in result.scalars().all():
            entries[log.id] = log
            for linked in (log.product_id, log.to_product_id):
                if linked is not None and linked not in seen:
                    next_frontier.add(linked)
        frontier = next_frontier

    return sorted(entries.values(), key=lambda log: log.created_at, reverse=True)


async def transfer_stats(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    """Totals, counts by transfer type, and the ten busiest source boards."""
    filters = TransferLogFilters(start_date=start_date, end_date=end_date)

    by_type_query = _apply_filters(select(TransferLog.transfer_type, func.count(TransferLog.id)), filters)
    by_type_result = await db.execute(by_type_query.group_by(TransferLog.transfer_type))
    by_type = {row[0]: row[1] for row in by_type_result.all()}

    active_query = _apply_filters(
        select(
            TransferLog.from_kanban_id,
            Kanban.name,
            func.count(TransferLog.id).label("transfer_count"),
        ).join(Kanban, Kanban.kanban_id == TransferLog.from_kanban_id, isouter=True),
        filters,
    )
    active_result = await db.execute(
        active_query.group_by(TransferLog.from_kanban_id, Kanban.name)
        .order_by(func.count(TransferLog.id).desc())
        .limit(10)
    )

    return {
        "total_transfers": sum(by_type.values()),
        "transfers_by_type": {
            "automatic": by_type.get("automatic", 0),
            "manual": by_type.get("manual", 0),
        },
        "active_kanbans": [
            {"kanban_id": row[0], "kanban_name": row[1], "transfer_count": row[2]}
            for row in active_result.all()
        ],
    }
