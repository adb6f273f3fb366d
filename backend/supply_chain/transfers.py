"""
Board Transitions — column moves and automatic order → receive hand-off.

A column move runs as one unit of work:
1. Lock and load the item and its board
2. Validate the move (supply_chain.columns)
3. Update column, reset column_entered_at
4. On an order board entering the hand-off column, close the item and
   open a copy on the resolved receive board
5. Append exactly one transfer log entry
6. Commit once; any store failure rolls everything back

Cross-board moves never relocate a row: the order-board item is closed in
place and a new receive-board item is created, linked only through the
automatic transfer log entry.

Concurrent moves of one item are serialized by SELECT ... FOR UPDATE where
the dialect supports it and by the optimistic `version_id` check everywhere.
A version conflict re-reads and re-validates, so a second "move to
Purchased" sees the item already closed instead of handing it off twice.
"""

import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.clock import Clock, get_default_clock
from core.config import get_settings
from db.models import Kanban, Location, Product, TransferLog
from supply_chain.columns import STORED_COLUMN, can_transition, columns_requiring_location, first_column
from supply_chain.errors import (
    ConcurrentTransitionError,
    DenialReason,
    DuplicateRequestError,
    ItemNotFoundError,
    KanbanNotFoundError,
    PersistenceError,
    ResolutionError,
    ValidationError,
)
from supply_chain.transfer_log import TransferLogEntry, find_request, record_transfer

logger = structlog.get_logger()

# Copied onto the receive-board item. Location, assignee and stock level are
# board-specific and start empty downstream.
TRANSFERABLE_FIELDS = (
    "name",
    "sku",
    "quantity",
    "unit",
    "supplier",
    "category",
    "tags",
    "priority",
    "unit_price",
)

CREATABLE_FIELDS = TRANSFERABLE_FIELDS + (
    "location_id",
    "assigned_person_id",
    "preferred_receive_kanban_id",
    "notes",
    "is_draft",
)

# Column, board and lifecycle fields only change through apply_transition,
# reject_product and restore_product.
EDITABLE_FIELDS = TRANSFERABLE_FIELDS + (
    "location_id",
    "assigned_person_id",
    "preferred_receive_kanban_id",
    "stock_level",
    "notes",
    "is_draft",
)


@dataclass
class TransitionResult:
    """
    Outcome of apply_transition.

    outcome: "moved" | "transferred" | "noop" | "denied"
    product is the item as it now stands: the new receive-board item after a
    hand-off, otherwise the moved item. origin_product is set on hand-off.
    """

    ok: bool
    outcome: str
    product: Product | None = None
    origin_product: Product | None = None
    log_id: uuid.UUID | None = None
    error: ValidationError | None = None
    warning: ResolutionError | None = None

    @property
    def reason(self) -> DenialReason | None:
        return self.error.reason if self.error else None


async def _load_for_update(db: AsyncSession, product_id: uuid.UUID) -> Product:
    result = await db.execute(
        select(Product)
        .where(Product.product_id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise ItemNotFoundError(product_id)
    return product


async def _get_kanban(db: AsyncSession, kanban_id: uuid.UUID) -> Kanban:
    kanban = await db.get(Kanban, kanban_id)
    if kanban is None:
        raise KanbanNotFoundError(kanban_id)
    return kanban


async def _location_exists(db: AsyncSession, location_id: uuid.UUID) -> bool:
    location = await db.get(Location, location_id)
    return location is not None and location.is_active


async def resolve_receive_kanban(db: AsyncSession, kanban: Kanban, product: Product) -> Kanban:
    """
    Pick the receive board an order item hands off to.

    The item's preferred receive board wins over the board's default link.
    A candidate only resolves if it still exists and is a receive board.
    """
    candidates: list[uuid.UUID] = []
    for candidate_id in (product.preferred_receive_kanban_id, kanban.linked_kanban_id):
        if candidate_id is not None and candidate_id not in candidates:
            candidates.append(candidate_id)

    for candidate_id in candidates:
        candidate = await db.get(Kanban, candidate_id)
        if candidate is not None and candidate.kind == "receive":
            return candidate
    raise ResolutionError(kanban.kanban_id, candidates)


def _copy_transferable(product: Product) -> dict[str, Any]:
    fields = {name: getattr(product, name) for name in TRANSFERABLE_FIELDS}
    if isinstance(fields["tags"], list):
        fields["tags"] = list(fields["tags"])
    return fields


async def _hand_off(
    db: AsyncSession,
    *,
    origin: Product,
    order_kanban: Kanban,
    receive_kanban: Kanban,
    from_location_id: uuid.UUID | None,
    actor: str | None,
    notes: str | None,
    request_id: str | None,
    now,
) -> TransitionResult:
    downstream = Product(
        kanban_id=receive_kanban.kanban_id,
        column_status=first_column(receive_kanban.kind),
        column_entered_at=now,
        status="active",
        created_at=now,
        **_copy_transferable(origin),
    )
    db.add(downstream)
    origin.status = "transferred"
    await db.flush()

    log_id = await record_transfer(
        db,
        TransferLogEntry(
            product_id=origin.product_id,
            to_product_id=downstream.product_id,
            from_kanban_id=order_kanban.kanban_id,
            to_kanban_id=receive_kanban.kanban_id,
            from_column=origin.column_status,
            to_column=downstream.column_status,
            from_location_id=from_location_id,
            to_location_id=None,
            transfer_type="automatic",
            notes=notes or f"Automatic transfer when product moved to {origin.column_status} column",
            transferred_by=actor or "system",
            request_id=request_id,
            created_at=now,
        ),
    )

    logger.info(
        "transfer.automatic",
        origin_product=str(origin.product_id),
        new_product=str(downstream.product_id),
        from_kanban=str(order_kanban.kanban_id),
        to_kanban=str(receive_kanban.kanban_id),
        log_id=str(log_id),
    )
    return TransitionResult(
        ok=True,
        outcome="transferred",
        product=downstream,
        origin_product=origin,
        log_id=log_id,
    )


def _matches_request(log: TransferLog, product_id: uuid.UUID, destination_column: str) -> bool:
    if product_id not in (log.product_id, log.to_product_id):
        return False
    if log.transfer_type == "automatic":
        return destination_column in (log.from_column, log.to_column)
    return destination_column == log.to_column


async def _replay_request(db: AsyncSession, log: TransferLog) -> TransitionResult:
    """Rebuild the result of a move already recorded under the same request_id."""
    if log.transfer_type == "automatic":
        return TransitionResult(
            ok=True,
            outcome="transferred",
            product=await db.get(Product, log.to_product_id),
            origin_product=await db.get(Product, log.product_id),
            log_id=log.id,
        )
    return TransitionResult(ok=True, outcome="moved", product=await db.get(Product, log.product_id), log_id=log.id)


async def _apply_once(
    db: AsyncSession,
    product_id: uuid.UUID,
    destination_column: str,
    *,
    location_id: uuid.UUID | None,
    actor: str | None,
    notes: str | None,
    request_id: str | None,
    clock: Clock,
) -> TransitionResult:
    product = await _load_for_update(db, product_id)

    if request_id:
        recorded = await find_request(db, request_id)
        if recorded is not None:
            if _matches_request(recorded, product.product_id, destination_column):
                logger.info("transition.replayed", product_id=str(product_id), request_id=request_id)
                return await _replay_request(db, recorded)
            logger.info("transition.denied", product_id=str(product_id), reason=DenialReason.DUPLICATE_REQUEST.value)
            return TransitionResult(
                ok=False,
                outcome="denied",
                error=ValidationError(
                    DenialReason.DUPLICATE_REQUEST,
                    f"Request {request_id} was already used for a different move",
                ),
            )

    kanban = await _get_kanban(db, product.kanban_id)

    decision = can_transition(kanban, product, destination_column, location_id)
    if decision.allowed and location_id is not None and not await _location_exists(db, location_id):
        decision_error = ValidationError(DenialReason.UNKNOWN_LOCATION, f"Location {location_id} does not exist")
    else:
        decision_error = decision.error

    if decision_error is not None:
        logger.info(
            "transition.denied",
            product_id=str(product_id),
            kanban_id=str(kanban.kanban_id),
            destination=destination_column,
            reason=decision_error.reason.value,
        )
        return TransitionResult(ok=False, outcome="denied", error=decision_error)

    target_location_id = location_id if location_id is not None else product.location_id
    if (
        destination_column == product.column_status
        and target_location_id == product.location_id
        and not decision.is_restore
    ):
        return TransitionResult(ok=True, outcome="noop", product=product)

    settings = get_settings()
    now = clock.now_utc()
    from_column = product.column_status
    from_location_id = product.location_id

    product.column_status = destination_column
    product.column_entered_at = now
    product.location_id = target_location_id
    product.updated_at = now
    if decision.is_restore:
        product.is_rejected = False
        product.rejection_reason = None
        product.rejected_at = None
    if destination_column == STORED_COLUMN and product.stock_level is None:
        product.stock_level = 0

    warning = None
    if kanban.kind == "order" and destination_column == settings.handoff_column:
        try:
            receive_kanban = await resolve_receive_kanban(db, kanban, product)
        except ResolutionError as exc:
            warning = exc
            logger.warning(
                "transfer.unresolved",
                product_id=str(product_id),
                kanban_id=str(kanban.kanban_id),
                candidates=[str(c) for c in exc.candidates],
            )
        else:
            return await _hand_off(
                db,
                origin=product,
                order_kanban=kanban,
                receive_kanban=receive_kanban,
                from_location_id=from_location_id,
                actor=actor,
                notes=notes,
                request_id=request_id,
                now=now,
            )

    await db.flush()
    log_id = await record_transfer(
        db,
        TransferLogEntry(
            product_id=product.product_id,
            from_kanban_id=kanban.kanban_id,
            to_kanban_id=kanban.kanban_id,
            from_column=from_column,
            to_column=destination_column,
            from_location_id=from_location_id,
            to_location_id=target_location_id,
            transfer_type="manual",
            notes=notes,
            transferred_by=actor,
            request_id=request_id,
            created_at=now,
        ),
    )
    return TransitionResult(ok=True, outcome="moved", product=product, log_id=log_id, warning=warning)


async def apply_transition(
    db: AsyncSession,
    product_id: uuid.UUID,
    destination_column: str,
    *,
    location_id: uuid.UUID | None = None,
    actor: str | None = None,
    notes: str | None = None,
    request_id: str | None = None,
    clock: Clock | None = None,
) -> TransitionResult:
    """
    Move an item to `destination_column`, handing it off when it enters the
    order board's hand-off column.

    Denials come back as a failed result with nothing mutated. Store failures
    roll back the whole move and raise PersistenceError.

    A repeated `request_id` for the same item and destination returns the
    recorded result without moving anything again. One recorded for a
    different move is denied with DuplicateRequest.
    """
    clock = clock or get_default_clock()
    attempts = max(1, get_settings().transition_max_retries)

    for attempt in range(1, attempts + 1):
        try:
            result = await _apply_once(
                db,
                product_id,
                destination_column,
                location_id=location_id,
                actor=actor,
                notes=notes,
                request_id=request_id,
                clock=clock,
            )
            # Denials and no-ops commit nothing but still release the row lock
            await db.commit()
            return result
        except StaleDataError:
            await db.rollback()
            logger.warning("transition.conflict", product_id=str(product_id), attempt=attempt)
        except DuplicateRequestError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("transition.persistence_failed", product_id=str(product_id), error=str(exc))
            raise PersistenceError(f"Could not move product {product_id}: {exc}") from exc

    raise ConcurrentTransitionError(f"Product {product_id} changed concurrently {attempts} times; giving up")


# ──────────────────────────────────────────────────────────────────────────
# Item lifecycle helpers
# ──────────────────────────────────────────────────────────────────────────


async def create_product(
    db: AsyncSession,
    kanban_id: uuid.UUID,
    fields: dict[str, Any],
    clock: Clock | None = None,
) -> Product:
    """Create an item in its board's first column."""
    kanban = await _get_kanban(db, kanban_id)
    now = (clock or get_default_clock()).now_utc()
    unknown = set(fields) - set(CREATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown product fields: {', '.join(sorted(unknown))}")

    product = Product(
        kanban_id=kanban.kanban_id,
        column_status=first_column(kanban.kind),
        column_entered_at=now,
        status="active",
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(product)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(f"Could not create product on kanban {kanban_id}: {exc}") from exc

    logger.info("product.created", product_id=str(product.product_id), kanban_id=str(kanban_id))
    return product


async def reject_product(
    db: AsyncSession,
    product_id: uuid.UUID,
    reason: str | None = None,
    clock: Clock | None = None,
) -> Product:
    """Flag an item rejected. It stays in its column until restored."""
    product = await _load_for_update(db, product_id)
    if product.status != "active":
        raise ValidationError(DenialReason.ITEM_CLOSED, "Transferred items cannot be rejected")

    now = (clock or get_default_clock()).now_utc()
    product.is_rejected = True
    product.rejection_reason = reason
    product.rejected_at = now
    product.updated_at = now
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(f"Could not reject product {product_id}: {exc}") from exc

    logger.info("product.rejected", product_id=str(product_id), reason=reason)
    return product


async def restore_product(
    db: AsyncSession,
    product_id: uuid.UUID,
    *,
    actor: str | None = None,
    clock: Clock | None = None,
) -> TransitionResult:
    """Move a rejected item back to its board's first column."""
    product = await db.get(Product, product_id)
    if product is None:
        raise ItemNotFoundError(product_id)
    kanban = await _get_kanban(db, product.kanban_id)
    if not product.is_rejected:
        return TransitionResult(
            ok=False,
            outcome="denied",
            error=ValidationError(DenialReason.NOT_REJECTED, "Only rejected items can be restored"),
        )
    return await apply_transition(
        db,
        product_id,
        first_column(kanban.kind),
        actor=actor,
        notes="Restored after rejection",
        clock=clock,
    )


async def update_product(
    db: AsyncSession,
    product_id: uuid.UUID,
    changes: dict[str, Any],
    clock: Clock | None = None,
) -> Product:
    """
    Edit an item's details in place.

    Never touches column_status, column_entered_at or status, so editing an
    item neither moves it nor restarts its threshold timer. Closed items are
    read-only, and an item in a location-required column keeps a location.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    location_id = changes.get("location_id")
    if location_id is not None and not await _location_exists(db, location_id):
        raise ValidationError(DenialReason.UNKNOWN_LOCATION, f"Location {location_id} does not exist")

    preferred_id = changes.get("preferred_receive_kanban_id")
    if preferred_id is not None:
        preferred = await db.get(Kanban, preferred_id)
        if preferred is None or preferred.kind != "receive":
            raise ValidationError(DenialReason.NOT_RECEIVE_BOARD, f"Kanban {preferred_id} is not a receive board")

    product = await _load_for_update(db, product_id)
    kanban = await _get_kanban(db, product.kanban_id)
    error = None
    if product.status != "active":
        error = ValidationError(DenialReason.ITEM_CLOSED, "Transferred items cannot be edited")
    elif (
        "location_id" in changes
        and location_id is None
        and product.column_status in columns_requiring_location(kanban.kind)
    ):
        error = ValidationError(
            DenialReason.MISSING_LOCATION,
            f"Items in '{product.column_status}' must keep a location",
        )
    if error is not None:
        # Nothing changed; commit only to release the row lock
        await db.commit()
        raise error

    for field, value in changes.items():
        setattr(product, field, value)
    product.updated_at = (clock or get_default_clock()).now_utc()
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(f"Could not update product {product_id}: {exc}") from exc

    logger.info("product.updated", product_id=str(product_id), fields=sorted(changes))
    return product
