"""
Products Router — items on boards, column moves, reject/restore.

Moves go through supply_chain.transfers so that validation, hand-off and
the audit entry happen as one unit of work.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import (
    ThresholdRule,
    coerce_rules,
    format_time_duration,
    get_applied_threshold,
    time_in_column_ms,
)
from api.deps import get_clock, get_current_user, get_db
from core.clock import Clock
from core.security import actor_from_user
from db.models import Kanban, Product
from supply_chain.errors import (
    ConcurrentTransitionError,
    DuplicateRequestError,
    ItemNotFoundError,
    KanbanNotFoundError,
    PersistenceError,
    ValidationError,
)
from supply_chain.transfers import (
    TransitionResult,
    apply_transition,
    create_product,
    reject_product,
    restore_product,
    update_product,
)

router = APIRouter(prefix="/api/v1/products", tags=["products"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductCreate(BaseModel):
    kanban_id: UUID
    name: str = Field(..., min_length=1)
    sku: str | None = Field(None, max_length=100)
    quantity: int | None = Field(None, ge=0)
    unit: str | None = None
    supplier: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    priority: str | None = None
    unit_price: float | None = Field(None, ge=0)
    location_id: UUID | None = None
    assigned_person_id: UUID | None = None
    preferred_receive_kanban_id: UUID | None = None
    notes: str | None = None
    is_draft: bool = False


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    sku: str | None = Field(None, max_length=100)
    quantity: int | None = Field(None, ge=0)
    unit: str | None = None
    supplier: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    priority: str | None = None
    unit_price: float | None = Field(None, ge=0)
    location_id: UUID | None = None
    assigned_person_id: UUID | None = None
    preferred_receive_kanban_id: UUID | None = None
    stock_level: int | None = Field(None, ge=0)
    notes: str | None = None
    is_draft: bool | None = None

    @field_validator("name", "is_draft")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class ProductResponse(BaseModel):
    product_id: UUID
    kanban_id: UUID
    column_status: str
    column_entered_at: datetime
    status: str
    name: str
    sku: str | None
    quantity: int | None
    unit: str | None
    supplier: str | None
    category: str | None
    tags: list[str] | None
    priority: str | None
    unit_price: Decimal | None
    location_id: UUID | None
    assigned_person_id: UUID | None
    preferred_receive_kanban_id: UUID | None
    stock_level: int | None
    notes: str | None
    is_draft: bool
    is_rejected: bool
    rejection_reason: str | None
    rejected_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MoveRequest(BaseModel):
    column_status: str = Field(..., min_length=1)
    location_id: UUID | None = None
    notes: str | None = None
    request_id: str | None = Field(None, max_length=128)


class RejectRequest(BaseModel):
    reason: str | None = None


class TransitionResponse(BaseModel):
    outcome: str
    product: ProductResponse
    origin_product_id: UUID | None = None
    log_id: UUID | None = None
    warning: str | None = None


class ThresholdStatusResponse(BaseModel):
    product_id: UUID
    column_status: str
    time_in_column_ms: float | None
    time_in_column: str | None
    applied_rule: ThresholdRule | None


# ─── Helpers ────────────────────────────────────────────────────────────────


def _transition_response(result: TransitionResult) -> TransitionResponse:
    if not result.ok:
        raise HTTPException(status_code=422, detail=result.error.to_dict())
    return TransitionResponse(
        outcome=result.outcome,
        product=ProductResponse.model_validate(result.product),
        origin_product_id=result.origin_product.product_id if result.origin_product else None,
        log_id=result.log_id,
        warning=str(result.warning) if result.warning else None,
    )


def _raise_for_store_error(exc: Exception) -> None:
    if isinstance(exc, (ItemNotFoundError, KanbanNotFoundError)):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConcurrentTransitionError, DuplicateRequestError)):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceError):
        raise HTTPException(status_code=503, detail=str(exc))
    raise exc


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ProductResponse, status_code=201)
async def create_board_product(
    body: ProductCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    """Create an item in the first column of its board."""
    fields: dict[str, Any] = body.model_dump(exclude={"kanban_id"}, exclude_none=True)
    try:
        product = await create_product(db, body.kanban_id, fields, clock=clock)
    except (KanbanNotFoundError, PersistenceError) as exc:
        _raise_for_store_error(exc)
    return product


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.put("/{product_id}", response_model=ProductResponse)
async def update_board_product(
    product_id: UUID,
    body: ProductUpdate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    """
    Edit an item's details. Columns change only through /move, so the item
    keeps its column and its time-in-column.
    """
    try:
        return await update_product(db, product_id, body.model_dump(exclude_unset=True), clock=clock)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict())
    except (ItemNotFoundError, KanbanNotFoundError, PersistenceError) as exc:
        _raise_for_store_error(exc)


@router.put("/{product_id}/move", response_model=TransitionResponse)
async def move_product(
    product_id: UUID,
    body: MoveRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    """
    Move an item to another column of its board.

    Moving an order-board item to Purchased closes it and opens a copy on the
    linked receive board; the response then carries the new item. A refused
    move returns 422 with a machine-readable `reason`.
    """
    try:
        result = await apply_transition(
            db,
            product_id,
            body.column_status,
            location_id=body.location_id,
            actor=actor_from_user(user),
            notes=body.notes,
            request_id=body.request_id,
            clock=clock,
        )
    except (ItemNotFoundError, KanbanNotFoundError, PersistenceError, DuplicateRequestError) as exc:
        _raise_for_store_error(exc)
    return _transition_response(result)


@router.post("/{product_id}/reject", response_model=ProductResponse)
async def reject_board_product(
    product_id: UUID,
    body: RejectRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    try:
        return await reject_product(db, product_id, body.reason, clock=clock)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict())
    except (ItemNotFoundError, PersistenceError) as exc:
        _raise_for_store_error(exc)


@router.post("/{product_id}/restore", response_model=TransitionResponse)
async def restore_board_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    """Return a rejected item to its board's first column."""
    try:
        result = await restore_product(db, product_id, actor=actor_from_user(user), clock=clock)
    except (ItemNotFoundError, KanbanNotFoundError, PersistenceError) as exc:
        _raise_for_store_error(exc)
    return _transition_response(result)


@router.get("/{product_id}/threshold", response_model=ThresholdStatusResponse)
async def get_product_threshold(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: dict = Depends(get_current_user),
):
    """Time in the current column and the threshold rule that applies now."""
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    kanban = await db.get(Kanban, product.kanban_id)

    elapsed = time_in_column_ms(product.column_entered_at, clock.now_utc())
    return ThresholdStatusResponse(
        product_id=product.product_id,
        column_status=product.column_status,
        time_in_column_ms=elapsed,
        time_in_column=format_time_duration(elapsed) if elapsed is not None else None,
        applied_rule=get_applied_threshold(product, coerce_rules(kanban.threshold_rules), clock=clock),
    )
