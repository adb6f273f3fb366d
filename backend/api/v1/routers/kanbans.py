"""
Kanbans Router — boards, hand-off links, and threshold rule configuration.

Order boards hand items off to receive boards. The default target is
`linked_kanban_id`; additional receive boards can be linked so items may
pick one through `preferred_receive_kanban_id`.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import (
    ThresholdRule,
    coerce_rules,
    format_threshold_rule,
    format_time_duration,
    get_applied_threshold,
    time_in_column_ms,
)
from api.deps import get_clock, get_current_user, get_db
from core.clock import Clock
from core.config import get_settings
from db.models import Kanban, KanbanLink, Product, utcnow
from supply_chain.columns import columns_for, columns_requiring_location

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/v1/kanbans",
    tags=["kanbans"],
    dependencies=[Depends(get_current_user)],
)


# ─── Schemas ────────────────────────────────────────────────────────────────


class KanbanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    kind: Literal["order", "receive"]
    description: str | None = None
    threshold_rules: list[ThresholdRule] = []


class KanbanUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    linked_kanban_id: UUID | None = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v):
        if v is None:
            raise ValueError("name may be omitted but not null")
        return v


class KanbanResponse(BaseModel):
    kanban_id: UUID
    name: str
    description: str | None
    kind: str
    linked_kanban_id: UUID | None
    columns: list[str]
    location_required_columns: list[str]
    threshold_rules: list[ThresholdRule]
    created_at: datetime
    updated_at: datetime


class KanbanLinkCreate(BaseModel):
    receive_kanban_id: UUID


class LinkedKanbanResponse(BaseModel):
    link_id: UUID
    kanban_id: UUID
    name: str
    is_default: bool


class ProductThresholdStatus(BaseModel):
    product_id: UUID
    name: str
    column_status: str
    column_entered_at: datetime
    time_in_column_ms: float | None
    time_in_column: str | None
    applied_rule: ThresholdRule | None
    applied_rule_label: str | None


# ─── Helpers ────────────────────────────────────────────────────────────────


def _serialize_kanban(kanban: Kanban) -> KanbanResponse:
    return KanbanResponse(
        kanban_id=kanban.kanban_id,
        name=kanban.name,
        description=kanban.description,
        kind=kanban.kind,
        linked_kanban_id=kanban.linked_kanban_id,
        columns=list(columns_for(kanban.kind)),
        location_required_columns=sorted(columns_requiring_location(kanban.kind)),
        threshold_rules=coerce_rules(kanban.threshold_rules),
        created_at=kanban.created_at,
        updated_at=kanban.updated_at,
    )


async def _get_kanban_or_404(db: AsyncSession, kanban_id: UUID) -> Kanban:
    kanban = await db.get(Kanban, kanban_id)
    if not kanban:
        raise HTTPException(status_code=404, detail="Kanban not found")
    return kanban


async def _linked_kanbans(db: AsyncSession, order_kanban: Kanban) -> list[LinkedKanbanResponse]:
    result = await db.execute(
        select(KanbanLink, Kanban)
        .join(Kanban, Kanban.kanban_id == KanbanLink.receive_kanban_id)
        .where(KanbanLink.order_kanban_id == order_kanban.kanban_id)
        .order_by(KanbanLink.created_at)
    )
    return [
        LinkedKanbanResponse(
            link_id=link.link_id,
            kanban_id=receive.kanban_id,
            name=receive.name,
            is_default=receive.kanban_id == order_kanban.linked_kanban_id,
        )
        for link, receive in result.all()
    ]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[KanbanResponse])
async def list_kanbans(
    kind: Literal["order", "receive"] | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List boards, optionally filtered by kind."""
    query = select(Kanban)
    if kind:
        query = query.where(Kanban.kind == kind)
    query = query.order_by(Kanban.created_at).offset(skip).limit(limit)
    result = await db.execute(query)
    return [_serialize_kanban(k) for k in result.scalars().all()]


@router.get("/{kanban_id}", response_model=KanbanResponse)
async def get_kanban(
    kanban_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    return _serialize_kanban(await _get_kanban_or_404(db, kanban_id))


@router.post("/", response_model=KanbanResponse, status_code=201)
async def create_kanban(
    body: KanbanCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a board. Its column set is fixed by its kind."""
    kanban = Kanban(
        name=body.name,
        kind=body.kind,
        description=body.description,
        threshold_rules=[rule.model_dump() for rule in body.threshold_rules],
    )
    db.add(kanban)
    await db.commit()
    await db.refresh(kanban)
    logger.info("kanban.created", kanban_id=str(kanban.kanban_id), kind=kanban.kind)
    return _serialize_kanban(kanban)


@router.patch("/{kanban_id}", response_model=KanbanResponse)
async def update_kanban(
    kanban_id: UUID,
    update: KanbanUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Rename a board or change its default link.

    A link must point at a board of the opposite kind. The target board gets
    the reciprocal link when it has none.
    """
    kanban = await _get_kanban_or_404(db, kanban_id)
    changes = update.model_dump(exclude_unset=True)

    if changes.get("linked_kanban_id") is not None:
        target = await db.get(Kanban, changes["linked_kanban_id"])
        if not target:
            raise HTTPException(status_code=404, detail="Linked kanban not found")
        if target.kind == kanban.kind:
            raise HTTPException(
                status_code=400,
                detail=f"A {kanban.kind} board can only link to a board of the other kind",
            )
        if target.linked_kanban_id is None:
            target.linked_kanban_id = kanban.kanban_id

    for field, value in changes.items():
        setattr(kanban, field, value)
    kanban.updated_at = utcnow()

    await db.commit()
    await db.refresh(kanban)
    return _serialize_kanban(kanban)


@router.put("/{kanban_id}/threshold-rules", response_model=KanbanResponse)
async def replace_threshold_rules(
    kanban_id: UUID,
    rules: list[ThresholdRule],
    db: AsyncSession = Depends(get_db),
):
    """Replace the board's threshold rules. Items already in a column pick them up immediately."""
    kanban = await _get_kanban_or_404(db, kanban_id)
    kanban.threshold_rules = [
        {**rule.model_dump(), "id": rule.id or f"rule-{index + 1}"} for index, rule in enumerate(rules)
    ]
    kanban.updated_at = utcnow()
    await db.commit()
    await db.refresh(kanban)
    return _serialize_kanban(kanban)


@router.get("/{kanban_id}/thresholds", response_model=list[ProductThresholdStatus])
async def get_threshold_status(
    kanban_id: UUID,
    column: str | None = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Applied threshold rule for every active item on the board."""
    kanban = await _get_kanban_or_404(db, kanban_id)
    query = select(Product).where(
        Product.kanban_id == kanban_id,
        Product.status == "active",
        Product.is_draft.is_(False),
    )
    if column:
        query = query.where(Product.column_status == column)
    result = await db.execute(query.order_by(Product.column_entered_at))

    rules = coerce_rules(kanban.threshold_rules)
    now = clock.now_utc()
    statuses = []
    for product in result.scalars().all():
        elapsed = time_in_column_ms(product.column_entered_at, now)
        applied = get_applied_threshold(product, rules, clock=clock)
        statuses.append(
            ProductThresholdStatus(
                product_id=product.product_id,
                name=product.name,
                column_status=product.column_status,
                column_entered_at=product.column_entered_at,
                time_in_column_ms=elapsed,
                time_in_column=format_time_duration(elapsed) if elapsed is not None else None,
                applied_rule=applied,
                applied_rule_label=format_threshold_rule(applied) if applied else None,
            )
        )
    return statuses


# ─── Hand-off links ─────────────────────────────────────────────────────────


@router.get("/{kanban_id}/links", response_model=list[LinkedKanbanResponse])
async def list_links(
    kanban_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    kanban = await _get_kanban_or_404(db, kanban_id)
    if kanban.kind != "order":
        raise HTTPException(status_code=400, detail="Only order kanbans can have links")
    return await _linked_kanbans(db, kanban)


@router.post("/{kanban_id}/links", response_model=list[LinkedKanbanResponse], status_code=201)
async def add_link(
    kanban_id: UUID,
    body: KanbanLinkCreate,
    db: AsyncSession = Depends(get_db),
):
    """Link a receive board. The first link becomes the default hand-off target."""
    settings = get_settings()
    kanban = await _get_kanban_or_404(db, kanban_id)
    if kanban.kind != "order":
        raise HTTPException(status_code=400, detail="Only order kanbans can have links")

    receive = await db.get(Kanban, body.receive_kanban_id)
    if not receive:
        raise HTTPException(status_code=404, detail="Receive kanban not found")
    if receive.kind != "receive":
        raise HTTPException(status_code=400, detail="Can only link to receive kanbans")

    existing = await db.execute(
        select(func.count(KanbanLink.link_id)).where(KanbanLink.order_kanban_id == kanban_id)
    )
    if (existing.scalar() or 0) >= settings.max_linked_receive_kanbans:
        raise HTTPException(
            status_code=400,
            detail=f"Maximum of {settings.max_linked_receive_kanbans} linked kanbans allowed",
        )

    duplicate = await db.execute(
        select(KanbanLink).where(
            KanbanLink.order_kanban_id == kanban_id,
            KanbanLink.receive_kanban_id == body.receive_kanban_id,
        )
    )
    if duplicate.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Link already exists")

    db.add(KanbanLink(order_kanban_id=kanban_id, receive_kanban_id=body.receive_kanban_id))
    if kanban.linked_kanban_id is None:
        kanban.linked_kanban_id = receive.kanban_id
    await db.commit()

    logger.info("kanban.linked", order_kanban=str(kanban_id), receive_kanban=str(receive.kanban_id))
    return await _linked_kanbans(db, kanban)


@router.delete("/{kanban_id}/links/{link_id}", response_model=list[LinkedKanbanResponse])
async def remove_link(
    kanban_id: UUID,
    link_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Unlink a receive board. Removing the default falls back to the oldest remaining link."""
    kanban = await _get_kanban_or_404(db, kanban_id)
    link = await db.get(KanbanLink, link_id)
    if not link or link.order_kanban_id != kanban_id:
        raise HTTPException(status_code=404, detail="Link not found")

    removed_receive_id = link.receive_kanban_id
    await db.delete(link)
    await db.flush()

    if kanban.linked_kanban_id == removed_receive_id:
        remaining = await db.execute(
            select(KanbanLink.receive_kanban_id)
            .where(KanbanLink.order_kanban_id == kanban_id)
            .order_by(KanbanLink.created_at)
            .limit(1)
        )
        kanban.linked_kanban_id = remaining.scalar_one_or_none()

    await db.commit()
    return await _linked_kanbans(db, kanban)
