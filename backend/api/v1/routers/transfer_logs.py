"""
Transfer Logs Router — read side of the audit ledger.

Entries are never edited or deleted through the API; the ledger is
append-only and written by board moves.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from core.config import get_settings
from db.models import Kanban, Product
from supply_chain.transfer_log import (
    TransferLogFilters,
    list_transfer_logs,
    transfer_history_for_product,
    transfer_stats,
)

router = APIRouter(
    prefix="/api/v1/transfer-logs",
    tags=["transfer-logs"],
    dependencies=[Depends(get_current_user)],
)

settings = get_settings()


# ─── Schemas ────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TransferLogResponse(_CamelModel):
    id: UUID
    product_id: UUID
    to_product_id: UUID | None
    from_kanban_id: UUID
    to_kanban_id: UUID
    from_column: str
    to_column: str
    from_location_id: UUID | None
    to_location_id: UUID | None
    transfer_type: str
    notes: str | None
    transferred_by: str | None
    created_at: datetime


class TransferTypeCounts(_CamelModel):
    automatic: int
    manual: int


class ActiveKanban(_CamelModel):
    kanban_id: UUID
    kanban_name: str | None
    transfer_count: int


class TransferStatsResponse(_CamelModel):
    total_transfers: int
    transfers_by_type: TransferTypeCounts
    active_kanbans: list[ActiveKanban]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[TransferLogResponse], response_model_by_alias=True)
async def get_transfer_logs(
    product_id: UUID | None = Query(None, alias="productId"),
    from_kanban_id: UUID | None = Query(None, alias="fromKanbanId"),
    to_kanban_id: UUID | None = Query(None, alias="toKanbanId"),
    transfer_type: Literal["automatic", "manual"] | None = Query(None, alias="transferType"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(settings.transfer_log_default_limit, ge=1, le=settings.transfer_log_max_limit),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Filtered ledger page, newest first."""
    filters = TransferLogFilters(
        product_id=product_id,
        from_kanban_id=from_kanban_id,
        to_kanban_id=to_kanban_id,
        transfer_type=transfer_type,
        start_date=start_date,
        end_date=end_date,
    )
    return await list_transfer_logs(db, filters, limit=limit, offset=offset)


@router.get("/product/{product_id}", response_model=list[TransferLogResponse], response_model_by_alias=True)
async def get_product_history(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Full journey of an item, including the board it was handed off from or to."""
    if not await db.get(Product, product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return await transfer_history_for_product(db, product_id)


@router.get("/kanban/{kanban_id}", response_model=list[TransferLogResponse], response_model_by_alias=True)
async def get_kanban_transfers(
    kanban_id: UUID,
    limit: int = Query(settings.transfer_log_default_limit, ge=1, le=settings.transfer_log_max_limit),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Entries where the board is the source or the destination."""
    if not await db.get(Kanban, kanban_id):
        raise HTTPException(status_code=404, detail="Kanban not found")
    return await list_transfer_logs(db, TransferLogFilters(kanban_id=kanban_id), limit=limit, offset=offset)


@router.get("/stats/overview", response_model=TransferStatsResponse, response_model_by_alias=True)
async def get_transfer_stats(
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_stats(db, start_date=start_date, end_date=end_date)
