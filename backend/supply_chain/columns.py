"""
Column Transition Validator — which board moves are legal.

Board kinds own a fixed, ordered column set:
  order:   New Request → In Review → Purchased
  receive: Purchased → Received → Stored

Any legal column may be entered from any other (cards are dragged freely),
subject to item flags and the location requirement on Stored. Validation is
pure: callers mutate only after receiving an allowed decision.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from supply_chain.errors import DenialReason, ValidationError

ORDER_COLUMNS = ("New Request", "In Review", "Purchased")
RECEIVE_COLUMNS = ("Purchased", "Received", "Stored")

STORED_COLUMN = "Stored"

COLUMNS_BY_KIND = {
    "order": ORDER_COLUMNS,
    "receive": RECEIVE_COLUMNS,
}

_LOCATION_REQUIRED = {
    "order": frozenset(),
    "receive": frozenset({STORED_COLUMN}),
}


def columns_for(kind: str) -> tuple[str, ...]:
    try:
        return COLUMNS_BY_KIND[kind]
    except KeyError:
        raise ValueError(f"Unknown kanban kind '{kind}'") from None


def first_column(kind: str) -> str:
    return columns_for(kind)[0]


def columns_requiring_location(kind: str) -> frozenset[str]:
    """Columns that may only be entered with a destination location."""
    columns_for(kind)
    return _LOCATION_REQUIRED[kind]


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    error: ValidationError | None = None
    is_restore: bool = False

    @property
    def reason(self) -> DenialReason | None:
        return self.error.reason if self.error else None


def _deny(reason: DenialReason, message: str) -> TransitionDecision:
    return TransitionDecision(allowed=False, error=ValidationError(reason, message))


def is_restore(kind: str, product: Any, destination_column: str) -> bool:
    """A rejected item moving back into its board's first column."""
    return bool(product.is_rejected) and destination_column == first_column(kind)


def can_transition(
    kanban: Any,
    product: Any,
    destination_column: str,
    location_id: uuid.UUID | None = None,
) -> TransitionDecision:
    """
    Decide whether `product` may move to `destination_column` on `kanban`.

    `location_id` is the location carried on the request; the item's current
    location counts when the request carries none.
    """
    legal = columns_for(kanban.kind)
    if destination_column not in legal:
        return _deny(
            DenialReason.INVALID_COLUMN,
            f"'{destination_column}' is not a column of {kanban.kind} boards "
            f"(expected one of: {', '.join(legal)})",
        )

    if product.status != "active":
        return _deny(DenialReason.ITEM_CLOSED, "Item was transferred and is closed on this board")

    if product.is_draft:
        return _deny(DenialReason.ITEM_IS_DRAFT, "Draft items cannot change column until submitted")

    restore = is_restore(kanban.kind, product, destination_column)
    if product.is_rejected and not restore:
        return _deny(
            DenialReason.ITEM_REJECTED,
            f"Rejected items can only be restored to '{first_column(kanban.kind)}'",
        )

    if destination_column in columns_requiring_location(kanban.kind):
        if (location_id or product.location_id) is None:
            return _deny(
                DenialReason.MISSING_LOCATION,
                f"A location is required to move an item to '{destination_column}'",
            )

    return TransitionDecision(allowed=True, is_restore=restore)
