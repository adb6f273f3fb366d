"""
Board workflow error taxonomy.

  ValidationError   : illegal move; surfaced to the caller, never retried
  ResolutionError   : no receive board to hand off to; non-fatal warning
  PersistenceError  : store write failed; the whole transition rolls back
"""

import uuid
from enum import Enum


class DenialReason(str, Enum):
    """Why a column transition was refused."""

    INVALID_COLUMN = "InvalidColumn"
    MISSING_LOCATION = "MissingLocation"
    UNKNOWN_LOCATION = "UnknownLocation"
    ITEM_REJECTED = "ItemRejected"
    ITEM_IS_DRAFT = "ItemIsDraft"
    ITEM_CLOSED = "ItemClosed"
    NOT_REJECTED = "NotRejected"
    DUPLICATE_REQUEST = "DuplicateRequest"
    NOT_RECEIVE_BOARD = "NotReceiveBoard"


class KanbanError(Exception):
    """Base class for board workflow errors."""


class ValidationError(KanbanError):
    def __init__(self, reason: DenialReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {"reason": self.reason.value, "message": self.message}


class ResolutionError(KanbanError):
    """No linked receive board could be resolved for a hand-off."""

    def __init__(self, kanban_id: uuid.UUID, candidates: list[uuid.UUID]):
        self.kanban_id = kanban_id
        self.candidates = candidates
        super().__init__(
            f"No receive board resolved for order board {kanban_id} "
            f"(tried {', '.join(str(c) for c in candidates) or 'nothing'})"
        )


class PersistenceError(KanbanError):
    """A store write failed mid-transition; nothing was committed."""


class ConcurrentTransitionError(PersistenceError):
    """The item kept changing underneath us after every retry."""


class DuplicateRequestError(KanbanError):
    """A request_id was already recorded for a different move."""

    def __init__(self, request_id: str, log_id: uuid.UUID):
        self.request_id = request_id
        self.log_id = log_id
        super().__init__(f"Request {request_id} was already recorded as transfer {log_id}")


class ItemNotFoundError(KanbanError):
    def __init__(self, product_id: uuid.UUID):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class KanbanNotFoundError(KanbanError):
    def __init__(self, kanban_id: uuid.UUID):
        self.kanban_id = kanban_id
        super().__init__(f"Kanban {kanban_id} not found")
