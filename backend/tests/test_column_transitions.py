"""
Tests for the column transition validator.
"""

import uuid
from types import SimpleNamespace

import pytest

from supply_chain.columns import (
    ORDER_COLUMNS,
    RECEIVE_COLUMNS,
    can_transition,
    columns_for,
    columns_requiring_location,
    first_column,
)
from supply_chain.errors import DenialReason

ORDER = SimpleNamespace(kind="order")
RECEIVE = SimpleNamespace(kind="receive")


def _item(**overrides):
    fields = {
        "status": "active",
        "is_draft": False,
        "is_rejected": False,
        "location_id": None,
        "column_status": "New Request",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestColumnSets:
    def test_order_columns(self):
        assert columns_for("order") == ("New Request", "In Review", "Purchased")
        assert first_column("order") == "New Request"

    def test_receive_columns(self):
        assert columns_for("receive") == ("Purchased", "Received", "Stored")
        assert first_column("receive") == "Purchased"

    def test_only_stored_requires_location(self):
        assert columns_requiring_location("receive") == frozenset({"Stored"})
        assert columns_requiring_location("order") == frozenset()

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown kanban kind"):
            columns_for("archive")


class TestCanTransition:
    @pytest.mark.parametrize("column", ORDER_COLUMNS)
    def test_any_order_column_is_reachable(self, column):
        assert can_transition(ORDER, _item(), column).allowed

    def test_column_from_other_board_kind_is_invalid(self):
        decision = can_transition(ORDER, _item(), "Stored")
        assert not decision.allowed
        assert decision.reason == DenialReason.INVALID_COLUMN

    def test_misspelled_column_is_invalid(self):
        assert can_transition(RECEIVE, _item(column_status="Purchased"), "received").reason == DenialReason.INVALID_COLUMN

    def test_stored_without_location_is_denied(self):
        decision = can_transition(RECEIVE, _item(column_status="Received"), "Stored")
        assert decision.reason == DenialReason.MISSING_LOCATION
        assert decision.error.to_dict()["reason"] == "MissingLocation"

    def test_stored_with_requested_location(self):
        assert can_transition(RECEIVE, _item(column_status="Received"), "Stored", uuid.uuid4()).allowed

    def test_stored_with_existing_item_location(self):
        item = _item(column_status="Received", location_id=uuid.uuid4())
        assert can_transition(RECEIVE, item, "Stored").allowed

    @pytest.mark.parametrize("column", [c for c in RECEIVE_COLUMNS if c != "Stored"])
    def test_other_receive_columns_need_no_location(self, column):
        assert can_transition(RECEIVE, _item(column_status="Stored"), column).allowed

    def test_transferred_item_is_closed(self):
        decision = can_transition(ORDER, _item(status="transferred", column_status="Purchased"), "In Review")
        assert decision.reason == DenialReason.ITEM_CLOSED

    def test_draft_cannot_move(self):
        assert can_transition(ORDER, _item(is_draft=True), "In Review").reason == DenialReason.ITEM_IS_DRAFT

    def test_rejected_item_only_restores_to_first_column(self):
        item = _item(is_rejected=True, column_status="In Review")
        assert can_transition(ORDER, item, "Purchased").reason == DenialReason.ITEM_REJECTED

        decision = can_transition(ORDER, item, "New Request")
        assert decision.allowed
        assert decision.is_restore

    def test_plain_move_is_not_a_restore(self):
        decision = can_transition(ORDER, _item(column_status="In Review"), "New Request")
        assert decision.allowed
        assert not decision.is_restore
        assert decision.reason is None

    def test_invalid_column_checked_before_item_flags(self):
        item = _item(is_draft=True, is_rejected=True)
        assert can_transition(ORDER, item, "Nowhere").reason == DenialReason.INVALID_COLUMN
