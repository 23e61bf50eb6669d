"""
Tests for order status transitions.
"""

import pytest

from errors import InvalidTransition
from order_state import (
    OrderStatus,
    OrderType,
    Fulfillment,
    Track,
    TransitionKind,
    OrderStateMachine,
    TERMINAL_STATUSES,
    initial_status,
    reinstatable_statuses,
    track_for,
)


def machine(order_type, status, fulfillment=None):
    return OrderStateMachine("ord-1", order_type, status, fulfillment)


class TestTracks:

    @pytest.mark.parametrize("order_type, fulfillment, expected", [
        (OrderType.DINE_IN, None, Track.PICKUP),
        (OrderType.TAKEAWAY, None, Track.PICKUP),
        (OrderType.DELIVERY, None, Track.DELIVERY),
        (OrderType.PRE_ORDER, Fulfillment.PICKUP, Track.PICKUP),
        (OrderType.PRE_ORDER, Fulfillment.DELIVERY, Track.DELIVERY),
    ])
    def test_track_for(self, order_type, fulfillment, expected):
        assert track_for(order_type, fulfillment) == expected

    def test_initial_status(self):
        assert initial_status(OrderType.PRE_ORDER) == OrderStatus.PRE_ORDER_PENDING
        assert initial_status(OrderType.DELIVERY) == OrderStatus.PENDING
        assert initial_status(OrderType.DINE_IN) == OrderStatus.PENDING


class TestForwardPaths:

    def test_pickup_path(self):
        sm = machine(OrderType.TAKEAWAY, OrderStatus.PENDING)
        for status in (OrderStatus.ACCEPTED, OrderStatus.READY, OrderStatus.COMPLETED):
            assert sm.transition(status) == TransitionKind.ADVANCE
        assert sm.current_status == OrderStatus.COMPLETED
        assert sm.is_terminal()

    def test_delivery_path(self):
        sm = machine(OrderType.DELIVERY, OrderStatus.PENDING)
        for status in (OrderStatus.ACCEPTED, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
            sm.transition(status)
        assert sm.current_status == OrderStatus.DELIVERED

    def test_pre_order_delivery_path(self):
        sm = machine(OrderType.PRE_ORDER, OrderStatus.PRE_ORDER_PENDING, Fulfillment.DELIVERY)
        for status in (OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
            sm.transition(status)
        assert sm.current_status == OrderStatus.DELIVERED

    def test_delivery_order_cannot_become_ready(self):
        sm = machine(OrderType.DELIVERY, OrderStatus.ACCEPTED)
        with pytest.raises(InvalidTransition):
            sm.transition(OrderStatus.READY)

    def test_pickup_order_cannot_go_in_transit(self):
        sm = machine(OrderType.DINE_IN, OrderStatus.ACCEPTED)
        with pytest.raises(InvalidTransition):
            sm.transition(OrderStatus.IN_TRANSIT)

    def test_cannot_skip_steps(self):
        sm = machine(OrderType.TAKEAWAY, OrderStatus.PENDING)
        assert not sm.can_transition_to(OrderStatus.COMPLETED)
        assert sm.current_status == OrderStatus.PENDING

    def test_cannot_go_backwards(self):
        sm = machine(OrderType.TAKEAWAY, OrderStatus.READY)
        assert not sm.can_transition_to(OrderStatus.ACCEPTED)

    def test_next_statuses(self):
        assert machine(OrderType.DELIVERY, OrderStatus.ACCEPTED).next_statuses() == [OrderStatus.IN_TRANSIT]
        assert machine(OrderType.DELIVERY, OrderStatus.DELIVERED).next_statuses() == []


class TestDenyAndCancel:

    @pytest.mark.parametrize("status", [
        OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.READY,
    ])
    def test_deny_from_any_non_terminal(self, status):
        assert machine(OrderType.TAKEAWAY, status).classify(OrderStatus.DENIED) == TransitionKind.DENY

    @pytest.mark.parametrize("status", [
        OrderStatus.PRE_ORDER_PENDING, OrderStatus.PENDING, OrderStatus.ACCEPTED,
        OrderStatus.IN_TRANSIT, OrderStatus.DENIED,
    ])
    def test_cancel_from_any_non_terminal(self, status):
        sm = machine(OrderType.PRE_ORDER, status, Fulfillment.DELIVERY)
        assert sm.classify(OrderStatus.CANCELLED) == TransitionKind.CANCEL


class TestTerminalImmutability:

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_every_transition_out_of_terminal_is_rejected(self, terminal, target):
        sm = machine(OrderType.DELIVERY, terminal)
        with pytest.raises(InvalidTransition) as exc_info:
            sm.transition(target)
        assert "finalized" in str(exc_info.value)
        assert sm.current_status == terminal


class TestDeniedReversibility:
    """Denied is deliberately not terminal: the owner may reinstate it."""

    def test_reinstatable_statuses_on_pickup_track(self):
        assert reinstatable_statuses(OrderType.TAKEAWAY) == [
            OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.READY,
        ]

    def test_pre_orders_may_return_to_pre_order_pending(self):
        statuses = reinstatable_statuses(OrderType.PRE_ORDER, Fulfillment.DELIVERY)
        assert statuses == [
            OrderStatus.PRE_ORDER_PENDING, OrderStatus.PENDING,
            OrderStatus.ACCEPTED, OrderStatus.IN_TRANSIT,
        ]

    @pytest.mark.parametrize("target", [OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.IN_TRANSIT])
    def test_denied_delivery_order_reinstated(self, target):
        sm = machine(OrderType.DELIVERY, OrderStatus.DENIED)
        assert sm.transition(target) == TransitionKind.REINSTATE
        assert sm.current_status == target

    def test_denied_cannot_jump_to_terminal_completion(self):
        sm = machine(OrderType.TAKEAWAY, OrderStatus.DENIED)
        with pytest.raises(InvalidTransition):
            sm.transition(OrderStatus.COMPLETED)

    def test_denied_cannot_cross_tracks(self):
        sm = machine(OrderType.DELIVERY, OrderStatus.DENIED)
        with pytest.raises(InvalidTransition):
            sm.transition(OrderStatus.READY)


def test_same_status_is_rejected_by_machine():
    sm = machine(OrderType.TAKEAWAY, OrderStatus.PENDING)
    with pytest.raises(InvalidTransition):
        sm.transition(OrderStatus.PENDING)


def test_labels():
    assert OrderStatus.ACCEPTED.label == "Preparing"
    assert OrderStatus.PRE_ORDER_PENDING.label == "Awaiting Restaurant Confirmation"
