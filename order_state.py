"""
Order State Machine
===================
Formal status transitions for the order lifecycle.

State flow (pickup track: dine-in, takeaway, pre-order pickup):
    [pre-order-pending ->] pending -> accepted -> ready -> completed

State flow (delivery track: delivery, pre-order delivery):
    [pre-order-pending ->] pending -> accepted -> in-transit -> delivered

Any non-terminal status may move to denied (deny action) or cancelled
(cancel action). A denied order may be reinstated by the owner into any
non-terminal status on its track.

Terminal statuses (completed, delivered, cancelled) are frozen.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple
from datetime import datetime, timezone

from prometheus_client import Counter

from errors import InvalidTransition

logger = logging.getLogger(__name__)


# ============================================================================
# METRICS
# ============================================================================

order_state_transitions = Counter(
    'order_state_transitions_total',
    'Order status transitions',
    ['from_status', 'to_status']
)
order_invalid_transitions = Counter(
    'order_invalid_transitions_total',
    'Rejected order status transitions',
    ['from_status', 'to_status']
)


# ============================================================================
# STATES
# ============================================================================

class OrderStatus(Enum):
    """Order lifecycle statuses."""
    PRE_ORDER_PENDING = "pre-order-pending"  # Awaiting owner acknowledgement
    PENDING = "pending"
    ACCEPTED = "accepted"                    # Being prepared
    READY = "ready"                          # Ready for pickup
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DENIED = "denied"                        # Reversible by owner
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """Human-readable label."""
        return STATUS_LABELS[self]

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class OrderType(Enum):
    DINE_IN = "dine-in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"
    PRE_ORDER = "pre-order"


class Fulfillment(Enum):
    """Pre-order fulfillment method."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Track(Enum):
    """Fulfillment track an order type resolves to."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class TransitionKind(Enum):
    ADVANCE = "advance"      # Next step on the track
    DENY = "deny"
    CANCEL = "cancel"
    REINSTATE = "reinstate"  # Owner override out of denied


TERMINAL_STATUSES: Set[OrderStatus] = {
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
    OrderStatus.DELIVERED,
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PRE_ORDER_PENDING: "Awaiting Restaurant Confirmation",
    OrderStatus.PENDING: "Pending",
    OrderStatus.ACCEPTED: "Preparing",
    OrderStatus.READY: "Ready",
    OrderStatus.IN_TRANSIT: "In Transit",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.DENIED: "Denied",
    OrderStatus.CANCELLED: "Cancelled",
}

# Forward steps, keyed by (track, current status)
FORWARD_TRANSITIONS: Dict[Track, Dict[OrderStatus, Set[OrderStatus]]] = {
    Track.PICKUP: {
        OrderStatus.PRE_ORDER_PENDING: {OrderStatus.PENDING},
        OrderStatus.PENDING: {OrderStatus.ACCEPTED},
        OrderStatus.ACCEPTED: {OrderStatus.READY},
        OrderStatus.READY: {OrderStatus.COMPLETED},
        OrderStatus.DENIED: set(),
    },
    Track.DELIVERY: {
        OrderStatus.PRE_ORDER_PENDING: {OrderStatus.PENDING},
        OrderStatus.PENDING: {OrderStatus.ACCEPTED},
        OrderStatus.ACCEPTED: {OrderStatus.IN_TRANSIT},
        OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED},
        OrderStatus.DENIED: set(),
    },
}

# Non-terminal statuses of each track, in lifecycle order
TRACK_STATUSES: Dict[Track, Tuple[OrderStatus, ...]] = {
    Track.PICKUP: (
        OrderStatus.PRE_ORDER_PENDING,
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.READY,
    ),
    Track.DELIVERY: (
        OrderStatus.PRE_ORDER_PENDING,
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.IN_TRANSIT,
    ),
}


def track_for(order_type: OrderType, fulfillment: Optional[Fulfillment] = None) -> Track:
    """Resolve the fulfillment track for an order type."""
    if order_type == OrderType.DELIVERY:
        return Track.DELIVERY
    if order_type == OrderType.PRE_ORDER and fulfillment == Fulfillment.DELIVERY:
        return Track.DELIVERY
    return Track.PICKUP


def initial_status(order_type: OrderType) -> OrderStatus:
    """Status a newly placed order starts in."""
    if order_type == OrderType.PRE_ORDER:
        return OrderStatus.PRE_ORDER_PENDING
    return OrderStatus.PENDING


def reinstatable_statuses(order_type: OrderType, fulfillment: Optional[Fulfillment] = None) -> List[OrderStatus]:
    """Statuses a denied order may be moved back into."""
    statuses = TRACK_STATUSES[track_for(order_type, fulfillment)]
    if order_type != OrderType.PRE_ORDER:
        statuses = tuple(s for s in statuses if s != OrderStatus.PRE_ORDER_PENDING)
    return list(statuses)


class OrderStateMachine:
    """
    Validates and applies status transitions for a single order.

    Enforces:
    - Terminal statuses are frozen
    - Type-specific forward paths
    - Deny/cancel from any non-terminal status
    - Reinstating a denied order onto its own track
    """

    def __init__(
        self,
        order_id: str,
        order_type: OrderType,
        current_status: OrderStatus,
        fulfillment: Optional[Fulfillment] = None
    ):
        self.order_id = order_id
        self.order_type = order_type
        self.fulfillment = fulfillment
        self.track = track_for(order_type, fulfillment)
        self._current_status = current_status
        self._history: List[Tuple[OrderStatus, datetime]] = [
            (current_status, datetime.now(timezone.utc))
        ]

    @property
    def current_status(self) -> OrderStatus:
        return self._current_status

    def is_terminal(self) -> bool:
        return self._current_status.is_terminal()

    def classify(self, target: OrderStatus) -> TransitionKind:
        """
        Classify a requested transition.

        Args:
            target: Desired next status

        Returns:
            The kind of transition

        Raises:
            InvalidTransition: If the transition is not permitted
        """
        current = self._current_status

        if current.is_terminal():
            self._reject(
                target,
                f"Cannot change a finalized order: order is already {current.value}"
            )

        if target == current:
            self._reject(target, f"Order is already {current.value}")

        if target == OrderStatus.DENIED:
            return TransitionKind.DENY

        if target == OrderStatus.CANCELLED:
            return TransitionKind.CANCEL

        if current == OrderStatus.DENIED:
            if target in reinstatable_statuses(self.order_type, self.fulfillment):
                return TransitionKind.REINSTATE
            self._reject(
                target,
                f"Denied {self.order_type.value} order cannot be reinstated as {target.value}"
            )

        allowed = FORWARD_TRANSITIONS[self.track].get(current, set())
        if target not in allowed:
            self._reject(
                target,
                f"Invalid transition for {self.order_type.value} order: "
                f"{current.value} -> {target.value}"
            )

        return TransitionKind.ADVANCE

    def can_transition_to(self, target: OrderStatus) -> bool:
        try:
            self.classify(target)
        except InvalidTransition:
            return False
        return True

    def transition(self, target: OrderStatus, reason: Optional[str] = None) -> TransitionKind:
        """
        Validate and apply a transition.

        Raises:
            InvalidTransition: If the transition is not permitted
        """
        kind = self.classify(target)

        old_status = self._current_status
        self._current_status = target
        self._history.append((target, datetime.now(timezone.utc)))

        order_state_transitions.labels(
            from_status=old_status.value,
            to_status=target.value
        ).inc()

        logger.info(
            f"Order {self.order_id}: {old_status.value} -> {target.value}",
            extra={
                "order_id": self.order_id,
                "from_status": old_status.value,
                "to_status": target.value,
                "kind": kind.value,
                "reason": reason
            }
        )

        return kind

    def next_statuses(self) -> List[OrderStatus]:
        """Forward steps available from the current status."""
        if self.is_terminal():
            return []
        return sorted(
            FORWARD_TRANSITIONS[self.track].get(self._current_status, set()),
            key=lambda s: TRACK_STATUSES[self.track].index(s) if s in TRACK_STATUSES[self.track] else len(TRACK_STATUSES[self.track])
        )

    def _reject(self, target: OrderStatus, message: str):
        order_invalid_transitions.labels(
            from_status=self._current_status.value,
            to_status=target.value
        ).inc()
        logger.warning(
            message,
            extra={
                "order_id": self.order_id,
                "from_status": self._current_status.value,
                "to_status": target.value
            }
        )
        raise InvalidTransition(message, self._current_status.value, target.value)

    def __repr__(self):
        return f"<OrderStateMachine order_id={self.order_id} status={self._current_status.value}>"
