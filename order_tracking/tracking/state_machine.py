"""
Order Tracking — Order status state machine

    pending → assigned → in_progress → completed
       └──────────┴───────────┴──────→ cancelled

completed and cancelled are terminal.
"""
from order_tracking.core.errors import InvalidTransitionError
from order_tracking.models.order import OrderStatus

VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def validate_transition(current: OrderStatus | str, requested: OrderStatus | str) -> None:
    """Raise InvalidTransitionError unless current → requested is legal.

    Cancelling an already finished order is rejected rather than treated as
    a no-op.
    """
    current = OrderStatus(current)
    requested = OrderStatus(requested)

    if requested is OrderStatus.CANCELLED:
        if current in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                current.value, requested.value, f"Cannot cancel an order that is already {current.value}"
            )
        return

    if requested not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, requested.value)


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES
