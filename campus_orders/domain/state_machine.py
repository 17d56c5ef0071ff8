"""
Order status transitions.

Pure planning: given the order as last read and the requested target,
decide whether the move is legal and compute the column values to write.
Applying the plan is the order store's job; it only succeeds when the row
still holds the status and payment status the plan was computed from.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from campus_orders.domain.exceptions import IllegalTransition, ValidationError
from campus_orders.domain.models import Order
from campus_orders.domain.status import Actor, OrderStatus, PaymentMethod, PaymentStatus

AUTO_CANCEL_REASON = "payment timeout auto-cancel"
CUSTOMER_CANCEL_REASON = "user cancelled"

# from-status -> {to-status: actors allowed to drive it}
TRANSITIONS: Dict[OrderStatus, Dict[OrderStatus, FrozenSet[Actor]]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED: frozenset({Actor.PAYMENT, Actor.SHOP}),
        OrderStatus.CANCELLED: frozenset({Actor.CUSTOMER, Actor.SHOP, Actor.SYSTEM}),
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PREPARING: frozenset({Actor.SHOP}),
        OrderStatus.CANCELLED: frozenset({Actor.CUSTOMER, Actor.SHOP}),
    },
    OrderStatus.PREPARING: {
        OrderStatus.DELIVERING: frozenset({Actor.SHOP}),
        OrderStatus.CANCELLED: frozenset({Actor.SHOP}),
    },
    OrderStatus.DELIVERING: {
        OrderStatus.COMPLETED: frozenset({Actor.SHOP, Actor.DELIVERY}),
    },
    OrderStatus.COMPLETED: {},
    OrderStatus.CANCELLED: {},
}

# Timestamp written the first time an order enters the status
ENTRY_TIMESTAMPS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirm_time",
    OrderStatus.DELIVERING: "delivery_start_time",
    OrderStatus.COMPLETED: "completed_time",
    OrderStatus.CANCELLED: "cancelled_time",
}


@dataclass(frozen=True)
class Transition:
    order_id: int
    from_status: OrderStatus
    to_status: OrderStatus
    expected_payment_status: PaymentStatus
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def refunds_payment(self) -> bool:
        return self.values.get("payment_status") == PaymentStatus.REFUNDED.value


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"unknown order status: {value}", field="status") from None


def allowed_targets(current: OrderStatus, actor: Optional[Actor] = None) -> set:
    targets = TRANSITIONS[current]
    if actor is None:
        return set(targets)
    return {target for target, actors in targets.items() if actor in actors}


def can_transition(current: OrderStatus, target: OrderStatus, actor: Optional[Actor] = None) -> bool:
    return target in allowed_targets(current, actor)


def plan_transition(
    order: Order,
    target: OrderStatus,
    actor: Actor,
    now: datetime,
    cancel_reason: Optional[str] = None,
    payment_method: Optional[PaymentMethod] = None,
    transaction_id: Optional[str] = None,
) -> Transition:
    """
    Build the update that moves ``order`` to ``target`` on behalf of ``actor``.

    Raises IllegalTransition when the table forbids the move for this actor,
    and ValidationError when a shop cancellation carries no reason.
    """
    current = OrderStatus(order.status)
    payment_status = PaymentStatus(order.payment_status)

    if not can_transition(current, target, actor):
        raise IllegalTransition(current.value, target.value)

    values: Dict[str, Any] = {"status": target.value, "update_time": now}
    timestamp_field = ENTRY_TIMESTAMPS.get(target)
    if timestamp_field and getattr(order, timestamp_field) is None:
        values[timestamp_field] = now

    if actor is Actor.PAYMENT:
        if payment_status is not PaymentStatus.UNPAID:
            raise IllegalTransition(current.value, target.value, "order already paid")
        values.update(
            payment_status=PaymentStatus.PAID.value,
            payment_method=payment_method.value if payment_method else None,
            payment_time=now,
            payment_transaction_id=transaction_id,
        )

    if target is OrderStatus.CANCELLED:
        values["cancel_reason"] = _cancel_reason(actor, payment_status, cancel_reason, current)
        if payment_status is PaymentStatus.PAID:
            values["payment_status"] = PaymentStatus.REFUNDED.value

    return Transition(
        order_id=order.id,
        from_status=current,
        to_status=target,
        expected_payment_status=payment_status,
        values=values,
    )


def _cancel_reason(
    actor: Actor,
    payment_status: PaymentStatus,
    reason: Optional[str],
    current: OrderStatus,
) -> str:
    reason = (reason or "").strip()

    if actor is Actor.SYSTEM:
        if payment_status is not PaymentStatus.UNPAID:
            raise IllegalTransition(current.value, OrderStatus.CANCELLED.value, "paid orders never time out")
        return AUTO_CANCEL_REASON
    if actor is Actor.SHOP and not reason:
        raise ValidationError("cancelReason is required when a shop cancels an order", field="cancelReason")
    if actor is Actor.CUSTOMER and not reason:
        return CUSTOMER_CANCEL_REASON
    return reason


def plan_settlement(
    order: Order,
    now: datetime,
    payment_method: PaymentMethod,
    transaction_id: str,
) -> Transition:
    """
    Record a provider-confirmed payment against ``order``.

    A pending order is confirmed as usual. An order the shop already moved
    on only has its payment fields written. A cancelled order keeps its
    status and the late payment is recorded as refunded.
    """
    current = OrderStatus(order.status)
    if PaymentStatus(order.payment_status) is not PaymentStatus.UNPAID:
        raise IllegalTransition(current.value, current.value, "order already settled")

    if current is OrderStatus.PENDING:
        return plan_transition(
            order, OrderStatus.CONFIRMED, Actor.PAYMENT, now,
            payment_method=payment_method, transaction_id=transaction_id,
        )

    settled = PaymentStatus.REFUNDED if current is OrderStatus.CANCELLED else PaymentStatus.PAID
    return Transition(
        order_id=order.id,
        from_status=current,
        to_status=current,
        expected_payment_status=PaymentStatus.UNPAID,
        values={
            "payment_status": settled.value,
            "payment_method": payment_method.value,
            "payment_time": now,
            "payment_transaction_id": transaction_id,
            "update_time": now,
        },
    )
