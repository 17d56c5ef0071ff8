from datetime import datetime

import pytest

from campus_orders.domain.exceptions import IllegalTransition, ValidationError
from campus_orders.domain.models import Order
from campus_orders.domain.state_machine import (
    AUTO_CANCEL_REASON,
    CUSTOMER_CANCEL_REASON,
    allowed_targets,
    can_transition,
    parse_status,
    plan_settlement,
    plan_transition,
)
from campus_orders.domain.status import Actor, OrderStatus, PaymentMethod, PaymentStatus

NOW = datetime(2026, 10, 19, 12, 0, 0)


def make_order(status="pending", payment_status="unpaid", **fields):
    return Order(id=7, order_number="ORD20261019115500123", status=status, payment_status=payment_status, **fields)


LEGAL = [
    ("pending", "confirmed", Actor.SHOP),
    ("pending", "confirmed", Actor.PAYMENT),
    ("pending", "cancelled", Actor.CUSTOMER),
    ("pending", "cancelled", Actor.SYSTEM),
    ("confirmed", "preparing", Actor.SHOP),
    ("confirmed", "cancelled", Actor.CUSTOMER),
    ("preparing", "delivering", Actor.SHOP),
    ("delivering", "completed", Actor.SHOP),
    ("delivering", "completed", Actor.DELIVERY),
]


@pytest.mark.parametrize("current,target,actor", LEGAL)
def test_table_allows(current, target, actor):
    assert can_transition(OrderStatus(current), OrderStatus(target), actor)


@pytest.mark.parametrize("current,target,actor", [
    ("pending", "preparing", Actor.SHOP),
    ("pending", "completed", Actor.SHOP),
    ("preparing", "completed", Actor.SHOP),
    ("confirmed", "delivering", Actor.SHOP),
    ("preparing", "cancelled", Actor.CUSTOMER),
    ("delivering", "cancelled", Actor.SHOP),
    ("confirmed", "cancelled", Actor.SYSTEM),
    ("pending", "confirmed", Actor.CUSTOMER),
    ("delivering", "completed", Actor.CUSTOMER),
])
def test_table_rejects(current, target, actor):
    assert not can_transition(OrderStatus(current), OrderStatus(target), actor)
    with pytest.raises(IllegalTransition) as exc:
        plan_transition(make_order(status=current), OrderStatus(target), actor, NOW, cancel_reason="closing")
    assert exc.value.from_status == current
    assert exc.value.to_status == target


@pytest.mark.parametrize("terminal", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_terminal_states_admit_nothing(terminal):
    assert allowed_targets(terminal) == set()
    for target in OrderStatus:
        for actor in Actor:
            assert not can_transition(terminal, target, actor)


def test_shop_confirm_stamps_confirm_time():
    transition = plan_transition(make_order(), OrderStatus.CONFIRMED, Actor.SHOP, NOW)
    assert transition.values["status"] == "confirmed"
    assert transition.values["confirm_time"] == NOW
    assert "payment_status" not in transition.values
    assert transition.expected_payment_status is PaymentStatus.UNPAID


def test_payment_confirm_marks_paid():
    transition = plan_transition(
        make_order(), OrderStatus.CONFIRMED, Actor.PAYMENT, NOW,
        payment_method=PaymentMethod.BALANCE, transaction_id="bal-1",
    )
    assert transition.values["payment_status"] == "paid"
    assert transition.values["payment_method"] == "balance"
    assert transition.values["payment_transaction_id"] == "bal-1"
    assert transition.values["payment_time"] == NOW


def test_existing_timestamp_is_not_overwritten():
    earlier = datetime(2026, 10, 19, 11, 0, 0)
    order = make_order(status="preparing", delivery_start_time=earlier)
    transition = plan_transition(order, OrderStatus.DELIVERING, Actor.SHOP, NOW)
    assert "delivery_start_time" not in transition.values


def test_customer_cancel_gets_default_reason():
    transition = plan_transition(make_order(), OrderStatus.CANCELLED, Actor.CUSTOMER, NOW)
    assert transition.values["cancel_reason"] == CUSTOMER_CANCEL_REASON
    assert transition.values["cancelled_time"] == NOW


def test_shop_cancel_requires_reason():
    with pytest.raises(ValidationError):
        plan_transition(make_order(status="preparing"), OrderStatus.CANCELLED, Actor.SHOP, NOW)
    transition = plan_transition(
        make_order(status="preparing"), OrderStatus.CANCELLED, Actor.SHOP, NOW, cancel_reason="out of noodles"
    )
    assert transition.values["cancel_reason"] == "out of noodles"


def test_system_cancel_uses_timeout_reason():
    transition = plan_transition(make_order(), OrderStatus.CANCELLED, Actor.SYSTEM, NOW)
    assert transition.values["cancel_reason"] == AUTO_CANCEL_REASON


def test_cancelling_paid_order_refunds():
    order = make_order(status="confirmed", payment_status="paid", payment_method="balance")
    transition = plan_transition(order, OrderStatus.CANCELLED, Actor.CUSTOMER, NOW)
    assert transition.refunds_payment
    assert transition.values["payment_status"] == "refunded"
    assert transition.expected_payment_status is PaymentStatus.PAID


def test_paying_twice_is_illegal():
    order = make_order(payment_status="paid")
    with pytest.raises(IllegalTransition):
        plan_transition(order, OrderStatus.CONFIRMED, Actor.PAYMENT, NOW)


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        parse_status("shipped")


def test_settlement_confirms_pending_order():
    transition = plan_settlement(make_order(), NOW, PaymentMethod.WECHAT, "4200001")
    assert transition.to_status is OrderStatus.CONFIRMED
    assert transition.values["payment_status"] == "paid"


def test_settlement_keeps_status_once_the_shop_moved_on():
    transition = plan_settlement(make_order(status="preparing"), NOW, PaymentMethod.WECHAT, "4200001")
    assert transition.from_status is transition.to_status is OrderStatus.PREPARING
    assert transition.values["payment_status"] == "paid"
    assert transition.values["payment_transaction_id"] == "4200001"


def test_settlement_of_cancelled_order_is_a_refund():
    transition = plan_settlement(make_order(status="cancelled"), NOW, PaymentMethod.WECHAT, "4200001")
    assert transition.to_status is OrderStatus.CANCELLED
    assert transition.refunds_payment
    assert transition.expected_payment_status is PaymentStatus.UNPAID


def test_settling_twice_is_illegal():
    with pytest.raises(IllegalTransition):
        plan_settlement(make_order(status="confirmed", payment_status="paid"), NOW, PaymentMethod.WECHAT, "4200001")
