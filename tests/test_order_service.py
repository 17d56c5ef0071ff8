import re
from datetime import timedelta

import pytest

from campus_orders.application import service as service_module
from campus_orders.domain.exceptions import (
    AmountMismatch,
    Forbidden,
    IllegalTransition,
    InsufficientFunds,
    NotFound,
    ValidationError,
)
from campus_orders.domain.models import Order
from campus_orders.domain.state_machine import plan_transition
from campus_orders.domain.status import Actor, OrderStatus, PaymentMethod
from campus_orders.infrastructure.auth import Identity
from conftest import COURIER_ID, CUSTOMER_ID, OTHER_OWNER_ID, POOR_CUSTOMER_ID, order_request


async def balance_of(services, user_id):
    return await services.accounts.get_balance(user_id)


async def test_create_order(services, customer):
    order = await services.order_service.create(customer, order_request())

    assert re.fullmatch(r"ORD\d{14}\d{3}", order.order_number)
    assert order.status == "pending"
    assert order.payment_status == "unpaid"
    assert order.payment_expire_time - order.create_time == timedelta(minutes=15)
    assert order.user_id == CUSTOMER_ID

    stored = await services.orders.get(order.id)
    assert [item.goods_name for item in stored.items] == ["Beef noodles", "Iced tea"]
    assert stored.total_amount == 30


async def test_create_order_for_unknown_shop(services, customer):
    with pytest.raises(NotFound):
        await services.order_service.create(customer, order_request(shopId=99))


async def test_detail_is_owner_only(services, customer):
    order = await services.order_service.create(customer, order_request())
    stranger = Identity(user_id=POOR_CUSTOMER_ID)
    with pytest.raises(Forbidden):
        await services.order_service.detail(stranger, order.id)
    with pytest.raises(NotFound):
        await services.order_service.detail(customer, 12345)


async def test_list_paginates_newest_first(services, customer):
    created = [await services.order_service.create(customer, order_request()) for _ in range(3)]

    orders, page = await services.order_service.list_for_user(customer, None, page=1, limit=2)
    assert page == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert [order.id for order in orders] == [created[2].id, created[1].id]

    orders, _ = await services.order_service.list_for_user(customer, "cancelled", page=1, limit=10)
    assert orders == []


async def test_pay_with_balance(services, customer):
    order = await services.order_service.create(customer, order_request())

    paid, result = await services.order_service.pay(customer, order.id, "balance", 30)

    assert result.success and not result.already_paid
    assert paid.status == "confirmed"
    assert paid.payment_status == "paid"
    assert paid.payment_method == "balance"
    assert paid.payment_time is not None and paid.confirm_time is not None
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(70)


async def test_pay_twice_is_idempotent(services, customer):
    order = await services.order_service.create(customer, order_request())
    _, first = await services.order_service.pay(customer, order.id, "balance", 30)

    again, second = await services.order_service.pay(customer, order.id, "balance", 30)

    assert second.success and second.already_paid
    assert second.transaction_id == first.transaction_id
    assert again.payment_status == "paid"
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(70)


async def test_pay_with_insufficient_balance(services):
    poor = Identity(user_id=POOR_CUSTOMER_ID)
    order = await services.order_service.create(poor, order_request())

    with pytest.raises(InsufficientFunds):
        await services.order_service.pay(poor, order.id, "balance", 30)

    unchanged = await services.orders.get(order.id)
    assert unchanged.status == "pending"
    assert unchanged.payment_status == "unpaid"
    assert await balance_of(services, POOR_CUSTOMER_ID) == pytest.approx(5)


async def test_pay_amount_must_match_total(services, customer):
    order = await services.order_service.create(customer, order_request())
    with pytest.raises(AmountMismatch):
        await services.order_service.pay(customer, order.id, "balance", 29)
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(100)


async def test_pay_with_unknown_method(services, customer):
    order = await services.order_service.create(customer, order_request())
    with pytest.raises(ValidationError):
        await services.order_service.pay(customer, order.id, "cash", 30)


async def test_pay_cancelled_order_is_illegal(services, customer):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.cancel(customer, order.id)
    with pytest.raises(IllegalTransition):
        await services.order_service.pay(customer, order.id, "wechat", 30)


async def test_wechat_sandbox_settles_immediately(services, customer):
    order = await services.order_service.create(customer, order_request())
    paid, result = await services.order_service.pay(customer, order.id, "wechat", 30)
    assert result.transaction_id.startswith("wx")
    assert paid.payment_status == "paid"
    assert paid.payment_method == "wechat"
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(100)


async def test_wechat_live_mode_waits_for_callback(services, customer):
    wechat = services.order_service.gateways[PaymentMethod.WECHAT]
    wechat.sandbox = False
    order = await services.order_service.create(customer, order_request())

    pending_order, result = await services.order_service.pay(customer, order.id, "wechat", 30)
    assert result.pending
    assert pending_order.status == "pending"
    assert pending_order.prepay_id == result.prepay_id
    assert result.pay_params["package"] == f"prepay_id={result.prepay_id}"

    _, retry = await services.order_service.pay(customer, order.id, "wechat", 30)
    assert retry.pending and retry.prepay_id == result.prepay_id

    paid, settled = await services.order_service.mark_paid(order.order_number, "4200001", total_fee=3000)
    assert settled.success and not settled.already_paid
    assert paid.payment_status == "paid"
    assert paid.payment_transaction_id == "4200001"

    _, replay = await services.order_service.mark_paid(order.order_number, "4200001", total_fee=3000)
    assert replay.already_paid


async def test_wechat_callback_amount_is_checked(services, customer):
    order = await services.order_service.create(customer, order_request())
    with pytest.raises(AmountMismatch):
        await services.order_service.mark_paid(order.order_number, "4200002", total_fee=2999)


async def test_customer_cancel(services, customer):
    order = await services.order_service.create(customer, order_request())
    cancelled = await services.order_service.cancel(customer, order.id)
    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "user cancelled"
    assert cancelled.cancelled_time is not None

    with pytest.raises(IllegalTransition):
        await services.order_service.cancel(customer, order.id)


async def test_cancelling_paid_order_refunds_balance(services, customer):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.pay(customer, order.id, "balance", 30)

    cancelled = await services.order_service.cancel(customer, order.id, "changed my mind")

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "refunded"
    assert cancelled.cancel_reason == "changed my mind"
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(100)


async def test_customer_update_status_only_cancels(services, customer):
    order = await services.order_service.create(customer, order_request())
    with pytest.raises(IllegalTransition):
        await services.order_service.update_status(customer, order.id, "confirmed")
    cancelled = await services.order_service.update_status(customer, order.id, "cancelled")
    assert cancelled.status == "cancelled"


async def test_shop_runs_order_to_completion(services, customer, shop_owner, courier):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.pay(customer, order.id, "balance", 30)

    preparing = await services.order_service.shop_update_status(shop_owner, order.id, "preparing")
    assert preparing.status == "preparing"

    delivering = await services.order_service.shop_update_status(
        shop_owner, order.id, "delivering", delivery_user_id=COURIER_ID
    )
    assert delivering.delivery_start_time is not None
    assert delivering.delivery_user_id == COURIER_ID

    completed = await services.order_service.delivery_update_status(courier, order.id, "completed")
    assert completed.status == "completed"
    assert completed.completed_time is not None

    with pytest.raises(IllegalTransition):
        await services.order_service.shop_update_status(shop_owner, order.id, "cancelled", cancel_reason="late")


async def test_only_the_assigned_courier_completes(services, customer, shop_owner):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.shop_update_status(shop_owner, order.id, "confirmed")
    await services.order_service.shop_update_status(shop_owner, order.id, "preparing")
    await services.order_service.shop_update_status(shop_owner, order.id, "delivering")

    with pytest.raises(Forbidden):
        await services.order_service.delivery_update_status(Identity(user_id=COURIER_ID), order.id, "completed")


async def test_dispatch_requires_a_delivery_user(services, customer, shop_owner):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.shop_update_status(shop_owner, order.id, "confirmed")
    await services.order_service.shop_update_status(shop_owner, order.id, "preparing")
    with pytest.raises(ValidationError):
        await services.order_service.shop_update_status(
            shop_owner, order.id, "delivering", delivery_user_id=POOR_CUSTOMER_ID
        )


async def test_shop_cannot_touch_other_shops_orders(services, customer):
    order = await services.order_service.create(customer, order_request())
    other_owner = Identity(user_id=OTHER_OWNER_ID)
    with pytest.raises(Forbidden):
        await services.order_service.shop_update_status(other_owner, order.id, "confirmed")
    with pytest.raises(NotFound):
        await services.order_service.shop_orders(customer)


async def test_shop_cancel_needs_reason_and_refunds(services, customer, shop_owner):
    order = await services.order_service.create(customer, order_request())
    await services.order_service.pay(customer, order.id, "balance", 30)

    with pytest.raises(ValidationError):
        await services.order_service.shop_update_status(shop_owner, order.id, "cancelled")

    cancelled = await services.order_service.shop_update_status(
        shop_owner, order.id, "cancelled", cancel_reason="kitchen closed"
    )
    assert cancelled.payment_status == "refunded"
    assert await balance_of(services, CUSTOMER_ID) == pytest.approx(100)


async def test_shop_order_filters(services, customer, shop_owner):
    first = await services.order_service.create(customer, order_request())
    await services.order_service.create(customer, order_request())
    await services.order_service.shop_update_status(shop_owner, first.id, "confirmed")

    orders, page = await services.order_service.shop_orders(shop_owner, status="confirmed")
    assert [order.id for order in orders] == [first.id]
    assert page["total"] == 1

    orders, _ = await services.order_service.shop_orders(shop_owner, order_number=first.order_number.lower())
    assert [order.id for order in orders] == [first.id]

    orders, _ = await services.order_service.shop_orders(
        shop_owner, start_date=first.create_time + timedelta(days=1)
    )
    assert orders == []


async def test_batch_update_reports_each_order(services, customer, shop_owner):
    pending = await services.order_service.create(customer, order_request())
    cancelled = await services.order_service.create(customer, order_request())
    await services.order_service.cancel(customer, cancelled.id)

    result = await services.order_service.batch_update(shop_owner, [pending.id, cancelled.id, 999], "confirm")

    assert result["total"] == 3
    assert result["successCount"] == 1
    assert result["failedCount"] == 2
    assert result["results"]["success"][0]["orderId"] == pending.id
    assert {item["orderId"] for item in result["results"]["failed"]} == {cancelled.id, 999}

    refreshed = await services.orders.get(pending.id)
    assert refreshed.status == "confirmed"


async def test_batch_cancel_needs_reason(services, shop_owner):
    with pytest.raises(ValidationError):
        await services.order_service.batch_update(shop_owner, [1], "cancel")
    with pytest.raises(ValidationError):
        await services.order_service.batch_update(shop_owner, [1], "ship")


async def test_stale_plan_loses_the_race(services, customer, shop_owner):
    order = await services.order_service.create(customer, order_request())
    stale = await services.orders.get(order.id)

    await services.order_service.cancel(customer, order.id)

    transition = plan_transition(stale, OrderStatus.CONFIRMED, Actor.SHOP, stale.create_time)
    assert await services.orders.apply(transition) is False
    current = await services.orders.get(order.id)
    assert isinstance(current, Order)
    assert current.status == "cancelled"


async def test_late_wechat_settlement_after_shop_confirm(services, customer, shop_owner):
    services.order_service.gateways[PaymentMethod.WECHAT].sandbox = False
    order = await services.order_service.create(customer, order_request())
    await services.order_service.pay(customer, order.id, "wechat", 30)
    await services.order_service.shop_update_status(shop_owner, order.id, "confirmed")

    paid, settled = await services.order_service.mark_paid(order.order_number, "4200003", total_fee=3000)

    assert settled.success and not settled.already_paid
    assert (paid.status, paid.payment_status) == ("confirmed", "paid")
    assert paid.payment_method == "wechat"
    assert paid.payment_transaction_id == "4200003"

    _, replay = await services.order_service.mark_paid(order.order_number, "4200003", total_fee=3000)
    assert replay.already_paid


async def test_wechat_settlement_after_timeout_cancel_is_refunded(services, customer):
    services.order_service.gateways[PaymentMethod.WECHAT].sandbox = False
    order = await services.order_service.create(customer, order_request())
    await services.order_service.pay(customer, order.id, "wechat", 30)
    await services.scheduler.sweep(now=order.payment_expire_time + timedelta(seconds=1))

    settled_order, settled = await services.order_service.mark_paid(order.order_number, "4200004", total_fee=3000)

    assert settled.success
    assert settled.message == "order was cancelled before settlement, payment marked for refund"
    assert (settled_order.status, settled_order.payment_status) == ("cancelled", "refunded")
    assert settled_order.payment_transaction_id == "4200004"

    _, replay = await services.order_service.mark_paid(order.order_number, "4200004", total_fee=3000)
    assert replay.already_paid
    with pytest.raises(IllegalTransition):
        await services.order_service.mark_paid(order.order_number, "4200005", total_fee=3000)


async def test_create_order_for_unknown_user(services):
    with pytest.raises(NotFound):
        await services.order_service.create(Identity(user_id=777), order_request())


async def test_order_number_collision_is_retried(services, customer, monkeypatch):
    numbers = iter(["ORD20261019120000001", "ORD20261019120000001", "ORD20261019120000002"])
    monkeypatch.setattr(service_module, "generate_order_number", lambda now: next(numbers))

    first = await services.order_service.create(customer, order_request())
    second = await services.order_service.create(customer, order_request())

    assert first.order_number == "ORD20261019120000001"
    assert second.order_number == "ORD20261019120000002"


async def test_batch_update_records_unexpected_errors(services, customer, shop_owner):
    broken = await services.order_service.create(customer, order_request())
    healthy = await services.order_service.create(customer, order_request())
    original = services.orders.apply

    async def flaky_apply(transition, session=None):
        if transition.order_id == broken.id:
            raise RuntimeError("connection reset")
        return await original(transition, session)

    services.orders.apply = flaky_apply
    try:
        result = await services.order_service.batch_update(shop_owner, [broken.id, healthy.id], "confirm")
    finally:
        services.orders.apply = original

    assert (result["successCount"], result["failedCount"]) == (1, 1)
    assert result["results"]["failed"] == [
        {"orderId": broken.id, "orderNumber": broken.order_number, "reason": "internal error"}
    ]
    assert (await services.orders.get(broken.id)).status == "pending"
    assert (await services.orders.get(healthy.id)).status == "confirmed"
