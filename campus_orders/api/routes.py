from typing import List
from fastapi import APIRouter, Depends
from campus_orders.api.deps import get_identity, get_order_service, verify_wechat_notify
from campus_orders.api.responses import ok
from campus_orders.application.payments import PaymentResult
from campus_orders.application.schemas import (
    BatchUpdateRequest,
    CancelRequest,
    OrderCreate,
    OrderCreated,
    OrderIdRequest,
    OrderListRequest,
    OrderRead,
    PayRequest,
    PaymentRead,
    ShopOrdersRequest,
    ShopUpdateStatusRequest,
    UpdateStatusRequest,
    WechatNotifyRequest,
)
from campus_orders.application.service import OrderService
from campus_orders.domain.models import Order
from campus_orders.infrastructure.auth import Identity

router = APIRouter(prefix="/order", tags=["orders"])


def _order(order: Order) -> dict:
    return OrderRead.model_validate(order).model_dump(by_alias=True, mode="json")


def _orders(orders: List[Order]) -> List[dict]:
    return [_order(order) for order in orders]


def _payment(order: Order, result: PaymentResult) -> dict:
    return PaymentRead(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        transaction_id=result.transaction_id or order.payment_transaction_id,
        already_paid=result.already_paid,
        pending=result.pending,
        prepay_id=result.prepay_id,
        pay_params=result.pay_params,
    ).model_dump(by_alias=True, mode="json")


# ---- customer -------------------------------------------------------------

@router.post("/create")
async def create_order(
    payload: OrderCreate,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order = await service.create(identity, payload)
    return ok(OrderCreated.model_validate(order).model_dump(by_alias=True, mode="json"), "order created")

@router.post("/detail")
async def order_detail(
    payload: OrderIdRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return ok(_order(await service.detail(identity, payload.order_id)))

@router.post("/list")
async def list_orders(
    payload: OrderListRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    orders, page = await service.list_for_user(identity, payload.status, payload.page, payload.limit)
    return ok({"orders": _orders(orders), "pagination": page})

@router.post("/cancel")
async def cancel_order(
    payload: CancelRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel(identity, payload.order_id, payload.cancel_reason)
    return ok(_order(order), "order cancelled")

@router.post("/update-status")
async def update_order_status(
    payload: UpdateStatusRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order = await service.update_status(identity, payload.order_id, payload.status)
    return ok(_order(order), "order status updated")

@router.post("/pay")
async def pay_order(
    payload: PayRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order, result = await service.pay(identity, payload.order_id, payload.payment_method, payload.amount)
    if result.already_paid:
        message = "order already paid"
    elif result.pending:
        message = "awaiting payment confirmation"
    else:
        message = "payment successful"
    return ok(_payment(order, result), message)

@router.post("/wechat-notify", dependencies=[Depends(verify_wechat_notify)])
async def wechat_notify(
    payload: WechatNotifyRequest,
    service: OrderService = Depends(get_order_service),
):
    """Provider settlement callback; replays are answered with success"""
    order, result = await service.mark_paid(payload.order_number, payload.transaction_id, payload.total_fee)
    return ok(_payment(order, result), result.message or ("order already paid" if result.already_paid else "payment recorded"))


# ---- shop -----------------------------------------------------------------

@router.post("/shop/orders")
async def shop_orders(
    payload: ShopOrdersRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    orders, page = await service.shop_orders(
        identity,
        status=payload.status,
        page=payload.page,
        limit=payload.limit,
        start_date=payload.start_date,
        end_date=payload.end_date,
        order_number=payload.order_number,
    )
    return ok({"orders": _orders(orders), "pagination": page})

@router.post("/shop/detail")
async def shop_order_detail(
    payload: OrderIdRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return ok(_order(await service.shop_detail(identity, payload.order_id)))

@router.post("/shop/update-status")
async def shop_update_status(
    payload: ShopUpdateStatusRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order = await service.shop_update_status(
        identity,
        payload.order_id,
        payload.status,
        cancel_reason=payload.cancel_reason,
        delivery_user_id=payload.delivery_user_id,
    )
    return ok(_order(order), "order status updated")

@router.post("/shop/batch-update")
async def shop_batch_update(
    payload: BatchUpdateRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    result = await service.batch_update(identity, payload.order_ids, payload.action, payload.cancel_reason)
    return ok(result, f"{result['successCount']} succeeded, {result['failedCount']} failed")


# ---- delivery -------------------------------------------------------------

@router.post("/delivery/update-status")
async def delivery_update_status(
    payload: UpdateStatusRequest,
    identity: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order = await service.delivery_update_status(identity, payload.order_id, payload.status)
    return ok(_order(order), "order status updated")
