"""
Order creation checks.

``validate_order`` is pure: it inspects the request and either returns a
normalized ``ValidatedOrder`` or raises. Nothing is read or written.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from campus_orders.application.schemas import OrderCreate
from campus_orders.domain.exceptions import AmountMismatch, ValidationError
from campus_orders.domain.status import DeliveryType

AMOUNT_TOLERANCE = 0.01


def amounts_match(a: float, b: float) -> bool:
    # round away float noise so a difference of exactly one cent still passes
    return round(abs(a - b), 6) <= AMOUNT_TOLERANCE


@dataclass
class ValidatedItem:
    goods_id: str
    goods_name: str
    price: float
    quantity: int
    subtotal: float
    specs: str = ""
    image: str = ""


@dataclass
class ValidatedOrder:
    shop_id: int
    shop_name: str
    items: List[ValidatedItem]
    delivery_address: Dict[str, Any]
    delivery_type: DeliveryType
    delivery_time: Optional[datetime]
    goods_amount: float
    delivery_fee: float
    coupon_amount: float
    total_amount: float
    remark: str = ""
    order_time: Optional[datetime] = None


def validate_order(data: OrderCreate) -> ValidatedOrder:
    if data.shop_id is None or not (data.shop_name or "").strip():
        raise ValidationError("shop information is incomplete", field="shopId")
    if not data.order_items:
        raise ValidationError("order items must not be empty", field="orderItems")

    address = data.delivery_address
    if address is None or not all((address.name, address.phone, address.address)):
        raise ValidationError("delivery address is incomplete", field="deliveryAddress")

    try:
        delivery_type = DeliveryType(data.delivery_type)
    except ValueError:
        raise ValidationError(f"unknown delivery type: {data.delivery_type}", field="deliveryType") from None
    if delivery_type is DeliveryType.SCHEDULED and data.delivery_time is None:
        raise ValidationError("deliveryTime is required for scheduled delivery", field="deliveryTime")

    items = [_validate_item(index, item) for index, item in enumerate(data.order_items)]

    if data.goods_amount is None or data.total_amount is None:
        raise ValidationError("goodsAmount and totalAmount are required", field="totalAmount")
    if data.delivery_fee < 0 or data.coupon_amount < 0:
        raise ValidationError("deliveryFee and couponAmount must not be negative", field="deliveryFee")
    if data.total_amount <= 0:
        raise ValidationError("totalAmount must be greater than zero", field="totalAmount")

    items_total = sum(item.subtotal for item in items)
    if not amounts_match(items_total, data.goods_amount):
        raise AmountMismatch(
            "sum of item subtotals does not match goodsAmount",
            expected=round(items_total, 2),
            actual=data.goods_amount,
        )

    expected_total = data.goods_amount + data.delivery_fee - data.coupon_amount
    if not amounts_match(expected_total, data.total_amount):
        raise AmountMismatch(
            "goodsAmount + deliveryFee - couponAmount does not match totalAmount",
            expected=round(expected_total, 2),
            actual=data.total_amount,
        )

    return ValidatedOrder(
        shop_id=data.shop_id,
        shop_name=data.shop_name.strip(),
        items=items,
        delivery_address=address.model_dump(),
        delivery_type=delivery_type,
        delivery_time=data.delivery_time if delivery_type is DeliveryType.SCHEDULED else None,
        goods_amount=data.goods_amount,
        delivery_fee=data.delivery_fee,
        coupon_amount=data.coupon_amount,
        total_amount=data.total_amount,
        remark=data.remark,
        order_time=data.order_time,
    )


def _validate_item(index: int, item) -> ValidatedItem:
    label = f"orderItems[{index}]"
    if item.goods_id is None or item.goods_id == "" or not item.goods_name:
        raise ValidationError(f"{label}: goodsId and goodsName are required", field=label)
    if item.price is None or item.quantity is None:
        raise ValidationError(f"{label}: price and quantity must be numbers", field=label)
    if item.price < 0:
        raise ValidationError(f"{label}: price must not be negative", field=label)
    if item.quantity < 1:
        raise ValidationError(f"{label}: quantity must be at least 1", field=label)
    if item.subtotal is None:
        raise ValidationError(f"{label}: subtotal is required", field=label)
    if not amounts_match(item.price * item.quantity, item.subtotal):
        raise ValidationError(f"{label}: subtotal does not equal price x quantity", field=label)

    return ValidatedItem(
        goods_id=str(item.goods_id),
        goods_name=item.goods_name,
        price=item.price,
        quantity=item.quantity,
        subtotal=item.subtotal,
        specs=item.specs,
        image=item.image,
    )
