import random
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from campus_orders.application.payments import (
    BalancePayGateway,
    Gateway,
    PaymentResult,
    WechatPayGateway,
    parse_payment_method,
    to_minor_units,
)
from campus_orders.application.schemas import OrderCreate
from campus_orders.application.validator import amounts_match, validate_order
from campus_orders.domain.exceptions import (
    AmountMismatch,
    ConflictError,
    Forbidden,
    IllegalTransition,
    NotFound,
    ValidationError,
)
from campus_orders.domain.models import Order, OrderItem, Shop, utcnow
from campus_orders.domain.state_machine import Transition, parse_status, plan_settlement, plan_transition
from campus_orders.domain.status import Actor, OrderStatus, PaymentMethod, PaymentStatus
from campus_orders.infrastructure.account_store import AccountStore
from campus_orders.infrastructure.auth import Identity
from campus_orders.infrastructure.db import Database
from campus_orders.infrastructure.notifier import Notifier, order_event
from campus_orders.infrastructure.order_store import OrderFilter, OrderStore
from shared.core import get_logger

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

BATCH_ACTIONS: Dict[str, OrderStatus] = {
    "confirm": OrderStatus.CONFIRMED,
    "cancel": OrderStatus.CANCELLED,
    "prepare": OrderStatus.PREPARING,
}


def generate_order_number(now: datetime) -> str:
    """ORD + YYYYMMDDHHMMSS + three random digits"""
    return f"ORD{now:%Y%m%d%H%M%S}{random.randint(0, 999):03d}"


def is_order_number_collision(error: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: orders.order_number"; postgres names ix_orders_order_number
    return "order_number" in str(error.orig)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}


class OrderService:
    def __init__(
        self,
        database: Database,
        orders: OrderStore,
        accounts: AccountStore,
        gateways: Dict[PaymentMethod, Gateway],
        notifier: Notifier,
        payment_window: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.orders = orders
        self.accounts = accounts
        self.gateways = gateways
        self.notifier = notifier
        self.payment_window = payment_window
        self.clock = clock

    # ---- customer side ----------------------------------------------------

    async def create(self, identity: Identity, data: OrderCreate) -> Order:
        validated = validate_order(data)
        if await self.accounts.get_user(identity.user_id) is None:
            raise NotFound("user", identity.user_id)
        if await self.accounts.get_shop(validated.shop_id) is None:
            raise NotFound("shop", validated.shop_id)

        now = self.clock()
        order = Order(
            user_id=identity.user_id,
            shop_id=validated.shop_id,
            shop_name=validated.shop_name,
            delivery_address=validated.delivery_address,
            delivery_type=validated.delivery_type.value,
            delivery_time=validated.delivery_time,
            goods_amount=validated.goods_amount,
            delivery_fee=validated.delivery_fee,
            coupon_amount=validated.coupon_amount,
            total_amount=validated.total_amount,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
            payment_expire_time=now + self.payment_window,
            remark=validated.remark,
            cancel_reason="",
            order_time=validated.order_time or now,
            create_time=now,
            update_time=now,
        )
        order.items = [
            OrderItem(
                position=position,
                goods_id=item.goods_id,
                goods_name=item.goods_name,
                price=item.price,
                quantity=item.quantity,
                specs=item.specs,
                image=item.image,
                subtotal=item.subtotal,
            )
            for position, item in enumerate(validated.items)
        ]

        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order.order_number = generate_order_number(now)
            try:
                await self.orders.add(order)
                break
            except IntegrityError as e:
                if not is_order_number_collision(e) or attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning(f"Order number {order.order_number} already taken, retrying")

        logger.info(
            f"Order created: {order.order_number}",
            extra={'extra_fields': {
                'order_id': order.id,
                'order_number': order.order_number,
                'user_id': identity.user_id,
                'shop_id': order.shop_id,
                'total_amount': order.total_amount,
            }},
        )
        return order

    async def detail(self, identity: Identity, order_id: int) -> Order:
        return await self._owned_order(identity, order_id)

    async def list_for_user(
        self, identity: Identity, status: Optional[str], page: int, limit: int
    ) -> Tuple[List[Order], Dict[str, int]]:
        if status:
            parse_status(status)
        orders, total = await self.orders.list(OrderFilter(user_id=identity.user_id, status=status), page, limit)
        return orders, pagination(page, limit, total)

    async def cancel(self, identity: Identity, order_id: int, reason: Optional[str] = None) -> Order:
        order = await self._owned_order(identity, order_id)
        transition = plan_transition(order, OrderStatus.CANCELLED, Actor.CUSTOMER, self.clock(), cancel_reason=reason)
        return await self._commit(order, transition)

    async def update_status(self, identity: Identity, order_id: int, status: str) -> Order:
        """Customer-driven status change; the table only lets customers cancel"""
        order = await self._owned_order(identity, order_id)
        transition = plan_transition(order, parse_status(status), Actor.CUSTOMER, self.clock())
        return await self._commit(order, transition)

    # ---- payment ----------------------------------------------------------

    async def pay(self, identity: Identity, order_id: int, method: str, amount: float) -> Tuple[Order, PaymentResult]:
        payment_method = parse_payment_method(method)
        gateway = self.gateways.get(payment_method)
        if gateway is None:
            raise ValidationError(f"unsupported payment method: {method}", field="paymentMethod")

        order = await self._owned_order(identity, order_id)
        if order.payment_status == PaymentStatus.PAID:
            return order, self._already_paid(order)
        if order.status != OrderStatus.PENDING or order.payment_status != PaymentStatus.UNPAID:
            raise IllegalTransition(order.status, OrderStatus.CONFIRMED.value, f"order is {order.status} and can no longer be paid")
        if not amounts_match(amount, order.total_amount):
            raise AmountMismatch("payment amount does not match order total", expected=order.total_amount, actual=amount)

        if isinstance(gateway, WechatPayGateway) and not gateway.sandbox and order.prepay_id:
            # reuse the outstanding prepay reference instead of opening a second one
            return order, PaymentResult(
                success=True,
                pending=True,
                message="awaiting payment confirmation",
                prepay_id=order.prepay_id,
                pay_params=gateway.build_pay_params(order.prepay_id),
            )

        try:
            async with self.database.transaction() as session:
                result = await gateway.charge(order, session)
                if not result.pending:
                    transition = plan_transition(
                        order,
                        OrderStatus.CONFIRMED,
                        Actor.PAYMENT,
                        self.clock(),
                        payment_method=payment_method,
                        transaction_id=result.transaction_id,
                    )
                    if not await self.orders.apply(transition, session):
                        raise ConflictError(f"order {order.order_number} changed while paying")
        except ConflictError:
            current = await self.orders.get(order.id)
            if current is not None and current.payment_status == PaymentStatus.PAID:
                return current, self._already_paid(current)
            raise

        if result.pending:
            await self.orders.set_prepay_id(order.id, result.prepay_id, self.clock())
            logger.info(f"Awaiting WeChat settlement for {order.order_number}")
            return await self.orders.get(order.id), result

        paid = await self.orders.get(order.id)
        self._log_paid(paid)
        self.notifier.notify("order.paid", order_event(paid))
        return paid, result

    async def mark_paid(self, order_number: str, transaction_id: str, total_fee: Optional[int] = None) -> Tuple[Order, PaymentResult]:
        """Settle a WeChat payment reported by the provider callback; idempotent"""
        order = await self.orders.get_by_number(order_number)
        if order is None:
            raise NotFound("order", order_number)
        if self._settled(order, transaction_id):
            return order, self._already_paid(order)
        if total_fee is not None and total_fee != to_minor_units(order.total_amount):
            raise AmountMismatch(
                "settled amount does not match order total",
                expected=to_minor_units(order.total_amount),
                actual=total_fee,
            )

        transition = plan_settlement(order, self.clock(), PaymentMethod.WECHAT, transaction_id)
        if not await self.orders.apply(transition):
            current = await self.orders.get(order.id)
            if current is not None and self._settled(current, transaction_id):
                return current, self._already_paid(current)
            raise ConflictError(f"order {order_number} changed while settling payment")

        settled = await self.orders.get(order.id)
        if transition.refunds_payment:
            logger.warning(
                f"Payment for cancelled order {order_number} arrived late, refund required",
                extra={'extra_fields': {
                    'order_id': settled.id,
                    'order_number': order_number,
                    'transaction_id': transaction_id,
                    'amount': settled.total_amount,
                }},
            )
            self.notifier.notify("order.refund_required", order_event(settled))
            return settled, PaymentResult(
                success=True,
                transaction_id=transaction_id,
                message="order was cancelled before settlement, payment marked for refund",
            )

        self._log_paid(settled)
        self.notifier.notify("order.paid", order_event(settled))
        return settled, PaymentResult(success=True, transaction_id=transaction_id)

    # ---- shop side --------------------------------------------------------

    async def shop_orders(
        self,
        identity: Identity,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        order_number: Optional[str] = None,
    ) -> Tuple[List[Order], Dict[str, int]]:
        shop = await self._owned_shop(identity)
        if status:
            parse_status(status)
        filters = OrderFilter(
            shop_id=shop.id,
            status=status,
            order_number=(order_number or "").strip() or None,
            start_date=start_date,
            end_date=end_date,
        )
        orders, total = await self.orders.list(filters, page, limit)
        return orders, pagination(page, limit, total)

    async def shop_detail(self, identity: Identity, order_id: int) -> Order:
        shop = await self._owned_shop(identity)
        return await self._shop_order(shop, order_id)

    async def shop_update_status(
        self,
        identity: Identity,
        order_id: int,
        status: str,
        cancel_reason: Optional[str] = None,
        delivery_user_id: Optional[int] = None,
    ) -> Order:
        shop = await self._owned_shop(identity)
        order = await self._shop_order(shop, order_id)
        target = parse_status(status)
        transition = plan_transition(order, target, Actor.SHOP, self.clock(), cancel_reason=cancel_reason)

        if delivery_user_id is not None:
            if target is not OrderStatus.DELIVERING:
                raise ValidationError("deliveryUserId can only be set when dispatching an order", field="deliveryUserId")
            courier = await self.accounts.get_user(delivery_user_id)
            if courier is None or not courier.is_delivery:
                raise ValidationError(f"user {delivery_user_id} is not a delivery user", field="deliveryUserId")
            transition.values["delivery_user_id"] = delivery_user_id

        return await self._commit(order, transition)

    async def batch_update(
        self, identity: Identity, order_ids: List[int], action: str, cancel_reason: Optional[str] = None
    ) -> Dict[str, object]:
        """Apply one shop action to many orders; each order succeeds or fails on its own"""
        target = BATCH_ACTIONS.get(action)
        if target is None:
            raise ValidationError(f"unsupported batch action: {action}", field="action")
        if target is OrderStatus.CANCELLED and not (cancel_reason or "").strip():
            raise ValidationError("cancelReason is required to cancel orders", field="cancelReason")

        shop = await self._owned_shop(identity)
        requested = list(dict.fromkeys(order_ids))
        found = {order.id: order for order in await self.orders.get_many(requested)}

        succeeded, failed = [], []
        for order_id in requested:
            order = found.get(order_id)
            if order is None or order.shop_id != shop.id:
                failed.append({"orderId": order_id, "orderNumber": None, "reason": "order not found"})
                continue
            try:
                transition = plan_transition(order, target, Actor.SHOP, self.clock(), cancel_reason=cancel_reason)
                updated = await self._commit(order, transition)
            except (IllegalTransition, ValidationError, ConflictError) as e:
                failed.append({"orderId": order_id, "orderNumber": order.order_number, "reason": e.message})
                continue
            except Exception:
                logger.exception(
                    f"Batch {action} failed for order {order.order_number}",
                    extra={'extra_fields': {'shop_id': shop.id, 'order_id': order_id}},
                )
                failed.append({"orderId": order_id, "orderNumber": order.order_number, "reason": "internal error"})
                continue
            succeeded.append({"orderId": order_id, "orderNumber": updated.order_number, "newStatus": updated.status})

        logger.info(
            f"Batch {action} by shop {shop.id}: {len(succeeded)} succeeded, {len(failed)} failed",
            extra={'extra_fields': {'shop_id': shop.id, 'action': action, 'order_ids': requested}},
        )
        return {
            "total": len(requested),
            "successCount": len(succeeded),
            "failedCount": len(failed),
            "results": {"success": succeeded, "failed": failed},
        }

    # ---- delivery side ----------------------------------------------------

    async def delivery_update_status(self, identity: Identity, order_id: int, status: str) -> Order:
        order = await self._get_order(order_id)
        if order.delivery_user_id != identity.user_id:
            raise Forbidden("order is not assigned to you")
        transition = plan_transition(order, parse_status(status), Actor.DELIVERY, self.clock())
        return await self._commit(order, transition)

    # ---- helpers ----------------------------------------------------------

    async def _commit(self, order: Order, transition: Transition) -> Order:
        """Apply a planned transition; a refund of a balance payment rides in the same transaction"""
        refund_gateway = None
        if transition.refunds_payment and order.payment_method == PaymentMethod.BALANCE:
            refund_gateway = self.gateways.get(PaymentMethod.BALANCE)

        async with self.database.transaction() as session:
            if not await self.orders.apply(transition, session):
                raise ConflictError(f"order {order.order_number} was changed by someone else, please retry")
            if isinstance(refund_gateway, BalancePayGateway):
                await refund_gateway.refund(order, session)

        updated = await self.orders.get(order.id)
        logger.info(
            f"Order {order.order_number}: {transition.from_status.value} -> {transition.to_status.value}",
            extra={'extra_fields': {
                'order_id': order.id,
                'order_number': order.order_number,
                'from_status': transition.from_status.value,
                'to_status': transition.to_status.value,
                'refunded': transition.refunds_payment,
            }},
        )
        if transition.to_status is OrderStatus.CANCELLED:
            self.notifier.notify("order.cancelled", order_event(updated))
        return updated

    async def _get_order(self, order_id: int) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFound("order", order_id)
        return order

    async def _owned_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._get_order(order_id)
        if order.user_id != identity.user_id:
            raise Forbidden("you can only access your own orders")
        return order

    async def _owned_shop(self, identity: Identity) -> Shop:
        shop = await self.accounts.get_shop_by_owner(identity.user_id)
        if shop is None:
            raise NotFound("shop for current user")
        return shop

    async def _shop_order(self, shop: Shop, order_id: int) -> Order:
        order = await self._get_order(order_id)
        if order.shop_id != shop.id:
            raise Forbidden("order does not belong to your shop")
        return order

    @staticmethod
    def _settled(order: Order, transaction_id: str) -> bool:
        """Paid already, or this very transaction was recorded as a refund"""
        if order.payment_status == PaymentStatus.PAID:
            return True
        return order.payment_status == PaymentStatus.REFUNDED and order.payment_transaction_id == transaction_id

    def _already_paid(self, order: Order) -> PaymentResult:
        return PaymentResult(
            success=True,
            transaction_id=order.payment_transaction_id,
            message="order already paid",
            already_paid=True,
        )

    def _log_paid(self, order: Order) -> None:
        logger.info(
            f"Order paid: {order.order_number}",
            extra={'extra_fields': {
                'order_id': order.id,
                'order_number': order.order_number,
                'payment_method': order.payment_method,
                'transaction_id': order.payment_transaction_id,
                'amount': order.total_amount,
            }},
        )
