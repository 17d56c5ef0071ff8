"""
Payment gateways.

Both gateways answer with a ``PaymentResult``. The balance gateway settles
synchronously inside the caller's transaction; the WeChat gateway builds the
provider request and either settles at once (sandbox) or hands back a
prepay reference and waits for the provider callback.
"""

import secrets
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from campus_orders.core_settings import Settings
from campus_orders.domain.exceptions import InsufficientFunds, NotFound, ValidationError
from campus_orders.domain.models import Order
from campus_orders.domain.status import PaymentMethod
from campus_orders.infrastructure.account_store import AccountStore
from shared.core import get_logger

logger = get_logger(__name__, component="payments")


@dataclass
class PaymentResult:
    success: bool
    transaction_id: Optional[str] = None
    message: Optional[str] = None
    pending: bool = False
    already_paid: bool = False
    prepay_id: Optional[str] = None
    pay_params: Optional[Dict[str, Any]] = None


def to_minor_units(amount: float) -> int:
    """Yuan to fen, rounding half up"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_payment_method(value: str) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f"unsupported payment method: {value}", field="paymentMethod") from None


class WechatPayGateway:
    method = PaymentMethod.WECHAT

    def __init__(self, settings: Settings):
        self.app_id = settings.WECHAT_APP_ID
        self.mch_id = settings.WECHAT_MCH_ID
        self.notify_url = settings.WECHAT_NOTIFY_URL
        self.body_prefix = settings.WECHAT_BODY_PREFIX
        self.sandbox = settings.WECHAT_PAY_SANDBOX

    def build_request(self, order: Order) -> Dict[str, Any]:
        """Unified-order request for a JSAPI payment"""
        return {
            "appid": self.app_id,
            "mch_id": self.mch_id,
            "nonce_str": secrets.token_hex(16),
            "body": f"{self.body_prefix}-{order.order_number}",
            "out_trade_no": order.order_number,
            "total_fee": to_minor_units(order.total_amount),
            "spbill_create_ip": "127.0.0.1",
            "notify_url": self.notify_url,
            "trade_type": "JSAPI",
        }

    def build_pay_params(self, prepay_id: str) -> Dict[str, Any]:
        """Parameters the mini-program passes to requestPayment"""
        return {
            "appId": self.app_id,
            "timeStamp": str(int(time.time())),
            "nonceStr": secrets.token_hex(16),
            "package": f"prepay_id={prepay_id}",
            "signType": "MD5",
        }

    async def charge(self, order: Order, session: Optional[AsyncSession] = None) -> PaymentResult:
        request = self.build_request(order)
        # both modes issue a local prepay reference; the unified-order request is built and logged, not posted
        prepay_id = f"wx_prepay_{secrets.token_hex(12)}"
        logger.info(
            f"WeChat unified order for {order.order_number}",
            extra={'extra_fields': {
                'order_number': order.order_number,
                'total_fee': request["total_fee"],
                'sandbox': self.sandbox,
            }},
        )

        if self.sandbox:
            return PaymentResult(
                success=True,
                transaction_id=f"wx{int(time.time() * 1000)}{secrets.randbelow(1000):03d}",
                prepay_id=prepay_id,
            )
        return PaymentResult(
            success=True,
            pending=True,
            message="awaiting payment confirmation",
            prepay_id=prepay_id,
            pay_params=self.build_pay_params(prepay_id),
        )


class BalancePayGateway:
    method = PaymentMethod.BALANCE

    def __init__(self, accounts: AccountStore):
        self.accounts = accounts

    async def charge(self, order: Order, session: Optional[AsyncSession] = None) -> PaymentResult:
        """Debit the payer's wallet; must run inside the order's payment transaction"""
        if session is None:
            raise RuntimeError("balance payments need the caller's transaction")

        balance = await self.accounts.get_balance(order.user_id)
        if balance is None:
            raise NotFound("user", order.user_id)
        if balance < order.total_amount:
            raise InsufficientFunds(balance=balance, amount=order.total_amount)

        if not await self.accounts.debit(session, order.user_id, order.total_amount):
            # balance dropped between the read and the guarded debit
            raise InsufficientFunds(balance=balance, amount=order.total_amount)

        return PaymentResult(success=True, transaction_id=f"bal{order.order_number}")

    async def refund(self, order: Order, session: AsyncSession) -> bool:
        return await self.accounts.credit(session, order.user_id, order.total_amount)


Gateway = Union[WechatPayGateway, BalancePayGateway]


def build_gateways(settings: Settings, accounts: AccountStore) -> Dict[PaymentMethod, Gateway]:
    return {
        PaymentMethod.WECHAT: WechatPayGateway(settings),
        PaymentMethod.BALANCE: BalancePayGateway(accounts),
    }
