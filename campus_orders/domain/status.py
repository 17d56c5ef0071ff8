from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    WECHAT = "wechat"
    BALANCE = "balance"


class DeliveryType(int, Enum):
    IMMEDIATE = 0
    SCHEDULED = 1


class Actor(str, Enum):
    """Who is driving a status change"""
    CUSTOMER = "customer"
    SHOP = "shop"
    DELIVERY = "delivery"
    PAYMENT = "payment"
    SYSTEM = "system"


class ApplicationType(str, Enum):
    DELIVERY = "delivery"
    RECEIVER = "receiver"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
