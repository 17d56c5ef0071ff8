from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---- order creation -------------------------------------------------------

class OrderItemIn(CamelModel):
    goods_id: Optional[Union[int, str]] = None
    goods_name: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    specs: str = ""
    image: str = ""
    subtotal: Optional[float] = None

class DeliveryAddressIn(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

class OrderCreate(CamelModel):
    shop_id: Optional[int] = None
    shop_name: Optional[str] = None
    order_items: List[OrderItemIn] = Field(default_factory=list)
    delivery_address: Optional[DeliveryAddressIn] = None
    delivery_type: int = 0
    delivery_time: Optional[datetime] = None
    goods_amount: Optional[float] = None
    delivery_fee: float = 0
    coupon_amount: float = 0
    total_amount: Optional[float] = None
    remark: str = ""
    order_time: Optional[datetime] = None


# ---- order requests -------------------------------------------------------

class OrderIdRequest(CamelModel):
    order_id: int

class OrderListRequest(CamelModel):
    status: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)

class CancelRequest(CamelModel):
    order_id: int
    cancel_reason: Optional[str] = None

class PayRequest(CamelModel):
    order_id: int
    payment_method: str
    amount: float

class UpdateStatusRequest(CamelModel):
    order_id: int
    status: str

class WechatNotifyRequest(CamelModel):
    order_number: str
    transaction_id: str
    total_fee: Optional[int] = None

class ShopOrdersRequest(CamelModel):
    status: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    order_number: Optional[str] = None

class ShopUpdateStatusRequest(CamelModel):
    order_id: int
    status: str
    cancel_reason: Optional[str] = None
    delivery_user_id: Optional[int] = None

class BatchUpdateRequest(CamelModel):
    order_ids: List[int] = Field(min_length=1, max_length=100)
    action: str
    cancel_reason: Optional[str] = None


# ---- order responses ------------------------------------------------------

class OrderItemRead(CamelModel):
    goods_id: str
    goods_name: str
    price: float
    quantity: int
    specs: str = ""
    image: str = ""
    subtotal: float

class OrderRead(CamelModel):
    id: int
    order_number: str
    user_id: int
    shop_id: int
    shop_name: str
    delivery_user_id: Optional[int] = None
    order_items: List[OrderItemRead] = Field(validation_alias="items")
    delivery_address: Dict[str, Any]
    delivery_type: int
    delivery_time: Optional[datetime] = None
    goods_amount: float
    delivery_fee: float
    coupon_amount: float
    total_amount: float
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_time: Optional[datetime] = None
    payment_transaction_id: Optional[str] = None
    payment_expire_time: datetime
    remark: str = ""
    cancel_reason: str = ""
    order_time: datetime
    confirm_time: Optional[datetime] = None
    delivery_start_time: Optional[datetime] = None
    completed_time: Optional[datetime] = None
    cancelled_time: Optional[datetime] = None
    create_time: datetime
    update_time: datetime

class OrderCreated(CamelModel):
    order_id: int = Field(validation_alias="id")
    order_number: str
    total_amount: float
    status: str
    payment_status: str
    create_time: datetime
    payment_expire_time: datetime

class PaymentRead(CamelModel):
    order_id: int
    order_number: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    already_paid: bool = False
    pending: bool = False
    prepay_id: Optional[str] = None
    pay_params: Optional[Dict[str, Any]] = None


# ---- role applications ----------------------------------------------------

class RoleApplicationCreate(CamelModel):
    real_name: Optional[str] = None
    id_number: Optional[str] = None
    student_number: Optional[str] = None
    phone: Optional[str] = None
    id_card_front_url: Optional[str] = None
    id_card_back_url: Optional[str] = None

class ApplicationStatusRequest(CamelModel):
    application_type: str

class ReviewRequest(CamelModel):
    application_id: int
    action: str
    review_comment: str = ""

class RoleApplicationRead(CamelModel):
    id: int
    user_id: int
    application_type: str
    real_name: str
    student_number: str
    phone: str
    status: str
    review_comment: str = ""
    review_time: Optional[datetime] = None
    create_time: datetime


class RoleApplicationDetail(RoleApplicationRead):
    """Admin view, including the identity documents"""
    id_number: str
    id_card_front_url: str
    id_card_back_url: str
    reviewed_by: Optional[int] = None
    update_time: datetime


class BatchReviewItem(CamelModel):
    application_id: int
    action: str
    review_comment: str = ""


class BatchReviewRequest(CamelModel):
    applications: List[BatchReviewItem] = Field(min_length=1, max_length=100)


# ---- development ----------------------------------------------------------

class TokenRequest(CamelModel):
    user_id: int
    name: str = ""
    role: str = "user"
