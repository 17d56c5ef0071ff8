from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Numeric, String, Text, text
from datetime import datetime, timezone
from typing import Optional

# Money columns come back as floats; stored with two decimals
Money = Numeric(10, 2, asdecimal=False)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True)
    openid: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    nickname: Mapped[str] = mapped_column(String(100), default="")
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    balance: Mapped[float] = mapped_column(Money, default=0)
    is_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    is_receiver: Mapped[bool] = mapped_column(Boolean, default=False)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class Shop(Base):
    __tablename__ = "shops"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        # the expiry sweep scans on exactly these three columns
        Index("ix_orders_expiry_scan", "status", "payment_status", "payment_expire_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)
    shop_name: Mapped[str] = mapped_column(String(100), default="")
    delivery_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Address snapshot: name, phone, address, latitude, longitude
    delivery_address: Mapped[dict] = mapped_column(JSON)
    delivery_type: Mapped[int] = mapped_column(default=0)
    delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    goods_amount: Mapped[float] = mapped_column(Money)
    delivery_fee: Mapped[float] = mapped_column(Money, default=0)
    coupon_amount: Mapped[float] = mapped_column(Money, default=0)
    total_amount: Mapped[float] = mapped_column(Money)

    status: Mapped[str] = mapped_column(String(20), index=True)
    payment_status: Mapped[str] = mapped_column(String(20))
    payment_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    prepay_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_expire_time: Mapped[datetime] = mapped_column(DateTime)

    remark: Mapped[str] = mapped_column(Text, default="")
    cancel_reason: Mapped[str] = mapped_column(String(255), default="")

    order_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    confirm_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivery_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(default=0)
    goods_id: Mapped[str] = mapped_column(String(64))
    goods_name: Mapped[str] = mapped_column(String(200))
    price: Mapped[float] = mapped_column(Money)
    quantity: Mapped[int]
    specs: Mapped[str] = mapped_column(String(200), default="")
    image: Mapped[str] = mapped_column(String(500), default="")
    subtotal: Mapped[float] = mapped_column(Money)
    order: Mapped[Order] = relationship("Order", back_populates="items")

class RoleApplication(Base):
    __tablename__ = "role_applications"
    __table_args__ = (
        # one open application per user and role
        Index(
            "uq_role_applications_pending",
            "user_id",
            "application_type",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    application_type: Mapped[str] = mapped_column(String(20))
    real_name: Mapped[str] = mapped_column(String(50))
    id_number: Mapped[str] = mapped_column(String(18))
    student_number: Mapped[str] = mapped_column(String(32))
    phone: Mapped[str] = mapped_column(String(20))
    id_card_front_url: Mapped[str] = mapped_column(String(500))
    id_card_back_url: Mapped[str] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), default="pending")
    review_comment: Mapped[str] = mapped_column(String(255), default="")
    reviewed_by: Mapped[Optional[int]] = mapped_column(nullable=True)
    review_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
