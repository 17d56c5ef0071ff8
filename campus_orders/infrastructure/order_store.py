"""
Order persistence.

Reads go through short-lived sessions. Every status change is a single
conditional UPDATE keyed on the status and payment status the caller last
saw, so two writers racing for the same order cannot both win.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from campus_orders.domain.models import Order
from campus_orders.domain.state_machine import Transition
from campus_orders.domain.status import OrderStatus, PaymentStatus
from campus_orders.infrastructure.db import Database


@dataclass
class OrderFilter:
    user_id: Optional[int] = None
    shop_id: Optional[int] = None
    status: Optional[str] = None
    order_number: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class OrderStore:
    def __init__(self, database: Database):
        self.database = database

    async def add(self, order: Order) -> Order:
        async with self.database.transaction() as session:
            session.add(order)
        return order

    async def get(self, order_id: int) -> Optional[Order]:
        async with self.database.session() as session:
            return await session.get(Order, order_id, populate_existing=True)

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        async with self.database.session() as session:
            result = await session.execute(select(Order).where(Order.order_number == order_number))
            return result.scalar_one_or_none()

    async def get_many(self, order_ids: Iterable[int]) -> List[Order]:
        async with self.database.session() as session:
            result = await session.execute(select(Order).where(Order.id.in_(list(order_ids))))
            return list(result.scalars().all())

    async def list(self, filters: OrderFilter, page: int = 1, limit: int = 10) -> Tuple[List[Order], int]:
        """Newest first; returns one page plus the total match count"""
        conditions = []
        if filters.user_id is not None:
            conditions.append(Order.user_id == filters.user_id)
        if filters.shop_id is not None:
            conditions.append(Order.shop_id == filters.shop_id)
        if filters.status:
            conditions.append(Order.status == filters.status)
        if filters.order_number:
            conditions.append(Order.order_number.ilike(f"%{filters.order_number}%"))
        if filters.start_date is not None:
            conditions.append(Order.create_time >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Order.create_time <= filters.end_date)

        async with self.database.session() as session:
            total = await session.scalar(select(func.count(Order.id)).where(*conditions))
            result = await session.execute(
                select(Order)
                .where(*conditions)
                .order_by(Order.create_time.desc(), Order.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def find_expired(self, now: datetime, limit: Optional[int] = None) -> List[Order]:
        """Pending, unpaid orders whose payment window closed before ``now``"""
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.payment_status == PaymentStatus.UNPAID.value,
                Order.payment_expire_time < now,
            )
            .order_by(Order.payment_expire_time)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.database.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def apply(self, transition: Transition, session: Optional[AsyncSession] = None) -> bool:
        """
        Write ``transition`` if the row still matches what it was planned from.

        Returns False when another writer changed the order first. With a
        ``session`` the update joins the caller's transaction.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == transition.order_id,
                Order.status == transition.from_status.value,
                Order.payment_status == transition.expected_payment_status.value,
            )
            .values(**transition.values)
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            result = await session.execute(stmt)
        else:
            async with self.database.transaction() as own_session:
                result = await own_session.execute(stmt)
        return result.rowcount == 1

    async def set_prepay_id(self, order_id: int, prepay_id: str, now: datetime) -> bool:
        """Record a provider prepay id once, while the order still awaits payment"""
        async with self.database.transaction() as session:
            result = await session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING.value,
                    Order.payment_status == PaymentStatus.UNPAID.value,
                    Order.prepay_id.is_(None),
                )
                .values(prepay_id=prepay_id, update_time=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1
