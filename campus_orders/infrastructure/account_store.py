from decimal import Decimal
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from campus_orders.domain.models import Shop, User
from campus_orders.domain.status import ApplicationType
from campus_orders.infrastructure.db import Database


def _money(amount: float) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"))


class AccountStore:
    """Users, their wallet balance and the shops they own"""

    def __init__(self, database: Database):
        self.database = database

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.database.session() as session:
            return await session.get(User, user_id, populate_existing=True)

    async def get_shop(self, shop_id: int) -> Optional[Shop]:
        async with self.database.session() as session:
            return await session.get(Shop, shop_id)

    async def get_shop_by_owner(self, owner_id: int) -> Optional[Shop]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Shop).where(Shop.owner_id == owner_id).order_by(Shop.id).limit(1)
            )
            return result.scalar_one_or_none()

    async def get_balance(self, user_id: int) -> Optional[float]:
        async with self.database.session() as session:
            return await session.scalar(select(User.balance).where(User.id == user_id))

    async def debit(self, session: AsyncSession, user_id: int, amount: float) -> bool:
        """Take ``amount`` from the wallet unless that would make it negative"""
        value = _money(amount)
        result = await session.execute(
            update(User)
            .where(User.id == user_id, User.balance >= value)
            .values(balance=User.balance - value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def credit(self, session: AsyncSession, user_id: int, amount: float) -> bool:
        value = _money(amount)
        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def grant_role(self, session: AsyncSession, user_id: int, application_type: ApplicationType) -> bool:
        column = "is_delivery" if application_type is ApplicationType.DELIVERY else "is_receiver"
        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values({column: True})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
