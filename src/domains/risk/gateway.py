"""Read-only access to the marketplace data the risk engine enriches from.

The engine depends only on the ``SignalRepository`` protocol; the SQLAlchemy
adapter below is what the API wires in. Tests substitute in-memory fakes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import (
    Cart,
    CartItem,
    LoginAttempt,
    Order,
    OrderItem,
    Product,
    RiskAssessmentRecord,
    Store,
    User,
    UserSession,
)

from .models import UNKNOWN_STORE_ID, UNKNOWN_STORE_NAME, LineItem


@dataclass(frozen=True)
class ProductRecord:
    product_id: str
    name: str
    price_cents: int
    store_id: str
    store_name: str


@dataclass(frozen=True)
class AccountRecord:
    user_id: str
    created_at: datetime
    user_type: str | None = None


@dataclass(frozen=True)
class OrderStats:
    total: int
    successful: int


class SignalRepository(Protocol):
    async def get_products(self, product_ids: list[int]) -> dict[str, ProductRecord]: ...

    async def get_order_items(self, order_id: int) -> list[LineItem]: ...

    async def get_cart_items(self, user_id: str) -> list[LineItem]: ...

    async def get_account(self, user_id: str) -> AccountRecord | None: ...

    async def owns_store(self, user_id: str) -> bool: ...

    async def get_order_stats(self, user_id: str, success_status: str) -> OrderStats: ...

    async def count_orders_with_status(
        self, user_id: str, status: str, since: datetime
    ) -> int: ...

    async def count_active_sessions(self, user_id: str, now: datetime) -> int: ...

    async def count_failed_logins(self, user_id: str, since: datetime) -> int: ...

    async def get_payment_methods_since(self, user_id: str, since: datetime) -> set[str]: ...


def _store_id(value) -> str:
    return str(value) if value is not None else UNKNOWN_STORE_ID


class SqlSignalRepository:
    """SignalRepository backed by the marketplace Postgres schema."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _execute(self, stmt):
        # A failed statement aborts the Postgres transaction; roll back so the
        # remaining reads and the assessment insert can still use the session.
        try:
            return await self._session.execute(stmt)
        except Exception:
            await self._session.rollback()
            raise

    async def get_products(self, product_ids: list[int]) -> dict[str, ProductRecord]:
        if not product_ids:
            return {}
        stmt = (
            select(Product.id, Product.name, Product.price, Product.store_id, Store.name)
            .outerjoin(Store, Product.store_id == Store.id)
            .where(Product.id.in_(product_ids))
        )
        result = await self._execute(stmt)
        records = {}
        for product_id, name, price, store_id, store_name in result.all():
            records[str(product_id)] = ProductRecord(
                product_id=str(product_id),
                name=name,
                price_cents=price or 0,
                store_id=_store_id(store_id),
                store_name=store_name or UNKNOWN_STORE_NAME,
            )
        return records

    async def get_order_items(self, order_id: int) -> list[LineItem]:
        stmt = (
            select(
                OrderItem.product_id,
                OrderItem.quantity,
                OrderItem.price_at_time,
                Product.name,
                Product.store_id,
                Store.name,
            )
            .join(Product, OrderItem.product_id == Product.id)
            .outerjoin(Store, Product.store_id == Store.id)
            .where(OrderItem.order_id == order_id)
        )
        result = await self._execute(stmt)
        return [
            LineItem(
                product_id=str(product_id),
                name=name,
                unit_price_cents=price_at_time,
                quantity=quantity,
                store_id=_store_id(store_id),
                store_name=store_name or UNKNOWN_STORE_NAME,
            )
            for product_id, quantity, price_at_time, name, store_id, store_name in result.all()
        ]

    async def get_cart_items(self, user_id: str) -> list[LineItem]:
        stmt = (
            select(
                CartItem.product_id,
                CartItem.quantity,
                Product.price,
                Product.name,
                Product.store_id,
                Store.name,
            )
            .join(Cart, CartItem.cart_id == Cart.id)
            .join(Product, CartItem.product_id == Product.id)
            .outerjoin(Store, Product.store_id == Store.id)
            .where(Cart.user_id == user_id)
        )
        result = await self._execute(stmt)
        return [
            LineItem(
                product_id=str(product_id),
                name=name,
                unit_price_cents=price or 0,
                quantity=quantity,
                store_id=_store_id(store_id),
                store_name=store_name or UNKNOWN_STORE_NAME,
            )
            for product_id, quantity, price, name, store_id, store_name in result.all()
        ]

    async def get_account(self, user_id: str) -> AccountRecord | None:
        stmt = select(User.created_at, User.user_type).where(User.id == user_id).limit(1)
        result = await self._execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return AccountRecord(user_id=user_id, created_at=row[0], user_type=row[1])

    async def owns_store(self, user_id: str) -> bool:
        stmt = select(func.count()).select_from(Store).where(Store.owner_id == user_id)
        result = await self._execute(stmt)
        return result.scalar_one() > 0

    async def get_order_stats(self, user_id: str, success_status: str) -> OrderStats:
        stmt = select(
            func.count(),
            func.count().filter(Order.status == success_status),
        ).where(Order.user_id == user_id)
        result = await self._execute(stmt)
        total, successful = result.one()
        return OrderStats(total=total or 0, successful=successful or 0)

    async def count_orders_with_status(self, user_id: str, status: str, since: datetime) -> int:
        stmt = select(func.count()).where(
            Order.user_id == user_id,
            Order.status == status,
            Order.created_at >= since,
        )
        result = await self._execute(stmt)
        return result.scalar_one()

    async def count_active_sessions(self, user_id: str, now: datetime) -> int:
        stmt = select(func.count()).where(
            UserSession.user_id == user_id,
            UserSession.expires_at > now,
        )
        result = await self._execute(stmt)
        return result.scalar_one()

    async def count_failed_logins(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count()).where(
            LoginAttempt.user_id == user_id,
            LoginAttempt.success.is_(False),
            LoginAttempt.created_at >= since,
        )
        result = await self._execute(stmt)
        return result.scalar_one()

    async def get_payment_methods_since(self, user_id: str, since: datetime) -> set[str]:
        stmt = select(func.distinct(RiskAssessmentRecord.payment_method_id)).where(
            RiskAssessmentRecord.user_id == user_id,
            RiskAssessmentRecord.payment_method_id.isnot(None),
            RiskAssessmentRecord.created_at >= since,
        )
        result = await self._execute(stmt)
        return {row for row in result.scalars().all() if row}
