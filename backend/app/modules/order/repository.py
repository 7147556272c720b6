"""Repository for order lookups and payment status write-back."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.order.models import Order, OrderPaymentStatus


class OrderRepository:
    """Repository for Order."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def get_by_number(self, number: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.number == number))
        return result.scalar_one_or_none()

    async def set_payment_gateway(self, order: Order, gateway_id: uuid.UUID) -> Order:
        order.payment_gateway_id = gateway_id
        await self.session.flush()
        return order

    async def set_payment_status(
        self,
        order: Order,
        status: OrderPaymentStatus,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        """Write the aggregate payment status back to the order.

        paid_at is only set once; a repeated completion keeps the first value.
        """
        order.payment_status = status.value
        if paid_at is not None and order.paid_at is None:
            order.paid_at = paid_at
        await self.session.flush()
        return order
