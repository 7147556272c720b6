"""Order aggregate consumed by the payment module."""

from app.modules.order.models import Order, OrderPaymentStatus
from app.modules.order.repository import OrderRepository

__all__ = [
    "Order",
    "OrderPaymentStatus",
    "OrderRepository",
]
