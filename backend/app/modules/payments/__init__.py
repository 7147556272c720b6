"""Payments Module.

Payment orchestration over Idram, Ameriabank, Inecobank, and ArCa.
"""

from app.modules.payments.models import (
    GatewayType,
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    PaymentWebhookLog,
)
from app.modules.payments.interface import (
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentResult,
    WebhookData,
)
from app.modules.payments.service import (
    GatewayManagerService,
    PaymentGatewayFactory,
    PaymentService,
)
from app.modules.payments.webhook import WebhookProcessor

__all__ = [
    "GatewayType",
    "Payment",
    "PaymentGatewayConfig",
    "PaymentStatus",
    "PaymentWebhookLog",
    "PaymentGatewayInterface",
    "PaymentOrder",
    "PaymentResult",
    "WebhookData",
    "GatewayManagerService",
    "PaymentGatewayFactory",
    "PaymentService",
    "WebhookProcessor",
]
