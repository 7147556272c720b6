"""Inecobank gateway implementation.

Runs on the iPay REST API with one merchant account per currency.
"""

from app.modules.payments.gateways.rbs import RbsGateway
from app.modules.payments.models import GatewayType
from app.modules.payments.provider_configs import InecobankConfig


class InecobankGateway(RbsGateway):
    """Inecobank gateway (AMD, USD, EUR, RUB)."""

    gateway_type = GatewayType.INECOBANK
    config: InecobankConfig

    SUPPORTED_CURRENCIES = ("AMD", "USD", "EUR", "RUB")

    # Inecobank's return callback names the order id paymentID
    CALLBACK_ID_FIELD = "paymentID"

    def validate_config(self) -> bool:
        return self._has_account()
