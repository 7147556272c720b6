"""Payment Gateway Interface - Abstract base class for all gateway implementations.

Defines the contract every provider adapter follows, the value objects
passed across it, and the optional capabilities some adapters add
(refund, reversal, deposit, pre-authorization, card bindings).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from app.core.exceptions import ConfigurationError, ValidationError
from app.core.logging import sanitize_for_logging
from app.core.metrics import PROVIDER_REQUEST_DURATION_SECONDS
from app.modules.payments.models import GatewayType, PaymentStatus
from app.modules.payments.provider_configs import (
    SUPPORTED_CURRENCIES,
    ProviderConfig,
    parse_provider_config,
)
from app.modules.payments.utils import first_present

logger = logging.getLogger(__name__)


@dataclass
class PaymentOrder:
    """Order data handed to an adapter for initiation. Never persisted."""
    order_id: str
    order_number: str
    amount: float
    currency: str
    description: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentResult:
    """Outcome of an initiation or capture operation."""
    success: bool
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    form_data: Optional[dict[str, str]] = None
    form_action: Optional[str] = None
    form_method: str = "POST"
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookData:
    """Inbound notification as received by the webhook route."""
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    # Provider transaction id of the payment the notification resolved to
    transaction_id: Optional[str] = None


@dataclass
class WebhookVerification:
    valid: bool
    error: Optional[str] = None


@dataclass
class WebhookReferences:
    """Identifiers a notification carries for locating the payment."""
    transaction_id: Optional[str] = None
    order_number: Optional[str] = None


@dataclass
class CardBinding:
    binding_id: str
    masked_pan: Optional[str] = None
    card_holder_name: Optional[str] = None
    expiry_date: Optional[str] = None


@dataclass
class BindingsResult:
    success: bool
    bindings: list[CardBinding] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None


# ============================================
# Optional capabilities
# ============================================

@runtime_checkable
class SupportsRefund(Protocol):
    async def refund(self, transaction_id: str, amount: float, currency: str) -> PaymentResult: ...


@runtime_checkable
class SupportsReverse(Protocol):
    async def reverse(self, transaction_id: str) -> PaymentResult: ...


@runtime_checkable
class SupportsDeposit(Protocol):
    async def deposit(self, transaction_id: str, amount: Optional[float] = None) -> PaymentResult: ...


@runtime_checkable
class SupportsPreAuthorization(Protocol):
    async def register_pre_authorized(self, order: PaymentOrder) -> PaymentResult: ...


@runtime_checkable
class SupportsCardBinding(Protocol):
    async def list_bindings(self, client_id: str) -> BindingsResult: ...

    async def bind_card(self, binding_id: str) -> PaymentResult: ...

    async def unbind_card(self, binding_id: str) -> PaymentResult: ...

    async def pay_with_binding(
        self, transaction_id: str, binding_id: str, cvc: Optional[str] = None
    ) -> PaymentResult: ...


def supports(gateway: "PaymentGatewayInterface", capability: type) -> bool:
    """Check whether a gateway offers an optional capability."""
    return isinstance(gateway, capability)


class PaymentGatewayInterface(ABC):
    """Abstract interface for all payment gateway implementations.

    Construction parses the raw config into the provider's schema and runs
    validate_config(); a rejected config raises ConfigurationError so
    misconfiguration fails at build time rather than at first use.
    Operation failures are returned as failed results, never raised.
    """

    gateway_type: GatewayType

    def __init__(
        self,
        config: dict | ProviderConfig,
        test_mode: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gateway with configuration.

        Args:
            config: Decrypted provider config bundle
            test_mode: Use the provider's test environment and test credentials
            transport: Optional httpx transport for outbound calls
        """
        if isinstance(config, ProviderConfig):
            self.config = config
        else:
            try:
                self.config = parse_provider_config(self.gateway_type, config)
            except ValidationError as e:
                raise ConfigurationError(e.detail) from e

        self.test_mode = test_mode
        self._transport = transport

        if not self.validate_config():
            raise ConfigurationError(
                f"Invalid {self.gateway_type.value} configuration for "
                f"{'test' if test_mode else 'production'} mode"
            )

    @property
    def provider(self) -> str:
        return self.gateway_type.value

    @abstractmethod
    def validate_config(self) -> bool:
        """Check that the config carries what this mode needs."""

    @abstractmethod
    async def initiate_payment(self, order: PaymentOrder) -> PaymentResult:
        """Start a payment and return the redirect or form instruction."""

    @abstractmethod
    async def verify_webhook(self, data: WebhookData) -> WebhookVerification:
        """Decide whether a notification may be acted upon."""

    @abstractmethod
    async def process_webhook(self, data: WebhookData) -> PaymentStatus:
        """Resolve the canonical status a notification reports."""

    @abstractmethod
    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        """Query the provider for the canonical status of a transaction."""

    def extract_references(self, payload: dict[str, Any]) -> WebhookReferences:
        """Pull payment identifiers out of a notification payload."""
        return WebhookReferences(
            transaction_id=first_present(
                payload, "transactionId", "transaction_id", "paymentId", "payment_id"
            ),
            order_number=first_present(
                payload, "orderNumber", "order_number", "orderId", "order_id"
            ),
        )

    # ============================================
    # Shared helpers
    # ============================================

    def error_result(self, error_code: str, error_message: str, **metadata: Any) -> PaymentResult:
        return PaymentResult(
            success=False,
            error_code=error_code,
            error_message=error_message,
            metadata={"gateway_type": self.provider, "test_mode": self.test_mode, **metadata},
        )

    def success_result(self, **kwargs: Any) -> PaymentResult:
        metadata = kwargs.pop("metadata", None) or {}
        return PaymentResult(
            success=True,
            metadata={"gateway_type": self.provider, "test_mode": self.test_mode, **metadata},
            **kwargs,
        )

    @staticmethod
    def validate_amount(amount: float, min_amount: float = 0.01, max_amount: Optional[float] = None) -> bool:
        if amount is None or amount != amount or amount in (float("inf"), float("-inf")):
            return False
        if amount < min_amount:
            return False
        return max_amount is None or amount <= max_amount

    @staticmethod
    def validate_currency(currency: str, supported: tuple[str, ...] = SUPPORTED_CURRENCIES) -> bool:
        return bool(currency) and currency.upper() in supported

    async def _make_request(
        self,
        url: str,
        data: dict[str, Any],
        form: bool = False,
    ) -> dict:
        """POST to a provider API and return the decoded JSON body.

        Args:
            url: Full API URL
            data: Request body
            form: Send as application/x-www-form-urlencoded instead of JSON

        Returns:
            Response JSON
        """
        logger.debug(f"{self.provider} request to {url}: {sanitize_for_logging(data)}")

        with PROVIDER_REQUEST_DURATION_SECONDS.labels(provider=self.provider).time():
            async with httpx.AsyncClient(transport=self._transport) as client:
                if form:
                    response = await client.post(
                        url,
                        data={k: str(v) for k, v in data.items() if v is not None},
                        headers={"Accept": "application/json"},
                    )
                else:
                    response = await client.post(
                        url,
                        json=data,
                        headers={"Content-Type": "application/json", "Accept": "application/json"},
                    )
                response.raise_for_status()
                body = response.json() if response.content else {}

        logger.debug(f"{self.provider} response from {url}: {sanitize_for_logging(body)}")
        return body
