"""Shared base for the iPay (RBS) payment REST API.

Inecobank and ArCa both run on ipay.arca.am and speak the same
form-encoded protocol: register.do returns an orderId and a hosted page
formUrl, and getOrderStatusExtended.do reports the order state. Their
notifications are unsigned, so they only trigger a status query.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from app.modules.payments.interface import (
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentResult,
    WebhookData,
    WebhookReferences,
    WebhookVerification,
)
from app.modules.payments.models import PaymentStatus
from app.modules.payments.provider_configs import CurrencyAccount
from app.modules.payments.utils import currency_numeric_code, first_present, to_minor_units

logger = logging.getLogger(__name__)


class RbsGateway(PaymentGatewayInterface):
    """Common request, status and notification handling for iPay providers."""

    SANDBOX_URL = "https://testipay.arca.am"
    PRODUCTION_URL = "https://ipay.arca.am"
    API_PATH = "/payment/rest"

    SUPPORTED_CURRENCIES: tuple[str, ...] = ("AMD",)

    # Payload key carrying the provider order id on a gateway callback
    CALLBACK_ID_FIELD = "orderId"
    DIRECT_WEBHOOK_FIELDS = ("orderNumber", "status", "action")

    # getOrderStatusExtended.do orderStatus values
    _map_order_status = {
        0: PaymentStatus.PENDING,      # registered, not paid
        1: PaymentStatus.PENDING,      # pre-authorized, awaiting deposit
        2: PaymentStatus.COMPLETED,    # deposited
        3: PaymentStatus.CANCELLED,    # reversed
        4: PaymentStatus.REFUNDED,
        5: PaymentStatus.PROCESSING,   # ACS authorization started
        6: PaymentStatus.FAILED,       # declined
    }

    @property
    def base_url(self) -> str:
        return self.SANDBOX_URL if self.test_mode else self.PRODUCTION_URL

    def _api_url(self, operation: str) -> str:
        url = f"{self.base_url}{self.API_PATH}/{operation}"
        test_port = getattr(self.config, "test_port", None)
        if self.test_mode and test_port:
            parts = urlsplit(url)
            url = urlunsplit(parts._replace(netloc=f"{parts.hostname}:{test_port}"))
        return url

    def _account(self, currency: str = "AMD") -> Optional[CurrencyAccount]:
        account = self.config.accounts.for_currency(currency)
        return account if account is not None and account.is_complete else None

    def _default_account(self) -> Optional[CurrencyAccount]:
        return self._account("AMD") or self.config.accounts.first_complete()

    def _has_account(self) -> bool:
        return self.config.accounts.first_complete() is not None

    @staticmethod
    def _is_ok(response: dict[str, Any]) -> bool:
        # errorCode is omitted by some iPay versions on success
        return str(response.get("errorCode", "0")) == "0"

    def _extra_register_fields(self, order: PaymentOrder) -> dict[str, Any]:
        return {}

    async def _register(
        self,
        operation: str,
        order: PaymentOrder,
        error_code: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentResult:
        """Call a registration endpoint (register.do or registerPreAuth.do).

        Args:
            operation: Endpoint name
            order: Payment order data
            error_code: Code reported when the call itself fails
            metadata: Extra metadata attached to a successful result

        Returns:
            PaymentResult with the hosted page redirect URL
        """
        try:
            if not self.validate_amount(order.amount):
                return self.error_result("INVALID_AMOUNT", "Payment amount must be at least 0.01")

            currency = order.currency.upper()
            if not self.validate_currency(currency, self.SUPPORTED_CURRENCIES):
                return self.error_result(
                    "INVALID_CURRENCY",
                    f"Currency {order.currency} is not supported by {self.provider}",
                )

            account = self._account(currency)
            if account is None:
                return self.error_result(
                    "MISSING_ACCOUNT",
                    f"Account credentials not configured for currency {currency}",
                )

            request_data = {
                "userName": account.username,
                "password": account.password,
                "orderNumber": order.order_number,
                "amount": to_minor_units(order.amount, currency),
                "currency": currency_numeric_code(currency),
                "returnUrl": self.config.success_url or order.return_url,
                "failUrl": self.config.fail_url or order.cancel_url,
                "description": order.description or f"Order {order.order_number}",
            }
            request_data.update(self._extra_register_fields(order))

            response = await self._make_request(self._api_url(operation), request_data, form=True)

            if self._is_ok(response) and response.get("formUrl") and response.get("orderId"):
                return self.success_result(
                    payment_id=str(response["orderId"]),
                    transaction_id=str(response["orderId"]),
                    redirect_url=response["formUrl"],
                    form_method="GET",
                    metadata=metadata,
                )

            return self.error_result(
                str(response.get("errorCode") or "PAYMENT_ERROR"),
                response.get("errorMessage") or "Failed to initiate payment",
            )

        except Exception as e:
            logger.error(f"{self.provider} {operation} error: {e}")
            return self.error_result(error_code, str(e))

    async def initiate_payment(self, order: PaymentOrder) -> PaymentResult:
        return await self._register("register.do", order, "INITIATION_ERROR")

    async def verify_webhook(self, data: WebhookData) -> WebhookVerification:
        payload = data.payload

        # Gateway callback: identifier plus currency, verified by status query
        if payload.get(self.CALLBACK_ID_FIELD) and payload.get("currency"):
            return WebhookVerification(valid=True)

        for name in self.DIRECT_WEBHOOK_FIELDS:
            if payload.get(name) in (None, ""):
                return WebhookVerification(valid=False, error=f"Missing required field: {name}")

        return WebhookVerification(valid=True)

    async def process_webhook(self, data: WebhookData) -> PaymentStatus:
        """Resolve a notification by querying the order status.

        The query result is canonical. The payload's own status is consulted
        only when no status query result is available.
        """
        verification = await self.verify_webhook(data)
        if not verification.valid:
            return PaymentStatus.FAILED

        payload = data.payload
        order_id = data.transaction_id or self.extract_references(payload).transaction_id

        if order_id:
            status = await self._query_status(order_id=order_id)
        else:
            status = await self._query_status(order_number=first_present(payload, "orderNumber"))

        if status is not None:
            return status

        logger.warning(f"{self.provider} status query unavailable, using notification status")
        return self._status_from_payload(payload)

    def _status_from_payload(self, payload: dict[str, Any]) -> PaymentStatus:
        status = first_present(payload, "status")
        if status == "1":
            return PaymentStatus.COMPLETED
        if status == "2":
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        status = await self._query_status(order_id=transaction_id)
        return status if status is not None else PaymentStatus.PENDING

    async def get_order_status(
        self,
        order_id: Optional[str] = None,
        order_number: Optional[str] = None,
    ) -> dict[str, Any]:
        """Raw getOrderStatusExtended.do response."""
        account = self._default_account()
        request_data = {
            "userName": account.username,
            "password": account.password,
        }
        if order_id:
            request_data["orderId"] = order_id
        else:
            request_data["orderNumber"] = order_number
        return await self._make_request(
            self._api_url("getOrderStatusExtended.do"), request_data, form=True
        )

    async def _query_status(
        self,
        order_id: Optional[str] = None,
        order_number: Optional[str] = None,
    ) -> Optional[PaymentStatus]:
        """Canonical status from the status API; None when no answer was obtained."""
        if not order_id and not order_number:
            return None

        try:
            response = await self.get_order_status(order_id=order_id, order_number=order_number)
        except Exception as e:
            logger.error(f"{self.provider} get_payment_status error: {e}")
            return None

        if not self._is_ok(response):
            logger.error(
                f"{self.provider} status query rejected: "
                f"{response.get('errorCode')} {response.get('errorMessage')}"
            )
            return None

        return self._map_transaction_status(response)

    def _map_transaction_status(self, response: dict[str, Any]) -> PaymentStatus:
        try:
            order_status = int(response.get("orderStatus"))
        except (TypeError, ValueError):
            order_status = None

        status = self._map_order_status.get(order_status, PaymentStatus.PENDING)

        # Issuer decline codes override a non-final order status
        action_code = response.get("actionCode")
        try:
            declined = action_code is not None and 0 < int(action_code) < 1000
        except (TypeError, ValueError):
            declined = False
        if declined and status not in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            status = PaymentStatus.FAILED

        return status

    def extract_references(self, payload: dict[str, Any]) -> WebhookReferences:
        return WebhookReferences(
            transaction_id=first_present(payload, self.CALLBACK_ID_FIELD, "orderId", "mdOrder"),
            order_number=first_present(payload, "orderNumber"),
        )
