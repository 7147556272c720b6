"""Ameriabank vPOS gateway implementation.

Register/notify provider: InitPayment returns a PaymentID and the customer
is redirected to the hosted payment page. The return callback carries
OrderID, PaymentID and ResponseCode without any signature, so every
callback triggers a GetPaymentDetails query whose answer is trusted.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from app.modules.payments.interface import (
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentResult,
    WebhookData,
    WebhookReferences,
    WebhookVerification,
)
from app.modules.payments.models import GatewayType, PaymentStatus
from app.modules.payments.provider_configs import AmeriabankConfig, CurrencyAccount
from app.modules.payments.utils import first_present

logger = logging.getLogger(__name__)


class AmeriabankGateway(PaymentGatewayInterface):
    """Ameriabank vPOS gateway (AMD only)."""

    gateway_type = GatewayType.AMERIABANK
    config: AmeriabankConfig

    SANDBOX_URL = "https://servicestest.ameriabank.am"
    PRODUCTION_URL = "https://services.ameriabank.am"
    API_PATH = "/VPOS/api/VPOS"

    SUPPORTED_CURRENCIES = ("AMD",)
    WEBHOOK_FIELDS = ("OrderID", "PaymentID", "ResponseCode")

    @property
    def base_url(self) -> str:
        return self.SANDBOX_URL if self.test_mode else self.PRODUCTION_URL

    def _api_url(self, operation: str) -> str:
        return f"{self.base_url}{self.API_PATH}/{operation}"

    def _account(self) -> Optional[CurrencyAccount]:
        account = self.config.accounts.AMD
        return account if account is not None and account.is_complete else None

    def validate_config(self) -> bool:
        return bool(self.config.client_id) and self.config.accounts.first_complete() is not None

    async def initiate_payment(self, order: PaymentOrder) -> PaymentResult:
        """Register the payment with InitPayment.

        Args:
            order: Payment order data

        Returns:
            PaymentResult with the hosted page redirect URL
        """
        try:
            if not self.validate_amount(order.amount):
                return self.error_result("INVALID_AMOUNT", "Amount must be at least 0.01")

            if not self.validate_currency(order.currency, self.SUPPORTED_CURRENCIES):
                return self.error_result(
                    "INVALID_CURRENCY",
                    f"Ameriabank supports only AMD, got {order.currency}",
                )

            account = self._account()
            if account is None:
                return self.error_result("MISSING_ACCOUNT", "AMD account credentials not configured")

            order_number = (order.order_number or "").strip()
            if not order_number:
                return self.error_result("INVALID_ORDER_NUMBER", "Order number is required")

            if self.test_mode and self.config.min_test_order_id and self.config.max_test_order_id:
                try:
                    numeric = int(order_number)
                except ValueError:
                    numeric = None
                if numeric is None or not (
                    self.config.min_test_order_id <= numeric <= self.config.max_test_order_id
                ):
                    return self.error_result(
                        "INVALID_TEST_ORDER_ID",
                        f"Order ID must be between {self.config.min_test_order_id} and "
                        f"{self.config.max_test_order_id} in test mode",
                    )

            back_url = self.config.success_url or order.return_url
            fail_url = self.config.fail_url or order.cancel_url
            for label, url in (("Return", back_url), ("Fail", fail_url)):
                if url and not url.startswith("https://"):
                    return self.error_result("INVALID_URL", f"{label} URL must use HTTPS")

            request_data = {
                "ClientID": self.config.client_id,
                "Username": account.username,
                "Password": account.password,
                "OrderID": order_number,
                "Amount": round(order.amount, 2),
                "Currency": order.currency.upper(),
                "Description": (order.description or f"Order {order_number}")[:255],
                "BackURL": back_url,
                "FailURL": fail_url,
            }

            response = await self._make_request(
                self._api_url("InitPayment"), request_data, form=True
            )

            payment_id = response.get("PaymentID")
            if str(response.get("ResponseCode")) == "1" and payment_id:
                language = order.metadata.get("language") or "en"
                if language == "hy":
                    language = "am"
                query = urlencode({"id": payment_id, "lang": language})
                return self.success_result(
                    payment_id=str(payment_id),
                    transaction_id=str(payment_id),
                    redirect_url=f"{self.base_url}/VPOS/Payments/Pay?{query}",
                    form_method="GET",
                    metadata={"order_number": order_number},
                )

            return self.error_result(
                str(response.get("ResponseCode") or "PAYMENT_INIT_FAILED"),
                response.get("ResponseMessage") or "Failed to initialize payment",
            )

        except Exception as e:
            logger.error(f"Ameriabank initiate_payment error: {e}")
            return self.error_result("PAYMENT_INIT_ERROR", str(e))

    async def verify_webhook(self, data: WebhookData) -> WebhookVerification:
        # No signature: presence check only, status comes from GetPaymentDetails
        for name in self.WEBHOOK_FIELDS:
            if data.payload.get(name) in (None, ""):
                return WebhookVerification(valid=False, error=f"Missing required field: {name}")
        return WebhookVerification(valid=True)

    async def process_webhook(self, data: WebhookData) -> PaymentStatus:
        verification = await self.verify_webhook(data)
        if not verification.valid:
            return PaymentStatus.FAILED

        payload = data.payload
        status = await self._query_status(data.transaction_id or str(payload["PaymentID"]))
        if status is not None:
            return status

        # Status query unavailable: fall back to the callback response code
        response_code = str(payload.get("ResponseCode"))
        if response_code in ("00", "0"):
            return PaymentStatus.COMPLETED
        logger.warning(
            f"Ameriabank payment {payload.get('PaymentID')} failed with response code {response_code}"
        )
        return PaymentStatus.FAILED

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        status = await self._query_status(transaction_id)
        return status if status is not None else PaymentStatus.PENDING

    async def _query_status(self, transaction_id: str) -> Optional[PaymentStatus]:
        """Call GetPaymentDetails; None when the query itself failed."""
        account = self._account() or self.config.accounts.first_complete()
        try:
            response = await self._make_request(
                self._api_url("GetPaymentDetails"),
                {
                    "Username": account.username,
                    "Password": account.password,
                    "paymentID": transaction_id,
                },
                form=True,
            )
        except Exception as e:
            logger.error(f"Ameriabank get_payment_status error: {e}")
            return None

        return self._map_transaction_status(response)

    def _map_transaction_status(self, response: dict[str, Any]) -> PaymentStatus:
        if str(response.get("ResponseCode")) not in ("00", "0"):
            return PaymentStatus.FAILED

        amount_info = response.get("paymentAmountInfo") or {}
        state = str(amount_info.get("paymentState") or response.get("Status") or "")
        if state.lower() == "completed":
            return PaymentStatus.COMPLETED
        if state.lower() == "failed":
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING

    async def refund(self, transaction_id: str, amount: float, currency: str = "AMD") -> PaymentResult:
        """Refund an Ameriabank payment (full or partial).

        Args:
            transaction_id: Ameriabank PaymentID
            amount: Amount to refund in major units
            currency: Refund currency, AMD only

        Returns:
            PaymentResult describing the provider's answer
        """
        try:
            if not self.validate_amount(amount):
                return self.error_result("INVALID_AMOUNT", "Refund amount must be at least 0.01")

            if not self.validate_currency(currency, self.SUPPORTED_CURRENCIES):
                return self.error_result("INVALID_CURRENCY", f"Only AMD is supported, got {currency}")

            account = self._account()
            if account is None:
                return self.error_result("MISSING_ACCOUNT", "AMD account credentials not configured")

            if not transaction_id or not transaction_id.strip():
                return self.error_result("INVALID_TRANSACTION_ID", "Transaction ID is required")

            response = await self._make_request(
                self._api_url("RefundPayment"),
                {
                    "PaymentID": transaction_id.strip(),
                    "Username": account.username,
                    "Password": account.password,
                    "Amount": amount,
                },
                form=True,
            )

            if str(response.get("ResponseCode")) in ("00", "0"):
                return self.success_result(
                    transaction_id=transaction_id,
                    metadata={"refund_amount": amount, "refund_currency": currency},
                )

            return self.error_result(
                str(response.get("ResponseCode") or "UNKNOWN"),
                response.get("ResponseMessage") or "Failed to process refund",
            )

        except Exception as e:
            logger.error(f"Ameriabank refund error: {e}")
            return self.error_result("REFUND_ERROR", str(e))

    def extract_references(self, payload: dict[str, Any]) -> WebhookReferences:
        return WebhookReferences(
            transaction_id=first_present(payload, "PaymentID", "paymentID"),
            order_number=first_present(payload, "OrderID", "orderID"),
        )
