"""Idram wallet gateway implementation.

Idram is a redirect-form provider: initiation never calls out, it returns
form fields the customer's browser POSTs to Idram. Idram then sends a
precheck notification (unsigned, informational) followed by a
confirmation signed with an MD5 checksum over a fixed field order.
There is no status query endpoint.
"""

import hashlib
import hmac
import logging
from typing import Any, Optional

from app.modules.payments.interface import (
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentResult,
    WebhookData,
    WebhookReferences,
    WebhookVerification,
)
from app.modules.payments.models import GatewayType, PaymentStatus
from app.modules.payments.provider_configs import IDRAM_LANGUAGES, IdramConfig
from app.modules.payments.utils import first_present, format_amount

logger = logging.getLogger(__name__)


class IdramGateway(PaymentGatewayInterface):
    """Idram wallet gateway (AMD only)."""

    gateway_type = GatewayType.IDRAM
    config: IdramConfig

    FORM_ACTION = "https://banking.idram.am/Payment/GetPayment"

    SUPPORTED_CURRENCIES = ("AMD",)

    CONFIRMATION_FIELDS = (
        "EDP_BILL_NO",
        "EDP_REC_ACCOUNT",
        "EDP_PAYER_ACCOUNT",
        "EDP_AMOUNT",
        "EDP_TRANS_ID",
        "EDP_TRANS_DATE",
        "EDP_CHECKSUM",
    )

    @property
    def rec_account(self) -> Optional[str]:
        if self.test_mode:
            return self.config.idram_test_id or self.config.idram_id
        return self.config.idram_id

    @property
    def secret_key(self) -> Optional[str]:
        if self.test_mode:
            return self.config.idram_test_key or self.config.idram_key
        return self.config.idram_key

    def validate_config(self) -> bool:
        if self.config.default_language not in IDRAM_LANGUAGES:
            return False
        return bool(self.rec_account and self.secret_key)

    async def initiate_payment(self, order: PaymentOrder) -> PaymentResult:
        """Build the Idram payment form.

        Args:
            order: Payment order data

        Returns:
            PaymentResult with form_action and form_data
        """
        try:
            if not self.validate_amount(order.amount):
                return self.error_result("INVALID_AMOUNT", "Amount must be at least 0.01 AMD")

            if not self.validate_currency(order.currency, self.SUPPORTED_CURRENCIES):
                return self.error_result(
                    "INVALID_CURRENCY",
                    f"Idram supports only AMD, got {order.currency}",
                )

            if not self.rec_account or not self.secret_key:
                return self.error_result("MISSING_CREDENTIALS", "Idram credentials are not configured")

            language = (order.metadata.get("language") or self.config.default_language).upper()

            form_data = {
                "EDP_LANGUAGE": language,
                "EDP_REC_ACCOUNT": self.rec_account,
                "EDP_AMOUNT": format_amount(order.amount),
                "EDP_BILL_NO": order.order_number,
            }
            if order.description:
                form_data["EDP_DESCRIPTION"] = order.description
            if order.customer_email:
                form_data["EDP_EMAIL"] = order.customer_email

            # Merchant-defined fields travel back in the notifications
            for key, value in order.metadata.items():
                if not key.startswith("EDP_") and key != "language" and value is not None:
                    form_data[key] = str(value)

            return self.success_result(
                form_action=self.FORM_ACTION,
                form_method="POST",
                form_data=form_data,
                metadata={"order_number": order.order_number},
            )

        except Exception as e:
            logger.error(f"Idram initiate_payment error: {e}")
            return self.error_result("PAYMENT_INIT_ERROR", str(e))

    def is_precheck(self, payload: dict[str, Any]) -> bool:
        return str(payload.get("EDP_PRECHECK", "")).upper() == "YES"

    def compute_checksum(self, payload: dict[str, Any]) -> str:
        """MD5 over the confirmation fields in Idram's fixed order, upper-case hex."""
        source = ":".join([
            str(payload.get("EDP_REC_ACCOUNT", "")),
            str(payload.get("EDP_AMOUNT", "")),
            self.secret_key or "",
            str(payload.get("EDP_BILL_NO", "")),
            str(payload.get("EDP_PAYER_ACCOUNT", "")),
            str(payload.get("EDP_TRANS_ID", "")),
            str(payload.get("EDP_TRANS_DATE", "")),
        ])
        return hashlib.md5(source.encode("utf-8")).hexdigest().upper()

    async def verify_webhook(self, data: WebhookData) -> WebhookVerification:
        payload = data.payload

        if self.is_precheck(payload):
            if not payload.get("EDP_BILL_NO"):
                return WebhookVerification(valid=False, error="Missing EDP_BILL_NO in precheck")
            return WebhookVerification(valid=True)

        missing = [name for name in self.CONFIRMATION_FIELDS if not payload.get(name)]
        if missing:
            return WebhookVerification(
                valid=False,
                error=f"Missing required fields: {', '.join(missing)}",
            )

        expected = self.compute_checksum(payload)
        received = str(payload["EDP_CHECKSUM"]).upper()
        if not hmac.compare_digest(expected, received):
            logger.warning(f"Idram checksum mismatch for bill {payload.get('EDP_BILL_NO')}")
            return WebhookVerification(valid=False, error="Invalid checksum")

        return WebhookVerification(valid=True)

    async def process_webhook(self, data: WebhookData) -> PaymentStatus:
        if self.is_precheck(data.payload):
            return PaymentStatus.PENDING

        verification = await self.verify_webhook(data)
        if not verification.valid:
            return PaymentStatus.FAILED

        return PaymentStatus.COMPLETED

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        # Idram state is only known through notifications
        return PaymentStatus.PENDING

    def extract_references(self, payload: dict[str, Any]) -> WebhookReferences:
        return WebhookReferences(
            transaction_id=first_present(payload, "EDP_TRANS_ID"),
            order_number=first_present(payload, "EDP_BILL_NO"),
        )
