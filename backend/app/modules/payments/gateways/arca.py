"""ArCa (iPay) gateway implementation.

ArCa routes payments to one of nine partner banks chosen by bank_id. On
top of the one-stage register flow it supports two-stage capture
(registerPreAuth.do, deposit.do, reverse.do), refunds, and card bindings
that let a stored card be charged again without re-entering card data.
Raw card entry (processForm, PAN-based payments, enrollment checks) is
never handled here.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from app.modules.payments.gateways.rbs import RbsGateway
from app.modules.payments.interface import (
    BindingsResult,
    CardBinding,
    PaymentOrder,
    PaymentResult,
)
from app.modules.payments.models import GatewayType
from app.modules.payments.provider_configs import ARCA_BANKS, ArcaConfig
from app.modules.payments.utils import currency_numeric_code, from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

# Order metadata keys copied into the jsonParams request field
_JSON_PARAM_KEYS = {
    "transaction_type": "transaction_type",
    "recurring_expiry": "recurringExpiry",
    "recurring_frequency": "recurringFrequency",
    "recurring_initialize": "recurringInitialize",
    "recurring_id": "recurringId",
}


def bank_name(bank_id: Optional[str]) -> Optional[str]:
    """Partner bank display name for a bank selector."""
    return ARCA_BANKS.get(str(bank_id)) if bank_id is not None else None


class ArcaGateway(RbsGateway):
    """ArCa gateway (AMD only), routed by bank selector."""

    gateway_type = GatewayType.ARCA
    config: ArcaConfig

    SUPPORTED_CURRENCIES = ("AMD",)

    def validate_config(self) -> bool:
        return self.config.bank_id in ARCA_BANKS and self._has_account()

    @property
    def bank_name(self) -> Optional[str]:
        return bank_name(self.config.bank_id)

    def _extra_register_fields(self, order: PaymentOrder) -> dict[str, Any]:
        fields: dict[str, Any] = {"bankId": self.config.bank_id}

        metadata = order.metadata
        if metadata.get("client_id"):
            fields["clientId"] = metadata["client_id"]

        json_params = {
            provider_key: metadata[key]
            for key, provider_key in _JSON_PARAM_KEYS.items()
            if metadata.get(key) is not None
        }
        json_params.update(metadata.get("json_params") or {})
        if json_params:
            fields["jsonParams"] = json.dumps(json_params)

        return fields

    async def register_pre_authorized(self, order: PaymentOrder) -> PaymentResult:
        """Register a two-stage payment; funds are held until deposit()."""
        return await self._register(
            "registerPreAuth.do",
            order,
            "PREAUTH_ERROR",
            metadata={"is_pre_auth": True, "payment_type": "two-stage"},
        )

    async def _operation(
        self,
        operation: str,
        request_data: dict[str, Any],
        error_code: str,
        currency: str = "AMD",
        **metadata: Any,
    ) -> PaymentResult:
        """Call a capture or binding endpoint that answers with errorCode."""
        try:
            account = self._account(currency) if currency else self._default_account()
            if account is None:
                return self.error_result(
                    "MISSING_ACCOUNT",
                    f"{currency} account credentials not configured",
                )

            response = await self._make_request(
                self._api_url(operation),
                {"userName": account.username, "password": account.password, **request_data},
                form=True,
            )

            if self._is_ok(response):
                return self.success_result(
                    transaction_id=request_data.get("orderId"),
                    metadata={**metadata, "timestamp": datetime.now(timezone.utc).isoformat()},
                )

            return self.error_result(
                str(response.get("errorCode") or error_code),
                response.get("errorMessage") or f"{operation} failed",
                **metadata,
            )

        except Exception as e:
            logger.error(f"ArCa {operation} error: {e}")
            return self.error_result(error_code, str(e), **metadata)

    async def refund(self, transaction_id: str, amount: float, currency: str = "AMD") -> PaymentResult:
        """Refund a deposited payment, fully or partially.

        Args:
            transaction_id: ArCa orderId
            amount: Amount to refund in major units
            currency: Currency of the account to refund from
        """
        if not self.validate_amount(amount):
            return self.error_result("INVALID_AMOUNT", "Refund amount must be at least 0.01")

        return await self._operation(
            "refund.do",
            {
                "orderId": transaction_id,
                "amount": to_minor_units(amount, currency),
                "currency": currency_numeric_code(currency),
                "language": "ru",
            },
            "REFUND_ERROR",
            currency=currency.upper(),
            refund_amount=amount,
            refund_currency=currency.upper(),
        )

    async def deposit(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        currency: str = "AMD",
    ) -> PaymentResult:
        """Capture a pre-authorized payment.

        Args:
            transaction_id: ArCa orderId
            amount: Amount to capture; the full held amount when omitted
            currency: Currency of the account holding the payment
        """
        request_data: dict[str, Any] = {
            "orderId": transaction_id,
            "currency": currency_numeric_code(currency),
            "language": "ru",
        }
        if amount is not None:
            if not self.validate_amount(amount):
                return self.error_result("INVALID_AMOUNT", "Deposit amount must be at least 0.01")
            request_data["amount"] = to_minor_units(amount, currency)
        else:
            # iPay treats amount=0 as "deposit the full pre-authorized amount"
            request_data["amount"] = 0

        return await self._operation(
            "deposit.do",
            request_data,
            "DEPOSIT_ERROR",
            currency=currency.upper(),
            deposit_amount=amount,
            deposit_currency=currency.upper(),
            is_full_amount=amount is None,
        )

    async def reverse(self, transaction_id: str) -> PaymentResult:
        """Cancel a held payment before it is deposited."""
        return await self._operation("reverse.do", {"orderId": transaction_id}, "REVERSE_ERROR")

    async def bind_card(self, binding_id: str) -> PaymentResult:
        return await self._operation(
            "bindCard.do", {"bindingId": binding_id}, "BIND_ERROR", binding_id=binding_id
        )

    async def unbind_card(self, binding_id: str) -> PaymentResult:
        return await self._operation(
            "unBindCard.do", {"bindingId": binding_id}, "UNBIND_ERROR", binding_id=binding_id
        )

    async def list_bindings(self, client_id: str) -> BindingsResult:
        """Stored cards registered for a storefront client id."""
        try:
            account = self._default_account()
            response = await self._make_request(
                self._api_url("getBindings.do"),
                {"userName": account.username, "password": account.password, "clientId": client_id},
                form=True,
            )

            if not self._is_ok(response):
                return BindingsResult(
                    success=False,
                    error_code=str(response.get("errorCode")),
                    error_message=response.get("errorMessage") or "Failed to get bindings",
                )

            bindings = [
                CardBinding(
                    binding_id=str(item.get("bindingId")),
                    masked_pan=item.get("maskedPan"),
                    card_holder_name=item.get("cardHolderName"),
                    expiry_date=item.get("expiryDate"),
                )
                for item in response.get("bindings") or []
                if item.get("bindingId")
            ]
            return BindingsResult(success=True, bindings=bindings)

        except Exception as e:
            logger.error(f"ArCa getBindings error: {e}")
            return BindingsResult(success=False, error_code="GET_BINDINGS_ERROR", error_message=str(e))

    async def pay_with_binding(
        self,
        transaction_id: str,
        binding_id: str,
        cvc: Optional[str] = None,
        language: str = "ru",
    ) -> PaymentResult:
        """Charge a registered order to a stored card.

        A 3-D Secure challenge comes back as a POST form to the issuer's ACS
        with metadata is_3ds set; otherwise redirect_url points at the
        finish page.

        Args:
            transaction_id: ArCa orderId (mdOrder) of a registered order
            binding_id: Stored card binding
            cvc: Card security code, when the binding requires it
            language: Language for provider error messages
        """
        try:
            account = self._default_account()
            request_data = {
                "userName": account.username,
                "password": account.password,
                "mdOrder": transaction_id,
                "bindingId": binding_id,
                "language": language,
            }
            if cvc:
                request_data["cvc"] = cvc

            response = await self._make_request(
                self._api_url("paymentOrderBinding.do"), request_data, form=True
            )

            if str(response.get("success", response.get("errorCode", ""))) == "0":
                if response.get("acsUrl") and response.get("paReq"):
                    return self.success_result(
                        payment_id=transaction_id,
                        transaction_id=transaction_id,
                        redirect_url=response.get("redirect"),
                        form_action=response["acsUrl"],
                        form_method="POST",
                        form_data={
                            "PaReq": response["paReq"],
                            "MD": transaction_id,
                            "TermUrl": response.get("termUrl") or "",
                        },
                        metadata={"is_3ds": True, "info": response.get("info")},
                    )
                return self.success_result(
                    payment_id=transaction_id,
                    transaction_id=transaction_id,
                    redirect_url=response.get("redirect"),
                    metadata={"is_3ds": False, "info": response.get("info")},
                )

            return self.error_result(
                str(response.get("errorCode") or response.get("success") or "BINDING_PAYMENT_ERROR"),
                response.get("error") or response.get("errorMessage") or "Failed to process binding payment",
                binding_id=binding_id,
            )

        except Exception as e:
            logger.error(f"ArCa paymentOrderBinding error: {e}")
            return self.error_result("BINDING_PAYMENT_ERROR", str(e), binding_id=binding_id)

    async def get_extended_status(self, transaction_id: str) -> Optional[dict[str, Any]]:
        """Amounts, bank and card authorization details for an order.

        Amounts are converted to major units. Returns None when the query fails.
        """
        try:
            response = await self.get_order_status(order_id=transaction_id)
        except Exception as e:
            logger.error(f"ArCa extended status error: {e}")
            return None

        if not self._is_ok(response):
            return None

        details: dict[str, Any] = {
            "status": self._map_transaction_status(response).value,
            "order_status": response.get("orderStatus"),
            "action_code": response.get("actionCode"),
            "action_code_description": response.get("actionCodeDescription"),
        }

        amount_info = response.get("paymentAmountInfo")
        if amount_info:
            details["payment_amount_info"] = {
                key: from_minor_units(amount_info[source]) if amount_info.get(source) else None
                for key, source in (
                    ("approved_amount", "approvedAmount"),
                    ("deposited_amount", "depositedAmount"),
                    ("refunded_amount", "refundedAmount"),
                )
            }
            details["payment_amount_info"]["payment_state"] = amount_info.get("paymentState")

        bank_info = response.get("bankInfo")
        if bank_info:
            details["bank_info"] = {
                "bank_name": bank_info.get("bankName"),
                "bank_country_code": bank_info.get("bankCountryCode"),
                "bank_country_name": bank_info.get("bankCountryName"),
            }

        card_info = response.get("cardAuthInfo")
        if card_info:
            details["card_auth_info"] = {
                "expiration": card_info.get("expiration"),
                "pan": card_info.get("pan"),
                "approval_code": card_info.get("approvalCode"),
                "cardholder_name": card_info.get("cardholderName"),
            }

        for key, source in (
            ("auth_date_time", "authDateTime"),
            ("auth_ref_num", "authRefNum"),
            ("terminal_id", "terminalId"),
        ):
            if response.get(source):
                details[key] = response[source]

        return details
