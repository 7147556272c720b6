"""Tests for the Idram wallet gateway.

Covers form building, precheck handling, MD5 checksum verification and
reference extraction. Idram makes no outbound calls, so no transport is
needed.
"""

import hashlib

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.payments.gateways import IdramGateway
from app.modules.payments.interface import PaymentOrder, WebhookData
from app.modules.payments.models import PaymentStatus


SECRET_KEY = "idram-secret-key"
REC_ACCOUNT = "110000601"

# Strategies for confirmation fields
bill_no_strategy = st.text(alphabet="0123456789-ABCDEF", min_size=1, max_size=20)
payer_strategy = st.integers(min_value=100000000, max_value=999999999).map(str)
trans_id_strategy = st.integers(min_value=1, max_value=10**12).map(str)
amount_strategy = st.integers(min_value=1, max_value=10**8).map(lambda cents: f"{cents / 100:.2f}")


def make_gateway(**overrides) -> IdramGateway:
    config = {"idram_id": REC_ACCOUNT, "idram_key": SECRET_KEY, **overrides}
    return IdramGateway(config, test_mode=False)


def make_order(**overrides) -> PaymentOrder:
    fields = {
        "order_id": "0b0c6a8e-2f1e-4f57-9a7c-5c8b1d2e3f40",
        "order_number": "250113-1001",
        "amount": 5000.0,
        "currency": "AMD",
    }
    fields.update(overrides)
    return PaymentOrder(**fields)


def confirmation(
    bill_no: str = "250113-1001",
    amount: str = "5000.00",
    payer: str = "123456789",
    trans_id: str = "9900001",
    trans_date: str = "13/01/2025",
    key: str = SECRET_KEY,
) -> dict:
    """Confirmation payload signed the way Idram signs it."""
    source = f"{REC_ACCOUNT}:{amount}:{key}:{bill_no}:{payer}:{trans_id}:{trans_date}"
    return {
        "EDP_BILL_NO": bill_no,
        "EDP_REC_ACCOUNT": REC_ACCOUNT,
        "EDP_PAYER_ACCOUNT": payer,
        "EDP_AMOUNT": amount,
        "EDP_TRANS_ID": trans_id,
        "EDP_TRANS_DATE": trans_date,
        "EDP_CHECKSUM": hashlib.md5(source.encode("utf-8")).hexdigest(),
    }


class TestIdramInitiation:

    @pytest.mark.asyncio
    async def test_builds_payment_form(self):
        gateway = make_gateway()

        result = await gateway.initiate_payment(
            make_order(description="Order 250113-1001", customer_email="buyer@example.am")
        )

        assert result.success is True
        assert result.form_action == "https://banking.idram.am/Payment/GetPayment"
        assert result.form_method == "POST"
        assert result.form_data == {
            "EDP_LANGUAGE": "EN",
            "EDP_REC_ACCOUNT": REC_ACCOUNT,
            "EDP_AMOUNT": "5000.00",
            "EDP_BILL_NO": "250113-1001",
            "EDP_DESCRIPTION": "Order 250113-1001",
            "EDP_EMAIL": "buyer@example.am",
        }
        assert result.transaction_id is None
        assert result.metadata["gateway_type"] == "idram"
        assert result.metadata["test_mode"] is False

    @pytest.mark.asyncio
    async def test_language_from_metadata_and_extra_fields_passed_through(self):
        gateway = make_gateway()

        result = await gateway.initiate_payment(
            make_order(metadata={"language": "hy", "cart_id": 42, "EDP_AMOUNT": "1"})
        )

        assert result.form_data["EDP_LANGUAGE"] == "HY"
        assert result.form_data["cart_id"] == "42"
        # EDP_ keys cannot be overridden through metadata
        assert result.form_data["EDP_AMOUNT"] == "5000.00"

    @pytest.mark.asyncio
    async def test_rejects_non_amd(self):
        result = await make_gateway().initiate_payment(make_order(currency="USD"))

        assert result.success is False
        assert result.error_code == "INVALID_CURRENCY"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -10, 0.001, float("nan")])
    async def test_rejects_invalid_amount(self, amount):
        result = await make_gateway().initiate_payment(make_order(amount=amount))

        assert result.success is False
        assert result.error_code == "INVALID_AMOUNT"


class TestIdramNotifications:

    @pytest.mark.asyncio
    async def test_precheck_is_valid_and_pending(self):
        gateway = make_gateway()
        data = WebhookData(payload={"EDP_PRECHECK": "YES", "EDP_BILL_NO": "250113-1001"})

        assert (await gateway.verify_webhook(data)).valid is True
        assert await gateway.process_webhook(data) == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_precheck_without_bill_number_rejected(self):
        data = WebhookData(payload={"EDP_PRECHECK": "YES"})

        assert (await make_gateway().verify_webhook(data)).valid is False

    @given(
        bill_no=bill_no_strategy,
        amount=amount_strategy,
        payer=payer_strategy,
        trans_id=trans_id_strategy,
        lower=st.booleans(),
    )
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_signed_confirmation_completes(self, bill_no, amount, payer, trans_id, lower):
        gateway = make_gateway()
        payload = confirmation(bill_no=bill_no, amount=amount, payer=payer, trans_id=trans_id)
        # Checksum comparison ignores case
        payload["EDP_CHECKSUM"] = (
            payload["EDP_CHECKSUM"].lower() if lower else payload["EDP_CHECKSUM"].upper()
        )
        data = WebhookData(payload=payload)

        assert (await gateway.verify_webhook(data)).valid is True
        assert await gateway.process_webhook(data) == PaymentStatus.COMPLETED

    @given(amount=amount_strategy, trans_id=trans_id_strategy)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_checksum_with_wrong_key_fails(self, amount, trans_id):
        gateway = make_gateway()
        data = WebhookData(payload=confirmation(amount=amount, trans_id=trans_id, key="forged"))

        verification = await gateway.verify_webhook(data)

        assert verification.valid is False
        assert verification.error == "Invalid checksum"
        assert await gateway.process_webhook(data) == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_tampered_amount_fails(self):
        payload = confirmation()
        payload["EDP_AMOUNT"] = "1.00"

        assert (await make_gateway().verify_webhook(WebhookData(payload=payload))).valid is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["EDP_PAYER_ACCOUNT", "EDP_TRANS_ID", "EDP_CHECKSUM"])
    async def test_missing_field_fails(self, missing: str):
        payload = confirmation()
        del payload[missing]

        verification = await make_gateway().verify_webhook(WebhookData(payload=payload))

        assert verification.valid is False
        assert missing in verification.error

    @pytest.mark.asyncio
    async def test_status_query_is_always_pending(self):
        assert await make_gateway().get_payment_status("9900001") == PaymentStatus.PENDING

    def test_references_come_from_edp_fields(self):
        references = make_gateway().extract_references(confirmation())

        assert references.transaction_id == "9900001"
        assert references.order_number == "250113-1001"
