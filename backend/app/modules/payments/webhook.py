"""Inbound provider notification handling.

Every call is logged (and committed) before processing so failures stay
auditable. The payment is resolved by provider transaction id first and by
order number second; the gateway adapter then verifies the notification and
resolves the canonical status, which is applied through the payment state
machine. Reprocessing a notification never re-applies a status.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qsl

import httpx
from fastapi import Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import PAYMENT_WEBHOOKS_TOTAL
from app.modules.order.repository import OrderRepository
from app.modules.payments.gateways import IdramGateway
from app.modules.payments.interface import PaymentGatewayInterface, WebhookData
from app.modules.payments.models import (
    GatewayType,
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    PaymentWebhookLog,
)
from app.modules.payments.repository import PaymentRepository, WebhookLogRepository
from app.modules.payments.service import PaymentService

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    """Result of handling one notification."""
    success: bool
    status: Optional[PaymentStatus] = None
    message: Optional[str] = None
    error: Optional[str] = None
    payment_id: Optional[str] = None


async def parse_webhook_body(request: Request) -> dict[str, Any]:
    """Parse a notification body by content type.

    JSON and form bodies are parsed directly; anything else is tried as JSON
    and then as urlencoded text. Query parameters are merged underneath.
    """
    content_type = request.headers.get("content-type", "").lower()
    body: dict[str, Any] = {}

    if "application/json" in content_type:
        try:
            parsed = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON body") from e
        if isinstance(parsed, dict):
            body = parsed
    elif "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        body = {key: value for key, value in form.items() if isinstance(value, str)}
    else:
        text = (await request.body()).decode("utf-8", errors="replace").strip()
        if text:
            try:
                parsed = json.loads(text)
                body = parsed if isinstance(parsed, dict) else {}
            except ValueError:
                body = dict(parse_qsl(text, keep_blank_values=True))

    return {**dict(request.query_params), **body}


def client_ip(request: Request) -> Optional[str]:
    """Origin address: first X-Forwarded-For entry, then X-Real-IP, then the peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def acknowledgement(gateway_type: GatewayType, outcome: WebhookOutcome) -> Response:
    """Provider-specific reply to a notification.

    Idram expects a literal OK or ERROR body; the bank providers get a JSON
    envelope. Failures are signalled in the reply rather than by withholding it.
    """
    if gateway_type == GatewayType.IDRAM:
        if outcome.success:
            return PlainTextResponse("OK", status_code=status.HTTP_200_OK)
        return PlainTextResponse("ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if outcome.success:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "success": True,
                "status": outcome.status.value if outcome.status else None,
                "message": outcome.message,
            },
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": outcome.error},
    )


class WebhookProcessor:
    """Handles inbound notifications for one request."""

    def __init__(
        self,
        session: AsyncSession,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self.payment_service = PaymentService(session, transport=transport)
        self.payment_repo = PaymentRepository(session)
        self.order_repo = OrderRepository(session)
        self.log_repo = WebhookLogRepository(session)

    async def process(
        self,
        provider: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> WebhookOutcome:
        """Log, verify and apply one notification.

        Args:
            provider: Provider type from the route
            payload: Parsed notification body
            headers: Request headers
            ip_address: Origin address
            user_agent: Caller user agent

        Returns:
            WebhookOutcome used to build the provider acknowledgement

        Raises:
            ValidationError: If the provider type is unknown
            NotFoundError: If no enabled gateway of the type exists
        """
        try:
            gateway_type = GatewayType(provider)
        except ValueError as e:
            raise ValidationError(
                f"Unsupported payment provider: {provider}", provider=provider
            ) from e

        record = await self.payment_service.get_gateway_by_type(gateway_type)

        log = await self.log_repo.create(
            payment_gateway_id=record.id,
            gateway_type=gateway_type.value,
            payload=payload,
            headers=dict(headers or {}),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await self.session.commit()
        log_id = log.id

        try:
            outcome = await self._handle(record, gateway_type, payload, headers, ip_address, user_agent, log)
        except Exception as e:
            log_error(logger, "Webhook processing failed", e, gateway_type=gateway_type.value, webhook_log_id=str(log_id))
            await self.session.rollback()
            log = await self.log_repo.get_by_id(log_id)
            await self.log_repo.mark_processed(log, signature_valid=None, processing_error=str(e))
            await self.session.commit()
            PAYMENT_WEBHOOKS_TOTAL.labels(provider=gateway_type.value, result="error").inc()
            return WebhookOutcome(success=False, error=str(e))

        await self.session.commit()
        PAYMENT_WEBHOOKS_TOTAL.labels(
            provider=gateway_type.value,
            result="success" if outcome.success else "rejected",
        ).inc()
        return outcome

    async def _handle(
        self,
        record: PaymentGatewayConfig,
        gateway_type: GatewayType,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]],
        ip_address: Optional[str],
        user_agent: Optional[str],
        log: PaymentWebhookLog,
    ) -> WebhookOutcome:
        gateway = self.payment_service.build_gateway(record)
        references = gateway.extract_references(payload)
        payment = await self._resolve_payment(gateway_type, references.transaction_id, references.order_number)
        if payment is not None:
            log.payment_id = payment.id
            if payment.payment_gateway_id is not None and payment.payment_gateway_id != record.id:
                # Verify and query with the payment's own credentials
                log.payment_gateway_id = payment.payment_gateway_id
                gateway = await self.payment_service.gateway_for_payment(payment)

        data = WebhookData(
            payload=payload,
            headers=dict(headers or {}),
            ip_address=ip_address,
            user_agent=user_agent,
            transaction_id=payment.provider_transaction_id if payment else None,
        )

        verification = await gateway.verify_webhook(data)
        if not verification.valid:
            log_warning(
                logger,
                "Webhook verification failed",
                gateway_type=gateway_type.value,
                error=verification.error,
                ip_address=ip_address,
            )
            await self.log_repo.mark_processed(
                log,
                signature_valid=False,
                event_type="verification_failed",
                processing_error=verification.error or "Verification failed",
            )
            return WebhookOutcome(success=False, error=verification.error or "Verification failed")

        if payment is None:
            await self.log_repo.mark_processed(
                log,
                signature_valid=True,
                processing_error="Payment not found",
            )
            return WebhookOutcome(success=False, error="Payment not found")

        payment_status = await gateway.process_webhook(data)
        changed = await self.payment_service.apply_status(
            payment,
            payment_status,
            provider_transaction_id=references.transaction_id,
        )

        await self.log_repo.mark_processed(
            log,
            signature_valid=True,
            event_type=self._event_type(gateway, payload, payment_status),
        )
        log_info(
            logger,
            "Webhook processed",
            gateway_type=gateway_type.value,
            payment_id=str(payment.id),
            payment_status=payment_status.value,
            changed=changed,
        )
        return WebhookOutcome(
            success=True,
            status=PaymentStatus(payment.status),
            message="Payment status updated" if changed else "Payment status unchanged",
            payment_id=str(payment.id),
        )

    async def _resolve_payment(
        self,
        gateway_type: GatewayType,
        transaction_id: Optional[str],
        order_number: Optional[str],
    ) -> Optional[Payment]:
        """Find the payment a notification refers to.

        Exact provider transaction id first, then the provider's most recent
        payment for the order with that number.
        """
        if transaction_id:
            payment = await self.payment_repo.get_by_provider_transaction_id(
                gateway_type.value, transaction_id
            )
            if payment is not None:
                return payment

        if order_number:
            order = await self.order_repo.get_by_number(order_number)
            if order is not None:
                return await self.payment_repo.latest_for_order(order.id, provider=gateway_type.value)

        return None

    @staticmethod
    def _event_type(
        gateway: PaymentGatewayInterface,
        payload: dict[str, Any],
        payment_status: PaymentStatus,
    ) -> str:
        if isinstance(gateway, IdramGateway) and gateway.is_precheck(payload):
            return "precheck"
        return f"payment.{payment_status.value}"
