"""Repositories for payment gateway configs, payments, and webhook logs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.payments.models import (
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    PaymentWebhookLog,
)


class PaymentGatewayRepository:
    """Repository for payment gateway configuration records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_configs(
        self,
        gateway_type: Optional[str] = None,
        enabled: Optional[bool] = None,
        test_mode: Optional[bool] = None,
    ) -> list[PaymentGatewayConfig]:
        """List configurations by position, newest first within a position."""
        query = select(PaymentGatewayConfig)
        if gateway_type is not None:
            query = query.where(PaymentGatewayConfig.type == gateway_type)
        if enabled is not None:
            query = query.where(PaymentGatewayConfig.enabled == enabled)
        if test_mode is not None:
            query = query.where(PaymentGatewayConfig.test_mode == test_mode)

        result = await self.session.execute(
            query.order_by(
                PaymentGatewayConfig.position.asc(),
                PaymentGatewayConfig.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    async def get_by_id(self, gateway_id: uuid.UUID) -> Optional[PaymentGatewayConfig]:
        result = await self.session.execute(
            select(PaymentGatewayConfig).where(PaymentGatewayConfig.id == gateway_id)
        )
        return result.scalar_one_or_none()

    async def get_by_type_and_bank(
        self,
        gateway_type: str,
        bank_id: Optional[str] = None,
    ) -> Optional[PaymentGatewayConfig]:
        """Exact (type, bank_id) lookup regardless of enabled state."""
        query = select(PaymentGatewayConfig).where(PaymentGatewayConfig.type == gateway_type)
        if bank_id is None:
            query = query.where(PaymentGatewayConfig.bank_id.is_(None))
        else:
            query = query.where(PaymentGatewayConfig.bank_id == bank_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def first_enabled(
        self,
        gateway_type: str,
        bank_id: Optional[str] = None,
    ) -> Optional[PaymentGatewayConfig]:
        """First enabled configuration of a type, optionally for one bank."""
        query = select(PaymentGatewayConfig).where(
            PaymentGatewayConfig.type == gateway_type,
            PaymentGatewayConfig.enabled.is_(True),
        )
        if bank_id is not None:
            query = query.where(PaymentGatewayConfig.bank_id == bank_id)

        result = await self.session.execute(
            query.order_by(
                PaymentGatewayConfig.position.asc(),
                PaymentGatewayConfig.created_at.desc(),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> PaymentGatewayConfig:
        record = PaymentGatewayConfig(**fields)
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        return record

    async def update(self, record: PaymentGatewayConfig, **fields: Any) -> PaymentGatewayConfig:
        for key, value in fields.items():
            setattr(record, key, value)
        await self.session.flush()
        await self.session.refresh(record)
        return record

    async def delete(self, record: PaymentGatewayConfig) -> None:
        await self.session.delete(record)
        await self.session.flush()

    async def count_payments(self, gateway_id: uuid.UUID) -> int:
        """Number of payments referencing a configuration."""
        result = await self.session.execute(
            select(func.count(Payment.id)).where(Payment.payment_gateway_id == gateway_id)
        )
        return result.scalar_one()


class PaymentRepository:
    """Repository for payment records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, payment_id: uuid.UUID) -> Optional[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_transaction_id(
        self,
        provider: str,
        transaction_id: str,
    ) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(
                Payment.provider == provider,
                Payment.provider_transaction_id == transaction_id,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_for_order(
        self,
        order_id: uuid.UUID,
        provider: Optional[str] = None,
    ) -> Optional[Payment]:
        """Most recent payment for an order, optionally for one provider."""
        query = select(Payment).where(Payment.order_id == order_id)
        if provider is not None:
            query = query.where(Payment.provider == provider)
        result = await self.session.execute(
            query.order_by(Payment.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        order_id: uuid.UUID,
        provider: str,
        payment_gateway_id: uuid.UUID,
        amount: float,
        currency: str,
        idempotency_key: str,
        provider_transaction_id: Optional[str] = None,
        provider_response: Optional[dict] = None,
    ) -> Payment:
        """Create a pending payment."""
        payment = Payment(
            order_id=order_id,
            provider=provider,
            payment_gateway_id=payment_gateway_id,
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key,
            provider_transaction_id=provider_transaction_id,
            provider_response=provider_response,
            status=PaymentStatus.PENDING.value,
        )
        self.session.add(payment)
        await self.session.flush()
        await self.session.refresh(payment)
        return payment

    async def update(self, payment: Payment, **fields: Any) -> Payment:
        for key, value in fields.items():
            setattr(payment, key, value)
        await self.session.flush()
        await self.session.refresh(payment)
        return payment

    async def append_response(self, payment: Payment, key: str, entry: dict) -> Payment:
        """Append an audit entry under a key of provider_response.

        The JSON column is reassigned as a new dict so the change is tracked.
        """
        history = dict(payment.provider_response or {})
        history[key] = [*history.get(key, []), entry]
        payment.provider_response = history
        await self.session.flush()
        await self.session.refresh(payment)
        return payment


class WebhookLogRepository:
    """Repository for inbound webhook logs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        payment_gateway_id: uuid.UUID,
        gateway_type: str,
        payload: dict,
        headers: dict,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        payment_id: Optional[uuid.UUID] = None,
        event_type: Optional[str] = None,
    ) -> PaymentWebhookLog:
        log = PaymentWebhookLog(
            payment_gateway_id=payment_gateway_id,
            gateway_type=gateway_type,
            payment_id=payment_id,
            event_type=event_type,
            payload=payload,
            headers=headers,
            ip_address=ip_address,
            user_agent=user_agent,
            processed=False,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def mark_processed(
        self,
        log: PaymentWebhookLog,
        signature_valid: Optional[bool],
        event_type: Optional[str] = None,
        processing_error: Optional[str] = None,
    ) -> PaymentWebhookLog:
        log.processed = True
        log.processed_at = datetime.now(timezone.utc)
        log.signature_valid = signature_valid
        log.processing_error = processing_error
        if event_type is not None:
            log.event_type = event_type
        await self.session.flush()
        return log

    async def get_by_id(self, log_id: uuid.UUID) -> Optional[PaymentWebhookLog]:
        result = await self.session.execute(
            select(PaymentWebhookLog).where(PaymentWebhookLog.id == log_id)
        )
        return result.scalar_one_or_none()
