"""Payment models: gateway configurations, payments, and webhook logs."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class GatewayType(str, Enum):
    """Supported payment providers."""
    IDRAM = "idram"
    AMERIABANK = "ameriabank"
    INECOBANK = "inecobank"
    ARCA = "arca"


class PaymentStatus(str, Enum):
    """Canonical payment status, independent of provider vocabularies."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Allowed canonical transitions; anything not listed is refused
PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Check whether a payment may move from one status to another."""
    return target in PAYMENT_STATUS_TRANSITIONS[PaymentStatus(current)]


class PaymentGatewayConfig(Base):
    """Provider configuration record.

    The config column holds the provider-specific bundle (credentials,
    callback URLs, protocol options). Secret fields inside it are stored
    as cipher envelopes only.
    """

    __tablename__ = "payment_gateways"
    __table_args__ = (
        Index("ix_payment_gateways_type_bank", "type", "bank_id", unique=True),
        Index("ix_payment_gateways_enabled_position", "enabled", "position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    bank_id: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    test_mode: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PaymentGatewayConfig(type={self.type}, bank_id={self.bank_id}, enabled={self.enabled})>"


class Payment(Base):
    """Payment attempt for an order through one gateway."""

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_provider_txn", "provider", "provider_transaction_id"),
        Index("ix_payments_order_created", "order_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_gateway_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("payment_gateways.id"), nullable=True, index=True
    )
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Provider response history: refunds, deposit and reversal audit entries
    provider_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    error_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, provider={self.provider}, status={self.status})>"

    @property
    def refunds(self) -> list[dict]:
        return list((self.provider_response or {}).get("refunds", []))

    @property
    def refunded_amount(self) -> float:
        return round(sum(float(entry.get("amount", 0)) for entry in self.refunds), 2)


class PaymentWebhookLog(Base):
    """Inbound provider notification, written before processing begins."""

    __tablename__ = "payment_webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_gateway_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payment_gateways.id"), nullable=False, index=True
    )
    gateway_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("payments.id"), nullable=True, index=True
    )
    event_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    headers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    signature_valid: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<PaymentWebhookLog(gateway_type={self.gateway_type}, processed={self.processed})>"
