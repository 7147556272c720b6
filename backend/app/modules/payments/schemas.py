"""Pydantic schemas for the payments API."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.modules.payments.models import GatewayType


# ==================== Gateway Configuration Schemas ====================

class GatewayConfigCreate(BaseModel):
    """Schema for creating a gateway configuration."""
    type: GatewayType
    name: str = Field(..., min_length=1, max_length=100)
    bank_id: Optional[str] = Field(None, description="ArCa bank selector")
    enabled: bool = True
    test_mode: bool = True
    position: int = 0
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider config bundle; secret fields are encrypted at rest",
    )


class GatewayConfigUpdate(BaseModel):
    """Schema for updating a gateway configuration.

    Secrets sent back as "***" keep their stored value.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    bank_id: Optional[str] = None
    enabled: Optional[bool] = None
    test_mode: Optional[bool] = None
    position: Optional[int] = None
    config: Optional[dict[str, Any]] = None


class GatewayConfigResponse(BaseModel):
    """Admin view of a gateway configuration, secrets masked."""
    id: uuid.UUID
    type: str
    bank_id: Optional[str] = None
    bank_name: Optional[str] = None
    name: str
    enabled: bool
    test_mode: bool
    position: int
    config: dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GatewayPublicInfo(BaseModel):
    """Checkout view of an enabled gateway."""
    id: uuid.UUID
    type: str
    bank_id: Optional[str] = None
    name: str
    test_mode: bool
    position: int


class ArcaBankInfo(BaseModel):
    bank_id: str
    name: str


# ==================== Payment Schemas ====================

class InitiatePaymentRequest(BaseModel):
    """Start a payment for an order through one gateway."""
    order_id: uuid.UUID
    gateway_id: Optional[uuid.UUID] = None
    gateway_type: Optional[GatewayType] = None
    bank_id: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    pre_authorize: bool = False
    language: Optional[str] = Field(None, description="Payment page language (en, hy, ru)")
    client_id: Optional[str] = Field(None, description="Storefront client id for card bindings")


class InitiatePaymentResponse(BaseModel):
    success: bool
    payment_id: Optional[str] = None
    redirect_url: Optional[str] = None
    form_data: Optional[dict[str, str]] = None
    form_action: Optional[str] = None
    form_method: str = "POST"


class PaymentResponse(BaseModel):
    """Payment record view."""
    id: uuid.UUID
    order_id: uuid.UUID
    provider: str
    payment_gateway_id: Optional[uuid.UUID] = None
    provider_transaction_id: Optional[str] = None
    amount: float
    currency: str
    status: str
    refunded_amount: float = 0.0
    refunds: list[dict[str, Any]] = []
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AmountRequest(BaseModel):
    """Optional amount for refund and deposit; omitted means the full amount."""
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


# ==================== Card Binding Schemas ====================

class CardBindingResponse(BaseModel):
    binding_id: str
    masked_pan: Optional[str] = None
    card_holder_name: Optional[str] = None
    expiry_date: Optional[str] = None


class PayWithBindingRequest(BaseModel):
    payment_id: uuid.UUID
    binding_id: str = Field(..., min_length=1)
    cvc: Optional[str] = Field(None, min_length=3, max_length=4)


class BindingOperationResponse(BaseModel):
    success: bool
    binding_id: str
