"""Payments API routers.

Provides API endpoints for:
- Public gateway listing and payment initiation
- Payment lookup, status sync, refund, reversal and deposit
- Card bindings
- Provider webhooks
- Admin CRUD for gateway configurations
"""

import uuid
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import AuthorizationError, GatewayError
from app.modules.auth.jwt import CurrentUser, get_current_user, get_optional_user, require_admin
from app.modules.payments.gateways.arca import bank_name
from app.modules.payments.models import GatewayType, PaymentGatewayConfig
from app.modules.payments.provider_configs import ARCA_BANKS
from app.modules.payments.schemas import (
    AmountRequest,
    ArcaBankInfo,
    BindingOperationResponse,
    CardBindingResponse,
    GatewayConfigCreate,
    GatewayConfigResponse,
    GatewayConfigUpdate,
    GatewayPublicInfo,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentResponse,
    PayWithBindingRequest,
)
from app.modules.payments.service import GatewayManagerService, PaymentService
from app.modules.payments.webhook import (
    WebhookProcessor,
    acknowledgement,
    client_ip,
    parse_webhook_body,
)

# Public and authenticated payment endpoints
payment_router = APIRouter(prefix="/payments", tags=["Payments"])

# Admin router for gateway management
admin_router = APIRouter(
    prefix="/admin/payment-gateways",
    tags=["Payment Gateway Admin"],
    dependencies=[Depends(require_admin)],
)

# Request headers never persisted with webhook logs
_UNLOGGED_HEADERS = {"authorization", "cookie", "proxy-authorization"}


def get_provider_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound provider calls; None uses the network."""
    return None


def _gateway_response(service: GatewayManagerService, record: PaymentGatewayConfig) -> GatewayConfigResponse:
    return GatewayConfigResponse(
        id=record.id,
        type=record.type,
        bank_id=record.bank_id,
        bank_name=bank_name(record.bank_id) if record.type == GatewayType.ARCA.value else None,
        name=record.name,
        enabled=record.enabled,
        test_mode=record.test_mode,
        position=record.position,
        config=service.masked_config(record),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


# ==================== Public Endpoints ====================

@payment_router.get("/gateways", response_model=list[GatewayPublicInfo])
async def list_enabled_gateways(
    test_mode: Optional[bool] = Query(None),
    session: AsyncSession = Depends(get_session),
):
    """List enabled gateways for checkout, in display order."""
    service = GatewayManagerService(session)
    records = await service.list_gateways(enabled=True, test_mode=test_mode)
    return [
        GatewayPublicInfo(
            id=r.id,
            type=r.type,
            bank_id=r.bank_id,
            name=r.name,
            test_mode=r.test_mode,
            position=r.position,
        )
        for r in records
    ]


@payment_router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    data: InitiatePaymentRequest,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Start a payment and return the redirect or form instruction.

    A provider rejection is returned as a 400 problem body carrying the
    provider's error_code.
    """
    service = PaymentService(session, transport=transport)
    metadata = {
        key: value
        for key, value in (("language", data.language), ("client_id", data.client_id))
        if value is not None
    }

    result = await service.initiate_payment(
        order_id=data.order_id,
        gateway_id=data.gateway_id,
        gateway_type=data.gateway_type,
        bank_id=data.bank_id,
        return_url=data.return_url,
        cancel_url=data.cancel_url,
        pre_authorize=data.pre_authorize,
        metadata=metadata,
        user=user,
    )

    if not result.success:
        raise GatewayError(
            result.error_message or "Payment initiation failed",
            error_code=result.error_code,
        )

    await session.commit()

    return InitiatePaymentResponse(
        success=True,
        payment_id=result.payment_id,
        redirect_url=result.redirect_url,
        form_data=result.form_data,
        form_action=result.form_action,
        form_method=result.form_method,
    )


# ==================== Card Binding Endpoints ====================

@payment_router.get("/bindings", response_model=list[CardBindingResponse])
async def list_bindings(
    client_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """List stored cards. Non-admin callers may only list their own."""
    client_id = client_id or user.id
    if client_id != user.id and not user.is_admin:
        raise AuthorizationError("You can only list your own card bindings")

    service = PaymentService(session, transport=transport)
    bindings = await service.list_bindings(client_id)
    return [
        CardBindingResponse(
            binding_id=b.binding_id,
            masked_pan=b.masked_pan,
            card_holder_name=b.card_holder_name,
            expiry_date=b.expiry_date,
        )
        for b in bindings
    ]


@payment_router.post("/bindings/pay", response_model=InitiatePaymentResponse)
async def pay_with_binding(
    data: PayWithBindingRequest,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Charge a pending payment to a stored card."""
    service = PaymentService(session, transport=transport)
    result = await service.pay_with_binding(
        payment_id=data.payment_id,
        binding_id=data.binding_id,
        cvc=data.cvc,
        user=user,
    )
    await session.commit()

    return InitiatePaymentResponse(
        success=True,
        payment_id=result.payment_id,
        redirect_url=result.redirect_url,
        form_data=result.form_data,
        form_action=result.form_action,
        form_method=result.form_method,
    )


@payment_router.post("/bindings/{binding_id}/bind", response_model=BindingOperationResponse)
async def bind_card(
    binding_id: str,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    service = PaymentService(session, transport=transport)
    await service.bind_card(binding_id)
    return BindingOperationResponse(success=True, binding_id=binding_id)


@payment_router.post("/bindings/{binding_id}/unbind", response_model=BindingOperationResponse)
async def unbind_card(
    binding_id: str,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    service = PaymentService(session, transport=transport)
    await service.unbind_card(binding_id)
    return BindingOperationResponse(success=True, binding_id=binding_id)


# ==================== Webhook Endpoint ====================

@payment_router.post("/webhooks/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Receive a provider notification and reply in the provider's format."""
    payload = await parse_webhook_body(request)
    headers = {
        key: value
        for key, value in request.headers.items()
        if key.lower() not in _UNLOGGED_HEADERS
    }

    processor = WebhookProcessor(session, transport=transport)
    outcome = await processor.process(
        provider,
        payload,
        headers=headers,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return acknowledgement(GatewayType(provider), outcome)


# ==================== Admin Payment Endpoints ====================

@payment_router.post("/orders/{order_id}/sync", response_model=PaymentResponse)
async def sync_order_payment(
    order_id: uuid.UUID,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Sync the most recent payment of an order with its provider."""
    service = PaymentService(session, transport=transport)
    payment = await service.sync_order_payment(order_id)
    await session.commit()
    return PaymentResponse.model_validate(payment)


@payment_router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Get a payment. Callers other than admins must own its order."""
    service = PaymentService(session)
    payment = await service.get_payment(payment_id, user=user)
    return PaymentResponse.model_validate(payment)


@payment_router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: uuid.UUID,
    data: Optional[AmountRequest] = None,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Refund a completed payment, fully or partially."""
    data = data or AmountRequest()
    service = PaymentService(session, transport=transport)
    payment = await service.refund(payment_id, amount=data.amount, currency=data.currency)
    await session.commit()
    return PaymentResponse.model_validate(payment)


@payment_router.post("/{payment_id}/reverse", response_model=PaymentResponse)
async def reverse_payment(
    payment_id: uuid.UUID,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Cancel a payment whose funds are still held."""
    service = PaymentService(session, transport=transport)
    payment = await service.reverse(payment_id)
    await session.commit()
    return PaymentResponse.model_validate(payment)


@payment_router.post("/{payment_id}/deposit", response_model=PaymentResponse)
async def deposit_payment(
    payment_id: uuid.UUID,
    data: Optional[AmountRequest] = None,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Capture a pre-authorized payment."""
    data = data or AmountRequest()
    service = PaymentService(session, transport=transport)
    payment = await service.deposit(payment_id, amount=data.amount, currency=data.currency)
    await session.commit()
    return PaymentResponse.model_validate(payment)


@payment_router.post("/{payment_id}/sync", response_model=PaymentResponse)
async def sync_payment(
    payment_id: uuid.UUID,
    _admin: CurrentUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_provider_transport),
):
    """Query the provider and apply the reported status."""
    service = PaymentService(session, transport=transport)
    payment = await service.sync_payment_status(payment_id)
    await session.commit()
    return PaymentResponse.model_validate(payment)


# ==================== Admin Gateway Endpoints ====================

@admin_router.get("", response_model=list[GatewayConfigResponse])
async def list_gateways(
    gateway_type: Optional[GatewayType] = Query(None, alias="type"),
    enabled: Optional[bool] = Query(None),
    test_mode: Optional[bool] = Query(None),
    session: AsyncSession = Depends(get_session),
):
    """List gateway configurations with secrets masked."""
    service = GatewayManagerService(session)
    records = await service.list_gateways(
        gateway_type=gateway_type.value if gateway_type else None,
        enabled=enabled,
        test_mode=test_mode,
    )
    return [_gateway_response(service, r) for r in records]


@admin_router.get("/arca/banks", response_model=list[ArcaBankInfo])
async def list_arca_banks():
    """ArCa partner banks and their bank selectors."""
    return [ArcaBankInfo(bank_id=bank_id, name=name) for bank_id, name in ARCA_BANKS.items()]


@admin_router.get("/{gateway_id}", response_model=GatewayConfigResponse)
async def get_gateway(
    gateway_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayManagerService(session)
    record = await service.get_gateway(gateway_id)
    return _gateway_response(service, record)


@admin_router.post("", response_model=GatewayConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_gateway(
    data: GatewayConfigCreate,
    session: AsyncSession = Depends(get_session),
):
    """Create a gateway configuration; secrets are encrypted before storage."""
    service = GatewayManagerService(session)
    record = await service.create_gateway(
        gateway_type=data.type,
        name=data.name,
        config=data.config,
        bank_id=data.bank_id,
        enabled=data.enabled,
        test_mode=data.test_mode,
        position=data.position,
    )
    await session.commit()
    return _gateway_response(service, record)


@admin_router.put("/{gateway_id}", response_model=GatewayConfigResponse)
async def update_gateway(
    gateway_id: uuid.UUID,
    data: GatewayConfigUpdate,
    session: AsyncSession = Depends(get_session),
):
    """Update a gateway configuration. Masked secrets keep their stored value."""
    service = GatewayManagerService(session)
    record = await service.update_gateway(
        gateway_id,
        name=data.name,
        config=data.config,
        bank_id=data.bank_id,
        enabled=data.enabled,
        test_mode=data.test_mode,
        position=data.position,
    )
    await session.commit()
    return _gateway_response(service, record)


@admin_router.delete("/{gateway_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_gateway(
    gateway_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Delete a gateway configuration that no payment references."""
    service = GatewayManagerService(session)
    await service.delete_gateway(gateway_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
