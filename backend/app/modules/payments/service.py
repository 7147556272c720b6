"""Payment services: gateway factory, config store, and payment orchestration.

GatewayManagerService owns gateway configuration records and applies the
credential cipher to their secret fields. PaymentService resolves a record
into a gateway adapter, drives the payment lifecycle, and owns the
canonical status state machine. Both are constructed per request from the
injected session; the router commits.
"""

import dataclasses
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Type

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.encryption import decrypt, encrypt
from app.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentError,
    UnsupportedOperationError,
    ValidationError,
)
from app.core.logging import log_info, log_warning
from app.core.metrics import PAYMENT_INITIATIONS_TOTAL, PAYMENT_OPERATIONS_TOTAL
from app.modules.auth.jwt import CurrentUser
from app.modules.order.models import Order, OrderPaymentStatus
from app.modules.order.repository import OrderRepository
from app.modules.payments.gateways import (
    AmeriabankGateway,
    ArcaGateway,
    IdramGateway,
    InecobankGateway,
)
from app.modules.payments.interface import (
    CardBinding,
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentResult,
    SupportsCardBinding,
    SupportsDeposit,
    SupportsPreAuthorization,
    SupportsRefund,
    SupportsReverse,
    supports,
)
from app.modules.payments.models import (
    GatewayType,
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    can_transition,
)
from app.modules.payments.provider_configs import (
    MASK_PLACEHOLDER,
    ProviderConfig,
    parse_provider_config,
    transform_secrets,
    validate_for_storage,
)
from app.modules.payments.repository import PaymentGatewayRepository, PaymentRepository
from app.modules.payments.utils import generate_idempotency_key

logger = logging.getLogger(__name__)

# Statuses from which a held payment may still be reversed, deposited or charged
_OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class PaymentGatewayFactory:
    """Factory for creating payment gateway instances."""

    _gateways: dict[str, Type[PaymentGatewayInterface]] = {
        GatewayType.IDRAM.value: IdramGateway,
        GatewayType.AMERIABANK.value: AmeriabankGateway,
        GatewayType.INECOBANK.value: InecobankGateway,
        GatewayType.ARCA.value: ArcaGateway,
    }

    @classmethod
    def create(
        cls,
        gateway_type: str,
        config: dict | ProviderConfig,
        test_mode: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> PaymentGatewayInterface:
        """Create a gateway instance from a decrypted config.

        Args:
            gateway_type: Provider identifier
            config: Decrypted provider config
            test_mode: Use the provider's test environment
            transport: Optional httpx transport for outbound calls

        Returns:
            Configured gateway instance

        Raises:
            ConfigurationError: If the provider is unknown or the config is invalid
        """
        key = gateway_type.value if isinstance(gateway_type, GatewayType) else str(gateway_type)
        gateway_class = cls._gateways.get(key)
        if not gateway_class:
            raise ConfigurationError(f"Unsupported gateway provider: {key}")
        return gateway_class(config, test_mode=test_mode, transport=transport)

    @classmethod
    def register(
        cls,
        provider: str,
        gateway_class: Type[PaymentGatewayInterface],
    ) -> None:
        """Register a new gateway implementation.

        Args:
            provider: Provider identifier
            gateway_class: Gateway implementation class
        """
        cls._gateways[provider] = gateway_class

    @classmethod
    def get_supported_providers(cls) -> list[str]:
        """Get list of supported provider identifiers."""
        return list(cls._gateways.keys())


def _get_path(model: Any, path: str) -> Any:
    """Read a dotted attribute path, None if any step is missing."""
    value = model
    for part in path.split("."):
        if value is None:
            return None
        value = getattr(value, part, None)
    return value


class GatewayManagerService:
    """Service for managing payment gateway configurations.

    Secret fields are encrypted on every write, decrypted only for internal
    use, and replaced with a placeholder on read-out.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.gateway_repo = PaymentGatewayRepository(session)

    async def list_gateways(
        self,
        gateway_type: Optional[str] = None,
        enabled: Optional[bool] = None,
        test_mode: Optional[bool] = None,
    ) -> list[PaymentGatewayConfig]:
        """List configurations ordered by position, newest first within a position."""
        return await self.gateway_repo.list_configs(
            gateway_type=gateway_type, enabled=enabled, test_mode=test_mode
        )

    async def get_gateway(self, gateway_id: uuid.UUID) -> PaymentGatewayConfig:
        record = await self.gateway_repo.get_by_id(gateway_id)
        if record is None:
            raise NotFoundError(f"Payment gateway {gateway_id} not found")
        return record

    async def create_gateway(
        self,
        gateway_type: GatewayType,
        name: str,
        config: Optional[dict] = None,
        bank_id: Optional[str] = None,
        enabled: bool = True,
        test_mode: bool = True,
        position: int = 0,
    ) -> PaymentGatewayConfig:
        """Create a gateway configuration.

        Args:
            gateway_type: Provider type
            name: Display name
            config: Plaintext provider config bundle
            bank_id: ArCa bank selector
            enabled: Offer the gateway at checkout
            test_mode: Use the provider's test environment
            position: Display order

        Returns:
            The stored record, with secrets encrypted

        Raises:
            ValidationError: If the config fails structural validation
            ConflictError: If a config for (type, bank_id) already exists
        """
        gateway_type = GatewayType(gateway_type)
        parsed = parse_provider_config(gateway_type, config)
        parsed, bank_id = self._sync_bank_id(gateway_type, parsed, bank_id)
        validate_for_storage(gateway_type, parsed, bank_id)

        existing = await self.gateway_repo.get_by_type_and_bank(gateway_type.value, bank_id)
        if existing is not None:
            raise ConflictError(
                f"A {gateway_type.value} gateway"
                f"{f' for bank {bank_id}' if bank_id else ''} already exists"
            )

        encrypted = transform_secrets(parsed, lambda _path, value: encrypt(value) if value else value)
        record = await self.gateway_repo.create(
            type=gateway_type.value,
            bank_id=bank_id,
            name=name,
            enabled=enabled,
            test_mode=test_mode,
            position=position,
            config=encrypted.model_dump(exclude_none=True),
        )
        log_info(logger, "Payment gateway created", gateway_id=str(record.id), gateway_type=record.type)
        return record

    async def update_gateway(
        self,
        gateway_id: uuid.UUID,
        name: Optional[str] = None,
        config: Optional[dict] = None,
        bank_id: Optional[str] = None,
        enabled: Optional[bool] = None,
        test_mode: Optional[bool] = None,
        position: Optional[int] = None,
    ) -> PaymentGatewayConfig:
        """Update a gateway configuration.

        A secret sent back as the mask placeholder, or omitted, keeps the
        stored ciphertext. An empty string clears it.

        Raises:
            NotFoundError: If the record does not exist
            ValidationError: If the new config fails structural validation
            ConflictError: If the change collides with another record
        """
        record = await self.get_gateway(gateway_id)
        gateway_type = GatewayType(record.type)
        fields: dict[str, Any] = {}

        if config is not None:
            incoming = parse_provider_config(gateway_type, config)
        else:
            incoming = parse_provider_config(gateway_type, record.config)

        if gateway_type == GatewayType.ARCA:
            if bank_id is None:
                bank_id = incoming.bank_id or record.bank_id
            incoming, bank_id = self._sync_bank_id(gateway_type, incoming, bank_id)
        else:
            bank_id = record.bank_id

        if config is not None or bank_id != record.bank_id:
            validate_for_storage(gateway_type, incoming, bank_id)

        if bank_id != record.bank_id:
            existing = await self.gateway_repo.get_by_type_and_bank(gateway_type.value, bank_id)
            if existing is not None and existing.id != record.id:
                raise ConflictError(
                    f"A {gateway_type.value} gateway for bank {bank_id} already exists"
                )
            fields["bank_id"] = bank_id

        if config is not None or "bank_id" in fields:
            stored = parse_provider_config(gateway_type, record.config)

            def merge_secret(path: str, value: Optional[str]) -> Optional[str]:
                if value is None or value == MASK_PLACEHOLDER:
                    return _get_path(stored, path)
                if value == "":
                    return None
                return encrypt(value)

            if config is None:
                # Only the bank selector changed; stored secrets are already encrypted
                merged = incoming
            else:
                merged = transform_secrets(incoming, merge_secret)
            fields["config"] = merged.model_dump(exclude_none=True)

        for key, value in (
            ("name", name),
            ("enabled", enabled),
            ("test_mode", test_mode),
            ("position", position),
        ):
            if value is not None:
                fields[key] = value

        record = await self.gateway_repo.update(record, **fields)
        log_info(logger, "Payment gateway updated", gateway_id=str(record.id), gateway_type=record.type)
        return record

    async def delete_gateway(self, gateway_id: uuid.UUID) -> None:
        """Delete a gateway configuration.

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If any payment references the record
        """
        record = await self.get_gateway(gateway_id)
        in_use = await self.gateway_repo.count_payments(record.id)
        if in_use:
            raise ConflictError(
                f"Payment gateway {gateway_id} is referenced by {in_use} payment(s)"
            )
        await self.gateway_repo.delete(record)
        log_info(logger, "Payment gateway deleted", gateway_id=str(gateway_id))

    def get_decrypted_config(self, record: PaymentGatewayConfig) -> ProviderConfig:
        """Parse a record's config with every secret decrypted.

        Raises:
            DecryptionError: If a stored secret is corrupt or was tampered with
        """
        stored = parse_provider_config(GatewayType(record.type), record.config)
        return transform_secrets(stored, lambda _path, value: decrypt(value) if value else value)

    def masked_config(self, record: PaymentGatewayConfig) -> dict[str, Any]:
        """Config bundle safe for read-out: non-empty secrets become the placeholder."""
        stored = parse_provider_config(GatewayType(record.type), record.config)
        masked = transform_secrets(stored, lambda _path, value: MASK_PLACEHOLDER if value else value)
        return masked.model_dump(exclude_none=True)

    @staticmethod
    def _sync_bank_id(
        gateway_type: GatewayType,
        config: ProviderConfig,
        bank_id: Optional[str],
    ) -> tuple[ProviderConfig, Optional[str]]:
        """Keep the ArCa bank selector identical on the record and in its config."""
        if gateway_type != GatewayType.ARCA:
            return config, None
        selector = bank_id or config.bank_id
        selector = str(selector) if selector is not None else None
        return config.model_copy(update={"bank_id": selector}), selector


class PaymentService:
    """Service for processing payments through configured gateways.

    Gateway adapters are built fresh for every operation from the decrypted
    config; no adapter or plaintext secret outlives the call.
    """

    def __init__(
        self,
        session: AsyncSession,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self.gateway_repo = PaymentGatewayRepository(session)
        self.payment_repo = PaymentRepository(session)
        self.order_repo = OrderRepository(session)
        self.gateway_manager = GatewayManagerService(session)
        self._transport = transport

    # ============================================
    # Gateway resolution
    # ============================================

    async def get_gateway_by_id(self, gateway_id: uuid.UUID) -> PaymentGatewayConfig:
        record = await self.gateway_repo.get_by_id(gateway_id)
        if record is None or not record.enabled:
            raise NotFoundError(f"Payment gateway {gateway_id} not found or disabled")
        return record

    async def get_gateway_by_type(
        self,
        gateway_type: GatewayType,
        bank_id: Optional[str] = None,
    ) -> PaymentGatewayConfig:
        gateway_type = GatewayType(gateway_type)
        selector = bank_id if gateway_type == GatewayType.ARCA else None
        record = await self.gateway_repo.first_enabled(gateway_type.value, selector)
        if record is None:
            raise NotFoundError(
                f"No enabled {gateway_type.value} gateway"
                f"{f' for bank {bank_id}' if bank_id else ''}"
            )
        return record

    def build_gateway(
        self,
        record: PaymentGatewayConfig,
        bank_id: Optional[str] = None,
    ) -> PaymentGatewayInterface:
        """Decrypt a record's config and construct its adapter.

        Args:
            record: Gateway configuration record
            bank_id: ArCa bank selector overriding the stored one

        Raises:
            ConfigurationError: If the decrypted config is rejected by the adapter
        """
        config = self.gateway_manager.get_decrypted_config(record)
        if record.type == GatewayType.ARCA.value:
            selector = bank_id or record.bank_id
            if selector:
                config = config.model_copy(update={"bank_id": str(selector)})
        return PaymentGatewayFactory.create(
            record.type,
            config,
            test_mode=record.test_mode,
            transport=self._transport,
        )

    # ============================================
    # Initiation
    # ============================================

    async def initiate_payment(
        self,
        order_id: uuid.UUID,
        gateway_id: Optional[uuid.UUID] = None,
        gateway_type: Optional[GatewayType] = None,
        bank_id: Optional[str] = None,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        pre_authorize: bool = False,
        metadata: Optional[dict[str, Any]] = None,
        user: Optional[CurrentUser] = None,
    ) -> PaymentResult:
        """Start a payment for an order.

        On success a pending Payment is persisted and the result's payment_id
        is that record's id. On failure nothing is persisted and the
        provider's error is returned in the result.

        Args:
            order_id: Order to pay
            gateway_id: Explicit gateway configuration
            gateway_type: Provider type, used when gateway_id is not given
            bank_id: ArCa bank selector
            return_url: Where the provider sends the customer after payment
            cancel_url: Where the provider sends the customer on failure
            pre_authorize: Hold funds for a later deposit
            metadata: Extra provider options (language, client_id, ...)
            user: Authenticated caller, if any

        Raises:
            NotFoundError: If the order or gateway does not exist
            AuthorizationError: If a non-admin caller does not own the order
            UnsupportedOperationError: If pre-authorization is not available
        """
        order = await self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        self._check_order_access(order, user)

        if gateway_id is not None:
            record = await self.get_gateway_by_id(gateway_id)
        elif gateway_type is not None:
            record = await self.get_gateway_by_type(gateway_type, bank_id)
        else:
            raise ValidationError("Either gateway_id or gateway_type is required")

        try:
            gateway = self.build_gateway(record, bank_id)
        except ConfigurationError as e:
            PAYMENT_INITIATIONS_TOTAL.labels(provider=record.type, result="failure").inc()
            log_warning(logger, "Gateway configuration rejected", gateway_id=str(record.id), error=e.detail)
            return PaymentResult(
                success=False,
                error_code="CONFIGURATION_ERROR",
                error_message=e.detail,
            )

        payment_order = PaymentOrder(
            order_id=str(order.id),
            order_number=order.number,
            amount=order.total,
            currency=order.currency,
            description=f"Order {order.number}",
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            return_url=return_url,
            cancel_url=cancel_url,
            metadata=dict(metadata or {}),
        )

        if pre_authorize:
            if not supports(gateway, SupportsPreAuthorization):
                raise UnsupportedOperationError(
                    f"{gateway.provider} does not support pre-authorization"
                )
            result = await gateway.register_pre_authorized(payment_order)
        else:
            result = await gateway.initiate_payment(payment_order)

        if not result.success:
            PAYMENT_INITIATIONS_TOTAL.labels(provider=record.type, result="failure").inc()
            log_warning(
                logger,
                "Payment initiation failed",
                order_id=str(order.id),
                gateway_type=record.type,
                error_code=result.error_code,
            )
            return result

        idempotency_key = generate_idempotency_key(record.type, str(order.id))
        payment = await self.payment_repo.get_by_idempotency_key(idempotency_key)
        if payment is None:
            payment = await self.payment_repo.create(
                order_id=order.id,
                provider=record.type,
                payment_gateway_id=record.id,
                amount=order.total,
                currency=order.currency.upper(),
                idempotency_key=idempotency_key,
                provider_transaction_id=result.transaction_id,
                provider_response={"initiation": result.metadata},
            )
            await self.order_repo.set_payment_gateway(order, record.id)

        PAYMENT_INITIATIONS_TOTAL.labels(provider=record.type, result="success").inc()
        log_info(
            logger,
            "Payment initiated",
            payment_id=str(payment.id),
            order_id=str(order.id),
            gateway_type=record.type,
        )
        return dataclasses.replace(result, payment_id=str(payment.id))

    # ============================================
    # Status
    # ============================================

    async def get_payment(
        self,
        payment_id: uuid.UUID,
        user: Optional[CurrentUser] = None,
    ) -> Payment:
        """Load a payment, checking order ownership for non-admin callers."""
        payment = await self.payment_repo.get_by_id(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if user is not None and not user.is_admin:
            order = await self.order_repo.get_by_id(payment.order_id)
            self._check_order_access(order, user)
        return payment

    async def sync_payment_status(self, payment_id: uuid.UUID) -> Payment:
        """Query the provider and apply the reported status.

        Payments without a provider transaction id are returned unchanged.
        """
        payment = await self.get_payment(payment_id)
        if not payment.provider_transaction_id:
            return payment

        gateway = await self.gateway_for_payment(payment)
        status = await gateway.get_payment_status(payment.provider_transaction_id)
        await self.apply_status(payment, status)
        return payment

    async def get_payment_status(self, payment_id: uuid.UUID) -> PaymentStatus:
        payment = await self.sync_payment_status(payment_id)
        return PaymentStatus(payment.status)

    async def sync_order_payment(self, order_id: uuid.UUID) -> Payment:
        """Sync the most recent payment of an order."""
        order = await self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        payment = await self.payment_repo.latest_for_order(order.id)
        if payment is None:
            raise NotFoundError(f"Order {order_id} has no payments")
        return await self.sync_payment_status(payment.id)

    async def apply_status(
        self,
        payment: Payment,
        status: PaymentStatus,
        provider_transaction_id: Optional[str] = None,
    ) -> bool:
        """Move a payment to a new status and fan it out to its order.

        Returns:
            True if the payment changed; False for a repeat of the current
            status or a transition the state machine refuses
        """
        current = PaymentStatus(payment.status)
        if status == current:
            return False
        if not can_transition(current, status):
            log_warning(
                logger,
                "Payment status transition refused",
                payment_id=str(payment.id),
                from_status=current.value,
                to_status=status.value,
            )
            return False

        now = datetime.now(timezone.utc)
        fields: dict[str, Any] = {"status": status.value}
        if status == PaymentStatus.COMPLETED:
            fields["completed_at"] = now
        elif status == PaymentStatus.FAILED:
            fields["failed_at"] = now
        if provider_transaction_id and not payment.provider_transaction_id:
            fields["provider_transaction_id"] = provider_transaction_id

        await self.payment_repo.update(payment, **fields)

        order = await self.order_repo.get_by_id(payment.order_id)
        if order is not None:
            await self.order_repo.set_payment_status(
                order,
                OrderPaymentStatus(status.value),
                paid_at=now if status == PaymentStatus.COMPLETED else None,
            )

        log_info(
            logger,
            "Payment status changed",
            payment_id=str(payment.id),
            from_status=current.value,
            to_status=status.value,
        )
        return True

    # ============================================
    # Capture operations
    # ============================================

    async def refund(
        self,
        payment_id: uuid.UUID,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> Payment:
        """Refund a completed payment, fully or partially.

        Repeated partial refunds are bounded by the original amount. Once
        refunds add up to it, the payment and its order become refunded.

        Args:
            payment_id: Payment to refund
            amount: Amount to refund; the remaining refundable amount when omitted
            currency: Refund currency, defaults to the payment's

        Raises:
            PaymentError: If the payment is not completed or has no transaction id
            ValidationError: If the amount is not positive or exceeds what remains
            UnsupportedOperationError: If the provider has no refund capability
            GatewayError: If the provider rejects the refund
        """
        payment = await self.get_payment(payment_id)
        if payment.status != PaymentStatus.COMPLETED.value:
            raise PaymentError(
                f"Only completed payments can be refunded (status: {payment.status})"
            )

        remaining = round(payment.amount - payment.refunded_amount, 2)
        if amount is None:
            amount = remaining
        if amount <= 0 or round(amount, 2) > remaining:
            raise ValidationError(
                f"Refund amount must be greater than 0 and at most {remaining:.2f}",
                field="amount",
            )
        currency = (currency or payment.currency).upper()

        gateway = await self.gateway_for_payment(payment)
        if not supports(gateway, SupportsRefund):
            raise UnsupportedOperationError(f"{gateway.provider} does not support refunds")
        self._require_transaction_id(payment)

        result = await gateway.refund(payment.provider_transaction_id, amount, currency)
        if not result.success:
            PAYMENT_OPERATIONS_TOTAL.labels(operation="refund", result="failure").inc()
            raise GatewayError(
                result.error_message or "Refund rejected by provider",
                error_code=result.error_code,
            )

        await self.payment_repo.append_response(
            payment,
            "refunds",
            {
                "amount": round(amount, 2),
                "currency": currency,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "refund_id": result.metadata.get("refund_id") or str(uuid.uuid4()),
            },
        )

        if payment.refunded_amount >= round(payment.amount, 2):
            await self.apply_status(payment, PaymentStatus.REFUNDED)

        PAYMENT_OPERATIONS_TOTAL.labels(operation="refund", result="success").inc()
        log_info(logger, "Payment refunded", payment_id=str(payment.id), amount=amount, currency=currency)
        return payment

    async def reverse(self, payment_id: uuid.UUID) -> Payment:
        """Cancel a payment whose funds are still held.

        Raises:
            PaymentError: If the payment is no longer pending or processing
            UnsupportedOperationError: If the provider has no reversal capability
            GatewayError: If the provider rejects the reversal
        """
        payment = await self.get_payment(payment_id)
        self._require_open(payment, "reversed")

        gateway = await self.gateway_for_payment(payment)
        if not supports(gateway, SupportsReverse):
            raise UnsupportedOperationError(f"{gateway.provider} does not support reversal")
        self._require_transaction_id(payment)

        result = await gateway.reverse(payment.provider_transaction_id)
        if not result.success:
            PAYMENT_OPERATIONS_TOTAL.labels(operation="reverse", result="failure").inc()
            raise GatewayError(
                result.error_message or "Reversal rejected by provider",
                error_code=result.error_code,
            )

        await self.payment_repo.append_response(
            payment,
            "reversals",
            {"timestamp": datetime.now(timezone.utc).isoformat(), "previous_status": payment.status},
        )
        await self.apply_status(payment, PaymentStatus.CANCELLED)

        PAYMENT_OPERATIONS_TOTAL.labels(operation="reverse", result="success").inc()
        log_info(logger, "Payment reversed", payment_id=str(payment.id))
        return payment

    async def deposit(
        self,
        payment_id: uuid.UUID,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> Payment:
        """Capture a pre-authorized payment.

        Args:
            payment_id: Payment to capture
            amount: Amount to capture; the full held amount when omitted
            currency: Capture currency, defaults to the payment's

        Raises:
            PaymentError: If the payment is no longer pending or processing
            ValidationError: If the amount is not positive or exceeds the payment
            UnsupportedOperationError: If the provider has no deposit capability
            GatewayError: If the provider rejects the deposit
        """
        payment = await self.get_payment(payment_id)
        self._require_open(payment, "deposited")

        if amount is not None and (amount <= 0 or round(amount, 2) > round(payment.amount, 2)):
            raise ValidationError(
                f"Deposit amount must be greater than 0 and at most {payment.amount:.2f}",
                field="amount",
            )
        currency = (currency or payment.currency).upper()

        gateway = await self.gateway_for_payment(payment)
        if not supports(gateway, SupportsDeposit):
            raise UnsupportedOperationError(f"{gateway.provider} does not support deposits")
        self._require_transaction_id(payment)

        result = await gateway.deposit(payment.provider_transaction_id, amount, currency=currency)
        if not result.success:
            PAYMENT_OPERATIONS_TOTAL.labels(operation="deposit", result="failure").inc()
            raise GatewayError(
                result.error_message or "Deposit rejected by provider",
                error_code=result.error_code,
            )

        await self.payment_repo.append_response(
            payment,
            "deposits",
            {
                "amount": round(amount if amount is not None else payment.amount, 2),
                "currency": currency,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        await self.apply_status(payment, PaymentStatus.COMPLETED)

        PAYMENT_OPERATIONS_TOTAL.labels(operation="deposit", result="success").inc()
        log_info(logger, "Payment deposited", payment_id=str(payment.id))
        return payment

    # ============================================
    # Card bindings
    # ============================================

    async def list_bindings(self, client_id: str) -> list[CardBinding]:
        """Stored cards for a client, from the first binding-capable gateway."""
        gateway = await self._binding_gateway()
        result = await gateway.list_bindings(client_id)
        if not result.success:
            raise GatewayError(
                result.error_message or "Failed to list card bindings",
                error_code=result.error_code,
            )
        return result.bindings

    async def pay_with_binding(
        self,
        payment_id: uuid.UUID,
        binding_id: str,
        cvc: Optional[str] = None,
        user: Optional[CurrentUser] = None,
    ) -> PaymentResult:
        """Charge a pending payment to a stored card.

        Without a 3-D Secure challenge the payment and its order are marked
        completed; with one, the result carries the ACS form and the status
        arrives later through the notification.

        Raises:
            AuthorizationError: If a non-admin caller does not own the order
            PaymentError: If the payment is no longer pending or processing
            UnsupportedOperationError: If the provider has no binding capability
            GatewayError: If the provider rejects the charge
        """
        payment = await self.get_payment(payment_id, user=user)
        self._require_open(payment, "charged")

        gateway = await self.gateway_for_payment(payment)
        if not supports(gateway, SupportsCardBinding):
            raise UnsupportedOperationError(f"{gateway.provider} does not support card bindings")
        self._require_transaction_id(payment)

        result = await gateway.pay_with_binding(payment.provider_transaction_id, binding_id, cvc=cvc)
        if not result.success:
            PAYMENT_OPERATIONS_TOTAL.labels(operation="pay_with_binding", result="failure").inc()
            raise GatewayError(
                result.error_message or "Binding payment rejected by provider",
                error_code=result.error_code,
            )

        if result.redirect_url and not result.metadata.get("is_3ds"):
            await self.apply_status(payment, PaymentStatus.COMPLETED)

        PAYMENT_OPERATIONS_TOTAL.labels(operation="pay_with_binding", result="success").inc()
        return dataclasses.replace(result, payment_id=str(payment.id))

    async def bind_card(self, binding_id: str) -> PaymentResult:
        return await self._binding_operation("bind_card", binding_id)

    async def unbind_card(self, binding_id: str) -> PaymentResult:
        return await self._binding_operation("unbind_card", binding_id)

    async def _binding_operation(self, operation: str, binding_id: str) -> PaymentResult:
        gateway = await self._binding_gateway()
        result = await getattr(gateway, operation)(binding_id)
        if not result.success:
            PAYMENT_OPERATIONS_TOTAL.labels(operation=operation, result="failure").inc()
            raise GatewayError(
                result.error_message or f"{operation} rejected by provider",
                error_code=result.error_code,
            )
        PAYMENT_OPERATIONS_TOTAL.labels(operation=operation, result="success").inc()
        return result

    async def _binding_gateway(self) -> PaymentGatewayInterface:
        """First enabled gateway, by position, that supports card bindings."""
        for record in await self.gateway_repo.list_configs(enabled=True):
            try:
                gateway = self.build_gateway(record)
            except ConfigurationError as e:
                log_warning(logger, "Skipping misconfigured gateway", gateway_id=str(record.id), error=e.detail)
                continue
            if supports(gateway, SupportsCardBinding):
                return gateway
        raise UnsupportedOperationError("No enabled gateway supports card bindings")

    # ============================================
    # Helpers
    # ============================================

    async def gateway_for_payment(self, payment: Payment) -> PaymentGatewayInterface:
        """Build the adapter from the configuration the payment was created with.

        Raises:
            NotFoundError: If the payment has no gateway configuration
        """
        record = None
        if payment.payment_gateway_id is not None:
            record = await self.gateway_repo.get_by_id(payment.payment_gateway_id)
        if record is None:
            raise NotFoundError(f"Payment gateway for payment {payment.id} not found")
        return self.build_gateway(record)

    @staticmethod
    def _check_order_access(order: Optional[Order], user: Optional[CurrentUser]) -> None:
        if user is None or user.is_admin:
            return
        if order is None or order.user_id != user.id:
            raise AuthorizationError("You do not have access to this order")

    @staticmethod
    def _require_open(payment: Payment, action: str) -> None:
        if PaymentStatus(payment.status) not in _OPEN_STATUSES:
            raise PaymentError(
                f"Payment in status {payment.status} cannot be {action}"
            )

    @staticmethod
    def _require_transaction_id(payment: Payment) -> None:
        if not payment.provider_transaction_id:
            raise PaymentError(f"Payment {payment.id} has no provider transaction id")
