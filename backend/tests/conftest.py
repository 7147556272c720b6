"""
Shared test configuration and fixtures for the payments test suite.
"""

import json
import os
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl

# Settings are read at import time; these must be in place before app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("PAYMENT_KDF_ITERATIONS", "1000")
os.environ.setdefault("LOG_JSON", "false")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base, get_session
from app.main import app
from app.modules.auth.jwt import create_access_token
from app.modules.order.models import Order
from app.modules.payments import models as payment_models  # noqa: F401
from app.modules.payments.models import GatewayType, Payment, PaymentGatewayConfig
from app.modules.payments.router import get_provider_transport
from app.modules.payments.service import GatewayManagerService


IDRAM_CONFIG = {
    "idram_id": "110000601",
    "idram_key": "idram-secret-key",
    "default_language": "en",
}

AMERIABANK_CONFIG = {
    "client_id": "ameria-client-id",
    "accounts": {"AMD": {"username": "3d19541048", "password": "lazY2k"}},
}

INECOBANK_CONFIG = {
    "accounts": {
        "AMD": {"username": "ineco_amd", "password": "ineco-amd-pass"},
        "USD": {"username": "ineco_usd", "password": "ineco-usd-pass"},
    },
}

ARCA_CONFIG = {
    "bank_id": "2",
    "accounts": {"AMD": {"username": "arca_api", "password": "arca-pass"}},
}

PROVIDER_CONFIGS = {
    GatewayType.IDRAM: IDRAM_CONFIG,
    GatewayType.AMERIABANK: AMERIABANK_CONFIG,
    GatewayType.INECOBANK: INECOBANK_CONFIG,
    GatewayType.ARCA: ARCA_CONFIG,
}


class ProviderStub:
    """Scripted provider API behind an httpx.MockTransport.

    Responses are keyed by the last path segment of the request URL
    (register.do, InitPayment, ...). Unscripted operations answer 404.
    """

    def __init__(self):
        self.responses: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def respond(self, operation: str, body: Any = None, status_code: int = 200) -> None:
        self.responses[operation] = (status_code, body)

    def fail(self, operation: str, error: Exception) -> None:
        self.responses[operation] = (None, error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        operation = request.url.path.rsplit("/", 1)[-1]
        if operation not in self.responses:
            return httpx.Response(404, json={"error": f"unexpected call to {operation}"})
        status_code, body = self.responses[operation]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body if body is not None else {})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def operations(self) -> list[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.requests]

    def form(self, index: int = -1) -> dict[str, str]:
        """Decoded form body of a recorded request."""
        return dict(parse_qsl(self.requests[index].content.decode("utf-8"), keep_blank_values=True))

    def json(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncSession:
    async with session_maker() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def client(session_maker, provider):
    """HTTP client against the app, wired to the test database and provider stub."""

    async def override_get_session():
        async with session_maker() as db_session:
            yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_provider_transport] = lambda: provider.transport

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('admin-1', roles=['admin'])}"}


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('user-1')}"}


@pytest.fixture
def make_order(session) -> Callable:
    """Create and commit an order."""

    async def _make_order(
        number: str = "250113-1001",
        total: float = 5000.0,
        currency: str = "AMD",
        user_id: Optional[str] = "user-1",
        **fields: Any,
    ) -> Order:
        order = Order(number=number, total=total, currency=currency, user_id=user_id, **fields)
        session.add(order)
        await session.commit()
        await session.refresh(order)
        return order

    return _make_order


@pytest.fixture
def make_gateway(session) -> Callable:
    """Create and commit a gateway configuration through the config store."""

    async def _make_gateway(
        gateway_type: GatewayType,
        config: Optional[dict] = None,
        **fields: Any,
    ) -> PaymentGatewayConfig:
        service = GatewayManagerService(session)
        record = await service.create_gateway(
            gateway_type=gateway_type,
            name=fields.pop("name", f"{gateway_type.value} gateway"),
            config=config if config is not None else PROVIDER_CONFIGS[gateway_type],
            **fields,
        )
        await session.commit()
        return record

    return _make_gateway


@pytest.fixture
def make_payment(session) -> Callable:
    """Create and commit a payment in any status, bypassing initiation."""

    async def _make_payment(
        order: Order,
        gateway: PaymentGatewayConfig,
        status: str = "pending",
        provider_transaction_id: Optional[str] = "txn-1",
        amount: Optional[float] = None,
        **fields: Any,
    ) -> Payment:
        payment = Payment(
            order_id=order.id,
            provider=gateway.type,
            payment_gateway_id=gateway.id,
            provider_transaction_id=provider_transaction_id,
            amount=amount if amount is not None else order.total,
            currency=order.currency,
            status=status,
            idempotency_key=f"{gateway.type}_{order.id}_{status}_{provider_transaction_id}",
            **fields,
        )
        session.add(payment)
        await session.commit()
        await session.refresh(payment)
        return payment

    return _make_payment
