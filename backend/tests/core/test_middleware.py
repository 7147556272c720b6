"""Tests for the HTTP middleware stack.

Tests that:
- Resource ids collapse into a bounded set of endpoint labels
- The caller's correlation ID is echoed back, or a fresh one is issued
"""

import uuid

import pytest

from app.core.middleware import CORRELATION_ID_HEADER, endpoint_label


class TestEndpointLabel:

    @pytest.mark.parametrize(
        ("path", "label"),
        [
            (
                "/api/v1/payments/0b6c3f5e-8a39-4d1e-9a0f-2c4d6e8f1a2b/status",
                "/api/v1/payments/{id}/status",
            ),
            ("/api/v1/orders/1001/payments", "/api/v1/orders/{id}/payments"),
            ("/api/v1/webhooks/arca", "/api/v1/webhooks/arca"),
            ("/api/v1/orders/250113-1001", "/api/v1/orders/250113-1001"),
        ],
    )
    def test_ids_are_collapsed(self, path: str, label: str):
        assert endpoint_label(path) == label


class TestCorrelationId:

    @pytest.mark.asyncio
    async def test_caller_id_is_echoed(self, client):
        response = await client.get("/health", headers={CORRELATION_ID_HEADER: "corr-42"})

        assert response.status_code == 200
        assert response.headers[CORRELATION_ID_HEADER] == "corr-42"

    @pytest.mark.asyncio
    async def test_missing_id_is_generated(self, client):
        response = await client.get("/health")

        assert uuid.UUID(response.headers[CORRELATION_ID_HEADER])
