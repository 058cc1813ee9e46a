"""Shared test fixtures."""

import os

# Settings has no defaults for secrets; provide test values before any import of config.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SERVICE_TOKEN", "test-service-token")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_webhook_secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
