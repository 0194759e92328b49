"""Shared fixtures for gateway tests."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from credsync.config import ApiConfig
from credsync.gateway import HttpCredentialGateway

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the gateway (nothing actually sleeps)."""
    return []


@pytest.fixture
def make_gateway(sleeps: list[float]):
    """Build an HttpCredentialGateway backed by a MockTransport handler."""

    def _make(handler: Handler, **api_overrides) -> HttpCredentialGateway:
        params = {
            "base_url": "http://store.test",
            "token": "at_123",
            "max_retries": 2,
            "backoff_seconds": 0.5,
        }
        params.update(api_overrides)
        return HttpCredentialGateway(
            ApiConfig(**params), transport=httpx.MockTransport(handler), sleep=sleeps.append
        )

    return _make
