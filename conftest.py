"""
Root-level shared test fixtures.

Inherited by the top-level tests/ suite and the gateway tests.
"""

from __future__ import annotations

import secrets
from pathlib import Path

import pytest

from credsync.config import reset_config
from credsync.gateway import InMemoryGateway
from credsync.keys import StoreKeyring
from credsync.reconciler import Reconciler

FIXTURES = Path(__file__).parent / "tests" / "fixtures"

STORE_ID = "csst_1234567890"
PASSPHRASE = "r54-G0pher_t3st$"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credsync env vars that leak between tests."""
    for key in [
        "CREDSYNC_WORKSPACE",
        "CREDSYNC_STATE_FILE",
        "CREDSYNC_API_URL",
        "CREDSYNC_TOKEN",
        "CREDSYNC_TIMEOUT",
        "CREDSYNC_MAX_RETRIES",
        "CREDSYNC_BACKOFF",
        "CREDSYNC_VERIFY_TLS",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store_key() -> bytes:
    return secrets.token_bytes(32)


@pytest.fixture
def store_id() -> str:
    """Credential store owning the test credentials."""
    return STORE_ID


@pytest.fixture
def passphrase() -> str:
    """Passphrase of the encrypted_pem key."""
    return PASSPHRASE


@pytest.fixture
def keyring(store_id: str, store_key: bytes) -> StoreKeyring:
    return StoreKeyring({store_id: store_key})


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def reconciler(gateway: InMemoryGateway, keyring: StoreKeyring) -> Reconciler:
    return Reconciler(gateway, keyring)


@pytest.fixture
def rsa_pem() -> str:
    return (FIXTURES / "rsa.pem").read_text()


@pytest.fixture
def encrypted_pem() -> str:
    """RSA key encrypted with the passphrase fixture."""
    return (FIXTURES / "rsa_encrypted.pem").read_text()
