"""
Keyed fingerprints for sensitive attributes.

A fingerprint is HMAC-SHA256(store_key, plaintext), encoded as URL-safe
base64 without padding, so it is always 43 characters long. Equal inputs give
equal fingerprints, which is all the reconciler needs to tell "unchanged"
from "changed" without keeping the secret around.

This is drift detection, not encryption: anyone holding the store key can
brute-force a small plaintext space.
"""

from __future__ import annotations

import base64
import hmac as _hmac

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from credsync.errors import InvalidKey

MIN_KEY_LENGTH = 16
FINGERPRINT_LENGTH = 43


def _check_key(store_key: bytes) -> None:
    if not store_key:
        raise InvalidKey("fingerprint key is empty")
    if len(store_key) < MIN_KEY_LENGTH:
        raise InvalidKey(
            f"fingerprint key must be at least {MIN_KEY_LENGTH} bytes, got {len(store_key)}"
        )


def fingerprint(store_key: bytes, plaintext: bytes | str) -> str:
    """Return the 43-char fingerprint of ``plaintext`` under ``store_key``.

    Strings are UTF-8 encoded. Callers decide what counts as "unset"; an empty
    plaintext is hashed like any other value.
    """
    _check_key(store_key)
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")

    mac = crypto_hmac.HMAC(store_key, hashes.SHA256())
    mac.update(plaintext)
    digest = mac.finalize()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def same_fingerprint(a: str | None, b: str | None) -> bool:
    """Constant-time equality of two fingerprints. Two unset values are equal."""
    if a is None or b is None:
        return a is b
    return _hmac.compare_digest(a, b)
