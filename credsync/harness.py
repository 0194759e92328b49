"""
Verification harness — post-condition checks on resource state.

Checks take the flat attribute mapping of one resource and raise
VerificationError on failure. Build them with the helpers below and run them
together with ``compose``:

    check = compose(
        attr_equals("username", "my-user"),
        fingerprint_shape(passphrase_set=False),
        exists(gateway),
    )
    check(state.to_attributes())

``check_destroyed`` asserts the store answers NotFound for each destroyed id.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from credsync.errors import CredsyncError, NotFound
from credsync.fingerprint import FINGERPRINT_LENGTH
from credsync.gateway.base import CredentialGateway
from credsync.models import hmac_key

Check = Callable[[dict[str, str]], None]


class VerificationError(AssertionError):
    pass


def compose(*checks: Check) -> Check:
    """Run checks in order; the first failure propagates."""

    def run(attrs: dict[str, str]) -> None:
        for check in checks:
            check(attrs)

    return run


def attr_equals(key: str, expected: str) -> Check:
    def run(attrs: dict[str, str]) -> None:
        actual = attrs.get(key)
        if actual != expected:
            raise VerificationError(f"{key}: expected {expected!r}, got {actual!r}")

    return run


def attr_absent(key: str) -> Check:
    """Attribute missing or empty."""

    def run(attrs: dict[str, str]) -> None:
        if attrs.get(key):
            raise VerificationError(f"{key}: expected no value, got {attrs[key]!r}")

    return run


def fingerprint_shape(passphrase_set: bool) -> Check:
    """private_key_hmac is 43 chars; the passphrase fingerprint is too when one was set."""

    def run(attrs: dict[str, str]) -> None:
        computed = attrs.get(hmac_key("private_key"), "")
        if len(computed) != FINGERPRINT_LENGTH:
            raise VerificationError(
                f"computed private key hmac not the expected length of "
                f"{FINGERPRINT_LENGTH} characters, got: {computed!r}"
            )
        passphrase_hmac = attrs.get(hmac_key("private_key_passphrase"), "")
        if passphrase_set and len(passphrase_hmac) != FINGERPRINT_LENGTH:
            raise VerificationError(
                f"computed private key passphrase hmac not the expected length of "
                f"{FINGERPRINT_LENGTH} characters, got: {passphrase_hmac!r}"
            )
        if not passphrase_set and passphrase_hmac:
            raise VerificationError(
                f"unexpected private key passphrase hmac for unset passphrase: {passphrase_hmac!r}"
            )

    return run


def exists(gateway: CredentialGateway) -> Check:
    """The resource has an id and the store can read it."""

    def run(attrs: dict[str, str]) -> None:
        credential_id = attrs.get("id")
        if not credential_id:
            raise VerificationError("no ID is set")
        try:
            gateway.read(credential_id)
        except CredsyncError as e:
            raise VerificationError(f"got an error reading {credential_id!r}: {e}") from e

    return run


def check_destroyed(gateway: CredentialGateway, credential_ids: Iterable[str]) -> None:
    """Each id must read back as NotFound. Any other outcome is a failure."""
    for credential_id in credential_ids:
        try:
            gateway.read(credential_id)
        except NotFound:
            continue
        except CredsyncError as e:
            raise VerificationError(
                f"didn't get a not-found when reading destroyed credential {credential_id!r}: {e}"
            ) from e
        raise VerificationError(
            f"didn't get a not-found when reading destroyed credential {credential_id!r}: still exists"
        )
