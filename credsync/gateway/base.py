"""
Gateway interface — CRUD over the remote credential store.

Attribute payloads passed to ``create``/``update`` are flat dicts:

    {"name": ..., "description": ..., "username": ...,
     "private_key": ..., "private_key_passphrase": ...}

For ``update``, plain attributes are replaced in full. A sensitive attribute
absent from the payload is left untouched remotely; an explicit ``None``
clears it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from credsync.models import SENSITIVE_ATTRIBUTES, RemoteCredential


def redact(attrs: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``attrs`` safe to log: secret values replaced by a marker."""
    out: dict[str, Any] = {}
    for k, v in attrs.items():
        if k in SENSITIVE_ATTRIBUTES and v is not None:
            out[k] = "<redacted>"
        else:
            out[k] = v
    return out


class CredentialGateway(ABC):
    """Base class for credential store clients."""

    @abstractmethod
    def create(self, store_id: str, attrs: dict[str, Any]) -> RemoteCredential:
        """Create a credential in ``store_id``.

        Raises:
            RemoteRejected: the store refused the attributes.
            Unavailable: transient failure after the client's own retries.
        """

    @abstractmethod
    def read(self, credential_id: str) -> RemoteCredential:
        """Read a credential. Raises NotFound if it does not exist."""

    @abstractmethod
    def update(
        self, credential_id: str, attrs: dict[str, Any], version: int | None = None
    ) -> RemoteCredential:
        """Update a credential. Raises NotFound if it no longer exists."""

    @abstractmethod
    def delete(self, credential_id: str) -> bool:
        """Delete a credential. Returns False if it was already gone."""

    def close(self) -> None:  # noqa: B027
        """Release client resources."""
