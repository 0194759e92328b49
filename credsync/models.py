"""
Data models for SSH private-key credentials.

Declared config and local state are plain dataclasses, matching the frozen
dataclass pattern in credsync.config. The server's view of a credential is a
pydantic model because it is parsed from JSON.

Unset secrets are ``None``. An empty string coming from a declaration is
normalised to ``None`` when the config is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

CREDENTIAL_TYPE = "ssh_private_key"

PLAIN_ATTRIBUTES = ("name", "description", "username")
SENSITIVE_ATTRIBUTES = ("private_key", "private_key_passphrase")


def hmac_key(attribute: str) -> str:
    """State key holding the fingerprint of a sensitive attribute."""
    return f"{attribute}_hmac"


def _unset_if_empty(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    return value


class Phase(StrEnum):
    """Lifecycle phases of a single resource."""

    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    UPDATING = "updating"
    DELETING = "deleting"
    IMPORTING = "importing"


class Action(StrEnum):
    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"


@dataclass
class SensitiveAttribute:
    """A declared secret paired with its fingerprint (filled in by the reconciler)."""

    name: str
    plaintext: str | None = None
    fingerprint: str | None = None

    @property
    def is_set(self) -> bool:
        return self.plaintext is not None and self.plaintext != ""

    def __repr__(self) -> str:
        shown = "<set>" if self.is_set else None
        return f"SensitiveAttribute(name={self.name!r}, plaintext={shown}, fingerprint={self.fingerprint!r})"


@dataclass(frozen=True)
class SshPrivateKeyConfig:
    """A declared SSH private-key credential."""

    credential_store_id: str
    username: str
    private_key: str | None = None
    private_key_passphrase: str | None = None
    name: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "private_key", _unset_if_empty(self.private_key))
        object.__setattr__(
            self, "private_key_passphrase", _unset_if_empty(self.private_key_passphrase)
        )

    def __repr__(self) -> str:
        return (
            f"SshPrivateKeyConfig(credential_store_id={self.credential_store_id!r}, "
            f"name={self.name!r}, username={self.username!r}, "
            f"private_key={'<set>' if self.private_key else None}, "
            f"private_key_passphrase={'<set>' if self.private_key_passphrase else None})"
        )

    def plain_attributes(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description, "username": self.username}

    def sensitive_attributes(self) -> list[SensitiveAttribute]:
        return [SensitiveAttribute(name, getattr(self, name)) for name in SENSITIVE_ATTRIBUTES]


class RemoteCredential(BaseModel):
    """A credential as returned by the credential store (never includes secrets)."""

    id: str
    credential_store_id: str
    type: str = CREDENTIAL_TYPE
    name: str = ""
    description: str = ""
    version: int = 0
    attributes: dict[str, Any] = {}
    created_time: datetime | None = None
    updated_time: datetime | None = None

    @property
    def username(self) -> str:
        return str(self.attributes.get("username") or "")


@dataclass
class CredentialState:
    """Local state for one credential: plain attributes plus fingerprints."""

    id: str
    credential_store_id: str
    username: str = ""
    name: str = ""
    description: str = ""
    version: int = 0
    fingerprints: dict[str, str] = field(default_factory=dict)
    # Set after import: fingerprints are unknown until the next apply.
    sensitive_pending: bool = False

    @classmethod
    def from_remote(
        cls,
        remote: RemoteCredential,
        fingerprints: dict[str, str] | None = None,
        sensitive_pending: bool = False,
    ) -> CredentialState:
        return cls(
            id=remote.id,
            credential_store_id=remote.credential_store_id,
            username=remote.username,
            name=remote.name,
            description=remote.description,
            version=remote.version,
            fingerprints=dict(fingerprints or {}),
            sensitive_pending=sensitive_pending,
        )

    def plain_attributes(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description, "username": self.username}

    def fingerprint(self, attribute: str) -> str | None:
        return self.fingerprints.get(attribute)

    def to_attributes(self) -> dict[str, str]:
        """Flatten into the attribute-name -> string mapping kept in state."""
        attrs = {
            "id": self.id,
            "type": CREDENTIAL_TYPE,
            "credential_store_id": self.credential_store_id,
            "name": self.name,
            "description": self.description,
            "username": self.username,
            "version": str(self.version),
        }
        for name in SENSITIVE_ATTRIBUTES:
            value = self.fingerprints.get(name)
            if value:
                attrs[hmac_key(name)] = value
        if self.sensitive_pending:
            attrs["sensitive_pending"] = "true"
        return attrs

    @classmethod
    def from_attributes(cls, attrs: dict[str, str]) -> CredentialState:
        fingerprints = {
            name: attrs[hmac_key(name)]
            for name in SENSITIVE_ATTRIBUTES
            if attrs.get(hmac_key(name))
        }
        return cls(
            id=attrs["id"],
            credential_store_id=attrs["credential_store_id"],
            username=attrs.get("username", ""),
            name=attrs.get("name", ""),
            description=attrs.get("description", ""),
            version=int(attrs.get("version") or 0),
            fingerprints=fingerprints,
            sensitive_pending=attrs.get("sensitive_pending") == "true",
        )


@dataclass
class Plan:
    """What apply would do for one resource."""

    action: Action
    changed_plain: list[str] = field(default_factory=list)
    changed_sensitive: list[str] = field(default_factory=list)
    # attribute -> fresh fingerprint (None when the attribute is unset)
    fingerprints: dict[str, str | None] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return self.action != Action.NOOP


@dataclass
class ApplyResult:
    """Outcome of an apply. ``state`` is None when the resource vanished remotely."""

    action: Action
    state: CredentialState | None
    plan: Plan | None = None
