"""
In-memory credential store — a stub gateway for tests and dry runs.

Counts calls per operation and keeps a redacted call log, so tests can
assert that an unchanged re-apply makes no update calls and that secrets
only travel when they changed.
"""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from credsync.errors import NotFound, RemoteRejected, Unavailable
from credsync.gateway.base import CredentialGateway, redact
from credsync.models import CREDENTIAL_TYPE, SENSITIVE_ATTRIBUTES, RemoteCredential

logger = logging.getLogger(__name__)


@dataclass
class GatewayCall:
    """One recorded gateway call. ``attrs`` has secret values redacted."""

    op: str
    credential_id: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Record:
    id: str
    credential_store_id: str
    name: str
    description: str
    username: str
    secrets: dict[str, str]
    version: int
    created_time: datetime
    updated_time: datetime


class InMemoryGateway(CredentialGateway):
    """Dict-backed credential store."""

    def __init__(self, id_prefix: str = "credspk") -> None:
        self.calls: Counter[str] = Counter()
        self.log: list[GatewayCall] = []
        self._records: dict[str, _Record] = {}
        self._ids = itertools.count(1)
        self._id_prefix = id_prefix
        self._reject: str | None = None
        self._unavailable = 0

    # -- Test controls --

    def reject_next(self, message: str) -> None:
        """Make the next create/update fail with RemoteRejected."""
        self._reject = message

    def fail_next(self, times: int = 1) -> None:
        """Make the next ``times`` calls fail with Unavailable."""
        self._unavailable = times

    def remove(self, credential_id: str) -> None:
        """Delete a record behind the reconciler's back."""
        logger.debug("Removing %s out of band", credential_id)
        self._records.pop(credential_id, None)

    def secrets_of(self, credential_id: str) -> dict[str, str]:
        """Secrets currently held for a credential."""
        return dict(self._records[credential_id].secrets)

    def sent(self, op: str) -> list[GatewayCall]:
        return [c for c in self.log if c.op == op]

    # -- Gateway --

    def _enter(self, op: str, credential_id: str | None, attrs: dict[str, Any] | None = None) -> None:
        self.calls[op] += 1
        self.log.append(GatewayCall(op, credential_id, redact(attrs or {})))
        if self._unavailable:
            self._unavailable -= 1
            raise Unavailable(f"{op} failed: store unavailable")

    def _check_reject(self) -> None:
        if self._reject is not None:
            message, self._reject = self._reject, None
            raise RemoteRejected(message, status_code=400)

    def _to_remote(self, rec: _Record) -> RemoteCredential:
        return RemoteCredential(
            id=rec.id,
            credential_store_id=rec.credential_store_id,
            type=CREDENTIAL_TYPE,
            name=rec.name,
            description=rec.description,
            version=rec.version,
            attributes={"username": rec.username},
            created_time=rec.created_time,
            updated_time=rec.updated_time,
        )

    def create(self, store_id: str, attrs: dict[str, Any]) -> RemoteCredential:
        self._enter("create", None, attrs)
        self._check_reject()
        if not attrs.get("private_key"):
            raise RemoteRejected(
                "Invalid request",
                status_code=400,
                fields=[{"name": "attributes.private_key", "description": "Field required."}],
            )
        now = datetime.now(UTC)
        rec = _Record(
            id=f"{self._id_prefix}_{next(self._ids):010d}",
            credential_store_id=store_id,
            name=attrs.get("name") or "",
            description=attrs.get("description") or "",
            username=attrs.get("username") or "",
            secrets={k: attrs[k] for k in SENSITIVE_ATTRIBUTES if attrs.get(k)},
            version=1,
            created_time=now,
            updated_time=now,
        )
        self._records[rec.id] = rec
        return self._to_remote(rec)

    def read(self, credential_id: str) -> RemoteCredential:
        self._enter("read", credential_id)
        rec = self._records.get(credential_id)
        if rec is None:
            raise NotFound(credential_id)
        return self._to_remote(rec)

    def update(
        self, credential_id: str, attrs: dict[str, Any], version: int | None = None
    ) -> RemoteCredential:
        self._enter("update", credential_id, attrs)
        rec = self._records.get(credential_id)
        if rec is None:
            raise NotFound(credential_id)
        self._check_reject()
        if version is not None and version != rec.version:
            raise RemoteRejected(
                f"version mismatch: have {rec.version}, got {version}", status_code=409
            )
        for key in ("name", "description", "username"):
            if key in attrs:
                setattr(rec, key, attrs[key] or "")
        for key in SENSITIVE_ATTRIBUTES:
            if key not in attrs:
                continue
            if attrs[key]:
                rec.secrets[key] = attrs[key]
            else:
                rec.secrets.pop(key, None)
        rec.version += 1
        rec.updated_time = datetime.now(UTC)
        return self._to_remote(rec)

    def delete(self, credential_id: str) -> bool:
        self._enter("delete", credential_id)
        return self._records.pop(credential_id, None) is not None
