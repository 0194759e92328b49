"""Error taxonomy shared by the gateway and the reconciler."""

from __future__ import annotations

from typing import Any


class CredsyncError(Exception):
    """Base class for all credsync errors."""


class InvalidKey(CredsyncError):
    """The fingerprint key is missing or too short. A configuration error."""


class RemoteRejected(CredsyncError):
    """The credential store refused the request (validation failure)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        fields: list[dict[str, Any]] | None = None,
    ) -> None:
        self.status_code = status_code
        self.fields = fields or []
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.fields:
            return base
        details = "; ".join(_describe_field(f) for f in self.fields)
        return f"{base} ({details})"


def _describe_field(field: Any) -> str:
    if not isinstance(field, dict):
        return str(field)
    name = field.get("name", "?")
    if field.get("description"):
        return f"{name}: {field['description']}"
    return str(name)


class Unavailable(CredsyncError):
    """Transient network or service failure."""


class NotFound(CredsyncError):
    """The credential does not exist remotely. A state signal, not a failure."""

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(f"credential {credential_id!r} not found")


class ReplaceFailed(CredsyncError):
    """A replace deleted the old credential but could not create the new one.

    The old credential is gone, so callers must clear its local state.
    The underlying error is chained as ``__cause__``.
    """

    def __init__(self, old_id: str, cause: CredsyncError) -> None:
        self.old_id = old_id
        super().__init__(
            f"credential {old_id!r} was deleted but its replacement was not created: {cause}"
        )
