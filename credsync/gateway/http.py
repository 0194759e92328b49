"""
HTTP client for the credential store API.

Wraps httpx.Client. Endpoints:

    POST   /v1/credentials          create
    GET    /v1/credentials/{id}     read
    PATCH  /v1/credentials/{id}     update (with version)
    DELETE /v1/credentials/{id}     delete

Status mapping: 404 for a credential id -> NotFound, other 4xx -> RemoteRejected,
429/5xx and transport errors -> Unavailable (retried with exponential
backoff first). Request bodies carry plaintext secrets and are never logged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from credsync.config import ApiConfig
from credsync.errors import NotFound, RemoteRejected, Unavailable
from credsync.gateway.base import CredentialGateway
from credsync.models import CREDENTIAL_TYPE, RemoteCredential

logger = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 502, 503, 504}
# Errors where the request never reached the server, safe to retry for any method
_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
_IDEMPOTENT = {"GET", "PATCH", "DELETE"}


def _body(attrs: dict[str, Any]) -> dict[str, Any]:
    """Split a flat attribute payload into top-level fields and type attributes."""
    body: dict[str, Any] = {}
    typed: dict[str, Any] = {}
    for k, v in attrs.items():
        if k in ("name", "description"):
            body[k] = v
        else:
            typed[k] = v
    if typed:
        body["attributes"] = typed
    return body


def _error_message(resp: httpx.Response) -> tuple[str, list[dict[str, Any]]]:
    try:
        data = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:200]}", []
    if not isinstance(data, dict):
        return f"HTTP {resp.status_code}", []
    message = data.get("message") or data.get("error") or f"HTTP {resp.status_code}"
    details = data.get("details")
    fields = details.get("request_fields") if isinstance(details, dict) else None
    if not isinstance(fields, list):
        return str(message), []
    return str(message), [f for f in fields if isinstance(f, dict)]


class HttpCredentialGateway(CredentialGateway):
    """Blocking credential store client."""

    def __init__(
        self,
        api: ApiConfig,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=api.base_url,
            headers=api.headers,
            timeout=api.timeout,
            verify=api.verify_tls,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpCredentialGateway:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        Makes up to ``max_retries`` further attempts after the first. Raises
        Unavailable once they are exhausted.
        """
        attempts = max(0, self.api.max_retries) + 1
        last_error = ""
        for attempt in range(attempts):
            try:
                resp = self._client.request(method, path, **kwargs)
            except _CONNECT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
            except httpx.TransportError as e:
                if method not in _IDEMPOTENT:
                    raise Unavailable(f"{method} {path} failed: {type(e).__name__}") from e
                last_error = f"{type(e).__name__}: {e}"
            else:
                if resp.status_code in _RETRY_STATUSES or resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    if resp.status_code not in _RETRY_STATUSES and method not in _IDEMPOTENT:
                        raise Unavailable(f"{method} {path} failed: {last_error}")
                else:
                    return resp

            if attempt + 1 < attempts:
                delay = self.api.backoff_seconds * (2**attempt)
                logger.warning(
                    "%s %s attempt %d/%d failed (%s), retrying in %.1fs",
                    method, path, attempt + 1, attempts, last_error, delay,
                )
                self._sleep(delay)

        logger.error("%s %s failed after %d attempts: %s", method, path, attempts, last_error)
        raise Unavailable(f"{method} {path} failed after {attempts} attempts: {last_error}")

    def _parse(self, resp: httpx.Response) -> RemoteCredential:
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteRejected(
                f"Unexpected non-JSON response from store (HTTP {resp.status_code})",
                status_code=resp.status_code,
            ) from e
        if isinstance(data, dict) and "item" in data:
            data = data["item"]
        try:
            return RemoteCredential.model_validate(data)
        except ValidationError as e:
            raise RemoteRejected(
                f"Unexpected credential payload from store: {e.error_count()} invalid field(s)",
                status_code=resp.status_code,
            ) from e

    def _raise_for_status(self, resp: httpx.Response, credential_id: str | None = None) -> None:
        if resp.status_code == 404 and credential_id is not None:
            raise NotFound(credential_id)
        if 400 <= resp.status_code < 500:
            message, fields = _error_message(resp)
            raise RemoteRejected(message, status_code=resp.status_code, fields=fields)

    def create(self, store_id: str, attrs: dict[str, Any]) -> RemoteCredential:
        body = {"type": CREDENTIAL_TYPE, "credential_store_id": store_id, **_body(attrs)}
        resp = self._request("POST", "/v1/credentials", json=body)
        self._raise_for_status(resp)
        remote = self._parse(resp)
        logger.info("Created credential %s in store %s", remote.id, store_id)
        return remote

    def read(self, credential_id: str) -> RemoteCredential:
        resp = self._request("GET", f"/v1/credentials/{credential_id}")
        self._raise_for_status(resp, credential_id)
        return self._parse(resp)

    def update(
        self, credential_id: str, attrs: dict[str, Any], version: int | None = None
    ) -> RemoteCredential:
        body = _body(attrs)
        if version is not None:
            body["version"] = version
        resp = self._request("PATCH", f"/v1/credentials/{credential_id}", json=body)
        self._raise_for_status(resp, credential_id)
        remote = self._parse(resp)
        logger.info("Updated credential %s (version %d)", credential_id, remote.version)
        return remote

    def delete(self, credential_id: str) -> bool:
        resp = self._request("DELETE", f"/v1/credentials/{credential_id}")
        if resp.status_code == 404:
            logger.info("Credential %s already deleted", credential_id)
            return False
        self._raise_for_status(resp, credential_id)
        logger.info("Deleted credential %s", credential_id)
        return True
