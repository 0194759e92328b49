"""
Local state file — resource address -> flat attribute mapping.

Layout:
    {
      "version": 1,
      "resources": {
        "deploy-key": {"id": "credspk_...", "private_key_hmac": "...", ...}
      }
    }

Only what CredentialState.to_attributes() produces is written, so secrets
never reach this file. Writes are atomic (temp file + os.replace).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from credsync.models import CredentialState

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateFileError(ValueError):
    pass


class StateFile:
    """Loads and saves resource state for the CLI."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._resources: dict[str, dict[str, str]] = {}
        self._loaded = False

    def load(self) -> StateFile:
        self._loaded = True
        if not self.path.exists():
            self._resources = {}
            return self
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise StateFileError(f"Corrupt state file {self.path}: {e}") from e
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            raise StateFileError(
                f"Unsupported state file {self.path} (expected version {STATE_VERSION})"
            )
        self._resources = {
            addr: {str(k): str(v) for k, v in attrs.items()}
            for addr, attrs in (data.get("resources") or {}).items()
        }
        return self

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def addresses(self) -> list[str]:
        self._ensure_loaded()
        return sorted(self._resources)

    def attributes(self, address: str) -> dict[str, str] | None:
        self._ensure_loaded()
        attrs = self._resources.get(address)
        return dict(attrs) if attrs is not None else None

    def get(self, address: str) -> CredentialState | None:
        attrs = self.attributes(address)
        if attrs is None:
            return None
        return CredentialState.from_attributes(attrs)

    def put(self, address: str, state: CredentialState | None) -> None:
        """Record ``state`` for ``address`` (None removes it) and save."""
        self._ensure_loaded()
        if state is None:
            self._resources.pop(address, None)
        else:
            self._resources[address] = state.to_attributes()
        self.save()

    def save(self) -> None:
        """Atomically write the state file."""
        content = json.dumps(
            {"version": STATE_VERSION, "resources": self._resources}, indent=2, sort_keys=True
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".credsync-state-", suffix=".tmp")
        try:
            os.write(fd, (content + "\n").encode("utf-8"))
            os.close(fd)
            os.replace(tmp, self.path)
        except Exception:
            try:
                os.close(fd)
            except OSError:
                pass
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Saved %d resource(s) to %s", len(self._resources), self.path)
