"""
Fingerprint keys, one per credential store.

Keys are 32 random bytes stored at $WORKSPACE/keys/<store_id>.key (chmod 600).
They are loaded into a StoreKeyring that is passed explicitly to the
reconciler; there is no process-wide key cache because several stores with
distinct keys may be reconciled side by side.
"""

from __future__ import annotations

import re
import secrets
import stat
from collections.abc import Mapping
from pathlib import Path

from credsync.errors import InvalidKey
from credsync.fingerprint import MIN_KEY_LENGTH

KEY_BYTES = 32
_STORE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def key_path(workspace: Path | str, store_id: str) -> Path:
    if not _STORE_ID_RE.match(store_id):
        raise ValueError(f"Invalid credential store id: {store_id!r}")
    return Path(workspace) / "keys" / f"{store_id}.key"


def init_store_key(workspace: Path | str, store_id: str) -> Path:
    """Generate a key file for a store. Returns the path. Skips if it exists."""
    path = key_path(workspace, store_id)
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(secrets.token_bytes(KEY_BYTES))
    path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
    return path


def load_store_key(workspace: Path | str, store_id: str) -> bytes:
    """Read a store's key from disk."""
    path = key_path(workspace, store_id)
    if not path.exists():
        raise InvalidKey(
            f"No fingerprint key for store {store_id!r} at {path}. "
            f"Run 'credsync keygen {store_id}' to generate one."
        )
    key = path.read_bytes()
    if len(key) < MIN_KEY_LENGTH:
        raise InvalidKey(f"Fingerprint key at {path} is too short ({len(key)} bytes)")
    return key


class StoreKeyring:
    """Store id -> fingerprint key mapping.

    Keys are looked up in the explicit mapping first, then (when a workspace
    is given) loaded lazily from the workspace key directory.
    """

    def __init__(
        self,
        keys: Mapping[str, bytes] | None = None,
        workspace: Path | str | None = None,
    ) -> None:
        self._keys: dict[str, bytes] = dict(keys or {})
        self._workspace = Path(workspace) if workspace is not None else None

    def __contains__(self, store_id: object) -> bool:
        if store_id in self._keys:
            return True
        if self._workspace is None or not isinstance(store_id, str):
            return False
        try:
            return key_path(self._workspace, store_id).exists()
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"StoreKeyring(stores={sorted(self._keys)}, workspace={self._workspace})"

    def key_for(self, store_id: str) -> bytes:
        key = self._keys.get(store_id)
        if key is not None:
            return key
        if self._workspace is None:
            raise InvalidKey(f"No fingerprint key for store {store_id!r}")
        key = load_store_key(self._workspace, store_id)
        self._keys[store_id] = key
        return key
