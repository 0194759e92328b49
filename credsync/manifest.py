"""
Resource manifests — YAML declarations of SSH private-key credentials.

    resources:
      deploy-key:
        credential_store_id: csst_1234567890
        name: Deploy key
        description: CI deploy key
        username: deploy
        private_key_file: ~/.ssh/deploy_rsa      # or private_key: "-----BEGIN ..."
        private_key_passphrase_env: DEPLOY_KEY_PASSPHRASE

Each secret can be given inline, read from a file (``<attr>_file``) or from
an environment variable (``<attr>_env``). Missing or empty values mean unset.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from credsync.models import SENSITIVE_ATTRIBUTES, SshPrivateKeyConfig


class ManifestError(ValueError):
    pass


def _resolve_secret(address: str, attr: str, entry: dict[str, Any], base_dir: Path) -> str | None:
    sources = [k for k in (attr, f"{attr}_file", f"{attr}_env") if entry.get(k)]
    if len(sources) > 1:
        raise ManifestError(f"{address}: set only one of {', '.join(sources)}")
    if entry.get(attr):
        return str(entry[attr])
    if entry.get(f"{attr}_file"):
        path = Path(os.path.expanduser(str(entry[f"{attr}_file"])))
        if not path.is_absolute():
            path = base_dir / path
        try:
            return path.read_text()
        except OSError as e:
            raise ManifestError(f"{address}: cannot read {attr}_file {path}: {e}") from e
    if entry.get(f"{attr}_env"):
        var = str(entry[f"{attr}_env"])
        if var not in os.environ:
            raise ManifestError(f"{address}: environment variable {var} is not set")
        return os.environ[var]
    return None


def parse_resource(address: str, entry: dict[str, Any], base_dir: Path) -> SshPrivateKeyConfig:
    """Build a config from one manifest entry."""
    if not isinstance(entry, dict):
        raise ManifestError(f"{address}: expected a mapping")
    for required in ("credential_store_id", "username"):
        if not entry.get(required):
            raise ManifestError(f"{address}: missing {required}")

    secrets = {attr: _resolve_secret(address, attr, entry, base_dir) for attr in SENSITIVE_ATTRIBUTES}
    return SshPrivateKeyConfig(
        credential_store_id=str(entry["credential_store_id"]),
        username=str(entry["username"]),
        name=str(entry.get("name") or ""),
        description=str(entry.get("description") or ""),
        **secrets,
    )


def load_manifest(path: Path | str) -> dict[str, SshPrivateKeyConfig]:
    """Load all resources from a YAML manifest, keyed by address."""
    path = Path(path)
    with open(path) as fp:
        data = yaml.safe_load(fp)
    if not data or not isinstance(data, dict) or not isinstance(data.get("resources"), dict):
        raise ManifestError(f"{path}: expected a top-level 'resources' mapping")
    return {
        str(address): parse_resource(str(address), entry, path.parent)
        for address, entry in data["resources"].items()
    }
