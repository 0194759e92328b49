"""
Centralized configuration for credsync.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from credsync.config import get_config
    cfg = get_config()
    print(cfg.api.base_url)     # "http://127.0.0.1:9200"
    print(cfg.state_file)       # "/home/user/credsync/state.json"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ApiConfig:
    """Credential store API connection parameters."""

    base_url: str = "http://127.0.0.1:9200"
    token: str = ""
    timeout: float = 10.0
    # Retries after the first attempt
    max_retries: int = 3
    backoff_seconds: float = 0.5
    verify_tls: bool = True

    @property
    def headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        token = "***" if self.token else ""
        return (
            f"ApiConfig(base_url={self.base_url!r}, token={token!r}, timeout={self.timeout}, "
            f"max_retries={self.max_retries}, backoff_seconds={self.backoff_seconds}, "
            f"verify_tls={self.verify_tls})"
        )


@dataclass(frozen=True)
class Config:
    """Top-level credsync configuration."""

    workspace: Path = field(default_factory=lambda: Path.home() / "credsync")
    state_file: Path = field(default_factory=lambda: Path.home() / "credsync" / "state.json")
    api: ApiConfig = field(default_factory=ApiConfig)

    @property
    def keys_dir(self) -> Path:
        return self.workspace / "keys"


_config: Config | None = None


def get_config() -> Config:
    """Get or create the cached config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    workspace = Path(os.environ.get("CREDSYNC_WORKSPACE", Path.home() / "credsync"))
    state_file = Path(os.environ.get("CREDSYNC_STATE_FILE", workspace / "state.json"))

    api = ApiConfig(
        base_url=os.environ.get("CREDSYNC_API_URL", "http://127.0.0.1:9200").rstrip("/"),
        token=os.environ.get("CREDSYNC_TOKEN", ""),
        timeout=float(os.environ.get("CREDSYNC_TIMEOUT", "10")),
        max_retries=int(os.environ.get("CREDSYNC_MAX_RETRIES", "3")),
        backoff_seconds=float(os.environ.get("CREDSYNC_BACKOFF", "0.5")),
        verify_tls=_env_bool("CREDSYNC_VERIFY_TLS", True),
    )

    return Config(workspace=workspace, state_file=state_file, api=api)


def reset_config() -> None:
    """Reset the cached config (for testing)."""
    global _config
    _config = None
