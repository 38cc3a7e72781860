# Kuze: Configuration
#
# All settings come from KUZE_* environment variables (a .env file is loaded
# by the CLI before this module reads them). The agent token TTL is not
# configurable; see tokens.AGENT_TTL.

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import ConfigurationError
from .tokens import DEFAULT_TTL

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_STORE_TIMEOUT = 5.0
DEFAULT_NOTIFY_TIMEOUT = 5.0


@dataclass
class KuzeConfig:
    """Runtime settings for the token service.

    base_url is the externally reachable origin used to build one-time links;
    it is stored without a trailing slash.
    """
    base_url: str = DEFAULT_BASE_URL
    ttl: timedelta = DEFAULT_TTL
    db_path: Path = field(default_factory=lambda: Path("data/kuze.db"))
    prune_interval: Optional[timedelta] = None   # None means "same as ttl"
    store_timeout: float = DEFAULT_STORE_TIMEOUT
    notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT
    notify_url: str = ""
    vault_path: Path = field(default_factory=lambda: Path("data/kuze_vault.db"))
    vault_password: str = ""
    audit_dir: Path = field(default_factory=lambda: Path("audit_logs"))

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")
        if self.ttl <= timedelta(0):
            self.ttl = DEFAULT_TTL
        self.db_path = Path(self.db_path)
        self.vault_path = Path(self.vault_path)
        self.audit_dir = Path(self.audit_dir)

    @property
    def effective_prune_interval(self) -> timedelta:
        if self.prune_interval is None or self.prune_interval <= timedelta(0):
            return self.ttl
        return self.prune_interval

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "KuzeConfig":
        """Build a config from KUZE_* variables, falling back to defaults.

        Raises:
            ConfigurationError: If a numeric variable does not parse or is
                not positive.
        """
        env = os.environ if environ is None else environ

        ttl_seconds = _positive_float(env, "KUZE_TTL_SECONDS", DEFAULT_TTL.total_seconds())
        prune_raw = env.get("KUZE_PRUNE_INTERVAL_SECONDS", "")
        prune_interval = None
        if prune_raw:
            prune_interval = timedelta(
                seconds=_positive_float(env, "KUZE_PRUNE_INTERVAL_SECONDS", 0)
            )

        return cls(
            base_url=env.get("KUZE_BASE_URL", DEFAULT_BASE_URL),
            ttl=timedelta(seconds=ttl_seconds),
            db_path=Path(env.get("KUZE_DB_PATH", "data/kuze.db")),
            prune_interval=prune_interval,
            store_timeout=_positive_float(
                env, "KUZE_STORE_TIMEOUT_SECONDS", DEFAULT_STORE_TIMEOUT,
            ),
            notify_timeout=_positive_float(
                env, "KUZE_NOTIFY_TIMEOUT_SECONDS", DEFAULT_NOTIFY_TIMEOUT,
            ),
            notify_url=env.get("KUZE_NOTIFY_URL", ""),
            vault_path=Path(env.get("KUZE_VAULT_PATH", "data/kuze_vault.db")),
            vault_password=env.get("KUZE_VAULT_PASSWORD", ""),
            audit_dir=Path(env.get("KUZE_AUDIT_DIR", "audit_logs")),
        )


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "")
    if raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value
