"""
Configuration module for the Vault plugin manager.

Loads configuration from environment variables. Command line options
override individual fields (see cli.py).
"""

import math
import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, List, Optional

from models import ConfigurationError

DEFAULT_SA_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go style duration strings such as
    ``90s``, ``3m`` or ``1h30m``.

    Raises:
        ValueError: If the value is not a valid duration
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        seconds = _parse_duration_text(str(value).strip())

    if not math.isfinite(seconds):
        raise ValueError(f"Invalid duration: {value!r}")
    return seconds


def _parse_duration_text(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        pass

    parts = _DURATION_RE.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"Invalid duration: {text!r}")
    return sum(float(n) * _DURATION_UNITS[u] for n, u in parts)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class ObjectStoreConfig:
    """S3 bucket holding the published plugins."""

    bucket: str = ""
    region: str = "eu-central-1"
    endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", ""),
            region=os.getenv("AWS_REGION", "eu-central-1"),
            endpoint_url=os.getenv("S3_ENDPOINT_URL") or None,
        )


@dataclass
class VaultConfig:
    """Vault client and authentication configuration."""

    address: str = "https://127.0.0.1:8200"
    auth_path: str = ""
    auth_role: str = ""
    max_retries: int = 8
    token_path: str = DEFAULT_SA_TOKEN_PATH
    timeout: float = 60.0  # seconds per request
    retry_wait_min: float = 1.0
    retry_wait_max: float = 1.5
    revoke_token: bool = False

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            address=os.getenv("VAULT_ADDR", "https://127.0.0.1:8200"),
            auth_path=os.getenv("VAULT_AUTH_PATH", ""),
            auth_role=os.getenv("VAULT_AUTH_ROLE", ""),
            max_retries=int(os.getenv("VAULT_MAX_RETRIES", "8")),
            token_path=os.getenv("VAULT_SA_TOKEN_PATH", DEFAULT_SA_TOKEN_PATH),
            timeout=float(os.getenv("VAULT_CLIENT_TIMEOUT", "60")),
            retry_wait_min=float(os.getenv("VAULT_RETRY_WAIT_MIN", "1.0")),
            retry_wait_max=float(os.getenv("VAULT_RETRY_WAIT_MAX", "1.5")),
            revoke_token=_env_bool("VAULT_REVOKE_TOKEN"),
        )


@dataclass
class SyncConfig:
    """Sync loop configuration."""

    plugin_path: str = "/vault/plugins"
    interval: float = 180.0  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            plugin_path=os.getenv("PLUGIN_PATH", "/vault/plugins"),
            interval=parse_duration(os.getenv("SYNC_INTERVAL", "180")),
        )


@dataclass
class Config:
    """Main configuration object."""

    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            object_store=ObjectStoreConfig.from_env(),
            vault=VaultConfig.from_env(),
            sync=SyncConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls()

    def override(self, **overrides: Any) -> "Config":
        """
        Return a copy with the given fields replaced.

        Keys are field names of the nested dataclasses (e.g. ``bucket``,
        ``auth_role``, ``interval``). ``None`` values are ignored so that
        unset command line options fall back to the environment.

        Raises:
            ConfigurationError: If a key does not name a configuration field
        """
        sections = {
            "object_store": self.object_store,
            "vault": self.vault,
            "sync": self.sync,
        }
        changes = {name: {} for name in sections}
        top_level = {}

        for key, value in overrides.items():
            if value is None:
                continue
            if key == "log_level":
                top_level[key] = value
                continue
            for name, section in sections.items():
                if key in {f.name for f in fields(section)}:
                    changes[name][key] = value
                    break
            else:
                raise ConfigurationError(f"Unknown configuration field: {key}")

        return replace(
            self,
            **{name: replace(sections[name], **changes[name]) for name in sections},
            **top_level,
        )

    def validate(self) -> None:
        """
        Check that every required setting is present.

        Raises:
            ConfigurationError: Listing every problem found
        """
        problems: List[str] = []
        if not self.object_store.bucket:
            problems.append("S3 bucket is required (--s3-bucket / S3_BUCKET)")
        if not self.vault.auth_path:
            problems.append(
                "Vault auth path is required (--vault-auth-path / VAULT_AUTH_PATH)"
            )
        if not self.vault.auth_role:
            problems.append(
                "Vault auth role is required (--vault-auth-role / VAULT_AUTH_ROLE)"
            )
        if self.vault.max_retries < 0:
            problems.append("Vault max retries must not be negative")
        if not math.isfinite(self.sync.interval) or self.sync.interval <= 0:
            problems.append("Sync interval must be positive")
        if self.log_level.upper() not in LOG_LEVELS:
            levels = ", ".join(LOG_LEVELS)
            problems.append(f"Log level must be one of {levels}: {self.log_level!r}")

        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
